"""Transcoding engine implementations."""

from plexify.engine.base import (
    EngineRunRequest,
    EngineRunResult,
    TranscodingEngine,
    build_engine_request,
)
from plexify.engine.ffmpeg import FfmpegEngine, build_ffmpeg_args

__all__ = [
    "EngineRunRequest",
    "EngineRunResult",
    "FfmpegEngine",
    "TranscodingEngine",
    "build_engine_request",
    "build_ffmpeg_args",
]
