"""Engine interface for transcoding one job."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from plexify.jobs.models import EncodingParameters, JobDescriptor, MediaKind

EXTERNAL_SUBTITLE_MAPPING = ("0:v:0", "0:a:0", "1:s:0")
# Trailing "?" keeps ffmpeg going when the container has no subtitle stream.
EMBEDDED_SUBTITLE_MAPPING = ("0:v:0", "0:a:0", "0:s:0?")


@dataclass(slots=True)
class EngineRunRequest:
    """Inputs required to execute one transcoding attempt."""

    input_paths: tuple[Path, ...]
    output_path: Path
    mapping: tuple[str, ...]
    encoding: EncodingParameters
    log_path: Path
    fix_sub_duration: bool = False


@dataclass(slots=True)
class EngineRunResult:
    """Execution outcome from the engine."""

    exit_code: int
    output_path: Path
    log_path: Path

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.output_path.exists()


class TranscodingEngine(Protocol):
    """Protocol implemented by engine runners."""

    def run(self, request: EngineRunRequest) -> EngineRunResult:
        """Run one attempt synchronously and return execution metadata."""


def build_engine_request(
    descriptor: JobDescriptor,
    *,
    media_root: Path,
    output_path: Path,
    log_path: Path,
) -> EngineRunRequest:
    """Translate a job descriptor into an engine request rooted at ``media_root``."""

    inputs = [media_root / descriptor.source_path]
    if descriptor.media_kind is MediaKind.EXTERNAL_SUBTITLE:
        subtitle_path = descriptor.subtitle_path
        if subtitle_path is not None:
            inputs.append(media_root / subtitle_path)
        mapping = EXTERNAL_SUBTITLE_MAPPING
    else:
        mapping = EMBEDDED_SUBTITLE_MAPPING

    return EngineRunRequest(
        input_paths=tuple(inputs),
        output_path=output_path,
        mapping=mapping,
        encoding=descriptor.encoding,
        log_path=log_path,
        fix_sub_duration=descriptor.media_kind is MediaKind.EMBEDDED_SUBTITLE,
    )
