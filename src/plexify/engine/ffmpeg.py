"""Subprocess-based ffmpeg engine."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from collections.abc import Sequence

from plexify.engine.base import EngineRunRequest, EngineRunResult
from plexify.errors import EngineRunError

logger = logging.getLogger(__name__)

_COMMON_FLAGS = ("-hide_banner", "-fflags", "+genpts", "-avoid_negative_ts", "make_zero")


def build_ffmpeg_args(request: EngineRunRequest, *, command: Sequence[str] = ("ffmpeg",)) -> list[str]:
    """Build the ffmpeg argument vector for one request."""

    args = [*command, *_COMMON_FLAGS]
    if request.fix_sub_duration:
        args.append("-fix_sub_duration")
    for input_path in request.input_paths:
        args.extend(["-i", str(input_path)])
    for stream in request.mapping:
        args.extend(["-map", stream])

    encoding = request.encoding
    args.extend(
        [
            "-c:v",
            encoding.video_codec,
            "-preset",
            encoding.preset,
            "-crf",
            encoding.crf,
            "-c:a",
            encoding.audio_codec,
            "-b:a",
            encoding.audio_bitrate,
            "-c:s",
            encoding.subtitle_codec,
            "-y",
            str(request.output_path),
        ],
    )
    return args


def background_prefix() -> list[str]:
    """Lowest CPU and idle I/O priority, using whichever tools are installed."""

    prefix: list[str] = []
    if shutil.which("nice"):
        prefix.extend(["nice", "-n", "19"])
    if shutil.which("ionice"):
        prefix.extend(["ionice", "-c", "3"])
    return prefix


class FfmpegEngine:
    """Run ffmpeg synchronously, writing its console output to the job log."""

    def __init__(self, *, command: Sequence[str] = ("ffmpeg",), background: bool = False) -> None:
        self.command = tuple(command)
        self.background = background

    def build_args(self, request: EngineRunRequest) -> list[str]:
        prefix = background_prefix() if self.background else []
        return [*prefix, *build_ffmpeg_args(request, command=self.command)]

    def run(self, request: EngineRunRequest) -> EngineRunResult:
        args = self.build_args(request)
        request.log_path.parent.mkdir(parents=True, exist_ok=True)
        request.output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Executing FFmpeg command: %s", shlex.join(args))

        try:
            with request.log_path.open("w", encoding="utf-8") as log_handle:
                # Own session: a terminal Ctrl-C reaches the worker, not ffmpeg,
                # so the current job can finish after a shutdown request.
                completed = subprocess.run(  # noqa: S603
                    args,
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    check=False,
                    start_new_session=True,
                )
        except FileNotFoundError as error:
            raise EngineRunError(f"Transcoding command not found: {args[0]}") from error
        except OSError as error:
            raise EngineRunError(f"Transcoding command failed to start: {error}") from error

        return EngineRunResult(
            exit_code=completed.returncode,
            output_path=request.output_path,
            log_path=request.log_path,
        )
