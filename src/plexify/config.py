"""Runtime configuration for scanning and workers."""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field

from plexify.jobs.models import EncodingParameters

QUALITY_PRESETS: dict[str, EncodingParameters] = {
    "ultrafast": EncodingParameters(preset="ultrafast", crf="28", audio_bitrate="96k"),
    "fast": EncodingParameters(preset="veryfast", crf="23", audio_bitrate="128k"),
    "balanced": EncodingParameters(preset="medium", crf="21", audio_bitrate="160k"),
    "quality": EncodingParameters(preset="slow", crf="18", audio_bitrate="192k"),
    "archive": EncodingParameters(preset="veryslow", crf="16", audio_bitrate="256k"),
}

_X264_PRESETS = frozenset(
    {
        "ultrafast",
        "superfast",
        "veryfast",
        "faster",
        "fast",
        "medium",
        "slow",
        "slower",
        "veryslow",
        "placebo",
    },
)


@dataclass(slots=True)
class EncodingSettings:
    """Encoder settings snapshotted into every new job."""

    preset: str = "veryfast"
    crf: str = "23"
    audio_bitrate: str = "128k"

    def snapshot(self, preset_name: str | None = None) -> EncodingParameters:
        """Freeze current settings, or a named quality preset, for a job."""

        if preset_name is not None:
            return resolve_preset(preset_name)
        return EncodingParameters(
            preset=self.preset,
            crf=self.crf,
            audio_bitrate=self.audio_bitrate,
        )


@dataclass(slots=True)
class WorkerSettings:
    """Worker loop timing and engine invocation."""

    sleep_interval_seconds: float = 60.0
    retry_delay_seconds: float = 10.0
    retry_max_delay_seconds: float = 300.0
    ffmpeg_command: tuple[str, ...] = ("ffmpeg",)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    encoding: EncodingSettings = field(default_factory=EncodingSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment, accepting the legacy unprefixed names."""

        return cls(
            encoding=EncodingSettings(
                preset=os.getenv("PLEXIFY_FFMPEG_PRESET", os.getenv("FFMPEG_PRESET", "veryfast")),
                crf=os.getenv("PLEXIFY_FFMPEG_CRF", os.getenv("FFMPEG_CRF", "23")),
                audio_bitrate=os.getenv(
                    "PLEXIFY_FFMPEG_AUDIO_BITRATE",
                    os.getenv("FFMPEG_AUDIO_BITRATE", "128k"),
                ),
            ),
            worker=WorkerSettings(
                sleep_interval_seconds=_env_float(
                    "PLEXIFY_SLEEP_INTERVAL",
                    os.getenv("SLEEP_INTERVAL", "60"),
                ),
                retry_delay_seconds=_env_float("PLEXIFY_RETRY_DELAY_SECONDS", "10"),
                retry_max_delay_seconds=_env_float("PLEXIFY_RETRY_MAX_DELAY_SECONDS", "300"),
                ffmpeg_command=_env_command("PLEXIFY_FFMPEG_COMMAND", "ffmpeg"),
            ),
            log_level=os.getenv("PLEXIFY_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )

    def validate(self) -> None:
        """Raise configuration error if any value is out of range."""

        if self.encoding.preset not in _X264_PRESETS:
            raise ValueError(
                f"PLEXIFY_FFMPEG_PRESET must be one of {sorted(_X264_PRESETS)}, "
                f"got {self.encoding.preset!r}.",
            )
        try:
            crf = int(self.encoding.crf)
        except ValueError as error:
            raise ValueError(
                f"PLEXIFY_FFMPEG_CRF must be an integer, got {self.encoding.crf!r}.",
            ) from error
        if not 0 <= crf <= 51:
            raise ValueError("PLEXIFY_FFMPEG_CRF must be between 0 and 51.")
        if not self.encoding.audio_bitrate.strip():
            raise ValueError("PLEXIFY_FFMPEG_AUDIO_BITRATE must not be empty.")
        if self.worker.sleep_interval_seconds < 0:
            raise ValueError("PLEXIFY_SLEEP_INTERVAL must be >= 0.")
        if self.worker.retry_delay_seconds < 0:
            raise ValueError("PLEXIFY_RETRY_DELAY_SECONDS must be >= 0.")
        if self.worker.retry_max_delay_seconds < self.worker.retry_delay_seconds:
            raise ValueError(
                "PLEXIFY_RETRY_MAX_DELAY_SECONDS must be >= PLEXIFY_RETRY_DELAY_SECONDS.",
            )
        if not self.worker.ffmpeg_command:
            raise ValueError("PLEXIFY_FFMPEG_COMMAND must not be empty.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid PLEXIFY_LOG_LEVEL: {self.log_level!r}")


def resolve_preset(name: str) -> EncodingParameters:
    """Return encoding parameters for a named quality preset."""

    normalized = name.strip().lower()
    try:
        return QUALITY_PRESETS[normalized]
    except KeyError as error:
        raise ValueError(
            f"Unknown quality preset {name!r}. Available: {', '.join(QUALITY_PRESETS)}",
        ) from error


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip()
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {raw!r}") from error


def _env_command(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip() or default
    return tuple(shlex.split(raw))
