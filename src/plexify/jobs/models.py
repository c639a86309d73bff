"""Domain models for media transcoding jobs."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from plexify.errors import MediaValidationError

OUTPUT_SUFFIX = ".mp4"
SUBTITLE_SUFFIX = ".vtt"
DISABLED_SUFFIX = ".disabled"

_IDENTITY_MAX_CHARS = 180
_IDENTITY_PREFIX_CHARS = 120
_IDENTITY_DIGEST_CHARS = 16
# Printable characters kept verbatim; "/" and "%" are always encoded.
_IDENTITY_SAFE_CHARS = " !'()+,-.=@[]_&"


class MediaKind(str, Enum):
    """How a media file carries its subtitles."""

    EXTERNAL_SUBTITLE = "external_subtitle"
    EMBEDDED_SUBTITLE = "embedded_subtitle"


MEDIA_SUFFIXES: dict[str, MediaKind] = {
    ".webm": MediaKind.EXTERNAL_SUBTITLE,
    ".mkv": MediaKind.EMBEDDED_SUBTITLE,
}


@dataclass(frozen=True, slots=True)
class EncodingParameters:
    """Encoder settings frozen into a job at enqueue time."""

    preset: str = "veryfast"
    crf: str = "23"
    audio_bitrate: str = "128k"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    subtitle_codec: str = "mov_text"


@dataclass(frozen=True, slots=True)
class SortKey:
    """Episodic ordering metadata extracted from a media path."""

    series: str
    season: int
    episode: int


@dataclass(frozen=True, slots=True)
class JobDescriptor:
    """Everything a worker needs to transcode one media file."""

    identity: str
    source_path: str
    media_kind: MediaKind
    encoding: EncodingParameters
    created_at: datetime
    sort_key: SortKey | None = None
    disable_source_files: bool = True
    attempts: int = 0
    last_error: str | None = None

    @property
    def output_path(self) -> str:
        return str(PurePosixPath(self.source_path).with_suffix(OUTPUT_SUFFIX))

    @property
    def subtitle_path(self) -> str | None:
        if self.media_kind is not MediaKind.EXTERNAL_SUBTITLE:
            return None
        return str(PurePosixPath(self.source_path).with_suffix(SUBTITLE_SUFFIX))

    @property
    def job_filename(self) -> str:
        return job_filename(self.identity)

    def with_failed_attempt(self, error_summary: str) -> JobDescriptor:
        """Copy for requeue; identity, source and encoding never change."""

        return replace(self, attempts=self.attempts + 1, last_error=error_summary)


def media_kind_for_path(path: Path | PurePosixPath | str) -> MediaKind:
    """Determine media kind from the file extension."""

    suffix = PurePosixPath(str(path)).suffix.lower()
    if not suffix:
        raise MediaValidationError(
            f"File has no extension. Only .webm and .mkv files are supported: {path}",
        )
    try:
        return MEDIA_SUFFIXES[suffix]
    except KeyError as error:
        raise MediaValidationError(
            f"Unsupported file type. Only .webm and .mkv files are supported. Got: {path}",
        ) from error


def relative_media_path(media_root: Path, path: Path) -> str:
    """Return the POSIX path of ``path`` relative to ``media_root``."""

    try:
        relative = path.relative_to(media_root)
    except ValueError as error:
        raise MediaValidationError(
            f"{path} is not inside media root {media_root}",
        ) from error
    return relative.as_posix()


def derive_identity(source_path: str) -> str:
    """Derive the stable, file-name-safe job identity for a relative media path.

    The extension is stripped so that ``show.webm`` and ``show.mkv`` share one
    identity (they would produce the same ``show.mp4``). Percent-encoding keeps
    the mapping injective: ``/`` and ``%`` never survive verbatim.
    """

    stem = str(PurePosixPath(source_path).with_suffix(""))
    encoded = quote(stem, safe=_IDENTITY_SAFE_CHARS)
    if encoded.startswith("."):
        encoded = "%2E" + encoded[1:]
    if len(encoded) <= _IDENTITY_MAX_CHARS:
        return encoded
    digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:_IDENTITY_DIGEST_CHARS]
    # "%%" never appears in quote() output, so shortened identities cannot collide
    # with natural ones.
    return f"{encoded[:_IDENTITY_PREFIX_CHARS]}%%{digest}"


def job_filename(identity: str) -> str:
    return f"{identity}.job"
