"""Error taxonomy shared by the queue, engine, and CLI layers."""

from __future__ import annotations


class PlexifyError(Exception):
    """Base class for errors surfaced to the operator."""


class MediaValidationError(PlexifyError, ValueError):
    """Media root or media file is not usable for a job."""


class StoreIOError(PlexifyError):
    """State store entry could not be created, read, or moved."""

    def __init__(self, message: str, *, path: object | None = None) -> None:
        super().__init__(message)
        self.path = path


class EngineRunError(PlexifyError, RuntimeError):
    """Transcoding engine could not be started."""
