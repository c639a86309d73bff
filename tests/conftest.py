"""Shared test fixtures."""

from __future__ import annotations

import shlex
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import pytest

from plexify.jobs.models import EncodingParameters, JobDescriptor, MediaKind, derive_identity
from plexify.jobs.ordering import extract_sort_key
from plexify.jobs.store import JobHandle, JobLocation, StateStore

_ENV_VARS = (
    "PLEXIFY_FFMPEG_PRESET",
    "PLEXIFY_FFMPEG_CRF",
    "PLEXIFY_FFMPEG_AUDIO_BITRATE",
    "PLEXIFY_SLEEP_INTERVAL",
    "PLEXIFY_RETRY_DELAY_SECONDS",
    "PLEXIFY_RETRY_MAX_DELAY_SECONDS",
    "PLEXIFY_FFMPEG_COMMAND",
    "PLEXIFY_LOG_LEVEL",
    "FFMPEG_PRESET",
    "FFMPEG_CRF",
    "FFMPEG_AUDIO_BITRATE",
    "SLEEP_INTERVAL",
)

_FAKE_FFMPEG_SOURCE = """\
import json
import os
import sys

args = sys.argv[1:]
if os.path.exists({fail_marker!r}):
    print("fake ffmpeg: simulated encoder failure", file=sys.stderr)
    sys.exit(3)
with open(args[-1], "w", encoding="utf-8") as handle:
    json.dump(args, handle)
print("fake ffmpeg: done", file=sys.stderr)
"""


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep host configuration out of tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def media_root(tmp_path: Path) -> Path:
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture()
def store(media_root: Path) -> StateStore:
    state_store = StateStore(media_root)
    state_store.init()
    return state_store


@dataclass(slots=True)
class FakeFfmpeg:
    """Script standing in for ffmpeg; fails while ``fail_marker`` exists."""

    script: Path
    fail_marker: Path

    @property
    def command(self) -> tuple[str, ...]:
        return (sys.executable, str(self.script))

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)


@pytest.fixture()
def fake_ffmpeg(tmp_path: Path) -> FakeFfmpeg:
    script = tmp_path / "fake_ffmpeg.py"
    fail_marker = tmp_path / "ffmpeg.fail"
    script.write_text(_FAKE_FFMPEG_SOURCE.format(fail_marker=str(fail_marker)), "utf-8")
    return FakeFfmpeg(script=script, fail_marker=fail_marker)


def make_descriptor(
    source_path: str,
    *,
    media_kind: MediaKind | None = None,
    created_at: datetime | None = None,
    attempts: int = 0,
) -> JobDescriptor:
    if media_kind is None:
        media_kind = (
            MediaKind.EXTERNAL_SUBTITLE if source_path.endswith(".webm") else MediaKind.EMBEDDED_SUBTITLE
        )
    return JobDescriptor(
        identity=derive_identity(source_path),
        source_path=source_path,
        media_kind=media_kind,
        encoding=EncodingParameters(),
        created_at=created_at or datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
        sort_key=extract_sort_key(source_path),
        attempts=attempts,
    )


def queue_job(
    state_store: StateStore,
    source_path: str,
    **kwargs,
) -> JobHandle:
    descriptor = make_descriptor(source_path, **kwargs)
    handle = JobHandle(identity=descriptor.identity)
    state_store.create(JobLocation.QUEUED, handle, descriptor)
    return handle
