"""Claim-order preference for queued jobs."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from enum import Enum
from pathlib import PurePosixPath

from plexify.jobs.models import JobDescriptor, SortKey
from plexify.jobs.store import JobHandle, JobLocation, StateStore

logger = logging.getLogger(__name__)

_EPISODE_CODE = re.compile(r"(?<![A-Za-z0-9])[Ss](\d{1,2})[Ee](\d{1,3})(?!\d)")
_SEASON_DIR = re.compile(r"^(?:season|staffel|series)[\s._-]*(\d{1,3})$", re.IGNORECASE)
_SPECIALS_DIR = re.compile(r"^specials?$", re.IGNORECASE)
_LOOSE_EPISODE = re.compile(r"(?i)(?:^|[\s._-])(?:e|ep|episode)[\s._-]*(\d{1,3})(?!\d)")
_TITLE_SEPARATOR = re.compile(r"\s+-\s+")
_TRIM_CHARS = " ._-"


class JobPriority(str, Enum):
    """Job prioritization methods for workers."""

    NONE = "none"
    EPISODE = "episode"


def extract_sort_key(source_path: str) -> SortKey | None:
    """Parse series / season / episode from a relative media path.

    Recognizes ``Series - S01E02 - Title.mkv``, ``Series.S01E02.mkv`` and
    ``Series/Season 1/Episode 2.webm``. Returns None for non-episodic media.
    """

    path = PurePosixPath(source_path)
    stem = path.stem
    season_from_dir = _season_from_directories(path.parents)

    match = _EPISODE_CODE.search(stem)
    if match is not None:
        season = int(match.group(1))
        episode = int(match.group(2))
        series = _series_from_filename(stem[: match.start()]) or _series_from_directories(path)
    else:
        loose = _LOOSE_EPISODE.search(stem)
        if loose is None or season_from_dir is None:
            return None
        season = season_from_dir
        episode = int(loose.group(1))
        series = _series_from_directories(path)

    return SortKey(series=series or "", season=season, episode=episode)


def order_candidates(
    store: StateStore,
    handles: Iterable[JobHandle],
    priority: JobPriority,
) -> list[JobHandle]:
    """Order queued candidates for a claim scan; advisory only.

    Jobs are tried oldest first, which is discovery order for a scan. With
    ``JobPriority.EPISODE`` episodic jobs come before all others. Unreadable
    descriptors go last; vanished ones are dropped.
    """

    rank = _episode_rank if priority is JobPriority.EPISODE else _creation_rank
    keyed: list[tuple[tuple[object, ...], JobHandle]] = []
    for handle in handles:
        try:
            descriptor = store.read(JobLocation.QUEUED, handle)
        except (ValueError, TypeError):
            keyed.append(((2, handle.identity), handle))
            continue
        if descriptor is None:
            continue
        keyed.append((rank(descriptor), handle))

    keyed.sort(key=lambda item: item[0])
    return [handle for _, handle in keyed]


def _creation_rank(descriptor: JobDescriptor) -> tuple[object, ...]:
    return (1, descriptor.created_at, descriptor.identity)


def _episode_rank(descriptor: JobDescriptor) -> tuple[object, ...]:
    key = descriptor.sort_key
    if key is None:
        return _creation_rank(descriptor)
    return (0, key.series.casefold(), key.season, key.episode, descriptor.created_at, descriptor.identity)


def _series_from_filename(prefix: str) -> str:
    parts = _TITLE_SEPARATOR.split(prefix.strip())
    name = parts[0].strip(_TRIM_CHARS) if parts else ""
    if " " not in name:
        # Scene-style names: "Show.Name.S01E02"
        name = re.sub(r"[._]+", " ", name)
    return name


def _season_from_directories(parents: Iterable[PurePosixPath]) -> int | None:
    for parent in parents:
        name = parent.name
        if not name:
            continue
        match = _SEASON_DIR.match(name)
        if match is not None:
            return int(match.group(1))
        if _SPECIALS_DIR.match(name):
            return 0
        return None
    return None


def _series_from_directories(path: PurePosixPath) -> str:
    for parent in path.parents:
        name = parent.name
        if not name:
            break
        if _SEASON_DIR.match(name) or _SPECIALS_DIR.match(name):
            continue
        return name
    return ""
