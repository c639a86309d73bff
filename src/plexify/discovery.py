"""Media discovery with gitignore-style ``.plexifyignore`` filtering."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath

from plexify.jobs.models import MEDIA_SUFFIXES, MediaKind
from plexify.jobs.store import STORE_DIRNAMES

logger = logging.getLogger(__name__)

IGNORE_FILENAME = ".plexifyignore"


@dataclass(frozen=True, slots=True)
class MediaCandidate:
    """One media file found under the media root."""

    relative_path: str
    media_kind: MediaKind


@dataclass(frozen=True, slots=True)
class IgnorePattern:
    """A single pattern line from an ignore file."""

    base: str
    pattern: str
    negation: bool
    directory_only: bool
    anchored: bool

    @classmethod
    def parse(cls, line: str, *, base: str) -> IgnorePattern | None:
        text = line.strip()
        if not text or text.startswith("#"):
            return None
        negation = text.startswith("!")
        if negation:
            text = text[1:]
        directory_only = text.endswith("/")
        text = text.rstrip("/")
        anchored = "/" in text
        text = text.lstrip("/")
        if not text:
            return None
        return cls(
            base=base,
            pattern=text,
            negation=negation,
            directory_only=directory_only,
            anchored=anchored,
        )

    def matches(self, relative_path: str, *, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        local = relative_path
        if self.base:
            prefix = f"{self.base}/"
            if not relative_path.startswith(prefix):
                return False
            local = relative_path[len(prefix) :]
        if self.anchored:
            return fnmatchcase(local, self.pattern)
        return fnmatchcase(PurePosixPath(local).name, self.pattern)


class IgnoreFilter:
    """Applies every ``.plexifyignore`` found under a root directory."""

    def __init__(self, root: Path, patterns: Iterable[IgnorePattern] = ()) -> None:
        self.root = root
        self.patterns = list(patterns)

    @classmethod
    def load(cls, root: Path) -> IgnoreFilter:
        """Collect patterns from all ignore files, shallow files first."""

        ignore_files: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(name for name in dirnames if name not in STORE_DIRNAMES)
            if IGNORE_FILENAME in filenames:
                ignore_files.append(Path(dirpath) / IGNORE_FILENAME)

        ignore_files.sort(key=lambda path: len(path.relative_to(root).parts))
        patterns: list[IgnorePattern] = []
        for ignore_file in ignore_files:
            base_dir = ignore_file.parent.relative_to(root).as_posix()
            base = "" if base_dir == "." else base_dir
            for line in ignore_file.read_text("utf-8").splitlines():
                pattern = IgnorePattern.parse(line, base=base)
                if pattern is not None:
                    patterns.append(pattern)
            logger.debug("Loaded ignore patterns from %s", ignore_file)
        return cls(root, patterns)

    def should_ignore(self, relative_path: str, *, is_dir: bool) -> bool:
        """Last matching pattern wins, as in gitignore."""

        ignored = False
        for pattern in self.patterns:
            if pattern.matches(relative_path, is_dir=is_dir):
                ignored = not pattern.negation
        return ignored


def discover_media(
    media_root: Path,
    ignore_filter: IgnoreFilter | None = None,
) -> Iterator[MediaCandidate]:
    """Recursively yield ``.webm`` and ``.mkv`` files in deterministic order."""

    for dirpath, dirnames, filenames in os.walk(media_root):
        current = Path(dirpath)
        kept: list[str] = []
        for name in sorted(dirnames):
            if name in STORE_DIRNAMES:
                continue
            relative_dir = (current / name).relative_to(media_root).as_posix()
            if ignore_filter is not None and ignore_filter.should_ignore(relative_dir, is_dir=True):
                logger.debug("Ignoring directory: %s", relative_dir)
                continue
            kept.append(name)
        dirnames[:] = kept

        for name in sorted(filenames):
            kind = MEDIA_SUFFIXES.get(PurePosixPath(name).suffix.lower())
            if kind is None:
                continue
            relative_path = (current / name).relative_to(media_root).as_posix()
            if ignore_filter is not None and ignore_filter.should_ignore(relative_path, is_dir=False):
                logger.debug("Ignoring file: %s", relative_path)
                continue
            yield MediaCandidate(relative_path=relative_path, media_kind=kind)
