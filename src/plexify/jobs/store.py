"""Directory-backed job state store.

A job's state is the directory its descriptor file lives in. All mutation goes
through two primitives that are atomic on POSIX filesystems:

- ``create`` links a fully written temp file to its final name (``link(2)``
  never overwrites, so exactly one concurrent creator wins);
- ``transition`` renames an entry between directories (``rename(2)`` of a path
  that another process already moved fails with ``ENOENT``, so exactly one
  concurrent mover wins).
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from uuid import uuid4

from plexify.errors import StoreIOError
from plexify.jobs.contracts import dump_descriptor, load_descriptor
from plexify.jobs.models import JobDescriptor, job_filename

logger = logging.getLogger(__name__)

JOB_SUFFIX = ".job"
LOCKS_DIRNAME = "_locks"
TMP_DIRNAME = "_tmp"
WORKER_LOG_FILENAME = "_worker.log"


class JobLocation(str, Enum):
    """Named store locations; membership encodes lifecycle state."""

    QUEUED = "queued"
    CLAIMED = "claimed"
    COMPLETED = "completed"


LOCATION_DIRNAMES: dict[JobLocation, str] = {
    JobLocation.QUEUED: "_queue",
    JobLocation.CLAIMED: "_in_progress",
    JobLocation.COMPLETED: "_completed",
}

STORE_DIRNAMES = frozenset({*LOCATION_DIRNAMES.values(), LOCKS_DIRNAME, TMP_DIRNAME})


class TransitionResult(str, Enum):
    SUCCESS = "success"
    ALREADY_GONE = "already_gone"


class CreateResult(str, Enum):
    SUCCESS = "success"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True, slots=True)
class JobHandle:
    """Name of a descriptor entry, independent of its current location."""

    identity: str

    @property
    def filename(self) -> str:
        return job_filename(self.identity)

    @classmethod
    def from_filename(cls, name: str) -> JobHandle | None:
        if name.startswith(".") or not name.endswith(JOB_SUFFIX):
            return None
        identity = name[: -len(JOB_SUFFIX)]
        if not identity:
            return None
        return cls(identity=identity)


class StateStore:
    """Queued / claimed / completed job directories under one work root."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.locks_dir = root / LOCKS_DIRNAME
        self.tmp_dir = root / TMP_DIRNAME

    def path_for(self, location: JobLocation) -> Path:
        return self.root / LOCATION_DIRNAMES[location]

    def entry_path(self, location: JobLocation, handle: JobHandle) -> Path:
        return self.path_for(location) / handle.filename

    def init(self) -> None:
        """Create store directories if they are missing."""

        try:
            for location in JobLocation:
                self.path_for(location).mkdir(parents=True, exist_ok=True)
            self.locks_dir.mkdir(parents=True, exist_ok=True)
            self.tmp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise StoreIOError(
                f"Cannot initialize state store at {self.root}: {error}",
                path=self.root,
            ) from error

    def iter_jobs(self, location: JobLocation) -> Iterator[JobHandle]:
        """Yield handles currently in ``location``.

        Best-effort snapshot: entries may be moved by other workers at any time,
        so every handle is only a candidate.
        """

        directory = self.path_for(location)
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    handle = JobHandle.from_filename(entry.name)
                    if handle is not None:
                        yield handle
        except FileNotFoundError:
            return
        except OSError as error:
            raise StoreIOError(f"Cannot list {directory}: {error}", path=directory) from error

    def transition(
        self,
        handle: JobHandle,
        from_location: JobLocation,
        to_location: JobLocation,
    ) -> TransitionResult:
        """Atomically move an entry; report ALREADY_GONE if another actor moved it first."""

        source = self.entry_path(from_location, handle)
        target = self.entry_path(to_location, handle)
        try:
            os.rename(source, target)
        except FileNotFoundError as error:
            if not target.parent.is_dir():
                raise StoreIOError(
                    f"Store location {to_location.value} is missing: {target.parent}",
                    path=target.parent,
                ) from error
            logger.debug(
                "Entry %s already gone from %s",
                handle.identity,
                from_location.value,
            )
            return TransitionResult.ALREADY_GONE
        except OSError as error:
            raise StoreIOError(
                f"Cannot move {handle.identity} from {from_location.value} "
                f"to {to_location.value}: {error}",
                path=source,
            ) from error
        return TransitionResult.SUCCESS

    def create(
        self,
        location: JobLocation,
        handle: JobHandle,
        descriptor: JobDescriptor,
    ) -> CreateResult:
        """Create a new entry only if absent; readers never see a partial file."""

        target = self.entry_path(location, handle)
        staging = target.parent / f".{handle.identity}.{uuid4().hex}.tmp"
        try:
            staging.write_text(dump_descriptor(descriptor), "utf-8")
            try:
                os.link(staging, target)
            except FileExistsError:
                return CreateResult.ALREADY_EXISTS
            return CreateResult.SUCCESS
        except OSError as error:
            raise StoreIOError(
                f"Cannot create {handle.identity} in {location.value}: {error}",
                path=target,
            ) from error
        finally:
            staging.unlink(missing_ok=True)

    def read(self, location: JobLocation, handle: JobHandle) -> JobDescriptor | None:
        """Load a descriptor, or None when the entry is no longer in ``location``.

        Raises ValueError or TypeError for a malformed document.
        """

        path = self.entry_path(location, handle)
        try:
            text = path.read_text("utf-8")
        except FileNotFoundError:
            return None
        except OSError as error:
            raise StoreIOError(f"Cannot read {path}: {error}", path=path) from error
        return load_descriptor(text)

    def rewrite(self, location: JobLocation, handle: JobHandle, descriptor: JobDescriptor) -> None:
        """Replace the content of an entry the caller exclusively owns."""

        target = self.entry_path(location, handle)
        staging = target.parent / f".{handle.identity}.{uuid4().hex}.tmp"
        try:
            staging.write_text(dump_descriptor(descriptor), "utf-8")
            os.replace(staging, target)
        except OSError as error:
            staging.unlink(missing_ok=True)
            raise StoreIOError(f"Cannot rewrite {target}: {error}", path=target) from error

    def contains(self, handle: JobHandle) -> JobLocation | None:
        """Return the location holding ``handle``.

        Locations are probed in lifecycle order so that a job moving forward
        (queued -> claimed -> completed) between probes is still found.
        """

        for location in (JobLocation.QUEUED, JobLocation.CLAIMED, JobLocation.COMPLETED):
            if self.entry_path(location, handle).exists():
                return location
        return None

    def acquire_marker(self, handle: JobHandle) -> bool:
        """Take the per-identity enqueue marker; False if another process holds it."""

        marker = self.locks_dir / f"{handle.identity}.lock"
        try:
            os.mkdir(marker)
        except FileExistsError:
            return False
        except OSError as error:
            raise StoreIOError(f"Cannot create enqueue marker {marker}: {error}", path=marker) from error
        return True

    def release_marker(self, handle: JobHandle) -> None:
        marker = self.locks_dir / f"{handle.identity}.lock"
        try:
            os.rmdir(marker)
        except FileNotFoundError:
            return
        except OSError as error:
            raise StoreIOError(f"Cannot remove enqueue marker {marker}: {error}", path=marker) from error

    def temp_output_path(self, handle: JobHandle, suffix: str) -> Path:
        return self.tmp_dir / f"{handle.identity}{suffix}"

    def engine_log_path(self, handle: JobHandle) -> Path:
        return self.tmp_dir / f"{handle.identity}.log"

    def counts(self) -> dict[JobLocation, int]:
        return {location: sum(1 for _ in self.iter_jobs(location)) for location in JobLocation}

    def clean(self) -> list[Path]:
        """Discard the whole store. This is the only path that deletes descriptors."""

        removed: list[Path] = []
        directories = [self.path_for(location) for location in JobLocation]
        directories += [self.locks_dir, self.tmp_dir]
        try:
            for directory in directories:
                if directory.exists():
                    shutil.rmtree(directory)
                    removed.append(directory)
            worker_log = self.root / WORKER_LOG_FILENAME
            if worker_log.exists():
                worker_log.unlink()
                removed.append(worker_log)
        except OSError as error:
            raise StoreIOError(f"Cannot clean state store at {self.root}: {error}", path=self.root) from error
        return removed
