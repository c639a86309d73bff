"""Turn discovered media files into queued job descriptors exactly once."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path, PurePosixPath

from plexify.discovery import MediaCandidate
from plexify.jobs.models import (
    OUTPUT_SUFFIX,
    SUBTITLE_SUFFIX,
    EncodingParameters,
    JobDescriptor,
    MediaKind,
    derive_identity,
)
from plexify.jobs.ordering import extract_sort_key
from plexify.jobs.store import CreateResult, JobHandle, JobLocation, StateStore

logger = logging.getLogger(__name__)


class EnqueueOutcome(str, Enum):
    """Result of attempting to enqueue one media file."""

    CREATED = "created"
    OUTPUT_EXISTS = "output_exists"
    ALREADY_QUEUED = "already_queued"
    MISSING_SUBTITLE = "missing_subtitle"
    IN_FLIGHT = "in_flight"


@dataclass(slots=True)
class ScanReport:
    """Aggregate enqueue counters for CLI reporting."""

    created: int = 0
    output_exists: int = 0
    already_queued: int = 0
    missing_subtitle: int = 0
    in_flight: int = 0
    warnings: list[str] = field(default_factory=list)

    def record(self, outcome: EnqueueOutcome, relative_path: str) -> None:
        if outcome is EnqueueOutcome.CREATED:
            self.created += 1
        elif outcome is EnqueueOutcome.OUTPUT_EXISTS:
            self.output_exists += 1
        elif outcome is EnqueueOutcome.ALREADY_QUEUED:
            self.already_queued += 1
        elif outcome is EnqueueOutcome.IN_FLIGHT:
            self.in_flight += 1
        elif outcome is EnqueueOutcome.MISSING_SUBTITLE:
            self.missing_subtitle += 1
            self.warnings.append(f"SKIPPING: Missing subtitle file for '{relative_path}'")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class EnqueueService:
    """Creates queued descriptors for media files under one media root."""

    def __init__(
        self,
        *,
        store: StateStore,
        media_root: Path,
        encoding: EncodingParameters,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.media_root = media_root
        self.encoding = encoding
        self.clock = clock

    def enqueue_media_file(self, relative_path: str, media_kind: MediaKind) -> EnqueueOutcome:
        """Enqueue one media file; a no-op when its job or output already exists."""

        handle = JobHandle(identity=derive_identity(relative_path))
        source = PurePosixPath(relative_path)

        if (self.media_root / source.with_suffix(OUTPUT_SUFFIX)).exists():
            logger.debug("Output already exists for: %s", relative_path)
            return EnqueueOutcome.OUTPUT_EXISTS
        if self.store.contains(handle) is not None:
            logger.debug("Job already exists for: %s", relative_path)
            return EnqueueOutcome.ALREADY_QUEUED

        if (
            media_kind is MediaKind.EXTERNAL_SUBTITLE
            and not (self.media_root / source.with_suffix(SUBTITLE_SUFFIX)).is_file()
        ):
            logger.warning("SKIPPING: Missing subtitle file for '%s'", relative_path)
            return EnqueueOutcome.MISSING_SUBTITLE

        if not self.store.acquire_marker(handle):
            logger.debug("Job already being created by another process: %s", relative_path)
            return EnqueueOutcome.IN_FLIGHT
        try:
            # Another scan may have finished this identity between the first
            # check and taking the marker.
            if self.store.contains(handle) is not None:
                return EnqueueOutcome.ALREADY_QUEUED
            descriptor = JobDescriptor(
                identity=handle.identity,
                source_path=relative_path,
                media_kind=media_kind,
                encoding=self.encoding,
                created_at=self.clock(),
                sort_key=extract_sort_key(relative_path),
            )
            result = self.store.create(JobLocation.QUEUED, handle, descriptor)
        finally:
            self.store.release_marker(handle)

        if result is CreateResult.ALREADY_EXISTS:
            logger.debug("Job %s appeared concurrently; treating as queued", handle.identity)
            return EnqueueOutcome.ALREADY_QUEUED
        if media_kind is MediaKind.EMBEDDED_SUBTITLE:
            logger.info("Queueing job for: %s (embedded subs assumed)", relative_path)
        else:
            logger.info("Queueing job for: %s", relative_path)
        return EnqueueOutcome.CREATED

    def enqueue_all(self, candidates: Iterable[MediaCandidate]) -> ScanReport:
        """Enqueue every discovered candidate and aggregate the outcomes."""

        report = ScanReport()
        for candidate in candidates:
            outcome = self.enqueue_media_file(candidate.relative_path, candidate.media_kind)
            report.record(outcome, candidate.relative_path)
        return report
