"""Claim protocol: move one queued job into claimed, at most one winner."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from plexify.jobs.models import JobDescriptor
from plexify.jobs.ordering import JobPriority, order_candidates
from plexify.jobs.store import JobHandle, JobLocation, StateStore, TransitionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClaimedJob:
    """A job this worker exclusively owns until it resolves it."""

    handle: JobHandle
    descriptor: JobDescriptor


def claim_next_job(
    store: StateStore,
    priority: JobPriority = JobPriority.NONE,
) -> ClaimedJob | None:
    """Claim the first available queued job in priority order.

    Losing a race for a candidate is normal and only logged at debug level.
    Returns None when every candidate was taken or the queue is empty.
    """

    snapshot = list(store.iter_jobs(JobLocation.QUEUED))
    if not snapshot:
        return None

    for handle in order_candidates(store, snapshot, priority):
        result = store.transition(handle, JobLocation.QUEUED, JobLocation.CLAIMED)
        if result is TransitionResult.ALREADY_GONE:
            logger.debug("Job %s was claimed by another worker", handle.identity)
            continue

        try:
            descriptor = store.read(JobLocation.CLAIMED, handle)
        except (ValueError, TypeError) as error:
            # Left in claimed so no worker keeps picking it up.
            logger.error(
                "Corrupt job descriptor %s left in %s: %s",
                handle.identity,
                store.path_for(JobLocation.CLAIMED),
                error,
            )
            continue
        if descriptor is None:
            logger.error("Claimed job %s disappeared from claimed location", handle.identity)
            continue
        return ClaimedJob(handle=handle, descriptor=descriptor)
    return None
