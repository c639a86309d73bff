from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, timedelta

import allure
import pytest
from conftest import queue_job

from plexify.jobs.claim import ClaimedJob, claim_next_job
from plexify.jobs.ordering import JobPriority
from plexify.jobs.store import JobHandle, JobLocation, StateStore

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Claim Protocol"),
]


def test_empty_queue_claims_nothing(store: StateStore) -> None:
    assert claim_next_job(store) is None


def test_claim_moves_job_and_returns_descriptor(store: StateStore) -> None:
    handle = queue_job(store, "movie.mkv")

    claimed = claim_next_job(store)

    assert claimed is not None
    assert claimed.handle == handle
    assert claimed.descriptor.source_path == "movie.mkv"
    assert store.contains(handle) is JobLocation.CLAIMED


def test_claim_follows_episode_priority(store: StateStore) -> None:
    queue_job(store, "Show/Season 1/Show - S01E03.mkv")
    first = queue_job(store, "Show/Season 1/Show - S01E01.mkv")
    queue_job(store, "Show/Season 1/Show - S01E02.mkv")

    claimed = claim_next_job(store, JobPriority.EPISODE)

    assert claimed is not None
    assert claimed.handle == first


def test_corrupt_descriptor_stays_claimed_and_scan_continues(store: StateStore, caplog) -> None:
    corrupt = JobHandle(identity="aaa-corrupt")
    store.entry_path(JobLocation.QUEUED, corrupt).write_text("{broken", "utf-8")
    valid = queue_job(store, "zzz.mkv")

    claimed: list[JobHandle] = []
    with caplog.at_level(logging.ERROR, logger="plexify.jobs.claim"):
        while True:
            job = claim_next_job(store)
            if job is None:
                break
            claimed.append(job.handle)

    assert claimed == [valid]
    assert store.contains(corrupt) is JobLocation.CLAIMED
    assert "Corrupt job descriptor aaa-corrupt" in caplog.text


def test_two_workers_one_job_exactly_one_wins(store: StateStore) -> None:
    handle = queue_job(store, "movie.mkv")
    barrier = threading.Barrier(2)
    results: list[ClaimedJob | None] = []
    lock = threading.Lock()

    def _worker() -> None:
        barrier.wait()
        result = claim_next_job(store)
        with lock:
            results.append(result)

    threads = [threading.Thread(target=_worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    winners = [result for result in results if result is not None]
    assert len(results) == 2
    assert len(winners) == 1
    assert winners[0].handle == handle
    assert store.counts()[JobLocation.CLAIMED] == 1


@pytest.mark.parametrize("priority", [JobPriority.NONE, JobPriority.EPISODE])
def test_claims_follow_creation_order(store: StateStore, priority: JobPriority) -> None:
    names = [f"movie_{index:02d}" for index in range(20)]
    for index in (7, 19, 0, 12, 3, 15, 8, 1, 18, 10, 5, 14, 2, 17, 9, 4, 13, 6, 11, 16):
        queue_job(
            store,
            f"{names[index]}.mkv",
            created_at=datetime(2026, 3, 1, tzinfo=UTC) + timedelta(minutes=index),
        )

    claimed: list[str] = []
    while (job := claim_next_job(store, priority)) is not None:
        claimed.append(job.handle.identity)

    assert claimed == names


def test_episode_priority_claims_non_episodic_jobs_oldest_first(store: StateStore) -> None:
    base = datetime(2026, 3, 1, tzinfo=UTC)
    queue_job(store, "Movies/Zodiac.mkv", created_at=base)
    queue_job(store, "Show/Season 1/Show - S01E02.mkv", created_at=base + timedelta(minutes=1))
    queue_job(store, "Movies/Alien.mkv", created_at=base + timedelta(minutes=2))
    queue_job(store, "Show/Season 1/Show - S01E01.mkv", created_at=base + timedelta(minutes=3))

    claimed: list[str] = []
    while (job := claim_next_job(store, JobPriority.EPISODE)) is not None:
        claimed.append(job.descriptor.source_path)

    assert claimed == [
        "Show/Season 1/Show - S01E01.mkv",
        "Show/Season 1/Show - S01E02.mkv",
        "Movies/Zodiac.mkv",
        "Movies/Alien.mkv",
    ]
