"""Queue worker that transcodes claimed jobs one at a time."""

from __future__ import annotations

import logging
import shutil
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from plexify.engine.base import TranscodingEngine, build_engine_request
from plexify.errors import EngineRunError, StoreIOError
from plexify.jobs.claim import ClaimedJob, claim_next_job
from plexify.jobs.models import DISABLED_SUFFIX, OUTPUT_SUFFIX, JobDescriptor
from plexify.jobs.ordering import JobPriority
from plexify.jobs.store import JobLocation, StateStore, TransitionResult

logger = logging.getLogger(__name__)

_LOG_TAIL_CHARS = 500


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    idle_polls: int = 0
    store_errors: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.idle_polls += other.idle_polls
        self.store_errors += other.store_errors


class ShutdownFlag:
    """Thread-safe stop request shared between signal handlers and the loop."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.signal_name: str | None = None

    def request(self, signal_name: str = "manual") -> None:
        self.signal_name = signal_name
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True if shutdown was requested."""
        return self._event.wait(timeout)


class TranscodeWorker:
    """Claims queued jobs and runs them through the engine."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: StateStore,
        engine: TranscodingEngine,
        media_root: Path,
        worker_id: str,
        priority: JobPriority = JobPriority.NONE,
        poll_interval_seconds: float = 60.0,
        retry_delay_seconds: float = 10.0,
        retry_max_delay_seconds: float = 300.0,
        shutdown: ShutdownFlag | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.media_root = media_root
        self.worker_id = worker_id
        self.priority = priority
        self.poll_interval_seconds = poll_interval_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.retry_max_delay_seconds = retry_max_delay_seconds
        self.shutdown = shutdown or ShutdownFlag()
        self._current_job: str | None = None
        self._pause_seconds = 0.0

    def run_once(self) -> WorkerRunSummary:
        """Claim, process, and resolve at most one job."""

        summary = WorkerRunSummary()
        self._pause_seconds = 0.0
        if self.shutdown.is_set():
            summary.idle_polls = 1
            return summary

        try:
            claimed = claim_next_job(self.store, self.priority)
        except StoreIOError as error:
            self._record_store_error(summary, error)
            return summary
        if claimed is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        self._current_job = claimed.handle.identity
        logger.info(
            "[%s] Claimed job %s (attempt %d)",
            self.worker_id,
            claimed.handle.identity,
            claimed.descriptor.attempts + 1,
        )
        try:
            error_summary = self._process(claimed)
            if error_summary is None:
                self._resolve_success(claimed)
                summary.succeeded = 1
            else:
                summary.failed = 1
                self._requeue(claimed, error_summary, summary)
                summary.retried = 1
                self._pause_seconds = self._compute_retry_delay(
                    attempts=claimed.descriptor.attempts + 1,
                )
        except StoreIOError as error:
            self._record_store_error(summary, error)
            self._release_claim(claimed)
        finally:
            self._current_job = None
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run until shutdown is requested.

        Args:
            max_jobs: Stop after processing this many jobs (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty polls
                (None = keep polling forever).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self.shutdown.is_set():
                    logger.info("[%s] Shutdown complete", self.worker_id)
                    return aggregate
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0 and summary.store_errors == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        return aggregate
                    logger.debug(
                        "[%s] Queue empty; sleeping %.0fs",
                        self.worker_id,
                        self.poll_interval_seconds,
                    )
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue

                consecutive_idle = 0
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    return aggregate
                if self._pause_seconds > 0:
                    logger.info("[%s] Pausing %.0fs before next job", self.worker_id, self._pause_seconds)
                    self._sleep_with_stop(self._pause_seconds)

    def _process(self, claimed: ClaimedJob) -> str | None:
        """Run the engine and publish its output; return an error summary on failure."""

        descriptor = claimed.descriptor
        temp_output = self.store.temp_output_path(claimed.handle, OUTPUT_SUFFIX)
        log_path = self.store.engine_log_path(claimed.handle)
        request = build_engine_request(
            descriptor,
            media_root=self.media_root,
            output_path=temp_output,
            log_path=log_path,
        )
        try:
            temp_output.unlink(missing_ok=True)
        except OSError as error:
            raise StoreIOError(f"Cannot clear {temp_output}: {error}", path=temp_output) from error

        logger.info("[%s] Starting conversion for: %s", self.worker_id, descriptor.source_path)
        try:
            result = self.engine.run(request)
        except EngineRunError as error:
            return str(error)
        except Exception as error:  # noqa: BLE001
            logger.exception("[%s] Engine crashed on %s", self.worker_id, claimed.handle.identity)
            return f"{type(error).__name__}: {error}"

        if not result.succeeded:
            if result.exit_code == 0:
                return f"ffmpeg exited cleanly but did not produce {result.output_path.name}"
            tail = _read_log_tail(result.log_path)
            message = f"ffmpeg exited with status {result.exit_code}"
            return f"{message}: {tail}" if tail else message

        final_output = self.media_root / descriptor.output_path
        try:
            shutil.move(str(result.output_path), str(final_output))
        except OSError as error:
            return f"Cannot move output to {final_output}: {error}"
        logger.info("[%s] Conversion successful: %s", self.worker_id, descriptor.output_path)
        return None

    def _resolve_success(self, claimed: ClaimedJob) -> None:
        self._disable_sources(claimed.descriptor)
        result = self.store.transition(claimed.handle, JobLocation.CLAIMED, JobLocation.COMPLETED)
        if result is TransitionResult.ALREADY_GONE:
            logger.error(
                "[%s] Claimed job %s vanished before completion",
                self.worker_id,
                claimed.handle.identity,
            )
            return
        self.store.engine_log_path(claimed.handle).unlink(missing_ok=True)
        logger.info("[%s] Job complete: %s", self.worker_id, claimed.handle.identity)

    def _requeue(self, claimed: ClaimedJob, error_summary: str, summary: WorkerRunSummary) -> None:
        updated = claimed.descriptor.with_failed_attempt(error_summary)
        try:
            self.store.rewrite(JobLocation.CLAIMED, claimed.handle, updated)
        except StoreIOError as error:
            # Requeue without the attempt bookkeeping.
            self._record_store_error(summary, error)
        result = self.store.transition(claimed.handle, JobLocation.CLAIMED, JobLocation.QUEUED)
        if result is TransitionResult.ALREADY_GONE:
            logger.error(
                "[%s] Claimed job %s vanished before requeue",
                self.worker_id,
                claimed.handle.identity,
            )
            return
        self.store.temp_output_path(claimed.handle, OUTPUT_SUFFIX).unlink(missing_ok=True)
        logger.warning(
            "[%s] Conversion failed for %s (attempt %d), returned to queue: %s",
            self.worker_id,
            claimed.descriptor.source_path,
            updated.attempts,
            error_summary,
        )

    def _release_claim(self, claimed: ClaimedJob) -> None:
        """Hand a job back to the queue after a store failure mid-cycle."""

        try:
            result = self.store.transition(claimed.handle, JobLocation.CLAIMED, JobLocation.QUEUED)
        except StoreIOError as error:
            logger.error(
                "[%s] Could not return job %s to the queue; it stays in %s: %s",
                self.worker_id,
                claimed.handle.identity,
                self.store.path_for(JobLocation.CLAIMED),
                error,
            )
            return
        if result is TransitionResult.ALREADY_GONE:
            logger.error(
                "[%s] Claimed job %s vanished before it could be returned to the queue",
                self.worker_id,
                claimed.handle.identity,
            )
            return
        logger.warning(
            "[%s] Returned job %s to the queue after a store error",
            self.worker_id,
            claimed.handle.identity,
        )

    def _disable_sources(self, descriptor: JobDescriptor) -> None:
        if not descriptor.disable_source_files:
            return
        relative_paths = [descriptor.source_path]
        if descriptor.subtitle_path is not None:
            relative_paths.append(descriptor.subtitle_path)
        for relative_path in relative_paths:
            source = self.media_root / relative_path
            target = source.with_name(source.name + DISABLED_SUFFIX)
            try:
                source.rename(target)
            except OSError as error:
                logger.warning("[%s] Could not disable source file %s: %s", self.worker_id, source, error)
                continue
            logger.debug("Renamed source file: %s -> %s", source, target)

    def _record_store_error(self, summary: WorkerRunSummary, error: StoreIOError) -> None:
        logger.error("[%s] State store error: %s", self.worker_id, error)
        summary.store_errors += 1
        self._pause_seconds = self.retry_delay_seconds

    def _compute_retry_delay(self, *, attempts: int) -> float:
        return min(
            self.retry_max_delay_seconds,
            self.retry_delay_seconds * (2 ** max(attempts - 1, 0)),
        )

    def _sleep_with_stop(self, seconds: float) -> None:
        if seconds > 0:
            self.shutdown.wait(seconds)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            if self.shutdown.is_set():
                raise KeyboardInterrupt
            self._request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

    def _request_stop(self, *, signal_name: str) -> None:
        self.shutdown.request(signal_name)
        if self._current_job is None:
            logger.info("[%s] %s received; stopping", self.worker_id, signal_name)
            return
        logger.info(
            "[%s] %s received; finishing job %s before exit (signal again to force)",
            self.worker_id,
            signal_name,
            self._current_job,
        )


def _read_log_tail(path: Path, *, limit: int = _LOG_TAIL_CHARS) -> str:
    try:
        text = path.read_text("utf-8", errors="replace")
    except OSError:
        return ""
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    if not lines:
        return ""
    return lines[-1][-limit:]
