"""Controllers for plexify CLI commands."""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from plexify.config import Settings
from plexify.discovery import IgnoreFilter, discover_media
from plexify.engine import FfmpegEngine
from plexify.errors import MediaValidationError
from plexify.jobs.enqueue import EnqueueOutcome, EnqueueService
from plexify.jobs.models import media_kind_for_path, relative_media_path
from plexify.jobs.ordering import JobPriority
from plexify.jobs.store import WORKER_LOG_FILENAME, JobLocation, StateStore
from plexify.jobs.worker import TranscodeWorker

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScanCommand:
    """CLI input for a media directory scan."""

    media_root: Path
    work_dir: Path | None = None
    preset: str | None = None


@dataclass(slots=True)
class AddCommand:
    """CLI input for queueing a single media file."""

    file_path: Path
    media_root: Path | None = None
    work_dir: Path | None = None
    preset: str | None = None


@dataclass(slots=True)
class WorkCommand:
    """CLI input for a transcoding worker."""

    media_root: Path
    work_dir: Path | None = None
    background: bool = False
    priority: JobPriority = JobPriority.NONE
    once: bool = False
    max_jobs: int | None = None


@dataclass(slots=True)
class StatusCommand:
    """CLI input for queue status."""

    media_root: Path
    work_dir: Path | None = None


@dataclass(slots=True)
class CleanCommand:
    """CLI input for state store cleanup."""

    media_root: Path
    work_dir: Path | None = None


class PlexifyCliController:
    """Command handlers for scanning, queueing, and working media jobs."""

    def __init__(self, settings_loader=Settings.from_env) -> None:
        self._settings_loader = settings_loader

    def scan(self, command: ScanCommand) -> list[str]:
        settings = self._settings()
        media_root = _validate_media_root(command.media_root)
        store = _open_store(media_root, command.work_dir)
        service = EnqueueService(
            store=store,
            media_root=media_root,
            encoding=settings.encoding.snapshot(command.preset),
        )

        logger.info("Scanning for media files in %s", media_root)
        ignore_filter = IgnoreFilter.load(media_root)
        report = service.enqueue_all(discover_media(media_root, ignore_filter))

        lines = [f"Scan complete. Added {report.created} new jobs to the queue."]
        lines.append(
            "Skipped: "
            f"output_exists={report.output_exists} already_queued={report.already_queued} "
            f"in_flight={report.in_flight} missing_subtitle={report.missing_subtitle}",
        )
        lines.extend(report.warnings)
        return lines

    def add(self, command: AddCommand) -> list[str]:
        settings = self._settings()
        file_path = command.file_path.resolve()
        if not file_path.exists():
            raise MediaValidationError(f"File does not exist: {command.file_path}")
        if not file_path.is_file():
            raise MediaValidationError(f"Path is not a file: {command.file_path}")
        media_kind = media_kind_for_path(file_path)

        media_root = _validate_media_root(command.media_root or file_path.parent)
        relative_path = relative_media_path(media_root, file_path)
        store = _open_store(media_root, command.work_dir)
        service = EnqueueService(
            store=store,
            media_root=media_root,
            encoding=settings.encoding.snapshot(command.preset),
        )

        outcome = service.enqueue_media_file(relative_path, media_kind)
        if outcome is EnqueueOutcome.MISSING_SUBTITLE:
            raise MediaValidationError(
                f"Missing required subtitle file (.vtt) for WebM file: {command.file_path}",
            )
        if outcome is EnqueueOutcome.CREATED:
            return [f"Created transcoding job for: {relative_path}"]
        if outcome is EnqueueOutcome.OUTPUT_EXISTS:
            return [f"No action needed - output file already exists for: {relative_path}"]
        return [f"No action needed - job already queued for: {relative_path}"]

    def run_worker(self, command: WorkCommand) -> list[str]:
        settings = self._settings()
        media_root = _validate_media_root(command.media_root)
        store = _open_store(media_root, command.work_dir)
        worker = TranscodeWorker(
            store=store,
            engine=FfmpegEngine(
                command=settings.worker.ffmpeg_command,
                background=command.background,
            ),
            media_root=media_root,
            worker_id=_worker_id(),
            priority=command.priority,
            poll_interval_seconds=settings.worker.sleep_interval_seconds,
            retry_delay_seconds=settings.worker.retry_delay_seconds,
            retry_max_delay_seconds=settings.worker.retry_max_delay_seconds,
        )

        logger.info(
            "Worker %s started on %s (work root %s, priority %s)",
            worker.worker_id,
            media_root,
            store.root,
            command.priority.value,
        )
        if command.once:
            summary = worker.run_loop(max_jobs=1, max_idle_polls=1)
        else:
            summary = worker.run_loop(max_jobs=command.max_jobs)

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} retried={summary.retried} "
            f"idle_polls={summary.idle_polls} store_errors={summary.store_errors}",
        ]

    def spawn_detached_worker(self, command: WorkCommand) -> list[str]:
        """Re-run ``plexify work`` in a new session, logging to the work root."""

        media_root = _validate_media_root(command.media_root)
        store = _open_store(media_root, command.work_dir)
        log_path = store.root / WORKER_LOG_FILENAME

        args = [
            sys.executable,
            "-m",
            "plexify",
            "work",
            str(media_root),
            "--work-dir",
            str(store.root),
            "--priority",
            command.priority.value,
        ]
        if command.background:
            args.append("--background")
        if command.once:
            args.append("--once")
        if command.max_jobs is not None:
            args.extend(["--max-jobs", str(command.max_jobs)])

        with log_path.open("a", encoding="utf-8") as log_handle:
            process = subprocess.Popen(  # noqa: S603
                args,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        return [
            f"Worker started in background (pid {process.pid}).",
            f"Logs: {log_path}",
        ]

    def status(self, command: StatusCommand) -> list[str]:
        media_root = _validate_media_root(command.media_root)
        store = _open_store(media_root, command.work_dir, init=False)
        counts = store.counts()
        return [
            f"Work root: {store.root}",
            f"queued={counts[JobLocation.QUEUED]} "
            f"claimed={counts[JobLocation.CLAIMED]} "
            f"completed={counts[JobLocation.COMPLETED]}",
        ]

    def clean(self, command: CleanCommand) -> list[str]:
        media_root = _validate_media_root(command.media_root)
        store = _open_store(media_root, command.work_dir, init=False)
        removed = store.clean()
        if not removed:
            return [f"Nothing to clean in {store.root}"]
        return [f"Removed {path}" for path in removed] + ["Clean complete."]

    def _settings(self) -> Settings:
        settings = self._settings_loader()
        settings.validate()
        return settings


def _validate_media_root(path: Path) -> Path:
    resolved = path.resolve()
    if not resolved.exists():
        raise MediaValidationError(f"Media directory does not exist: {path}")
    if not resolved.is_dir():
        raise MediaValidationError(f"Media path is not a directory: {path}")
    return resolved


def _open_store(media_root: Path, work_dir: Path | None, *, init: bool = True) -> StateStore:
    store = StateStore((work_dir or media_root).resolve())
    if init:
        store.init()
    return store


def _worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"
