"""CLI entrypoint for plexify."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from plexify import __version__
from plexify.controllers import (
    AddCommand,
    CleanCommand,
    PlexifyCliController,
    ScanCommand,
    StatusCommand,
    WorkCommand,
)
from plexify.errors import PlexifyError
from plexify.jobs.ordering import JobPriority

click.rich_click.USE_MARKDOWN = True
CONTROLLER = PlexifyCliController()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CommandT = TypeVar("CommandT")

_WORK_DIR_OPTION = click.option(
    "--work-dir",
    "-w",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the job queue (defaults to the media directory).",
)
_PRESET_OPTION = click.option(
    "--preset",
    "-p",
    default=None,
    help="Quality preset: ultrafast, fast, balanced, quality, archive.",
)


@click.group()
@click.version_option(version=__version__, prog_name="plexify")
@click.option(
    "--log-level",
    envvar="PLEXIFY_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also append log records to this file.",
)
def plexify(log_level: str, log_file: Path | None) -> None:
    """Distributed media transcoding for **Plex**.

    Converts `.webm` (with sidecar `.vtt`) and `.mkv` files to `.mp4` with
    embedded `mov_text` subtitles. Any number of workers on any number of
    machines can share one queue directory.
    """

    level = getattr(logging, log_level.upper())
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)
    logging.getLogger("plexify").setLevel(level)


@plexify.command("scan")
@click.argument("path", type=click.Path(path_type=Path))
@_WORK_DIR_OPTION
@_PRESET_OPTION
def scan(path: Path, work_dir: Path | None, preset: str | None) -> None:
    """Scan a media directory and queue every file that needs converting."""

    _run(CONTROLLER.scan, ScanCommand(media_root=path, work_dir=work_dir, preset=preset))


@plexify.command("add")
@click.argument("file", type=click.Path(path_type=Path))
@click.option(
    "--media-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Media directory the job is relative to (defaults to the file's directory).",
)
@_WORK_DIR_OPTION
@_PRESET_OPTION
def add(file: Path, media_root: Path | None, work_dir: Path | None, preset: str | None) -> None:
    """Queue a single media file."""

    _run(
        CONTROLLER.add,
        AddCommand(file_path=file, media_root=media_root, work_dir=work_dir, preset=preset),
    )


@plexify.command("work")
@click.argument("path", type=click.Path(path_type=Path))
@_WORK_DIR_OPTION
@click.option(
    "--background",
    "-b",
    is_flag=True,
    default=False,
    help="Run ffmpeg with lowest CPU and I/O priority.",
)
@click.option(
    "--priority",
    type=click.Choice([priority.value for priority in JobPriority], case_sensitive=False),
    default=JobPriority.NONE.value,
    show_default=True,
    help="Job ordering: `none` keeps queue order, `episode` works through series in order.",
)
@click.option("--once", is_flag=True, default=False, help="Process at most one job and exit.")
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after processing this many jobs.",
)
@click.option(
    "--detach",
    is_flag=True,
    default=False,
    help="Start the worker in a new session and return immediately.",
)
def work(  # noqa: PLR0913
    path: Path,
    work_dir: Path | None,
    background: bool,
    priority: str,
    once: bool,
    max_jobs: int | None,
    detach: bool,
) -> None:
    """Process queued jobs until stopped with Ctrl-C or SIGTERM.

    The first signal lets the current job finish; a second one stops at once.
    """

    command = WorkCommand(
        media_root=path,
        work_dir=work_dir,
        background=background,
        priority=JobPriority(priority.lower()),
        once=once,
        max_jobs=max_jobs,
    )
    if detach:
        _run(CONTROLLER.spawn_detached_worker, command)
        return
    _run(CONTROLLER.run_worker, command)


@plexify.command("status")
@click.argument("path", type=click.Path(path_type=Path))
@_WORK_DIR_OPTION
def status(path: Path, work_dir: Path | None) -> None:
    """Show how many jobs are queued, claimed, and completed."""

    _run(CONTROLLER.status, StatusCommand(media_root=path, work_dir=work_dir))


@plexify.command("clean")
@click.argument("path", type=click.Path(path_type=Path))
@_WORK_DIR_OPTION
def clean(path: Path, work_dir: Path | None) -> None:
    """Remove the job queue, temporary files, and worker log."""

    _run(CONTROLLER.clean, CleanCommand(media_root=path, work_dir=work_dir))


def _run(handler: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = handler(command)
    except (PlexifyError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    plexify()
