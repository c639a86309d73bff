from __future__ import annotations

import json
import shutil
from pathlib import Path

import allure
import pytest
from conftest import FakeFfmpeg, make_descriptor

from plexify.engine import FfmpegEngine, build_engine_request, build_ffmpeg_args
from plexify.errors import EngineRunError
from plexify.jobs.models import EncodingParameters

pytestmark = [
    allure.epic("Worker"),
    allure.feature("FFmpeg Engine"),
]


def _request(tmp_path: Path, source_path: str):
    return build_engine_request(
        make_descriptor(source_path),
        media_root=tmp_path / "media",
        output_path=tmp_path / "work" / "_tmp" / "out.mp4",
        log_path=tmp_path / "work" / "_tmp" / "out.log",
    )


def test_args_for_external_subtitles(tmp_path: Path) -> None:
    request = _request(tmp_path, "show.webm")

    args = build_ffmpeg_args(request)

    assert args == [
        "ffmpeg",
        "-hide_banner",
        "-fflags",
        "+genpts",
        "-avoid_negative_ts",
        "make_zero",
        "-i",
        str(tmp_path / "media" / "show.webm"),
        "-i",
        str(tmp_path / "media" / "show.vtt"),
        "-map",
        "0:v:0",
        "-map",
        "0:a:0",
        "-map",
        "1:s:0",
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-crf",
        "23",
        "-c:a",
        "aac",
        "-b:a",
        "128k",
        "-c:s",
        "mov_text",
        "-y",
        str(tmp_path / "work" / "_tmp" / "out.mp4"),
    ]


def test_args_for_embedded_subtitles(tmp_path: Path) -> None:
    request = _request(tmp_path, "movie.mkv")

    args = build_ffmpeg_args(request, command=("/opt/ffmpeg",))

    assert args[0] == "/opt/ffmpeg"
    assert args.index("-fix_sub_duration") < args.index("-i")
    assert args.count("-i") == 1
    assert "0:s:0?" in args


def test_encoding_parameters_come_from_descriptor(tmp_path: Path) -> None:
    request = _request(tmp_path, "movie.mkv")
    request.encoding = EncodingParameters(preset="slow", crf="18", audio_bitrate="192k")

    args = build_ffmpeg_args(request)

    assert args[args.index("-preset") + 1] == "slow"
    assert args[args.index("-crf") + 1] == "18"
    assert args[args.index("-b:a") + 1] == "192k"


def test_background_mode_lowers_priority(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")

    args = FfmpegEngine(background=True).build_args(_request(tmp_path, "movie.mkv"))

    assert args[:7] == ["nice", "-n", "19", "ionice", "-c", "3", "ffmpeg"]


def test_background_mode_skips_missing_ionice(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(shutil, "which", lambda name: "/usr/bin/nice" if name == "nice" else None)

    args = FfmpegEngine(background=True).build_args(_request(tmp_path, "movie.mkv"))

    assert args[:4] == ["nice", "-n", "19", "ffmpeg"]


def test_run_writes_output_and_log(tmp_path: Path, fake_ffmpeg: FakeFfmpeg) -> None:
    request = _request(tmp_path, "movie.mkv")

    result = FfmpegEngine(command=fake_ffmpeg.command).run(request)

    assert result.exit_code == 0
    assert result.succeeded is True
    recorded = json.loads(request.output_path.read_text("utf-8"))
    assert recorded[-1] == str(request.output_path)
    assert "-fix_sub_duration" in recorded
    assert "fake ffmpeg: done" in request.log_path.read_text("utf-8")


def test_run_reports_non_zero_exit(tmp_path: Path, fake_ffmpeg: FakeFfmpeg) -> None:
    fake_ffmpeg.fail_marker.write_text("", "utf-8")
    request = _request(tmp_path, "movie.mkv")

    result = FfmpegEngine(command=fake_ffmpeg.command).run(request)

    assert result.exit_code == 3
    assert result.succeeded is False
    assert "simulated encoder failure" in request.log_path.read_text("utf-8")


def test_missing_binary_raises_engine_error(tmp_path: Path) -> None:
    engine = FfmpegEngine(command=(str(tmp_path / "no-such-ffmpeg"),))

    with pytest.raises(EngineRunError, match="not found"):
        engine.run(_request(tmp_path, "movie.mkv"))
