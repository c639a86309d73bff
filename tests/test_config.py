from __future__ import annotations

import allure
import pytest

from plexify.config import (
    QUALITY_PRESETS,
    EncodingSettings,
    Settings,
    WorkerSettings,
    resolve_preset,
)
from plexify.jobs.models import EncodingParameters

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment & Presets"),
]


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.encoding == EncodingSettings(preset="veryfast", crf="23", audio_bitrate="128k")
    assert settings.worker.sleep_interval_seconds == 60.0
    assert settings.worker.retry_delay_seconds == 10.0
    assert settings.worker.retry_max_delay_seconds == 300.0
    assert settings.worker.ffmpeg_command == ("ffmpeg",)
    assert settings.log_level == "INFO"
    settings.validate()


def test_from_env_accepts_legacy_names(monkeypatch) -> None:
    monkeypatch.setenv("FFMPEG_PRESET", "slow")
    monkeypatch.setenv("FFMPEG_CRF", "19")
    monkeypatch.setenv("FFMPEG_AUDIO_BITRATE", "192k")
    monkeypatch.setenv("SLEEP_INTERVAL", "5")

    settings = Settings.from_env()

    assert settings.encoding.preset == "slow"
    assert settings.encoding.crf == "19"
    assert settings.encoding.audio_bitrate == "192k"
    assert settings.worker.sleep_interval_seconds == 5.0


def test_prefixed_names_win_over_legacy(monkeypatch) -> None:
    monkeypatch.setenv("FFMPEG_PRESET", "slow")
    monkeypatch.setenv("PLEXIFY_FFMPEG_PRESET", "medium")
    monkeypatch.setenv("SLEEP_INTERVAL", "5")
    monkeypatch.setenv("PLEXIFY_SLEEP_INTERVAL", "1.5")

    settings = Settings.from_env()

    assert settings.encoding.preset == "medium"
    assert settings.worker.sleep_interval_seconds == 1.5


def test_ffmpeg_command_is_shell_split(monkeypatch) -> None:
    monkeypatch.setenv("PLEXIFY_FFMPEG_COMMAND", "/opt/ffmpeg/bin/ffmpeg -nostdin")

    settings = Settings.from_env()

    assert settings.worker.ffmpeg_command == ("/opt/ffmpeg/bin/ffmpeg", "-nostdin")


def test_from_env_rejects_non_numeric_interval(monkeypatch) -> None:
    monkeypatch.setenv("PLEXIFY_RETRY_DELAY_SECONDS", "soon")

    with pytest.raises(ValueError, match="PLEXIFY_RETRY_DELAY_SECONDS"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(encoding=EncodingSettings(preset="warp")), "PLEXIFY_FFMPEG_PRESET"),
        (Settings(encoding=EncodingSettings(crf="high")), "must be an integer"),
        (Settings(encoding=EncodingSettings(crf="64")), "between 0 and 51"),
        (Settings(encoding=EncodingSettings(audio_bitrate=" ")), "must not be empty"),
        (Settings(worker=WorkerSettings(sleep_interval_seconds=-1)), "PLEXIFY_SLEEP_INTERVAL"),
        (
            Settings(worker=WorkerSettings(retry_delay_seconds=30, retry_max_delay_seconds=10)),
            "PLEXIFY_RETRY_MAX_DELAY_SECONDS",
        ),
        (Settings(worker=WorkerSettings(ffmpeg_command=())), "PLEXIFY_FFMPEG_COMMAND"),
        (Settings(log_level="LOUD"), "PLEXIFY_LOG_LEVEL"),
    ],
)
def test_validate_rejects_invalid_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_resolve_preset_is_case_insensitive() -> None:
    assert resolve_preset(" Quality ") == EncodingParameters(preset="slow", crf="18", audio_bitrate="192k")


def test_resolve_preset_lists_available_names_on_error() -> None:
    with pytest.raises(ValueError, match="ultrafast, fast, balanced, quality, archive"):
        resolve_preset("cinema")


def test_snapshot_uses_named_preset_over_current_settings() -> None:
    encoding = EncodingSettings(preset="medium", crf="20", audio_bitrate="160k")

    assert encoding.snapshot() == EncodingParameters(preset="medium", crf="20", audio_bitrate="160k")
    assert encoding.snapshot("archive") == QUALITY_PRESETS["archive"]
