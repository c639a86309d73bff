"""On-disk JSON contract for job descriptors."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import UTC, datetime
from typing import Any

from plexify.jobs.models import EncodingParameters, JobDescriptor, MediaKind, SortKey

CONTRACT_VERSION = 1


def dump_descriptor(descriptor: JobDescriptor) -> str:
    """Serialize a descriptor using deterministic formatting."""

    payload: dict[str, Any] = {
        "contract_version": CONTRACT_VERSION,
        "id": descriptor.identity,
        "input_path": descriptor.source_path,
        "output_path": descriptor.output_path,
        "subtitle_path": descriptor.subtitle_path,
        "media_kind": descriptor.media_kind.value,
        "quality_settings": asdict(descriptor.encoding),
        "sort_key": asdict(descriptor.sort_key) if descriptor.sort_key is not None else None,
        "post_processing": {"disable_source_files": descriptor.disable_source_files},
        "created_at": descriptor.created_at.isoformat(),
        "attempts": descriptor.attempts,
        "last_error": descriptor.last_error,
    }
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n"


def load_descriptor(text: str) -> JobDescriptor:
    """Deserialize and validate a descriptor document."""

    raw = json.loads(text)
    if not isinstance(raw, dict):
        raise TypeError("Job descriptor must be a JSON object")

    identity = raw.get("id")
    source_path = raw.get("input_path")
    if not isinstance(identity, str) or not identity:
        raise ValueError("job.id must be a non-empty string")
    if not isinstance(source_path, str) or not source_path:
        raise ValueError("job.input_path must be a non-empty string")

    quality = raw.get("quality_settings")
    if not isinstance(quality, dict):
        raise TypeError("job.quality_settings must be an object")
    encoding = EncodingParameters(**{key: str(value) for key, value in quality.items()})

    post_processing = raw.get("post_processing") or {}
    if not isinstance(post_processing, dict):
        raise TypeError("job.post_processing must be an object")

    attempts = raw.get("attempts", 0)
    if not isinstance(attempts, int) or attempts < 0:
        raise ValueError("job.attempts must be a non-negative integer")

    last_error = raw.get("last_error")
    if last_error is not None and not isinstance(last_error, str):
        raise TypeError("job.last_error must be a string or null")

    created_at = datetime.fromisoformat(str(raw.get("created_at")))
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)

    return JobDescriptor(
        identity=identity,
        source_path=source_path,
        media_kind=MediaKind(raw.get("media_kind")),
        encoding=encoding,
        created_at=created_at,
        sort_key=_load_sort_key(raw.get("sort_key")),
        disable_source_files=bool(post_processing.get("disable_source_files", True)),
        attempts=attempts,
        last_error=last_error,
    )


def _load_sort_key(raw: object) -> SortKey | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise TypeError("job.sort_key must be an object or null")
    series = raw.get("series")
    season = raw.get("season")
    episode = raw.get("episode")
    if not isinstance(series, str) or not isinstance(season, int) or not isinstance(episode, int):
        raise ValueError("job.sort_key requires series (str), season (int), episode (int)")
    return SortKey(series=series, season=season, episode=episode)
