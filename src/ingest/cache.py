from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Sequence

_SLUG_SAFE_PATTERN = re.compile(r"[^a-z0-9]+")


def _slugify(value: str) -> str:
    lowered = value.strip().lower()
    slug = _SLUG_SAFE_PATTERN.sub("-", lowered).strip("-")
    return slug or "payload"


def write_raw_payload(
    *,
    source_name: str,
    payload: bytes,
    extension: str,
    raw_root: Path,
    timestamp: datetime | None = None,
    slug: str | None = None,
) -> Path:
    resolved_ts = timestamp or datetime.now(tz=UTC)
    safe_extension = extension.lstrip(".")
    stamp = resolved_ts.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")

    target_dir = raw_root / source_name
    target_dir.mkdir(parents=True, exist_ok=True)

    if slug:
        filename = f"{stamp}_{_slugify(slug)}.{safe_extension}"
    else:
        filename = f"{stamp}.{safe_extension}"

    output_path = target_dir / filename
    output_path.write_bytes(payload)
    return output_path


def write_raw_records(
    *,
    source_name: str,
    records: Sequence[dict[str, Any]],
    raw_root: Path,
    timestamp: datetime | None = None,
) -> Path:
    """Keep an audit copy of what a source returned, before normalization."""

    payload = json.dumps(list(records), ensure_ascii=False, indent=2, default=str).encode("utf-8")
    return write_raw_payload(
        source_name=source_name,
        payload=payload,
        extension="json",
        raw_root=raw_root,
        timestamp=timestamp,
        slug="records",
    )
