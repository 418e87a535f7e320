from __future__ import annotations

import hashlib
from datetime import date, datetime
from typing import Optional
from urllib.parse import urlparse


def _normalize_text(value: Optional[str]) -> str:
    if value is None:
        return ""
    return " ".join(value.strip().lower().split())


def _normalize_deadline(value: Optional[date | datetime | str]) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    cleaned = value.strip()
    if not cleaned:
        return ""

    # Prefer normalized ISO date strings when possible.
    candidate = cleaned.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(candidate).date().isoformat()
    except ValueError:
        pass

    try:
        return date.fromisoformat(cleaned).isoformat()
    except ValueError:
        return cleaned.lower()


def _normalize_source_url(source_url: Optional[str]) -> str:
    if not source_url:
        return ""

    parsed = urlparse(source_url.strip())
    host = parsed.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parsed.path.rstrip("/")
    query = "&".join(sorted(part for part in parsed.query.split("&") if part))
    return f"{host}{path}?{query}" if query else f"{host}{path}"


def generate_source_api_id(
    *,
    data_source: str,
    title: str,
    deadline: Optional[date | datetime | str],
    source_url: Optional[str],
) -> str:
    """Build a deterministic source_api_id for records whose provider exposes no id."""

    payload = "|".join(
        [
            _normalize_text(data_source),
            _normalize_text(title),
            _normalize_deadline(deadline),
            _normalize_source_url(source_url),
        ]
    )
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()
