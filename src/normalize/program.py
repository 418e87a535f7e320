from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from src.errors import SoftRecordError
from src.normalize.canonical_id import generate_source_api_id
from src.normalize.schema import SYNC_STATUS_ACTIVE, Program

if TYPE_CHECKING:
    from src.ingest.base import BaseSource

KST = timezone(timedelta(hours=9), name="KST")
MAX_KEYWORDS = 15

_COMPACT_DATE_PATTERN = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_SEPARATED_DATE_PATTERN = re.compile(
    r"^(\d{4})[.\-/]\s*(\d{1,2})[.\-/]\s*(\d{1,2})\.?(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)
_TERM_SPLIT_PATTERN = re.compile(r"[,/]+")


def coerce_datetime(value: Any) -> datetime | None:
    """Parse provider date values; anything unparseable becomes None."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=KST)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=KST)
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None

    cleaned = value.strip()
    if not cleaned:
        return None

    parts: tuple[int, ...] | None = None
    compact = _COMPACT_DATE_PATTERN.match(cleaned)
    separated = _SEPARATED_DATE_PATTERN.match(cleaned)
    if compact:
        parts = tuple(int(chunk) for chunk in compact.groups())
    elif separated:
        parts = tuple(int(chunk or 0) for chunk in separated.groups())

    try:
        if parts is not None:
            return datetime(*parts, tzinfo=KST)
        parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=KST)


def split_period(value: Any) -> tuple[str | None, str | None]:
    """Split an application period such as "20251201 ~ 20251231"."""

    if not isinstance(value, str) or not value.strip():
        return None, None
    pieces = [piece.strip() for piece in value.split("~")]
    start = pieces[0] or None
    end = pieces[1] or None if len(pieces) > 1 else None
    return start, end


def split_terms(value: Any) -> list[str]:
    if not isinstance(value, str):
        return []
    return [chunk.strip() for chunk in _TERM_SPLIT_PATTERN.split(value) if chunk.strip()]


def clean_terms(values: Iterable[Any] | str | None, *, limit: int | None = None) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]

    cleaned: list[str] = []
    seen: set[str] = set()
    for item in values:
        if item is None:
            continue
        term = " ".join(str(item).split())
        if not term or term in seen:
            continue
        seen.add(term)
        cleaned.append(term)
    if limit is not None:
        return cleaned[:limit]
    return cleaned


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_record(
    raw: Mapping[str, Any],
    *,
    data_source: str,
    mapped: Mapping[str, Any],
) -> Program:
    title = _clean_text(mapped.get("title"))
    if title is None:
        raise SoftRecordError(f"{data_source}: record has no title")

    deadline = coerce_datetime(mapped.get("deadline"))
    source_url = _clean_text(mapped.get("source_url"))
    source_api_id = _clean_text(mapped.get("source_api_id")) or generate_source_api_id(
        data_source=data_source,
        title=title,
        deadline=deadline,
        source_url=source_url,
    )

    return Program(
        data_source=data_source,
        source_api_id=source_api_id,
        title=title,
        description=_clean_text(mapped.get("description")),
        category=_clean_text(mapped.get("category")),
        target_audience=clean_terms(mapped.get("target_audience")),
        target_location=clean_terms(mapped.get("target_location")),
        keywords=clean_terms(mapped.get("keywords"), limit=MAX_KEYWORDS),
        budget_range=_clean_text(mapped.get("budget_range")),
        deadline=deadline,
        start_date=coerce_datetime(mapped.get("start_date")),
        end_date=coerce_datetime(mapped.get("end_date")) or deadline,
        published_at=coerce_datetime(mapped.get("published_at")),
        source_url=source_url,
        attachment_url=_clean_text(mapped.get("attachment_url")),
        raw_data=dict(raw),
        sync_status=SYNC_STATUS_ACTIVE,
    )


def normalize_source_record(source: BaseSource, raw: Any) -> Program:
    if not isinstance(raw, Mapping):
        raise SoftRecordError(f"{source.name}: raw record is {type(raw).__name__}, expected a mapping")
    try:
        mapped = source.map_record(raw)
    except SoftRecordError:
        raise
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise SoftRecordError(f"{source.name}: could not map record ({exc})") from exc
    return normalize_record(raw, data_source=source.name, mapped=mapped)
