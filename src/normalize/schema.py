from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import pandas as pd

DATA_SOURCES = (
    "bizinfo",
    "kstartup",
    "kocca_pims",
    "kocca_finance",
    "seoul_tp",
    "gyeonggi_tp",
)

SYNC_STATUS_ACTIVE = "active"

PROGRAM_COLUMNS = [
    "id",
    "data_source",
    "source_api_id",
    "title",
    "description",
    "category",
    "target_audience",
    "target_location",
    "keywords",
    "budget_range",
    "deadline",
    "start_date",
    "end_date",
    "published_at",
    "source_url",
    "attachment_url",
    "raw_data",
    "registered_at",
    "last_synced_at",
    "sync_status",
]

_LIST_COLUMNS = ("target_audience", "target_location", "keywords")
_DATETIME_COLUMNS = ("deadline", "start_date", "end_date", "published_at", "registered_at", "last_synced_at")


@dataclass(slots=True)
class Program:
    """Canonical support-program record shared by every data source."""

    data_source: str
    source_api_id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    target_audience: list[str] = field(default_factory=list)
    target_location: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    budget_range: Optional[str] = None
    deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    published_at: Optional[datetime] = None
    source_url: Optional[str] = None
    attachment_url: Optional[str] = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    registered_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    sync_status: str = SYNC_STATUS_ACTIVE

    @property
    def natural_key(self) -> tuple[str, str]:
        return self.data_source, self.source_api_id


def program_to_record(program: Program) -> dict[str, Any]:
    """Flatten a program into a parquet-friendly row; raw_data becomes JSON text."""

    record = {column: getattr(program, column) for column in PROGRAM_COLUMNS}
    for column in _LIST_COLUMNS:
        record[column] = list(record[column] or [])
    record["raw_data"] = json.dumps(program.raw_data or {}, ensure_ascii=False, sort_keys=True, default=str)
    return record


def program_from_record(record: dict[str, Any]) -> Program:
    values: dict[str, Any] = {}
    for column in PROGRAM_COLUMNS:
        value = record.get(column)
        if column in _LIST_COLUMNS:
            values[column] = _coerce_list(value)
        elif column in _DATETIME_COLUMNS:
            values[column] = _coerce_timestamp(value)
        elif column == "raw_data":
            values[column] = _coerce_raw_data(value)
        else:
            values[column] = _none_if_missing(value)

    values["sync_status"] = values["sync_status"] or SYNC_STATUS_ACTIVE
    return Program(**values)


def _none_if_missing(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    return value


def _coerce_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    try:
        return [str(item) for item in value if item is not None]
    except TypeError:
        return []


def _coerce_timestamp(value: Any) -> datetime | None:
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, float) and pd.isna(value):
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def _coerce_raw_data(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str) and value.strip():
        loaded = json.loads(value)
        return loaded if isinstance(loaded, dict) else {"value": loaded}
    return {}
