from __future__ import annotations

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

import pandas as pd

REPORT_PREFIX = "sync_"
REPORT_PATTERN = re.compile(r"^sync_(\d{8}T\d{6}Z)\.json$")


def jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, list | tuple):
        return [jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        return value.isoformat()
    if isinstance(value, float) and pd.isna(value):
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def write_parquet_atomic(df: pd.DataFrame, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = output_path.parent / f"{output_path.name}.{uuid4().hex}.tmp"
    try:
        df.to_parquet(temp_path, index=False, engine="pyarrow")
        temp_path.replace(output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def write_json_atomic(payload: dict[str, Any], output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = output_path.parent / f"{output_path.name}.{uuid4().hex}.tmp"
    try:
        temp_path.write_text(
            json.dumps(jsonable(payload), indent=2, sort_keys=True, ensure_ascii=False),
            encoding="utf-8",
        )
        temp_path.replace(output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def report_filename(started_at: datetime) -> str:
    return f"{REPORT_PREFIX}{started_at.strftime('%Y%m%dT%H%M%SZ')}.json"


def list_report_files(report_dir: Path) -> list[Path]:
    reports: list[tuple[str, Path]] = []
    for candidate in report_dir.glob(f"{REPORT_PREFIX}*.json"):
        match = REPORT_PATTERN.match(candidate.name)
        if match:
            reports.append((match.group(1), candidate))
    reports.sort(key=lambda item: item[0])
    return [item[1] for item in reports]


def get_latest_report_path(report_dir: Path) -> Path | None:
    reports = list_report_files(report_dir)
    if not reports:
        return None
    return reports[-1]


def load_latest_report(report_dir: Path) -> dict[str, Any] | None:
    latest_path = get_latest_report_path(report_dir)
    if latest_path is None:
        return None
    return json.loads(latest_path.read_text(encoding="utf-8"))
