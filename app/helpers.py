from __future__ import annotations

from datetime import datetime
from typing import Any

import pandas as pd

from src.normalize.schema import DATA_SOURCES

SOURCE_LABELS = {
    "bizinfo": "기업마당",
    "kstartup": "K-Startup",
    "kocca_pims": "KOCCA 지원사업",
    "kocca_finance": "KOCCA 금융지원",
    "seoul_tp": "서울테크노파크",
    "gyeonggi_tp": "경기테크노파크",
}


def summarize_report(report: dict[str, Any]) -> dict[str, Any]:
    """Headline numbers of a sync report (the `data` part of the trigger envelope)."""

    return {
        "state": report.get("state"),
        "sources_total": report.get("total", 0),
        "sources_succeeded": report.get("succeeded", 0),
        "sources_failed": report.get("failed", 0),
        "programs_saved": report.get("programCount", 0),
        "records_skipped": report.get("softErrorCount", 0),
        "started_at": report.get("startedAt"),
        "finished_at": report.get("finishedAt"),
    }


def failed_results(report: dict[str, Any]) -> list[dict[str, Any]]:
    return [item for item in report.get("results", []) if item.get("status") != "succeeded"]


def source_distribution(catalog_df: pd.DataFrame) -> pd.DataFrame:
    """Program counts per source, listing every known source even when it has none."""

    counts = (
        catalog_df["data_source"].value_counts()
        if not catalog_df.empty
        else pd.Series(dtype="int64")
    )
    rows = [
        {
            "data_source": source,
            "label": SOURCE_LABELS.get(source, source),
            "programs": int(counts.get(source, 0)),
        }
        for source in DATA_SOURCES
    ]
    return pd.DataFrame(rows, columns=["data_source", "label", "programs"])


def filter_catalog(
    catalog_df: pd.DataFrame,
    *,
    data_source: str | None = None,
    query: str = "",
    open_only: bool = False,
    now: datetime | None = None,
) -> pd.DataFrame:
    filtered = catalog_df.copy()
    if filtered.empty:
        return filtered

    if data_source:
        filtered = filtered[filtered["data_source"] == data_source]

    needle = query.strip().lower()
    if needle:
        haystack = (
            filtered["title"].fillna("").astype(str)
            + " "
            + filtered["keywords"].apply(terms_to_text)
        ).str.lower()
        filtered = filtered[haystack.str.contains(needle, regex=False)]

    if open_only:
        reference = pd.Timestamp(now) if now is not None else pd.Timestamp.now(tz="UTC")
        if reference.tzinfo is None:
            reference = reference.tz_localize("UTC")
        deadlines = pd.to_datetime(filtered["deadline"], utc=True)
        filtered = filtered[deadlines.isna() | (deadlines >= reference)]

    sort_key = pd.to_datetime(filtered["published_at"], utc=True)
    return (
        filtered.assign(_sort_key=sort_key)
        .sort_values(by="_sort_key", ascending=False, na_position="last", kind="mergesort")
        .drop(columns=["_sort_key"])
        .reset_index(drop=True)
    )


def terms_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return ", ".join(str(item) for item in value if str(item).strip())
    except TypeError:
        return str(value)


def format_period(start: Any, end: Any) -> str:
    start_text = _format_date(start)
    end_text = _format_date(end)
    if not start_text and not end_text:
        return "상시"
    return f"{start_text} ~ {end_text}".strip()


def _format_date(value: Any) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    timestamp = pd.Timestamp(value)
    if timestamp.tzinfo is not None:
        timestamp = timestamp.tz_convert("Asia/Seoul")
    return timestamp.strftime("%Y-%m-%d")
