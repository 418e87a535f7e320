from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pandas as pd
import streamlit as st

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.helpers import (
    SOURCE_LABELS,
    failed_results,
    filter_catalog,
    format_period,
    source_distribution,
    summarize_report,
    terms_to_text,
)
from src.config import SyncSettings
from src.io.artifacts import load_latest_report
from src.store.parquet import ParquetProgramStore
from src.sync.trigger import run_sync_now

CATALOG_COLUMNS = ["title", "data_source", "category", "period", "target_location", "keywords", "source_url"]


def _resolve(path: Path) -> Path:
    return path if path.is_absolute() else ROOT_DIR / path


def _load_settings() -> SyncSettings:
    settings = SyncSettings.from_env()
    return settings.with_overrides(
        catalog_dir=_resolve(settings.catalog_dir),
        report_dir=_resolve(settings.report_dir),
        raw_dir=_resolve(settings.raw_dir) if settings.raw_dir else None,
    )


@st.cache_data(show_spinner=False)
def _load_catalog_cached(catalog_dir: str, cache_buster: float) -> pd.DataFrame:
    return ParquetProgramStore(Path(catalog_dir)).to_dataframe()


def _catalog_mtime(catalog_dir: Path) -> float:
    programs_path = catalog_dir / "programs.parquet"
    return programs_path.stat().st_mtime if programs_path.exists() else 0.0


def _display_sync_summary(report: dict[str, Any]) -> None:
    st.subheader("Sync Report")
    summary = summarize_report(report)
    total_col, ok_col, failed_col, programs_col = st.columns(4)
    total_col.metric("Sources", summary["sources_total"])
    ok_col.metric("Succeeded", summary["sources_succeeded"])
    failed_col.metric("Failed", summary["sources_failed"])
    programs_col.metric("Programs saved", summary["programs_saved"])
    st.caption(
        f"State: {summary['state']} | skipped records: {summary['records_skipped']} | "
        f"{summary['started_at']} -> {summary['finished_at']}"
    )

    failures = failed_results(report)
    if failures:
        st.warning("Some sources failed during sync.")
        st.dataframe(pd.DataFrame(failures), use_container_width=True)
    else:
        st.success("All sources succeeded.")
    st.dataframe(pd.DataFrame(report.get("results", [])), use_container_width=True)


def main() -> None:
    st.set_page_config(page_title="Program Catalog Sync", layout="wide")
    st.title("Program Catalog Sync")
    st.caption("Sources -> Normalize -> Upsert -> Report")

    try:
        settings = _load_settings()
    except ValueError as exc:
        st.error(f"Invalid sync settings: {exc}")
        return

    st.session_state.setdefault("sync_report", None)

    st.header("Synchronization")
    run_col, latest_col = st.columns(2)
    if run_col.button("Run Sync Now", type="primary", use_container_width=True):
        with st.spinner("Fetching programs from every source..."):
            status_code, envelope = run_sync_now(settings)
        if status_code == 200:
            st.session_state.sync_report = envelope["data"]
            st.success("Sync completed.")
        else:
            error = envelope.get("error") or {}
            st.error(f"Sync failed ({error.get('code')}): {error.get('details') or error.get('message')}")

    if latest_col.button("Show Last Scheduled Run", use_container_width=True):
        latest = load_latest_report(settings.report_dir)
        if latest is None:
            st.warning(f"No sync report found in {settings.report_dir}.")
        else:
            response = latest.get("response") or {}
            if response.get("success"):
                st.session_state.sync_report = response.get("data")
            else:
                st.error(f"Last scheduled run failed: {response.get('error') or latest.get('exception_summary')}")

    report = st.session_state.sync_report
    if isinstance(report, dict):
        _display_sync_summary(report)

    st.header("Catalog")
    try:
        catalog_df = _load_catalog_cached(str(settings.catalog_dir), _catalog_mtime(settings.catalog_dir))
    except Exception as exc:
        st.error(f"Could not load the catalog: {exc}")
        return

    if catalog_df.empty:
        st.info("The catalog is empty. Run a sync first.")
        return

    distribution = source_distribution(catalog_df)
    st.bar_chart(distribution.set_index("label")["programs"])

    source_options = ["All", *SOURCE_LABELS]
    filter_col, query_col, open_col = st.columns([1, 2, 1])
    selected_source = filter_col.selectbox(
        "Source",
        source_options,
        index=0,
        format_func=lambda value: value if value == "All" else SOURCE_LABELS[value],
    )
    query = query_col.text_input("Search title or keywords", value="")
    open_only = open_col.checkbox("Open for applications", value=True)

    filtered = filter_catalog(
        catalog_df,
        data_source=None if selected_source == "All" else selected_source,
        query=query,
        open_only=open_only,
    )
    st.subheader(f"Programs ({len(filtered)} shown of {len(catalog_df)})")
    if filtered.empty:
        st.info("No programs match the current filters.")
        return

    display_df = filtered.assign(
        period=filtered.apply(lambda row: format_period(row.get("start_date"), row.get("deadline")), axis=1),
        target_location=filtered["target_location"].apply(terms_to_text),
        keywords=filtered["keywords"].apply(terms_to_text),
    )
    st.dataframe(display_df[CATALOG_COLUMNS], use_container_width=True)


if __name__ == "__main__":
    main()
