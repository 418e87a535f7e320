from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from src.config import SyncSettings
from src.io.artifacts import report_filename, write_json_atomic
from src.normalize.schema import DATA_SOURCES
from src.sync.trigger import run_sync_now

logger = logging.getLogger("run_sync")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronize support programs from every configured source.")
    parser.add_argument(
        "--only",
        action="append",
        choices=DATA_SOURCES,
        default=None,
        help="Sync only this source. Repeat to select several.",
    )
    parser.add_argument("--catalog-dir", type=Path, default=None)
    parser.add_argument("--raw-dir", type=Path, default=None, help="Keep a raw copy of each source's records here.")
    parser.add_argument("--report-dir", type=Path, default=None)
    parser.add_argument("--requests-per-second", type=float, default=None)
    parser.add_argument("--request-timeout-seconds", type=float, default=None)
    parser.add_argument("--source-timeout-seconds", type=float, default=None)
    parser.add_argument("--max-pages", type=int, default=None)
    parser.add_argument("--incremental", action="store_true", default=None)
    return parser.parse_args(argv)


def _resolve_repo_path(path: Path | None) -> Path | None:
    if path is None or path.is_absolute():
        return path
    return ROOT_DIR / path


def _exception_summary(exc: Exception) -> dict[str, str]:
    return {"type": type(exc).__name__, "message": str(exc)}


def run_sync(
    settings: SyncSettings | None = None,
    *,
    only: list[str] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """Run one sync and write its JSON report next to earlier runs."""

    started_at = datetime.now(tz=UTC)
    status_code = 500
    envelope: dict[str, Any] = {}
    run_exception: dict[str, str] | None = None
    resolved: SyncSettings | None = None

    try:
        resolved = (settings or SyncSettings.from_env()).with_overrides(
            enabled_sources=tuple(only) if only else None,
            **overrides,
        )
        resolved = resolved.with_overrides(
            catalog_dir=_resolve_repo_path(resolved.catalog_dir),
            raw_dir=_resolve_repo_path(resolved.raw_dir),
            report_dir=_resolve_repo_path(resolved.report_dir),
        )
        status_code, envelope = run_sync_now(resolved)
    except Exception as exc:
        run_exception = _exception_summary(exc)
        logger.exception("Sync run could not start.")

    finished_at = datetime.now(tz=UTC)
    data = envelope.get("data") or {}
    if envelope.get("success") and data.get("total") and data.get("succeeded") == 0:
        status = "failed"
    elif envelope.get("success"):
        status = "success" if not data.get("failed") else "partial"
    else:
        status = "failed"

    report_dir = resolved.report_dir if resolved is not None else ROOT_DIR / "reports" / "sync_runs"
    report_path = report_dir / report_filename(started_at)
    report_payload = {
        "status": status,
        "status_code": status_code,
        "run_started_at": started_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "run_finished_at": finished_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "duration_seconds": round((finished_at - started_at).total_seconds(), 3),
        "config": resolved.to_dict() if resolved is not None else None,
        "response": envelope,
        "exception_summary": run_exception,
        "artifact_paths": {"report": str(report_path.resolve())},
    }
    write_json_atomic(report_payload, report_path)
    return report_payload


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    report = run_sync(
        only=args.only,
        catalog_dir=args.catalog_dir,
        raw_dir=args.raw_dir,
        report_dir=args.report_dir,
        requests_per_second=args.requests_per_second,
        request_timeout_seconds=args.request_timeout_seconds,
        source_timeout_seconds=args.source_timeout_seconds,
        max_pages=args.max_pages,
        incremental=args.incremental,
    )

    data = (report.get("response") or {}).get("data") or {}
    print(f"Run status: {report['status']}")
    print(
        "Sources: "
        f"total={data.get('total', 0)}, "
        f"succeeded={data.get('succeeded', 0)}, "
        f"failed={data.get('failed', 0)}, "
        f"programs={data.get('programCount', 0)}"
    )
    for result in data.get("results", []):
        line = f"  {result['source']}: {result['status']} count={result['count']}"
        if result.get("error"):
            line += f" error={result['error']}"
        print(line)
    print(f"Wrote sync report: {report['artifact_paths']['report']}")
    return 0 if report["status"] != "failed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
