from __future__ import annotations

import itertools
from datetime import UTC, datetime

from src.sync.result import SourceSyncResult, aggregate_results

STARTED = datetime(2026, 2, 1, 3, 0, tzinfo=UTC)
FINISHED = datetime(2026, 2, 1, 3, 2, tzinfo=UTC)


def _results() -> list[SourceSyncResult]:
    return [
        SourceSyncResult(source="bizinfo", status="succeeded", count=3, fetched=3, inserted=3),
        SourceSyncResult(source="kstartup", status="failed", error="HTTP 503"),
        SourceSyncResult(source="seoul_tp", status="succeeded", count=4, fetched=5, updated=4, soft_errors=1),
    ]


def test_aggregate_is_independent_of_completion_order() -> None:
    reports = {
        repr(aggregate_results(order, started_at=STARTED, finished_at=FINISHED).to_dict())
        for order in itertools.permutations(_results())
    }

    assert len(reports) == 1


def test_aggregate_counts_and_state() -> None:
    job = aggregate_results(_results(), started_at=STARTED, finished_at=FINISHED)

    assert job.total == 3
    assert job.succeeded == 2
    assert job.failed == 1
    assert job.program_count == 7
    assert job.soft_error_count == 1
    assert job.state == "partially_failed"
    assert job.failed_sources() == ["kstartup"]


def test_aggregate_of_successes_is_completed() -> None:
    job = aggregate_results(
        [SourceSyncResult(source="bizinfo", status="succeeded", count=1)],
        started_at=STARTED,
        finished_at=FINISHED,
    )

    assert job.state == "completed"


def test_report_uses_camel_case_keys_and_omits_error_on_success() -> None:
    report = aggregate_results(_results(), started_at=STARTED, finished_at=FINISHED).to_dict()

    assert report["programCount"] == 7
    assert report["softErrorCount"] == 1
    assert report["startedAt"] == "2026-02-01T03:00:00+00:00"
    entries = {entry["source"]: entry for entry in report["results"]}
    assert entries["kstartup"] == {
        "source": "kstartup",
        "status": "failed",
        "count": 0,
        "fetched": 0,
        "inserted": 0,
        "updated": 0,
        "softErrors": 0,
        "durationSeconds": 0.0,
        "error": "HTTP 503",
    }
    assert "error" not in entries["bizinfo"]
