from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"

STATE_NOT_STARTED = "not_started"
STATE_RUNNING = "running"
STATE_COMPLETED = "completed"
STATE_PARTIALLY_FAILED = "partially_failed"


@dataclass(slots=True)
class SourceSyncResult:
    source: str
    status: str = STATUS_FAILED
    count: int = 0
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    soft_errors: int = 0
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED

    def mark_failed(self, message: str) -> None:
        self.status = STATUS_FAILED
        self.error = message

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "source": self.source,
            "status": self.status,
            "count": self.count,
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "softErrors": self.soft_errors,
            "durationSeconds": self.duration_seconds,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class SyncJobResult:
    total: int
    succeeded: int
    failed: int
    program_count: int
    soft_error_count: int
    state: str
    started_at: datetime
    finished_at: datetime
    results: list[SourceSyncResult] = field(default_factory=list)

    def failed_sources(self) -> list[str]:
        return [result.source for result in self.results if not result.succeeded]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "programCount": self.program_count,
            "softErrorCount": self.soft_error_count,
            "state": self.state,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
            "results": [result.to_dict() for result in self.results],
        }


def aggregate_results(
    results: Iterable[SourceSyncResult],
    *,
    started_at: datetime,
    finished_at: datetime,
) -> SyncJobResult:
    """Reduce per-source outcomes; the report does not depend on completion order."""

    ordered = sorted(results, key=lambda result: result.source)
    succeeded = sum(1 for result in ordered if result.succeeded)
    failed = len(ordered) - succeeded
    return SyncJobResult(
        total=len(ordered),
        succeeded=succeeded,
        failed=failed,
        program_count=sum(result.count for result in ordered),
        soft_error_count=sum(result.soft_errors for result in ordered),
        state=STATE_PARTIALLY_FAILED if failed else STATE_COMPLETED,
        started_at=started_at,
        finished_at=finished_at,
        results=ordered,
    )
