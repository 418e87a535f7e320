from __future__ import annotations

from .orchestrator import ProgramSyncOrchestrator
from .result import SourceSyncResult, SyncJobResult, aggregate_results
from .trigger import build_orchestrator, handle_cron_sync, run_sync_now

__all__ = [
    "ProgramSyncOrchestrator",
    "SourceSyncResult",
    "SyncJobResult",
    "aggregate_results",
    "build_orchestrator",
    "handle_cron_sync",
    "run_sync_now",
]
