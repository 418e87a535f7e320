from __future__ import annotations

import hmac
import logging
from typing import Any

from src.config import SyncSettings
from src.errors import SyncConfigurationError
from src.ingest.base import BaseSource
from src.ingest.http import PoliteHttpClient
from src.ingest.registry import register_sources
from src.store.base import ProgramStore
from src.store.parquet import ParquetProgramStore

from .orchestrator import Clock, ProgramSyncOrchestrator, utc_clock

logger = logging.getLogger(__name__)

ERROR_CONFIGURATION = "SYNC_CONFIGURATION_ERROR"
ERROR_SYNC = "SYNC_ERROR"
ERROR_CRON_SECRET_MISSING = "CRON_SECRET_NOT_CONFIGURED"
ERROR_UNAUTHORIZED = "UNAUTHORIZED"


def build_orchestrator(
    settings: SyncSettings,
    *,
    store: ProgramStore | None = None,
    clock: Clock = utc_clock,
) -> ProgramSyncOrchestrator:
    """Wire adapters, store and HTTP clients from settings; nothing is shared between runs."""

    def client_factory(source: BaseSource) -> PoliteHttpClient:
        return PoliteHttpClient(
            requests_per_second=settings.requests_per_second,
            timeout_seconds=settings.request_timeout_seconds,
        )

    return ProgramSyncOrchestrator(
        sources=register_sources(settings),
        store=store if store is not None else ParquetProgramStore(settings.catalog_dir),
        client_factory=client_factory,
        clock=clock,
        source_timeout_seconds=settings.source_timeout_seconds,
        incremental=settings.incremental,
        raw_dir=settings.raw_dir,
    )


def run_sync_now(
    settings: SyncSettings | None = None,
    *,
    orchestrator: ProgramSyncOrchestrator | None = None,
) -> tuple[int, dict[str, Any]]:
    """Run one synchronization and return `(status_code, envelope)`.

    Partial failures are still a 200; callers read `data.failed` and
    `data.results`. Only run-level failures produce a 500 without a report.
    """

    if orchestrator is None:
        try:
            orchestrator = build_orchestrator(settings or SyncSettings.from_env())
        except ValueError as exc:
            logger.exception("Program sync settings are invalid.")
            return 500, _error_envelope(ERROR_CONFIGURATION, "Program synchronization is not configured.", str(exc))
        except Exception as exc:
            logger.exception("Program sync could not be prepared.")
            return 500, _error_envelope(ERROR_SYNC, "Program synchronization failed.", str(exc))

    try:
        job = orchestrator.sync_all()
    except SyncConfigurationError as exc:
        logger.exception("Program sync is misconfigured.")
        return 500, _error_envelope(ERROR_CONFIGURATION, "Program synchronization is not configured.", str(exc))
    except Exception as exc:
        logger.exception("Program sync failed.")
        return 500, _error_envelope(ERROR_SYNC, "Program synchronization failed.", str(exc))

    return 200, {"success": True, "data": job.to_dict(), "metadata": None}


def handle_cron_sync(
    authorization: str | None,
    settings: SyncSettings | None = None,
    *,
    orchestrator: ProgramSyncOrchestrator | None = None,
) -> tuple[int, dict[str, Any]]:
    """Scheduler entry point guarded by a `Bearer <CRON_SECRET>` header."""

    try:
        resolved = settings or SyncSettings.from_env()
    except ValueError as exc:
        logger.exception("Program sync settings are invalid.")
        return 500, _error_envelope(ERROR_CONFIGURATION, "Program synchronization is not configured.", str(exc))

    if not resolved.cron_secret:
        logger.error("CRON_SECRET is not configured; refusing scheduled sync.")
        return 500, _error_envelope(ERROR_CRON_SECRET_MISSING, "CRON_SECRET is not configured.")

    expected = f"Bearer {resolved.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected scheduled sync with a missing or invalid authorization header.")
        return 401, _error_envelope(ERROR_UNAUTHORIZED, "Unauthorized.")

    return run_sync_now(resolved, orchestrator=orchestrator)


def _error_envelope(code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message, "details": details}}
