from __future__ import annotations

import logging
from concurrent.futures import ALL_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Sequence

from src.errors import (
    PersistenceError,
    SoftRecordError,
    SourceError,
    SourceTimeout,
    StoreUnavailable,
    SyncConfigurationError,
)
from src.ingest.base import BaseSource, FetchOutcome
from src.ingest.cache import write_raw_records
from src.normalize.program import normalize_source_record
from src.store.base import ProgramStore

from .result import (
    STATE_NOT_STARTED,
    STATE_PARTIALLY_FAILED,
    STATE_RUNNING,
    STATUS_SUCCEEDED,
    SourceSyncResult,
    SyncJobResult,
    aggregate_results,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[BaseSource], Any]
Clock = Callable[[], datetime]

DEFAULT_SOURCE_TIMEOUT_SECONDS = 300.0


def utc_clock() -> datetime:
    return datetime.now(tz=UTC)


class ProgramSyncOrchestrator:
    """Fetch every source concurrently, then normalize and upsert what each returned.

    Fetches run on worker threads and are all allowed to settle; one source
    failing never cancels another. Persistence happens afterwards on the calling
    thread, so store writes are serialized, and the store is flushed after each
    source so earlier sources stay saved if a later flush fails. Every HTTP
    client handed out by `client_factory` is closed exactly once, whatever
    happens during the run.
    """

    def __init__(
        self,
        *,
        sources: Sequence[BaseSource],
        store: ProgramStore,
        client_factory: ClientFactory,
        clock: Clock = utc_clock,
        source_timeout_seconds: float = DEFAULT_SOURCE_TIMEOUT_SECONDS,
        max_workers: int | None = None,
        incremental: bool = False,
        raw_dir: Path | None = None,
    ) -> None:
        self.sources = list(sources)
        self.store = store
        self.client_factory = client_factory
        self.clock = clock
        self.source_timeout_seconds = source_timeout_seconds
        self.max_workers = max_workers
        self.incremental = incremental
        self.raw_dir = raw_dir
        self.state = STATE_NOT_STARTED

    def sync_all(self) -> SyncJobResult:
        self._validate_sources()
        self.state = STATE_RUNNING
        started_at = self.clock()
        logger.info("Starting sync of %d sources: %s", len(self.sources), ", ".join(s.name for s in self.sources))

        clients: dict[str, Any] = {}
        results: list[SourceSyncResult] = []
        try:
            outcomes = self._fetch_all(clients)
            store_reachable = self._persist_all(outcomes, results)
            if store_reachable:
                store_reachable = self._record_sync_metadata(results, synced_at=started_at)
            job = aggregate_results(results, started_at=started_at, finished_at=self.clock())
            if not store_reachable:
                job.state = STATE_PARTIALLY_FAILED
        except Exception:
            self.state = STATE_PARTIALLY_FAILED
            logger.exception("Sync run aborted.")
            self._flush_after_abort()
            raise
        finally:
            self._release_clients(clients)

        self.state = job.state
        logger.info(
            "Sync finished state=%s succeeded=%d failed=%d programs=%d soft_errors=%d",
            job.state,
            job.succeeded,
            job.failed,
            job.program_count,
            job.soft_error_count,
        )
        return job

    def _validate_sources(self) -> None:
        if not self.sources:
            raise SyncConfigurationError("No data sources are configured for synchronization.")
        names = [source.name for source in self.sources]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise SyncConfigurationError(f"Data sources configured more than once: {', '.join(duplicates)}")

    def _fetch_all(self, clients: dict[str, Any]) -> dict[str, FetchOutcome]:
        outcomes: dict[str, FetchOutcome] = {}
        futures: dict[str, Future[FetchOutcome]] = {}
        executor = ThreadPoolExecutor(
            max_workers=self.max_workers or len(self.sources),
            thread_name_prefix="program-sync",
        )
        try:
            for source in self.sources:
                try:
                    clients[source.name] = self.client_factory(source)
                except Exception as exc:
                    logger.exception("Could not create an HTTP client for source %s.", source.name)
                    outcomes[source.name] = FetchOutcome(
                        source=source.name,
                        error=SourceError(f"Client setup failed: {type(exc).__name__}: {exc}"),
                    )
                    continue
                futures[source.name] = executor.submit(
                    source.run_fetch,
                    clients[source.name],
                    registered_after=self._registered_after(source),
                )

            done, _ = wait(futures.values(), timeout=self.source_timeout_seconds, return_when=ALL_COMPLETED)
        finally:
            # Unfinished fetches are abandoned, not joined.
            executor.shutdown(wait=False, cancel_futures=True)

        for name, future in futures.items():
            if future in done:
                outcomes[name] = _settled_outcome(name, future)
            else:
                logger.error("Source %s did not finish within %.1fs.", name, self.source_timeout_seconds)
                outcomes[name] = FetchOutcome(
                    source=name,
                    error=SourceTimeout(f"Fetch did not finish within {self.source_timeout_seconds:g} seconds."),
                    duration_seconds=self.source_timeout_seconds,
                )
        return outcomes

    def _registered_after(self, source: BaseSource) -> datetime | None:
        if not self.incremental:
            return None
        return self.store.last_synced_at(source.name)

    def _persist_all(self, outcomes: dict[str, FetchOutcome], results: list[SourceSyncResult]) -> bool:
        store_error: StoreUnavailable | None = None
        for source in self.sources:
            outcome = outcomes[source.name]
            result = SourceSyncResult(
                source=source.name,
                fetched=len(outcome.records),
                duration_seconds=outcome.duration_seconds,
            )
            results.append(result)

            if store_error is not None:
                result.mark_failed(f"Store unavailable: {store_error}")
                continue
            try:
                self._persist_source(source, outcome, result)
            except StoreUnavailable as exc:
                store_error = exc
                logger.exception("Store became unavailable while syncing %s.", source.name)
                result.mark_failed(f"Store unavailable: {exc}")
        return store_error is None

    def _persist_source(self, source: BaseSource, outcome: FetchOutcome, result: SourceSyncResult) -> None:
        if not outcome.succeeded:
            result.mark_failed(str(outcome.error) or type(outcome.error).__name__)
            return

        if self.raw_dir is not None:
            try:
                write_raw_records(source_name=source.name, records=outcome.records, raw_root=self.raw_dir)
            except OSError:
                logger.exception("Could not cache raw records for %s.", source.name)

        synced_at = self.clock()
        for raw in outcome.records:
            try:
                program = normalize_source_record(source, raw)
            except SoftRecordError as exc:
                result.soft_errors += 1
                logger.warning("Skipping record from %s: %s", source.name, exc)
                continue
            except Exception:
                result.soft_errors += 1
                logger.exception("Unexpected error normalizing a record from %s.", source.name)
                continue

            try:
                upserted = self.store.upsert(program, synced_at=synced_at)
            except StoreUnavailable:
                raise
            except PersistenceError as exc:
                result.soft_errors += 1
                logger.warning("Could not save %s/%s: %s", source.name, program.source_api_id, exc)
                continue
            except Exception:
                result.soft_errors += 1
                logger.exception("Unexpected error saving %s/%s.", source.name, program.source_api_id)
                continue

            result.count += 1
            if upserted.inserted:
                result.inserted += 1
            else:
                result.updated += 1

        self.store.flush()
        result.status = STATUS_SUCCEEDED
        logger.info(
            "Source=%s fetched=%d saved=%d inserted=%d updated=%d soft_errors=%d",
            source.name,
            result.fetched,
            result.count,
            result.inserted,
            result.updated,
            result.soft_errors,
        )

    def _record_sync_metadata(self, results: list[SourceSyncResult], *, synced_at: datetime) -> bool:
        for result in results:
            if not result.succeeded:
                continue
            try:
                self.store.record_sync(
                    result.source,
                    synced_at=synced_at,
                    count=result.count,
                    result=result.to_dict(),
                )
            except StoreUnavailable:
                logger.exception("Store became unavailable while saving sync metadata.")
                return False
            except PersistenceError:
                logger.exception("Could not record sync metadata for %s.", result.source)
        try:
            self.store.flush()
        except StoreUnavailable:
            logger.exception("Store became unavailable while saving sync metadata.")
            return False
        return True

    def _flush_after_abort(self) -> None:
        try:
            self.store.flush()
        except StoreUnavailable:
            logger.exception("Could not flush the store after the run aborted.")

    def _release_clients(self, clients: dict[str, Any]) -> None:
        for name, client in clients.items():
            try:
                client.close()
            except Exception:
                logger.exception("Closing the HTTP client for %s failed.", name)


def _settled_outcome(name: str, future: Future[FetchOutcome]) -> FetchOutcome:
    try:
        return future.result()
    except Exception as exc:
        logger.exception("Fetch for %s raised outside its boundary.", name)
        return FetchOutcome(source=name, error=SourceError(f"{type(exc).__name__}: {exc}"))
