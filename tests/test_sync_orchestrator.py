from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from src.errors import (
    ParseError,
    PersistenceError,
    SourceError,
    SourceTimeout,
    SourceUnavailable,
    StoreUnavailable,
    SyncConfigurationError,
)
from src.ingest.base import BaseSource
from src.normalize.schema import Program
from src.store.memory import InMemoryProgramStore
from src.store.parquet import ParquetProgramStore
from src.sync.orchestrator import ProgramSyncOrchestrator
from src.sync.trigger import run_sync_now

RUN_AT = datetime(2026, 2, 1, 3, 0, tzinfo=UTC)


class _FakeSource(BaseSource):
    def __init__(
        self,
        name: str,
        records: list[Any] | None = None,
        *,
        error: Exception | None = None,
        release: threading.Event | None = None,
    ) -> None:
        self.name = name
        self.records = records or []
        self.error = error
        self.release = release
        self.registered_after: list[datetime | None] = []

    def fetch_page(self, http_client, *, page, page_size, registered_after=None):  # noqa: ANN001
        self.registered_after.append(registered_after)
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return list(self.records) if page == 1 else []

    def map_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {"source_api_id": raw.get("id"), "title": raw.get("title")}


class _FakeClient:
    def __init__(self, source_name: str) -> None:
        self.source_name = source_name
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1


class _ClientPool:
    def __init__(self) -> None:
        self.clients: list[_FakeClient] = []

    def __call__(self, source: BaseSource) -> _FakeClient:
        client = _FakeClient(source.name)
        self.clients.append(client)
        return client


class _CountingStore(InMemoryProgramStore):
    def __init__(self) -> None:
        super().__init__()
        self.flush_calls = 0

    def flush(self) -> None:
        self.flush_calls += 1


class _FailingStore(_CountingStore):
    """Accepts `healthy_upserts` writes, then behaves as if the database went away."""

    def __init__(self, healthy_upserts: int, *, reject_ids: set[str] | None = None) -> None:
        super().__init__()
        self.healthy_upserts = healthy_upserts
        self.reject_ids = reject_ids or set()
        self.record_sync_calls = 0

    def upsert(self, program: Program, *, synced_at: datetime):  # noqa: ANN201
        if program.source_api_id in self.reject_ids:
            raise PersistenceError(f"constraint violated for {program.source_api_id}")
        if self.healthy_upserts <= 0:
            raise StoreUnavailable("connection refused")
        self.healthy_upserts -= 1
        return super().upsert(program, synced_at=synced_at)

    def record_sync(self, data_source: str, **kwargs):  # noqa: ANN003, ANN201
        self.record_sync_calls += 1
        return super().record_sync(data_source, **kwargs)


def _records(prefix: str, count: int) -> list[dict[str, str]]:
    return [{"id": f"{prefix}-{index}", "title": f"{prefix} program {index}"} for index in range(count)]


def _orchestrator(sources, store=None, pool=None, **kwargs) -> ProgramSyncOrchestrator:  # noqa: ANN001, ANN003
    return ProgramSyncOrchestrator(
        sources=sources,
        store=store if store is not None else _CountingStore(),
        client_factory=pool if pool is not None else _ClientPool(),
        clock=lambda: RUN_AT,
        **kwargs,
    )


def test_end_to_end_six_sources_with_one_failure() -> None:
    store = _CountingStore()
    sources = [
        _FakeSource("bizinfo", _records("a", 3)),
        _FakeSource("kstartup", error=SourceUnavailable("HTTP 503 from upstream.")),
        _FakeSource("kocca_pims", _records("c", 1)),
        _FakeSource("kocca_finance", _records("d", 1)),
        _FakeSource("seoul_tp", _records("e", 1)),
        _FakeSource("gyeonggi_tp", _records("f", 1)),
    ]
    orchestrator = _orchestrator(sources, store=store)

    job = orchestrator.sync_all()

    assert (job.total, job.succeeded, job.failed) == (6, 5, 1)
    assert job.program_count == 7
    assert store.count() == 7
    assert job.state == "partially_failed"
    assert orchestrator.state == "partially_failed"

    failed = {result.source: result for result in job.results}["kstartup"]
    assert failed.status == "failed"
    assert failed.count == 0
    assert failed.error == "HTTP 503 from upstream."

    report = job.to_dict()
    assert report["programCount"] == 7
    assert [entry["source"] for entry in report["results"]] == sorted(source.name for source in sources)
    assert "error" not in {entry["source"]: entry for entry in report["results"]}["bizinfo"]


def test_failing_sources_do_not_affect_the_others() -> None:
    store = _CountingStore()
    sources = [
        _FakeSource("bizinfo", _records("a", 2)),
        _FakeSource("kstartup", error=ParseError("K-Startup response is not valid XML")),
        _FakeSource("kocca_pims", _records("c", 2)),
        _FakeSource("kocca_finance", error=SourceUnavailable("timed out")),
        _FakeSource("seoul_tp", _records("e", 2)),
        _FakeSource("gyeonggi_tp", _records("f", 2)),
    ]

    job = _orchestrator(sources, store=store).sync_all()

    assert (job.succeeded, job.failed, job.program_count) == (4, 2, 8)
    by_source = {result.source: result for result in job.results}
    assert by_source["kstartup"].error
    assert by_source["kocca_finance"].error
    assert len(store.list_programs(data_source="seoul_tp")) == 2


def test_all_sources_succeeding_completes_run() -> None:
    job = _orchestrator([_FakeSource("bizinfo", _records("a", 1))]).sync_all()

    assert job.state == "completed"
    assert job.failed == 0


def test_malformed_record_is_skipped_and_counted() -> None:
    records: list[Any] = _records("a", 9)
    records.insert(4, {"id": "broken", "title": None})
    store = _CountingStore()

    job = _orchestrator([_FakeSource("bizinfo", records)], store=store).sync_all()

    result = job.results[0]
    assert result.status == "succeeded"
    assert result.fetched == 10
    assert result.count == 9
    assert result.soft_errors == 1
    assert job.soft_error_count == 1
    assert store.get("bizinfo", "broken") is None


def test_non_mapping_record_is_soft_error() -> None:
    job = _orchestrator([_FakeSource("bizinfo", [*_records("a", 2), "garbage"])]).sync_all()

    assert job.results[0].count == 2
    assert job.results[0].soft_errors == 1


def test_second_run_updates_instead_of_inserting() -> None:
    store = _CountingStore()
    sources = [_FakeSource("bizinfo", _records("a", 3))]

    first = _orchestrator(sources, store=store).sync_all()
    second = _orchestrator(sources, store=store).sync_all()

    assert first.results[0].inserted == 3
    assert second.results[0].inserted == 0
    assert second.results[0].updated == 3
    assert store.count() == 3


def test_persistence_error_is_soft() -> None:
    store = _FailingStore(healthy_upserts=100, reject_ids={"a-1"})

    job = _orchestrator([_FakeSource("bizinfo", _records("a", 3))], store=store).sync_all()

    result = job.results[0]
    assert result.status == "succeeded"
    assert result.count == 2
    assert result.soft_errors == 1


def test_store_unavailable_fails_current_and_remaining_sources() -> None:
    store = _FailingStore(healthy_upserts=3)
    sources = [
        _FakeSource("bizinfo", _records("a", 2)),
        _FakeSource("kstartup", _records("b", 2)),
        _FakeSource("seoul_tp", _records("c", 1)),
    ]
    pool = _ClientPool()

    job = _orchestrator(sources, store=store, pool=pool).sync_all()

    by_source = {result.source: result for result in job.results}
    assert by_source["bizinfo"].status == "succeeded"
    assert by_source["bizinfo"].count == 2
    assert by_source["kstartup"].status == "failed"
    assert by_source["kstartup"].count == 1
    assert "Store unavailable" in by_source["kstartup"].error
    assert by_source["seoul_tp"].status == "failed"
    assert by_source["seoul_tp"].count == 0
    assert job.state == "partially_failed"
    assert job.program_count == 3
    assert store.record_sync_calls == 0
    assert [client.close_calls for client in pool.clients] == [1, 1, 1]
    assert store.flush_calls == 1


def test_slow_source_times_out_without_blocking_others() -> None:
    release = threading.Event()
    pool = _ClientPool()
    sources = [
        _FakeSource("bizinfo", _records("a", 1)),
        _FakeSource("seoul_tp", _records("e", 1), release=release),
    ]
    orchestrator = _orchestrator(sources, pool=pool, source_timeout_seconds=0.2)

    try:
        job = orchestrator.sync_all()
    finally:
        release.set()

    by_source = {result.source: result for result in job.results}
    assert by_source["bizinfo"].status == "succeeded"
    assert by_source["seoul_tp"].status == "failed"
    assert "did not finish" in by_source["seoul_tp"].error
    assert [client.close_calls for client in pool.clients] == [1, 1]


def test_timeout_error_type_is_source_timeout(monkeypatch) -> None:  # noqa: ANN001
    captured: list[SourceError | None] = []
    release = threading.Event()
    orchestrator = _orchestrator(
        [_FakeSource("seoul_tp", _records("e", 1), release=release)],
        source_timeout_seconds=0.1,
    )
    original = orchestrator._persist_source

    def _spy(source, outcome, result):  # noqa: ANN001, ANN202
        captured.append(outcome.error)
        return original(source, outcome, result)

    monkeypatch.setattr(orchestrator, "_persist_source", _spy)
    try:
        orchestrator.sync_all()
    finally:
        release.set()

    assert isinstance(captured[0], SourceTimeout)


def test_clients_closed_once_and_store_flushed_when_run_aborts() -> None:
    class _BrokenStore(_CountingStore):
        def record_sync(self, data_source, **kwargs):  # noqa: ANN001, ANN003, ANN201
            raise RuntimeError("driver bug")

    store = _BrokenStore()
    pool = _ClientPool()
    orchestrator = _orchestrator(
        [_FakeSource("bizinfo", _records("a", 1)), _FakeSource("kstartup", _records("b", 1))],
        store=store,
        pool=pool,
    )

    with pytest.raises(RuntimeError):
        orchestrator.sync_all()

    assert [client.close_calls for client in pool.clients] == [1, 1]
    assert store.flush_calls == 3
    assert orchestrator.state == "partially_failed"


def test_client_factory_failure_is_scoped_to_its_source() -> None:
    pool = _ClientPool()

    def _factory(source: BaseSource) -> _FakeClient:
        if source.name == "kstartup":
            raise OSError("too many open files")
        return pool(source)

    job = _orchestrator(
        [_FakeSource("bizinfo", _records("a", 1)), _FakeSource("kstartup", _records("b", 1))],
        pool=_factory,
    ).sync_all()

    by_source = {result.source: result for result in job.results}
    assert by_source["bizinfo"].status == "succeeded"
    assert by_source["kstartup"].status == "failed"
    assert "too many open files" in by_source["kstartup"].error
    assert [client.close_calls for client in pool.clients] == [1]


def test_no_sources_is_a_configuration_error() -> None:
    pool = _ClientPool()
    orchestrator = _orchestrator([], pool=pool)

    with pytest.raises(SyncConfigurationError):
        orchestrator.sync_all()

    assert pool.clients == []
    assert orchestrator.state == "not_started"


def test_duplicate_sources_are_a_configuration_error() -> None:
    with pytest.raises(SyncConfigurationError):
        _orchestrator([_FakeSource("bizinfo"), _FakeSource("bizinfo")]).sync_all()


def test_incremental_sync_passes_last_sync_time_and_records_metadata() -> None:
    store = _CountingStore()
    previous = datetime(2026, 1, 15, tzinfo=UTC)
    store.record_sync("kocca_pims", synced_at=previous, count=4)
    source = _FakeSource("kocca_pims", _records("c", 2))
    never_synced = _FakeSource("kocca_finance", _records("d", 1))

    _orchestrator([source, never_synced], store=store, incremental=True).sync_all()

    assert source.registered_after == [previous]
    assert never_synced.registered_after == [None]
    metadata = store.sync_metadata("kocca_pims")
    assert metadata.last_synced_at == RUN_AT
    assert metadata.sync_count == 2
    assert metadata.last_result["count"] == 2


def test_full_sync_ignores_last_sync_time() -> None:
    store = _CountingStore()
    store.record_sync("kocca_pims", synced_at=datetime(2026, 1, 15, tzinfo=UTC), count=4)
    source = _FakeSource("kocca_pims", _records("c", 1))

    _orchestrator([source], store=store).sync_all()

    assert source.registered_after == [None]


def test_failed_source_does_not_advance_sync_metadata() -> None:
    store = _CountingStore()

    _orchestrator([_FakeSource("bizinfo", error=SourceUnavailable("down"))], store=store).sync_all()

    assert store.sync_metadata("bizinfo") is None


def test_raw_records_are_cached_when_raw_dir_is_set(tmp_path: Path) -> None:
    _orchestrator([_FakeSource("seoul_tp", _records("e", 2))], raw_dir=tmp_path).sync_all()

    cached = list((tmp_path / "seoul_tp").glob("*.json"))
    assert len(cached) == 1
    assert json.loads(cached[0].read_text(encoding="utf-8"))[0]["id"] == "e-0"


def test_unexpected_mapping_error_is_skipped_and_counted() -> None:
    class _FlakySource(_FakeSource):
        def map_record(self, raw: dict[str, Any]) -> dict[str, Any]:
            if raw["id"] == "a-1":
                return {"source_api_id": raw["id"], "title": raw["title"].split()[5]}
            return super().map_record(raw)

    store = _CountingStore()
    sources = [_FlakySource("bizinfo", _records("a", 3)), _FakeSource("kstartup", _records("b", 2))]

    status, payload = run_sync_now(orchestrator=_orchestrator(sources, store=store))

    assert status == 200
    assert payload["data"]["state"] == "completed"
    assert payload["data"]["programCount"] == 4
    assert payload["data"]["softErrorCount"] == 1
    assert store.count() == 4
    assert store.get("bizinfo", "a-1") is None


def test_unexpected_upsert_error_is_skipped_and_counted() -> None:
    class _PickyStore(_CountingStore):
        def upsert(self, program, *, synced_at):  # noqa: ANN001, ANN201
            if program.source_api_id == "a-0":
                raise RuntimeError("driver bug")
            return super().upsert(program, synced_at=synced_at)

    job = _orchestrator([_FakeSource("bizinfo", _records("a", 2))], store=_PickyStore()).sync_all()

    assert job.results[0].status == "succeeded"
    assert job.results[0].count == 1
    assert job.results[0].soft_errors == 1


def test_unwritable_catalog_is_reported_as_partial_failure(tmp_path: Path) -> None:
    catalog_path = tmp_path / "catalog"
    catalog_path.write_text("not a directory", encoding="utf-8")
    pool = _ClientPool()
    orchestrator = _orchestrator(
        [_FakeSource("bizinfo", _records("a", 3)), _FakeSource("kstartup", _records("b", 2))],
        store=ParquetProgramStore(catalog_path),
        pool=pool,
    )

    status, payload = run_sync_now(orchestrator=orchestrator)

    assert status == 200
    report = payload["data"]
    assert report["state"] == "partially_failed"
    assert report["failed"] == 2
    by_source = {entry["source"]: entry for entry in report["results"]}
    assert "Store unavailable" in by_source["bizinfo"]["error"]
    assert by_source["kstartup"]["count"] == 0
    assert orchestrator.state == "partially_failed"
    assert [client.close_calls for client in pool.clients] == [1, 1]


def test_sources_flushed_before_store_failure_stay_on_disk(monkeypatch, tmp_path: Path) -> None:  # noqa: ANN001
    import src.store.parquet as parquet_module

    original_write = parquet_module.write_parquet_atomic
    writes: list[Path] = []

    def _fail_second_write(df, output_path):  # noqa: ANN001, ANN202
        writes.append(output_path)
        if len(writes) > 1:
            raise OSError("No space left on device")
        original_write(df, output_path)

    monkeypatch.setattr(parquet_module, "write_parquet_atomic", _fail_second_write)
    catalog_dir = tmp_path / "catalog"
    orchestrator = _orchestrator(
        [_FakeSource("bizinfo", _records("a", 3)), _FakeSource("kstartup", _records("b", 2))],
        store=ParquetProgramStore(catalog_dir),
    )

    job = orchestrator.sync_all()

    by_source = {result.source: result for result in job.results}
    assert by_source["bizinfo"].status == "succeeded"
    assert by_source["kstartup"].status == "failed"
    assert job.state == "partially_failed"
    assert orchestrator.state == "partially_failed"

    reloaded = ParquetProgramStore(catalog_dir)
    assert reloaded.count() == 3
    assert {program.data_source for program in reloaded.list_programs()} == {"bizinfo"}
    assert reloaded.sync_metadata("bizinfo") is None


def test_metadata_flush_failure_leaves_run_partially_failed() -> None:
    class _MetadataFlushFails(_CountingStore):
        def flush(self) -> None:
            super().flush()
            if self._metadata:
                raise StoreUnavailable("disk detached")

    orchestrator = _orchestrator([_FakeSource("bizinfo", _records("a", 1))], store=_MetadataFlushFails())

    job = orchestrator.sync_all()

    assert job.results[0].status == "succeeded"
    assert job.state == "partially_failed"
    assert orchestrator.state == "partially_failed"
