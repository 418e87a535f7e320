from __future__ import annotations

import copy
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from src.errors import PersistenceError, StoreUnavailable
from src.normalize.schema import SYNC_STATUS_ACTIVE, Program

from .base import ProgramStore, SyncMetadata, UpsertResult

logger = logging.getLogger(__name__)


class InMemoryProgramStore(ProgramStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._programs: dict[tuple[str, str], Program] = {}
        self._metadata: dict[str, SyncMetadata] = {}
        self._closed = False

    def upsert(self, program: Program, *, synced_at: datetime) -> UpsertResult:
        if not program.data_source or not program.source_api_id:
            raise PersistenceError("Program is missing its natural key (data_source, source_api_id).")

        with self._lock:
            self._ensure_open()
            existing = self._programs.get(program.natural_key)
            program = copy.deepcopy(program)
            if existing is None:
                stored = replace(
                    program,
                    id=uuid4().hex,
                    registered_at=synced_at,
                    last_synced_at=synced_at,
                    sync_status=SYNC_STATUS_ACTIVE,
                )
                inserted = True
            else:
                stored = replace(
                    program,
                    id=existing.id,
                    registered_at=existing.registered_at,
                    last_synced_at=synced_at,
                    sync_status=SYNC_STATUS_ACTIVE,
                )
                inserted = False
            self._programs[program.natural_key] = stored

        logger.debug(
            "%s program %s/%s",
            "Inserted" if inserted else "Updated",
            program.data_source,
            program.source_api_id,
        )
        return UpsertResult(program_id=str(stored.id), inserted=inserted)

    def get(self, data_source: str, source_api_id: str) -> Program | None:
        with self._lock:
            program = self._programs.get((data_source, source_api_id))
            return copy.deepcopy(program) if program else None

    def list_programs(self, data_source: str | None = None) -> list[Program]:
        with self._lock:
            programs = [
                copy.deepcopy(program)
                for program in self._programs.values()
                if data_source is None or program.data_source == data_source
            ]
        return sorted(programs, key=lambda program: program.natural_key)

    def count(self) -> int:
        with self._lock:
            return len(self._programs)

    def sync_metadata(self, data_source: str) -> SyncMetadata | None:
        with self._lock:
            metadata = self._metadata.get(data_source)
            return copy.deepcopy(metadata) if metadata else None

    def record_sync(
        self,
        data_source: str,
        *,
        synced_at: datetime,
        count: int,
        result: dict[str, Any] | None = None,
    ) -> SyncMetadata:
        with self._lock:
            self._ensure_open()
            previous = self._metadata.get(data_source)
            metadata = SyncMetadata(
                data_source=data_source,
                last_synced_at=synced_at,
                sync_count=(previous.sync_count if previous else 0) + 1,
                last_result={"count": count, **(result or {})},
            )
            self._metadata[data_source] = metadata
            return copy.deepcopy(metadata)

    def close(self) -> None:
        self.flush()
        with self._lock:
            self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreUnavailable("Program store is closed.")
