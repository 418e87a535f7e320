from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.normalize.schema import Program


@dataclass(frozen=True, slots=True)
class UpsertResult:
    program_id: str
    inserted: bool


@dataclass(slots=True)
class SyncMetadata:
    data_source: str
    last_synced_at: datetime | None = None
    sync_count: int = 0
    last_result: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_source": self.data_source,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "sync_count": self.sync_count,
            "last_result": self.last_result,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> SyncMetadata:
        last_synced_at = payload.get("last_synced_at")
        return cls(
            data_source=str(payload["data_source"]),
            last_synced_at=datetime.fromisoformat(last_synced_at) if last_synced_at else None,
            sync_count=int(payload.get("sync_count") or 0),
            last_result=payload.get("last_result"),
        )


class ProgramStore(ABC):
    """Keyed program persistence: one row per (data_source, source_api_id)."""

    @abstractmethod
    def upsert(self, program: Program, *, synced_at: datetime) -> UpsertResult:
        """Insert or wholesale-update one program.

        A new program gets a fresh id and `registered_at = synced_at`. An existing
        one keeps both and has every other field replaced. Raises
        `PersistenceError` when only this record failed and `StoreUnavailable`
        when the store cannot take writes at all.
        """

    @abstractmethod
    def get(self, data_source: str, source_api_id: str) -> Program | None:
        ...

    @abstractmethod
    def list_programs(self, data_source: str | None = None) -> list[Program]:
        ...

    @abstractmethod
    def count(self) -> int:
        ...

    @abstractmethod
    def sync_metadata(self, data_source: str) -> SyncMetadata | None:
        ...

    @abstractmethod
    def record_sync(
        self,
        data_source: str,
        *,
        synced_at: datetime,
        count: int,
        result: dict[str, Any] | None = None,
    ) -> SyncMetadata:
        ...

    def last_synced_at(self, data_source: str) -> datetime | None:
        metadata = self.sync_metadata(data_source)
        return metadata.last_synced_at if metadata else None

    def flush(self) -> None:
        """Persist pending state; stores that write through need not override."""

    def close(self) -> None:
        self.flush()
