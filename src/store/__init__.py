from __future__ import annotations

from .base import ProgramStore, SyncMetadata, UpsertResult
from .memory import InMemoryProgramStore
from .parquet import ParquetProgramStore

__all__ = [
    "InMemoryProgramStore",
    "ParquetProgramStore",
    "ProgramStore",
    "SyncMetadata",
    "UpsertResult",
]
