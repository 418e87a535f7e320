from __future__ import annotations

import json
import logging
from pathlib import Path

import pandas as pd

from src.errors import StoreUnavailable
from src.io.artifacts import write_json_atomic, write_parquet_atomic
from src.normalize.schema import PROGRAM_COLUMNS, Program, program_from_record, program_to_record

from .base import SyncMetadata
from .memory import InMemoryProgramStore

logger = logging.getLogger(__name__)

PROGRAMS_FILENAME = "programs.parquet"
METADATA_FILENAME = "sync_metadata.json"

_TIMESTAMP_COLUMNS = ("deadline", "start_date", "end_date", "published_at", "registered_at", "last_synced_at")


def programs_to_dataframe(programs: list[Program]) -> pd.DataFrame:
    if not programs:
        return pd.DataFrame(columns=PROGRAM_COLUMNS)

    df = pd.DataFrame([program_to_record(program) for program in programs])
    # Provider dates carry KST offsets and store clocks carry UTC; one column needs one zone.
    for column in _TIMESTAMP_COLUMNS:
        df[column] = pd.to_datetime(df[column], utc=True)
    return df[PROGRAM_COLUMNS]


class ParquetProgramStore(InMemoryProgramStore):
    """In-memory store that loads from and flushes to a catalog directory.

    Programs live in `programs.parquet`; per-source sync metadata lives in
    `sync_metadata.json`. Both are replaced atomically on `flush()`.
    """

    def __init__(self, catalog_dir: Path) -> None:
        super().__init__()
        self.catalog_dir = catalog_dir
        self.programs_path = catalog_dir / PROGRAMS_FILENAME
        self.metadata_path = catalog_dir / METADATA_FILENAME
        self._load()

    def _load(self) -> None:
        try:
            if self.programs_path.exists():
                df = pd.read_parquet(self.programs_path)
                for record in df.to_dict(orient="records"):
                    program = program_from_record(record)
                    self._programs[program.natural_key] = program
            if self.metadata_path.exists():
                payload = json.loads(self.metadata_path.read_text(encoding="utf-8"))
                for entry in payload.get("sources", []):
                    metadata = SyncMetadata.from_dict(entry)
                    self._metadata[metadata.data_source] = metadata
        except (OSError, ValueError) as exc:
            raise StoreUnavailable(f"Could not load catalog from {self.catalog_dir}: {exc}") from exc
        logger.info("Loaded %d programs from %s", len(self._programs), self.catalog_dir)

    def to_dataframe(self, data_source: str | None = None) -> pd.DataFrame:
        return programs_to_dataframe(self.list_programs(data_source))

    def flush(self) -> None:
        with self._lock:
            programs = sorted(self._programs.values(), key=lambda program: program.natural_key)
            metadata = [self._metadata[name].to_dict() for name in sorted(self._metadata)]
        try:
            write_parquet_atomic(programs_to_dataframe(programs), self.programs_path)
            write_json_atomic({"sources": metadata}, self.metadata_path)
        except OSError as exc:
            raise StoreUnavailable(f"Could not write catalog to {self.catalog_dir}: {exc}") from exc
        logger.info("Flushed %d programs to %s", len(programs), self.programs_path)
