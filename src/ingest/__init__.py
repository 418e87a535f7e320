from __future__ import annotations

from .base import BaseSource, FetchOutcome, RawRecord
from .cache import write_raw_payload, write_raw_records
from .http import PoliteHttpClient
from .registry import register_sources

__all__ = [
    "BaseSource",
    "FetchOutcome",
    "PoliteHttpClient",
    "RawRecord",
    "register_sources",
    "write_raw_payload",
    "write_raw_records",
]
