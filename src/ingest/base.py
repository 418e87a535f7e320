from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.errors import SourceError

logger = logging.getLogger(__name__)

RawRecord = dict[str, Any]

DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_PAGES = 5


@dataclass(slots=True)
class FetchOutcome:
    source: str
    records: list[RawRecord] = field(default_factory=list)
    error: SourceError | None = None
    pages_fetched: int = 0
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None


class BaseSource(ABC):
    name: str
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = DEFAULT_MAX_PAGES

    def fetch(self, http_client: Any, *, registered_after: datetime | None = None) -> list[RawRecord]:
        """Fetch pages until a short page or the page ceiling, whichever comes first."""

        records, _ = self._fetch_pages(http_client, registered_after=registered_after)
        return records

    def run_fetch(self, http_client: Any, *, registered_after: datetime | None = None) -> FetchOutcome:
        """Fetch without ever raising; failures come back as a failed outcome."""

        started_at = time.monotonic()
        outcome = FetchOutcome(source=self.name)
        try:
            outcome.records, outcome.pages_fetched = self._fetch_pages(
                http_client,
                registered_after=registered_after,
            )
        except SourceError as exc:
            outcome.error = exc
            logger.exception("Source %s failed: %s", self.name, exc)
        except Exception as exc:
            outcome.error = SourceError(f"{type(exc).__name__}: {exc}")
            logger.exception("Source %s failed with an unexpected error.", self.name)
        outcome.duration_seconds = round(time.monotonic() - started_at, 3)
        return outcome

    def _fetch_pages(
        self,
        http_client: Any,
        *,
        registered_after: datetime | None,
    ) -> tuple[list[RawRecord], int]:
        records: list[RawRecord] = []
        pages_fetched = 0
        for page in range(1, self.max_pages + 1):
            batch = self.fetch_page(
                http_client,
                page=page,
                page_size=self.page_size,
                registered_after=registered_after,
            )
            pages_fetched += 1
            records.extend(batch)
            logger.info("Source=%s page=%d records=%d", self.name, page, len(batch))
            if len(batch) < self.page_size:
                break
        else:
            logger.info("Page cap reached (%d) for source %s.", self.max_pages, self.name)
        return records, pages_fetched

    @abstractmethod
    def fetch_page(
        self,
        http_client: Any,
        *,
        page: int,
        page_size: int,
        registered_after: datetime | None = None,
    ) -> list[RawRecord]:
        """Fetch and parse one page of raw program records."""

    @abstractmethod
    def map_record(self, raw: RawRecord) -> dict[str, Any]:
        """Extract canonical program fields from one raw record."""

    @staticmethod
    def utcnow() -> datetime:
        return datetime.now(tz=UTC)
