from __future__ import annotations

from datetime import datetime
from typing import Any

from src.errors import RateLimited
from src.ingest.base import BaseSource


class _PagedSource(BaseSource):
    name = "paged"

    def __init__(self, page_sizes: list[int], *, fail_on_page: int | None = None) -> None:
        self.page_sizes = page_sizes
        self.fail_on_page = fail_on_page
        self.requested_pages: list[int] = []
        self.seen_registered_after: list[datetime | None] = []

    def fetch_page(self, http_client, *, page, page_size, registered_after=None):  # noqa: ANN001
        self.requested_pages.append(page)
        self.seen_registered_after.append(registered_after)
        if page == self.fail_on_page:
            raise RateLimited("slow down")
        count = self.page_sizes[page - 1] if page <= len(self.page_sizes) else 0
        return [{"id": f"{page}-{index}", "title": "t"} for index in range(count)]

    def map_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {"source_api_id": raw["id"], "title": raw["title"]}


def test_fetch_stops_on_short_page() -> None:
    source = _PagedSource([50, 50, 12])

    records = source.fetch(object())

    assert len(records) == 112
    assert source.requested_pages == [1, 2, 3]


def test_fetch_stops_at_page_cap() -> None:
    source = _PagedSource([50] * 10)

    records = source.fetch(object())

    assert len(records) == 250
    assert source.requested_pages == [1, 2, 3, 4, 5]


def test_fetch_honors_custom_page_size() -> None:
    source = _PagedSource([10, 10, 3])
    source.page_size = 10

    assert len(source.fetch(object())) == 23


def test_fetch_passes_registered_after_to_every_page() -> None:
    source = _PagedSource([50, 1])
    cutoff = datetime(2026, 1, 1)

    source.fetch(object(), registered_after=cutoff)

    assert source.seen_registered_after == [cutoff, cutoff]


def test_run_fetch_turns_source_errors_into_failed_outcome() -> None:
    source = _PagedSource([50, 50], fail_on_page=2)

    outcome = source.run_fetch(object())

    assert not outcome.succeeded
    assert isinstance(outcome.error, RateLimited)
    assert outcome.records == []
    assert outcome.source == "paged"


def test_run_fetch_wraps_unexpected_errors() -> None:
    class _ExplodingSource(_PagedSource):
        def fetch_page(self, http_client, *, page, page_size, registered_after=None):  # noqa: ANN001
            raise ZeroDivisionError("boom")

    outcome = _ExplodingSource([]).run_fetch(object())

    assert not outcome.succeeded
    assert "ZeroDivisionError" in str(outcome.error)


def test_run_fetch_reports_pages_and_records() -> None:
    outcome = _PagedSource([50, 7]).run_fetch(object())

    assert outcome.succeeded
    assert outcome.pages_fetched == 2
    assert len(outcome.records) == 57
    assert outcome.duration_seconds >= 0.0
