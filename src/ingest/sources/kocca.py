from __future__ import annotations

import re
from datetime import date, datetime
from html import unescape
from typing import Any

from src.errors import ParseError, SourceMisconfigured
from src.ingest.base import BaseSource, RawRecord
from src.normalize.program import KST

FINANCE_FULL_SYNC_START = date(2020, 1, 1)
PIMS_FULL_SYNC_YEARS = 3

_TITLE_WORD_PATTERN = re.compile(r"[\s,/]+")
_LINK_SEQ_PATTERN = re.compile(r"/(\d+)\.do")
_LEFTOVER_ENTITY_PATTERN = re.compile(r"&[a-z]+;", re.IGNORECASE)


class _KoccaSource(BaseSource):
    """Shared plumbing for the two KOCCA agency feeds (`INFO.list` JSON envelope)."""

    key_setting: str
    url_setting: str
    extra_keywords: tuple[str, ...] = ()
    keyword_limit = 10

    def __init__(self, *, api_key: str | None, base_url: str | None) -> None:
        self.api_key = api_key
        self.base_url = base_url

    def fetch_page(
        self,
        http_client: Any,
        *,
        page: int,
        page_size: int,
        registered_after: datetime | None = None,
    ) -> list[RawRecord]:
        if not self.api_key or not self.base_url:
            raise SourceMisconfigured(f"{self.key_setting} or {self.url_setting} is not configured.")

        params = {"serviceKey": self.api_key, "pageNo": page, "numOfRows": page_size}
        params.update(self.window_params(registered_after))
        payload = http_client.get_json(self.base_url, params=params)
        return self.parse_page(payload)

    def window_params(self, registered_after: datetime | None) -> dict[str, str]:
        raise NotImplementedError

    def parse_page(self, payload: Any) -> list[RawRecord]:
        if not isinstance(payload, dict) or not isinstance(payload.get("INFO"), dict):
            raise ParseError(f"{self.name} payload has no INFO envelope.")
        items = payload["INFO"].get("list") or []
        if not isinstance(items, list):
            raise ParseError(f"{self.name} INFO.list is not a list.")
        return [item for item in items if isinstance(item, dict)]

    def _keywords(self, raw: RawRecord, *extra_fields: str) -> list[str]:
        keywords: list[str] = []
        title = raw.get("title")
        if isinstance(title, str):
            keywords.extend(word for word in _TITLE_WORD_PATTERN.split(title) if len(word) > 1)
        for field_name in ("cate", *extra_fields):
            value = raw.get(field_name)
            if isinstance(value, str) and value.strip():
                keywords.append(value.strip())
        keywords.extend(self.extra_keywords)
        return list(dict.fromkeys(keywords))[: self.keyword_limit]


class KoccaPimsSource(_KoccaSource):
    """Content-industry support programs from the KOCCA PIMS feed."""

    name = "kocca_pims"
    key_setting = "KOCCA_PIMS_API_KEY"
    url_setting = "KOCCA_PIMS_API_BASE_URL"
    extra_keywords = ("콘텐츠", "문화")

    def window_params(self, registered_after: datetime | None) -> dict[str, str]:
        if registered_after is not None:
            start = registered_after.astimezone(KST).date()
        else:
            start = _years_before(self.utcnow().astimezone(KST).date(), PIMS_FULL_SYNC_YEARS)
        return {"viewStartDt": start.strftime("%Y%m%d")}

    def map_record(self, raw: RawRecord) -> dict[str, Any]:
        return {
            "source_api_id": raw.get("intcNoSeq"),
            "title": raw.get("title"),
            "description": raw.get("content"),
            "category": raw.get("cate"),
            "target_audience": ["콘텐츠산업", "문화산업"],
            "target_location": ["전국"],
            "keywords": self._keywords(raw),
            "start_date": raw.get("startDt"),
            "deadline": raw.get("endDt"),
            "published_at": raw.get("regDt"),
            "source_url": _absolute_link(raw.get("link")),
        }


class KoccaFinanceSource(_KoccaSource):
    """Investment and loan programs from the KOCCA finance feed."""

    name = "kocca_finance"
    key_setting = "KOCCA_FIN_API_KEY"
    url_setting = "KOCCA_FINANCE_API_BASE_URL"
    extra_keywords = ("금융", "투자", "콘텐츠")

    def window_params(self, registered_after: datetime | None) -> dict[str, str]:
        if registered_after is not None:
            start = registered_after.astimezone(KST).date()
        else:
            start = FINANCE_FULL_SYNC_START
        today = self.utcnow().astimezone(KST).date()
        return {
            "cate": "a2",
            "viewStartDt": start.strftime("%Y%m%d"),
            "viewEndDt": today.strftime("%Y%m%d"),
        }

    def parse_page(self, payload: Any) -> list[RawRecord]:
        records = super().parse_page(payload)
        for record in records:
            link = record.get("link")
            match = _LINK_SEQ_PATTERN.search(link) if isinstance(link, str) else None
            if match and not record.get("seq"):
                record["seq"] = match.group(1)
        return records

    def map_record(self, raw: RawRecord) -> dict[str, Any]:
        content = raw.get("content")
        return {
            "source_api_id": raw.get("seq"),
            "title": raw.get("title"),
            "description": decode_html_entities(content) if isinstance(content, str) else None,
            "category": raw.get("cate"),
            "target_audience": ["콘텐츠산업", "문화산업"],
            "target_location": ["전국"],
            "keywords": self._keywords(raw, "genre"),
            "deadline": raw.get("endDt"),
            "published_at": raw.get("regDate"),
            "source_url": _absolute_link(raw.get("link")),
        }


def decode_html_entities(html: str) -> str:
    """Decode entity-escaped markup while keeping the tags themselves."""

    decoded = unescape(html).replace("\xa0", " ")
    return _LEFTOVER_ENTITY_PATTERN.sub("", decoded)


def _absolute_link(link: Any) -> str | None:
    if not isinstance(link, str) or not link.strip():
        return None
    link = link.strip()
    if link.startswith(("http://", "https://")):
        return link
    return f"https://{link.lstrip('/')}"


def _years_before(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year - years)
    except ValueError:
        return value.replace(year=value.year - years, day=28)
