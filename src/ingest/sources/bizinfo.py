from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from src.errors import ParseError, SourceMisconfigured, SourceUnavailable
from src.ingest.base import BaseSource, RawRecord
from src.normalize.program import clean_terms, split_period, split_terms

BIZINFO_SITE_URL = "https://www.bizinfo.go.kr"

_REGION_NAMES = "서울|부산|대구|인천|광주|대전|울산|세종|경기|강원|충북|충남|전북|전남|경북|경남|제주"
_REGION_PATTERN = re.compile(f"({_REGION_NAMES})")
_TITLE_REGION_PATTERN = re.compile(rf"\[({_REGION_NAMES})\]")


class BizinfoSource(BaseSource):
    """SME support announcements from the Bizinfo public-data portal (JSON)."""

    name = "bizinfo"

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
            raise SourceMisconfigured("BIZINFO_API_KEY or BIZINFO_API_BASE_URL is not configured.")

        # The portal has no date filter; every field category comes back in one listing.
        payload = http_client.get_json(
            self.base_url,
            params={
                "crtfcKey": self.api_key,
                "dataType": "json",
                "searchCnt": page_size,
                "pageIndex": page,
                "pageUnit": page_size,
            },
        )
        return self.parse_page(payload)

    def parse_page(self, payload: Any) -> list[RawRecord]:
        if not isinstance(payload, dict):
            raise ParseError(f"Unexpected Bizinfo payload type: {type(payload).__name__}")
        if payload.get("reqErr"):
            raise SourceUnavailable(f"Bizinfo API error: {payload['reqErr']}")

        body = (payload.get("response") or {}).get("body") or {}
        items = payload.get("jsonArray") or payload.get("result") or body.get("items") or []
        if not isinstance(items, list):
            raise ParseError("Bizinfo items are not a list.")
        return [item for item in items if isinstance(item, dict)]

    def map_record(self, raw: RawRecord) -> dict[str, Any]:
        title = raw.get("pblancNm")
        start, end = split_period(raw.get("reqstBeginEndDe"))

        keywords = split_terms(raw.get("hashtags"))
        keywords.extend(
            value
            for value in (raw.get("pldirSportRealmLclasCodeNm"), raw.get("pldirSportRealmMlsfcCodeNm"))
            if value
        )

        relative_url = raw.get("pblancUrl")
        return {
            "source_api_id": raw.get("pblancId"),
            "title": title,
            "description": raw.get("bsnsSumryCn"),
            "category": raw.get("pldirSportRealmLclasCodeNm"),
            "target_audience": split_terms(raw.get("trgetNm")) or ["전체"],
            "target_location": _extract_locations(raw.get("jrsdInsttNm"), title),
            "keywords": keywords,
            "start_date": start,
            "deadline": end,
            "published_at": raw.get("creatPnttm"),
            "source_url": f"{BIZINFO_SITE_URL}{relative_url}" if isinstance(relative_url, str) and relative_url else None,
            "attachment_url": raw.get("flpthNm"),
        }


def _extract_locations(agency: Any, title: Any) -> list[str]:
    locations: list[str] = []
    if isinstance(agency, str):
        match = _REGION_PATTERN.search(agency)
        if match:
            locations.append(match.group(1))
    if isinstance(title, str):
        match = _TITLE_REGION_PATTERN.search(title)
        if match:
            locations.append(match.group(1))
    return clean_terms(locations) or ["전국"]
