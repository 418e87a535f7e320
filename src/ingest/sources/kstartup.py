from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Any

from src.errors import ParseError, SourceMisconfigured
from src.ingest.base import BaseSource, RawRecord
from src.normalize.program import split_terms

KSTARTUP_ENDPOINT_PATH = "/kisedKstartupService01/getAnnouncementInformation01"

_TITLE_WORD_PATTERN = re.compile(r"[\s,/]+")
_DESCRIPTION_SECTIONS = (
    ("pbanc_ctnt", "공고 상세"),
    ("aply_trgt_ctnt", "지원 대상"),
    ("biz_trgt_age", "연령 제한"),
    ("aply_excl_trgt_ctnt", "지원 제한 대상"),
    ("pbanc_ntrp_nm", "주관 기관"),
    ("supt_biz_clsfc", "지원 분야"),
)


class KStartupSource(BaseSource):
    """Startup support announcements from the K-Startup public-data API (XML)."""

    name = "kstartup"

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
            raise SourceMisconfigured("PUBLIC_DATA_API_KEY or KSTARTUP_API_BASE_URL is not configured.")

        xml_text = http_client.get_text(
            f"{self.base_url.rstrip('/')}{KSTARTUP_ENDPOINT_PATH}",
            params={"serviceKey": self.api_key, "page": page, "perPage": page_size},
        )
        return self.parse_page(xml_text)

    def parse_page(self, xml_text: str) -> list[RawRecord]:
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as exc:
            raise ParseError(f"K-Startup response is not valid XML: {exc}") from exc

        programs: list[RawRecord] = []
        for item in root.iter("item"):
            program: RawRecord = {}
            for col in item.findall("col"):
                name = col.get("name")
                if name:
                    program[name] = (col.text or "").strip()
            if program:
                programs.append(program)
        return programs

    def map_record(self, raw: RawRecord) -> dict[str, Any]:
        title = raw.get("biz_pbanc_nm")
        sections = [
            f"{label}: {raw[key]}"
            for key, label in _DESCRIPTION_SECTIONS
            if isinstance(raw.get(key), str) and raw[key]
        ]

        keywords: list[str] = []
        if isinstance(title, str):
            keywords.extend(word for word in _TITLE_WORD_PATTERN.split(title) if len(word) > 1)
        if raw.get("supt_biz_clsfc"):
            keywords.append(raw["supt_biz_clsfc"])
        keywords.extend(split_terms(raw.get("aply_trgt")))

        return {
            "source_api_id": raw.get("pbanc_sn"),
            "title": title,
            "description": "\n\n".join(sections) or None,
            "category": raw.get("supt_biz_clsfc"),
            "target_audience": split_terms(raw.get("aply_trgt")) or ["전체"],
            "target_location": split_terms(raw.get("supt_regin") or raw.get("aply_trgt_area")) or ["전국"],
            "keywords": keywords,
            "budget_range": raw.get("sprt_dgr"),
            "start_date": raw.get("pbanc_rcpt_bgng_dt") or raw.get("rcpt_bgng_dt"),
            "deadline": raw.get("pbanc_rcpt_end_dt") or raw.get("rcpt_end_dt"),
            "published_at": raw.get("pbanc_rgst_dt") or raw.get("pbanc_rcpt_bgng_dt"),
            "source_url": raw.get("detl_pg_url") or raw.get("biz_pbanc_url"),
        }
