from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from src.errors import ParseError
from src.ingest.base import BaseSource, RawRecord
from src.ingest.html_table import TableCell, parse_table_rows
from src.normalize.program import split_period

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
}

_BRACKET_PATTERN = re.compile(r"\[([^\]]+)\]")
_SEOUL_BOARD_VIEW_PATTERN = re.compile(r"goBoardView\([^,]+,\s*[^,]+,\s*'([^']+)'\)")
_SEOUL_NTT_ID_PATTERN = re.compile(r"nttId=([^&]+)")
_GYEONGGI_VIEW_PATTERN = re.compile(r"fn_goView\('(\d+)'\)")

SEOUL_KEYWORD_HINTS = (
    "창업", "기술", "R&D", "수출", "마케팅", "컨설팅", "입주", "지원", "교육", "훈련", "ESG", "디지털",
)
SEOUL_AUDIENCE_HINTS = ("중소기업", "스타트업", "벤처", "소상공인", "예비창업자")

# Region codes published in the Gyeonggi technopark search form (bsAreaMap).
GYEONGGI_REGION_CODES = {
    "CD003004001": "서울",
    "CD003004002": "인천",
    "CD003004003": "가평군",
    "CD003004004": "고양시",
    "CD003004005": "과천시",
    "CD003004006": "광명시",
    "CD003004007": "광주시",
    "CD003004008": "구리시",
    "CD003004009": "군포시",
    "CD003004010": "김포시",
    "CD003004011": "남양주시",
    "CD003004012": "동두천시",
    "CD003004013": "부천시",
    "CD003004014": "성남시",
    "CD003004015": "수원시",
    "CD003004016": "시흥시",
    "CD003004017": "안산시",
    "CD003004018": "안성시",
    "CD003004019": "안양시",
    "CD003004020": "양주시",
    "CD003004021": "양평군",
    "CD003004022": "여주시",
    "CD003004023": "연천군",
    "CD003004024": "오산시",
    "CD003004025": "용인시",
    "CD003004026": "의왕시",
    "CD003004027": "의정부시",
    "CD003004028": "이천시",
    "CD003004029": "파주시",
    "CD003004030": "평택시",
    "CD003004031": "포천시",
    "CD003004032": "하남시",
    "CD003004033": "화성시",
    "CD003004034": "기타",
}
GYEONGGI_WIDE_REGION = "경기도 전체"
GYEONGGI_DEFAULT_REGION = "경기"
_GYEONGGI_WIDE_THRESHOLD = 10


class SeoulTpSource(BaseSource):
    """Business support notices scraped from the Seoul technopark board."""

    name = "seoul_tp"
    site_url = "https://www.seoultp.or.kr"
    list_url = "https://www.seoultp.or.kr/user/nd19746.do"

    def fetch_page(
        self,
        http_client: Any,
        *,
        page: int,
        page_size: int,
        registered_after: datetime | None = None,
    ) -> list[RawRecord]:
        html = http_client.post_text(
            self.list_url,
            data={
                "page": page,
                "pagingAt": "Y",
                "listSize": page_size,
                "menuContentId": "19746",
                "insInsttCode": "seoul",
            },
            headers={**BROWSER_HEADERS, "Referer": self.list_url},
        )
        return self.parse_page(html)

    def parse_page(self, html: str) -> list[RawRecord]:
        rows = parse_table_rows(html)
        if not rows:
            raise ParseError("Seoul technopark listing has no table rows; page layout may have changed.")

        programs: list[RawRecord] = []
        for cells in rows:
            if len(cells) < 5:
                continue
            title_cell = cells[1]
            title = title_cell.link_text or title_cell.text
            if not title or title == "제목":
                continue

            board_no = _seoul_board_no(title_cell)
            programs.append(
                {
                    "id": board_no,
                    "title": title,
                    "author": cells[2].text,
                    "registered_date": cells[3].text,
                    "view_count": _to_int(cells[4].text),
                    "source_url": (
                        f"{self.list_url}?View&boardNo={board_no}&menuCode=www" if board_no else None
                    ),
                }
            )
        return programs

    def map_record(self, raw: RawRecord) -> dict[str, Any]:
        title = raw.get("title") or ""
        keywords = _BRACKET_PATTERN.findall(title)
        keywords.extend(hint for hint in SEOUL_KEYWORD_HINTS if hint in title)
        if raw.get("category"):
            keywords.append(raw["category"])
        audiences = [hint for hint in SEOUL_AUDIENCE_HINTS if hint in title]

        return {
            "source_api_id": raw.get("id"),
            "title": raw.get("title"),
            "category": raw.get("category"),
            "target_audience": audiences or ["전체"],
            "target_location": ["서울"],
            "keywords": keywords,
            "published_at": raw.get("registered_date"),
            "source_url": raw.get("source_url"),
        }


class GyeonggiTpSource(BaseSource):
    """Business announcements scraped from the Gyeonggi technopark project board."""

    name = "gyeonggi_tp"
    site_url = "https://pms.gtp.or.kr"
    list_url = "https://pms.gtp.or.kr/web/business/webBusinessList.do"

    def fetch_page(
        self,
        http_client: Any,
        *,
        page: int,
        page_size: int,
        registered_after: datetime | None = None,
    ) -> list[RawRecord]:
        # Blank search fields mean "all periods, all categories, all regions".
        html = http_client.post_text(
            self.list_url,
            data={
                "page": page,
                "pageUnit": page_size,
                "schStrDiv": "1",
                "schSdt": "",
                "schEdt": "",
                "schBusinesscd": "",
                "schAreacd": "",
            },
            headers={**BROWSER_HEADERS, "Referer": self.list_url},
        )
        return self.parse_page(html)

    def parse_page(self, html: str) -> list[RawRecord]:
        rows = parse_table_rows(html)
        if not rows:
            raise ParseError("Gyeonggi technopark listing has no table rows; page layout may have changed.")

        programs: list[RawRecord] = []
        for cells in rows:
            if len(cells) < 6:
                continue
            title_cell = cells[1]
            title = title_cell.link_text or title_cell.text
            if not title:
                continue

            region_code = cells[3].spans.get("bs_areacd", "")
            business_id = _gyeonggi_business_id(title_cell)
            programs.append(
                {
                    "id": business_id,
                    "title": title,
                    "business_type": cells[2].text,
                    "region": region_names(region_code),
                    "region_code": region_code,
                    "host_organization": cells[4].text,
                    "application_period": cells[5].text,
                    "source_url": (
                        f"{self.site_url}/web/business/webBusinessView.do?idx={business_id}"
                        if business_id
                        else None
                    ),
                }
            )
        return programs

    def map_record(self, raw: RawRecord) -> dict[str, Any]:
        title = raw.get("title") or ""
        business_type = raw.get("business_type") or None
        start, end = split_period(raw.get("application_period"))

        keywords = [business_type] if business_type else []
        keywords.extend(_BRACKET_PATTERN.findall(title))
        if raw.get("host_organization"):
            keywords.append(raw["host_organization"])

        return {
            "source_api_id": raw.get("id"),
            "title": raw.get("title"),
            "category": business_type,
            "target_audience": [business_type] if business_type else ["전체"],
            "target_location": [raw.get("region") or GYEONGGI_DEFAULT_REGION],
            "keywords": keywords,
            "start_date": start,
            "deadline": end,
            "published_at": start,
            "source_url": raw.get("source_url"),
        }


def region_names(region_code: str) -> str:
    """Translate a comma-separated bs_areacd value into city names."""

    codes = [code.strip() for code in region_code.split(",") if code.strip()]
    if not codes:
        return GYEONGGI_DEFAULT_REGION
    if len(codes) >= _GYEONGGI_WIDE_THRESHOLD:
        return GYEONGGI_WIDE_REGION

    names = list(dict.fromkeys(GYEONGGI_REGION_CODES[code] for code in codes if code in GYEONGGI_REGION_CODES))
    return ", ".join(names) if names else GYEONGGI_DEFAULT_REGION


def _seoul_board_no(cell: TableCell) -> str | None:
    for link in cell.links:
        for target in (link.href, link.onclick):
            match = _SEOUL_BOARD_VIEW_PATTERN.search(target) or _SEOUL_NTT_ID_PATTERN.search(target)
            if match:
                return match.group(1)
    return None


def _gyeonggi_business_id(cell: TableCell) -> str | None:
    for link in cell.links:
        for target in (link.onclick, link.href):
            match = _GYEONGGI_VIEW_PATTERN.search(target)
            if match:
                return match.group(1)
    return None


def _to_int(value: str) -> int:
    digits = value.replace(",", "").strip()
    return int(digits) if digits.isdigit() else 0
