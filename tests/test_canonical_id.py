from __future__ import annotations

from datetime import date, datetime

from src.normalize.canonical_id import generate_source_api_id
from src.normalize.program import KST


def _base() -> dict:
    return {
        "data_source": "seoul_tp",
        "title": "[모집] 2026년 창업기업 입주 지원 공고",
        "deadline": date(2026, 3, 1),
        "source_url": "https://www.seoultp.or.kr/user/nd19746.do?menuCode=www&boardNo=9001",
    }


def test_generate_source_api_id_is_stable_for_same_input() -> None:
    first = generate_source_api_id(**_base())
    second = generate_source_api_id(**_base())

    assert first == second
    assert len(first) == 40


def test_generate_source_api_id_ignores_cosmetic_differences() -> None:
    original = generate_source_api_id(**_base())
    cosmetic = generate_source_api_id(
        **{
            **_base(),
            "title": "  [모집]   2026년 창업기업 입주 지원 공고 ",
            "deadline": datetime(2026, 3, 1, 18, 0, tzinfo=KST),
            "source_url": "https://seoultp.or.kr/user/nd19746.do/?boardNo=9001&menuCode=www",
        }
    )

    assert original == cosmetic


def test_generate_source_api_id_changes_when_title_changes() -> None:
    original = generate_source_api_id(**_base())
    changed = generate_source_api_id(**{**_base(), "title": "[모집] 2026년 기술기업 입주 지원 공고"})

    assert original != changed


def test_generate_source_api_id_changes_when_deadline_changes() -> None:
    original = generate_source_api_id(**_base())
    changed = generate_source_api_id(**{**_base(), "deadline": date(2026, 4, 1)})

    assert original != changed


def test_generate_source_api_id_is_scoped_by_data_source() -> None:
    original = generate_source_api_id(**_base())
    other_source = generate_source_api_id(**{**_base(), "data_source": "gyeonggi_tp"})

    assert original != other_source
