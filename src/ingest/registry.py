from __future__ import annotations

from typing import TYPE_CHECKING

from .base import BaseSource
from .sources.bizinfo import BizinfoSource
from .sources.kocca import KoccaFinanceSource, KoccaPimsSource
from .sources.kstartup import KStartupSource
from .sources.technopark import GyeonggiTpSource, SeoulTpSource

if TYPE_CHECKING:
    from src.config import SyncSettings


def register_sources(settings: SyncSettings) -> list[BaseSource]:
    """Build every enabled adapter, in the order the settings list them."""

    credentials = settings.credentials
    available: dict[str, BaseSource] = {
        "bizinfo": BizinfoSource(
            api_key=credentials.bizinfo_api_key,
            base_url=credentials.bizinfo_base_url,
        ),
        "kstartup": KStartupSource(
            api_key=credentials.public_data_api_key,
            base_url=credentials.kstartup_base_url,
        ),
        "kocca_pims": KoccaPimsSource(
            api_key=credentials.kocca_pims_api_key,
            base_url=credentials.kocca_pims_base_url,
        ),
        "kocca_finance": KoccaFinanceSource(
            api_key=credentials.kocca_finance_api_key,
            base_url=credentials.kocca_finance_base_url,
        ),
        "seoul_tp": SeoulTpSource(),
        "gyeonggi_tp": GyeonggiTpSource(),
    }

    sources: list[BaseSource] = []
    for name in settings.enabled_sources:
        source = available[name]
        source.page_size = settings.page_size
        source.max_pages = settings.max_pages
        sources.append(source)
    return sources
