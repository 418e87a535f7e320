from __future__ import annotations

from .bizinfo import BizinfoSource
from .kocca import KoccaFinanceSource, KoccaPimsSource
from .kstartup import KStartupSource
from .technopark import GyeonggiTpSource, SeoulTpSource

__all__ = [
    "BizinfoSource",
    "GyeonggiTpSource",
    "KStartupSource",
    "KoccaFinanceSource",
    "KoccaPimsSource",
    "SeoulTpSource",
]
