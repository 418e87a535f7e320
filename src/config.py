from __future__ import annotations

import math
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from src.ingest.base import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE
from src.normalize.schema import DATA_SOURCES

DEFAULT_CATALOG_DIR = Path("data") / "catalog"
DEFAULT_REPORT_DIR = Path("reports") / "sync_runs"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True, slots=True)
class SourceCredentials:
    """API keys and endpoints for the four keyed providers; the technopark boards need none."""

    bizinfo_api_key: str | None = None
    bizinfo_base_url: str | None = None
    public_data_api_key: str | None = None
    kstartup_base_url: str | None = None
    kocca_pims_api_key: str | None = None
    kocca_pims_base_url: str | None = None
    kocca_finance_api_key: str | None = None
    kocca_finance_base_url: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> SourceCredentials:
        return cls(
            bizinfo_api_key=_blank_to_none(environ.get("BIZINFO_API_KEY")),
            bizinfo_base_url=_blank_to_none(environ.get("BIZINFO_API_BASE_URL")),
            public_data_api_key=_blank_to_none(environ.get("PUBLIC_DATA_API_KEY")),
            kstartup_base_url=_blank_to_none(environ.get("KSTARTUP_API_BASE_URL")),
            kocca_pims_api_key=_blank_to_none(environ.get("KOCCA_PIMS_API_KEY")),
            kocca_pims_base_url=_blank_to_none(environ.get("KOCCA_PIMS_API_BASE_URL")),
            kocca_finance_api_key=_blank_to_none(environ.get("KOCCA_FIN_API_KEY")),
            kocca_finance_base_url=_blank_to_none(environ.get("KOCCA_FINANCE_API_BASE_URL")),
        )


@dataclass(frozen=True, slots=True)
class SyncSettings:
    credentials: SourceCredentials = field(default_factory=SourceCredentials)
    catalog_dir: Path = DEFAULT_CATALOG_DIR
    raw_dir: Path | None = None
    report_dir: Path = DEFAULT_REPORT_DIR
    requests_per_second: float = 1.0
    request_timeout_seconds: float = 20.0
    source_timeout_seconds: float = 300.0
    max_pages: int = DEFAULT_MAX_PAGES
    page_size: int = DEFAULT_PAGE_SIZE
    incremental: bool = False
    enabled_sources: tuple[str, ...] = DATA_SOURCES
    cron_secret: str | None = None

    def __post_init__(self) -> None:
        for field_name in ("requests_per_second", "request_timeout_seconds", "source_timeout_seconds"):
            value = float(getattr(self, field_name))
            if not math.isfinite(value) or value <= 0.0:
                raise ValueError(f"Setting '{field_name}' must be a positive number.")
        for field_name in ("max_pages", "page_size"):
            if int(getattr(self, field_name)) < 1:
                raise ValueError(f"Setting '{field_name}' must be at least 1.")

        unknown = [name for name in self.enabled_sources if name not in DATA_SOURCES]
        if unknown:
            raise ValueError(
                f"Unknown data source(s): {', '.join(unknown)}. Expected any of {', '.join(DATA_SOURCES)}."
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SyncSettings:
        env = os.environ if environ is None else environ
        defaults = cls()
        raw_dir = _blank_to_none(env.get("SYNC_RAW_DIR"))
        sources = _blank_to_none(env.get("SYNC_SOURCES"))
        return cls(
            credentials=SourceCredentials.from_env(env),
            catalog_dir=Path(env.get("SYNC_CATALOG_DIR") or defaults.catalog_dir),
            raw_dir=Path(raw_dir) if raw_dir else None,
            report_dir=Path(env.get("SYNC_REPORT_DIR") or defaults.report_dir),
            requests_per_second=float(env.get("SYNC_REQUESTS_PER_SECOND") or defaults.requests_per_second),
            request_timeout_seconds=float(
                env.get("SYNC_REQUEST_TIMEOUT_SECONDS") or defaults.request_timeout_seconds
            ),
            source_timeout_seconds=float(
                env.get("SYNC_SOURCE_TIMEOUT_SECONDS") or defaults.source_timeout_seconds
            ),
            max_pages=int(env.get("SYNC_MAX_PAGES") or defaults.max_pages),
            page_size=int(env.get("SYNC_PAGE_SIZE") or defaults.page_size),
            incremental=_parse_bool(env.get("SYNC_INCREMENTAL"), default=defaults.incremental),
            enabled_sources=_parse_sources(sources) if sources else defaults.enabled_sources,
            cron_secret=_blank_to_none(env.get("CRON_SECRET")),
        )

    def with_overrides(self, **overrides: Any) -> SyncSettings:
        """Copy with command-line overrides applied; `None` values are ignored."""

        return replace(self, **{key: value for key, value in overrides.items() if value is not None})

    def to_dict(self) -> dict[str, Any]:
        """Non-secret settings, suitable for the run report."""

        return {
            "catalog_dir": str(self.catalog_dir),
            "raw_dir": str(self.raw_dir) if self.raw_dir else None,
            "report_dir": str(self.report_dir),
            "requests_per_second": self.requests_per_second,
            "request_timeout_seconds": self.request_timeout_seconds,
            "source_timeout_seconds": self.source_timeout_seconds,
            "max_pages": self.max_pages,
            "page_size": self.page_size,
            "incremental": self.incremental,
            "enabled_sources": list(self.enabled_sources),
        }


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot interpret '{value}' as a boolean.")


def _parse_sources(value: str) -> tuple[str, ...]:
    return tuple(dict.fromkeys(part.strip() for part in value.split(",") if part.strip()))
