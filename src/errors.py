from __future__ import annotations


class SoftRecordError(ValueError):
    """A single raw record could not be turned into a program."""


class SourceError(RuntimeError):
    """Failure scoped to one data source."""


class SourceUnavailable(SourceError):
    pass


class RateLimited(SourceError):
    pass


class ParseError(SourceError):
    pass


class SourceMisconfigured(SourceError):
    pass


class SourceTimeout(SourceError):
    pass


class PersistenceError(RuntimeError):
    """Upsert of one program failed; the store itself is still usable."""


class StoreUnavailable(PersistenceError):
    """The store cannot accept writes at all."""


class SyncConfigurationError(RuntimeError):
    """Run-level misconfiguration; no partial report is produced."""
