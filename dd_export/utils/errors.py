"""
Exporter Errors

Typed exceptions raised by the mapping engine, the page fetcher and the
configuration loader. Every error derives from ExportError so the runner can
report any export failure in one place.
"""

from typing import Any


class ExportError(Exception):
    """Base class for all export failures."""


class ConfigError(ExportError):
    """Mapping configuration file is missing, unreadable or invalid."""


class FieldNotFound(ExportError):
    """A mapping path does not exist in a record's attributes."""

    def __init__(self, path: str, segment: str) -> None:
        self.path = path
        self.segment = segment
        super().__init__(f"field '{segment}' not found while resolving '{path}'")


class NotASequence(ExportError):
    """An array-expansion rule reached a value that is not a list."""

    def __init__(self, path: str, value: Any) -> None:
        self.path = path
        self.value = value
        super().__init__(
            f"expected a list while resolving '{path}', got {type(value).__name__}"
        )


class SerializationError(ExportError):
    """A record's attribute bag could not be rendered as JSON text."""


class TransportError(ExportError):
    """A page fetch failed (network, authorization or API error)."""


class ProjectionError(ExportError):
    """
    A single record could not be projected into an output row.

    Carries the failing rule, the offending path and a snapshot of the record
    so a mapping mismatch can be diagnosed from the log alone.
    """

    def __init__(
        self,
        cause: ExportError,
        rule: Any = None,
        record: dict[str, Any] | None = None,
    ) -> None:
        self.cause = cause
        self.rule = rule
        self.record = record or {}
        self.path = getattr(cause, "path", None)
        super().__init__(f"cannot project record: {cause}")
