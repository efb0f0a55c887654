"""
Pydantic Schemas - Export Data Models

Defines the models that flow through the exporter:
- Mapping configuration (credentials, log filter, mapping rules)
- Log records and pages returned by the page fetcher
- Time intervals produced by the partitioner

Usage:
    from dd_export.utils.schemas import load_export_config

    config = load_export_config("mapping.yaml")
    for rule in config.mapping:
        print(rule.output_field, rule.source_path)
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from dd_export.utils.errors import ConfigError

# Marks a rule whose value is expanded from an array into several columns
EXPANSION_SENTINEL = "-"


def to_epoch_ms(value: Any) -> Any:
    """Coerce an ISO-8601 datetime (string or object) to epoch milliseconds."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
        value = datetime.fromisoformat(stripped.replace("Z", "+00:00"))

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    return value


class MappingRule(BaseModel):
    """One mapping entry from the YAML configuration.

    Scalar rules read `dd_field` as a dotted path. Rules whose `dd_field` is
    "-" expand the array found along `inner_field` into one column per element.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    output_field: str = Field(..., alias="field", description="Output column name")
    source_path: str = Field(..., alias="dd_field", description="Dotted attribute path or '-'")
    inner_field: str = Field(default="", alias="inner_field", description="Array path for expansion rules")
    max_items: Optional[int] = Field(default=None, ge=1, description="Fixed width for expansion rules")

    @property
    def is_expansion(self) -> bool:
        return self.source_path == EXPANSION_SENTINEL

    @model_validator(mode="after")
    def validate_mode(self) -> "MappingRule":
        if self.is_expansion and not self.inner_field:
            raise ValueError(f"expansion rule '{self.output_field}' requires inner_field")
        if not self.is_expansion and self.max_items is not None:
            raise ValueError(f"max_items only applies to expansion rules ('{self.output_field}')")
        return self

    @property
    def header_name(self) -> str:
        return self.output_field or self.inner_field


class FilterSpec(BaseModel):
    """Log search filter: query string plus an epoch-millisecond time range."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    query: str = Field(default="*", description="Log search query")
    from_ms: int = Field(..., alias="from", description="Range start (epoch ms)")
    to_ms: int = Field(..., alias="to", description="Range end (epoch ms)")

    @field_validator("from_ms", "to_ms", mode="before")
    @classmethod
    def parse_epoch(cls, v: Any) -> Any:
        return to_epoch_ms(v)

    @model_validator(mode="after")
    def validate_range(self) -> "FilterSpec":
        if self.from_ms > self.to_ms:
            raise ValueError(f"'from' ({self.from_ms}) must not be after 'to' ({self.to_ms})")
        return self

    def narrowed(self, interval: "Interval") -> "FilterSpec":
        """Return a copy of this filter restricted to one interval."""
        return self.model_copy(update={"from_ms": interval.from_ms, "to_ms": interval.to_ms})


class Interval(BaseModel):
    """Closed time range in epoch milliseconds."""

    model_config = ConfigDict(frozen=True)

    from_ms: int
    to_ms: int


class AuthConfig(BaseModel):
    """Datadog credentials, passed explicitly to the page fetcher."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    site: str = Field(default="datadoghq.com", alias="dd_site")
    api_key: str = Field(default="", alias="dd_api_key", repr=False)
    app_key: str = Field(default="", alias="dd_app_key", repr=False)


class ExportConfig(BaseModel):
    """Full mapping configuration loaded from YAML."""

    model_config = ConfigDict(populate_by_name=True)

    auth: AuthConfig = Field(default_factory=AuthConfig)
    filter: FilterSpec = Field(..., alias="datadog_filter")
    mapping: list[MappingRule] = Field(default_factory=list)


class LogRecord(BaseModel):
    """A single log entry returned by the source API."""

    timestamp: Optional[datetime] = None
    service: str = ""
    status: str = ""
    message: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class Page(BaseModel):
    """One page of search results; next_cursor is None on the last page."""

    records: list[LogRecord] = Field(default_factory=list)
    next_cursor: Optional[str] = None


def load_export_config(path: str) -> ExportConfig:
    """
    Load and validate a YAML mapping configuration.

    The document must have a top-level `spec` key holding `auth`,
    `datadog_filter` and `mapping`.

    Args:
        path: Path to the YAML file

    Returns:
        Validated ExportConfig

    Raises:
        ConfigError: If the file is missing, is not valid YAML or fails validation
    """
    config_path = Path(path)

    if not config_path.is_file():
        raise ConfigError(f"Mapping configuration not found: {path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get("spec"), dict):
        raise ConfigError(f"Missing top-level 'spec' section in {path}")

    try:
        return ExportConfig.model_validate(document["spec"])
    except ValidationError as e:
        raise ConfigError(f"Invalid mapping configuration in {path}: {e}") from e
