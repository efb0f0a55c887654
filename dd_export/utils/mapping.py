"""
Mapping Engine - Attribute Resolution and Row Projection

Turns semi-structured log records into flat CSV rows using the mapping rules
from the YAML configuration.

Path resolution descends through nested mappings. When a path runs into a
list of mappings part way through, the remaining path is searched inside the
list's elements ("deep search"), so `a.b` finds `b` in `{"a": [{"b": 1}]}`.

Usage:
    from dd_export.utils.mapping import RecordProjector

    projector = RecordProjector(config.mapping)
    header = projector.header()
    rows = projector.project(page.records)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

import orjson

from dd_export.utils.errors import (
    ExportError,
    FieldNotFound,
    NotASequence,
    ProjectionError,
    SerializationError,
)
from dd_export.utils.schemas import LogRecord, MappingRule

logger = logging.getLogger(__name__)

FIXED_COLUMNS = ("timestamp", "service", "status", "message", "attributes")

_MISSING = object()


def format_value(value: Any) -> str:
    """Render a resolved attribute as a CSV cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    return str(value)


def format_timestamp(ts: datetime | None) -> str:
    """Format a timestamp as RFC3339 in UTC with a trailing Z."""
    if ts is None:
        return ""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _lookup(node: Any, segments: Sequence[str]) -> Any:
    """Walk segments from node, searching list elements; _MISSING if no match."""
    for index, segment in enumerate(segments):
        if isinstance(node, list):
            rest = segments[index:]
            for element in node:
                found = _lookup(element, rest)
                if found is not _MISSING:
                    return found
            return _MISSING

        if not isinstance(node, dict) or segment not in node:
            return _MISSING
        node = node[segment]

    return node


def deep_search(attributes: dict[str, Any], path: str) -> Any:
    """
    Resolve a dotted path in a record's attributes.

    Args:
        attributes: Record attribute bag
        path: Dotted path such as "http.request.id"

    Returns:
        The raw value found at the path

    Raises:
        FieldNotFound: If no branch of the attributes contains the path
    """
    segments = path.split(".")
    node: Any = attributes

    for index, segment in enumerate(segments):
        if isinstance(node, list):
            found = _lookup(node, segments[index:])
            if found is _MISSING:
                raise FieldNotFound(path, segment)
            return found

        if not isinstance(node, dict) or segment not in node:
            raise FieldNotFound(path, segment)
        node = node[segment]

    return node


def expand_array(attributes: dict[str, Any], path: str) -> list[Any]:
    """
    Resolve an array-expansion path into one value per array element.

    The array is the longest proper prefix of the path that resolves to a
    list, found with the same deep search as scalar paths, so lists met on
    the way to it are searched rather than expanded. The remaining segments
    are read from every element. A path that resolves to a list as a whole,
    with no shorter prefix naming one, expands into the list's own elements.

    Args:
        attributes: Record attribute bag
        path: Dotted path such as "items.v" (array "items", element field "v")

    Returns:
        Values in element order

    Raises:
        FieldNotFound: If the array, or a field inside an element, is missing
        NotASequence: If no part of the path resolves to a list
    """
    segments = path.split(".")

    for split in range(len(segments) - 1, 0, -1):
        array = _lookup(attributes, segments[:split])
        if not isinstance(array, list):
            continue

        inner = ".".join(segments[split:])
        values = []
        for element in array:
            if not isinstance(element, dict):
                raise FieldNotFound(path, segments[split])
            values.append(deep_search(element, inner))
        return values

    value = deep_search(attributes, path)
    if not isinstance(value, list):
        raise NotASequence(path, value)
    return list(value)


def resolve_rule(rule: MappingRule, attributes: dict[str, Any]) -> list[str]:
    """
    Produce the output cells for one rule against one record.

    Scalar rules yield exactly one cell. Expansion rules yield one cell per
    array element, padded or truncated to `max_items` when it is set.
    """
    if not rule.is_expansion:
        return [format_value(deep_search(attributes, rule.source_path))]

    cells = [format_value(value) for value in expand_array(attributes, rule.inner_field)]
    if rule.max_items is not None:
        cells = cells[:rule.max_items] + [""] * (rule.max_items - len(cells))
    return cells


class RecordProjector:
    """
    Applies an ordered list of mapping rules to batches of log records.

    Every row starts with the fixed columns (timestamp, service, status,
    quoted message, attributes JSON) followed by the mapped columns in rule
    order.
    """

    def __init__(self, rules: Sequence[MappingRule]) -> None:
        self.rules = list(rules)

    def header(self) -> list[str]:
        """Column names; fixed-width expansion rules get name_1..name_N."""
        columns = list(FIXED_COLUMNS)
        for rule in self.rules:
            if rule.is_expansion and rule.max_items is not None:
                columns.extend(f"{rule.header_name}_{i}" for i in range(1, rule.max_items + 1))
            else:
                columns.append(rule.header_name)
        return columns

    def project_record(self, record: LogRecord) -> list[str]:
        """
        Project one record into an output row.

        Raises:
            SerializationError: If the attributes cannot be rendered as JSON
            ProjectionError: If any rule fails to resolve against the record
        """
        try:
            attributes_json = orjson.dumps(record.attributes, option=orjson.OPT_SORT_KEYS).decode("utf-8")
        except TypeError as e:
            raise SerializationError(f"cannot serialize attributes: {e}") from e

        message = f'"{record.message}"' if record.message is not None else '""'

        row = [
            format_timestamp(record.timestamp),
            record.service,
            record.status,
            message,
            attributes_json,
        ]

        # Rules may reference the message like any other attribute
        attributes = {**record.attributes, "message": message}

        for rule in self.rules:
            try:
                row.extend(resolve_rule(rule, attributes))
            except (FieldNotFound, NotASequence) as e:
                raise ProjectionError(e, rule=rule, record=record.model_dump(mode="json")) from e

        return row

    def project(self, records: Iterable[LogRecord]) -> list[list[str]]:
        """Project a batch; the first failing record aborts with ProjectionError."""
        return [self.project_record(record) for record in records]

    def suggest_expansion_widths(self, records: Iterable[LogRecord]) -> dict[str, int]:
        """
        Sample records and report the widest array seen per expansion rule.

        The result can be used as `max_items` to give every row the same
        width. Records where a rule does not resolve are ignored.
        """
        widths = {rule.header_name: 0 for rule in self.rules if rule.is_expansion}
        for record in records:
            for rule in self.rules:
                if not rule.is_expansion:
                    continue
                try:
                    count = len(expand_array(record.attributes, rule.inner_field))
                except ExportError:
                    logger.debug("Sample record does not resolve %s", rule.inner_field)
                    continue
                widths[rule.header_name] = max(widths[rule.header_name], count)
        return widths
