"""Attribute-map parsing and dot-path flattening.

Activity metadata and tool details are stored as JSON text. They are parsed
with ``parse_or_raw`` (unparseable text degrades to a ``{"raw": text}`` map)
and flattened into ``"metadata.tool_input.file_path"``-style keys.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from claude_time.errors import MalformedAttributesError

# Leaf paths that can hold whole file contents; dropped unless asked for by name
LARGE_FIELDS = (
    "tool_detail.tool_response.originalFile",  # Edit tool - entire original file
    "tool_detail.tool_response.file.content",  # Read tool - entire file content
)


@dataclass(frozen=True)
class Parsed:
    """JSON text that parsed successfully."""

    value: Any

    def as_attributes(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Raw:
    """JSON text that could not be parsed, kept verbatim."""

    text: str

    def as_attributes(self) -> dict:
        return {"raw": self.text}


Attr = Parsed | Raw


def parse_or_raw(json_text: str | None) -> Attr | None:
    """Parse attribute JSON, wrapping unparseable text instead of raising.

    Returns None for missing or empty text.
    """
    if not json_text:
        return None
    try:
        return Parsed(json.loads(json_text))
    except (json.JSONDecodeError, TypeError, RecursionError):
        return Raw(json_text)


def flatten(attrs: Any, prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into a single-level dict of dot-joined paths.

    Only mappings are descended into. Lists, scalars and None are leaves. A
    non-mapping top-level value becomes a single leaf keyed by ``prefix``.

    Raises:
        MalformedAttributesError: if a mapping contains itself
    """
    result: dict[str, Any] = {}
    if not isinstance(attrs, Mapping):
        if prefix and attrs is not None:
            result[prefix] = attrs
        return result
    _flatten_into(attrs, prefix, result, set())
    return result


def _flatten_into(node: Mapping, prefix: str, result: dict, ancestors: set[int]) -> None:
    if id(node) in ancestors:
        raise MalformedAttributesError(f"Cyclic attribute map at '{prefix or '<root>'}'")
    ancestors.add(id(node))
    try:
        for key, value in node.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(value, Mapping):
                _flatten_into(value, path, result, ancestors)
            else:
                result[path] = value
    except RecursionError as e:
        raise MalformedAttributesError(f"Attribute map nested too deeply at '{prefix}'") from e
    finally:
        ancestors.discard(id(node))


def project(record: dict[str, Any], fields: Sequence[str] | None = None) -> dict[str, Any]:
    """Apply default exclusions, or restrict a flat record to requested fields.

    With an explicit field list the output holds exactly those requested keys
    present in the record, in the requested order; unknown names are skipped
    and no exclusions apply. Without one, ``LARGE_FIELDS`` are removed.
    """
    if fields:
        return {name: record[name] for name in fields if name in record}
    return {key: value for key, value in record.items() if key not in LARGE_FIELDS}
