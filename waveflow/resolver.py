"""Placeholder resolution for ``{{name}}`` references.

Names are looked up in the environment variables first, then in the flow
context (``alias.$body.path`` style references to upstream responses). The
scan is single pass: text produced by a substitution is never rescanned, so
resolving an already-resolved string is a no-op.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NamedTuple

from waveflow.models import HttpResponse

if TYPE_CHECKING:
    from waveflow.context import FlowContext

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
_SEGMENT_RE = re.compile(r"\[(\d+)\]|([^.\[\]]+)")

_SECTIONS = {
    "body": "body",
    "headers": "headers",
    "header": "headers",
    "status": "status",
    "statustext": "statusText",
}


@dataclass(frozen=True)
class Resolution:
    resolved: str
    unresolved: list[str] = field(default_factory=list)
    resolved_from_flow: list[str] = field(default_factory=list)


class FlowPath(NamedTuple):
    """A parsed flow reference. ``alias`` is None for ``$body.x`` forms."""

    alias: str | None
    section: str
    path: list[str | int]


def extract_variables(text: str | None) -> list[str]:
    """Placeholder names in order of first appearance, without duplicates."""
    if not text:
        return []
    names: list[str] = []
    for match in PLACEHOLDER_RE.finditer(text):
        name = match.group(1).strip()
        if name not in names:
            names.append(name)
    return names


def has_unresolved_variables(text: str | None) -> bool:
    return bool(text) and PLACEHOLDER_RE.search(text) is not None


def split_path(text: str) -> list[str | int]:
    segments: list[str | int] = []
    for index, key in _SEGMENT_RE.findall(text):
        segments.append(int(index) if index else key)
    return segments


def _section_name(token: str) -> str | None:
    return _SECTIONS.get(token.lstrip("$").lower())


def parse_flow_path(name: str) -> FlowPath | None:
    """Parse ``alias.$body.a[0]``, ``alias.headers.x``, ``alias.a.b`` or ``$status``.

    Returns None for names that cannot be flow references (e.g. ``baseUrl``).
    """
    name = name.strip()
    if not name:
        return None

    if name.startswith("$"):
        head, _, rest = name.partition(".")
        section = _section_name(head)
        if section is None:
            return None
        return FlowPath(None, section, split_path(rest))

    alias, sep, rest = name.partition(".")
    if not sep or not alias or not rest:
        return None
    head, _, tail = rest.partition(".")
    section = _section_name(head) if "[" not in head else None
    if section is None:
        # alias.a.b is shorthand for alias.$body.a.b
        return FlowPath(alias, "body", split_path(rest))
    return FlowPath(alias, section, split_path(tail))


def _lookup_key(data: Mapping[str, Any], key: str) -> tuple[bool, Any]:
    if key in data:
        return True, data[key]
    lowered = key.lower()
    for candidate, value in data.items():
        if candidate.lower() == lowered:
            return True, value
    return False, None


def format_value(value: Any) -> str | None:
    """Render a JSON value as placeholder text."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def parse_json_body(response: HttpResponse) -> tuple[bool, Any]:
    """Parse a response body as JSON. Returns ``(ok, data)``."""
    if response.is_encoded or not response.body:
        return False, None
    try:
        return True, json.loads(response.body)
    except ValueError:
        return False, None


def resolve_flow_path(
    response: HttpResponse, section: str, path: list[str | int]
) -> str | None:
    """Extract a value from a response; None when the path does not exist."""
    if section == "status":
        return str(response.status) if not path else None
    if section == "statusText":
        return response.status_text if not path else None
    if section == "headers":
        if not path:
            return format_value(response.headers)
        if len(path) != 1 or not isinstance(path[0], str):
            return None
        found, value = _lookup_key(response.headers, path[0])
        return value if found else None

    if not path:
        return response.body
    ok, current = parse_json_body(response)
    if not ok:
        return None
    for segment in path:
        if isinstance(segment, int):
            if not isinstance(current, list) or segment >= len(current):
                return None
            current = current[segment]
        elif isinstance(current, dict):
            found, current = _lookup_key(current, segment)
            if not found:
                return None
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return format_value(current)


def _lookup_env(env_vars: Mapping[str, str], name: str) -> str | None:
    if name in env_vars:
        return env_vars[name]
    lowered = name.lower()
    for key, value in env_vars.items():
        if key.lower() == lowered:
            return value
    return None


def resolve(
    template: str | None,
    env_vars: Mapping[str, str] | None = None,
    flow_context: FlowContext | None = None,
) -> Resolution:
    """Substitute every ``{{name}}`` in ``template``.

    Unmatched placeholders are kept verbatim and reported once each, in order
    of first appearance.
    """
    if not template:
        return Resolution(template or "")
    env_vars = env_vars or {}
    unresolved: list[str] = []
    from_flow: list[str] = []

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1).strip()
        value = _lookup_env(env_vars, name)
        if value is None and flow_context is not None:
            value = flow_context.lookup(name)
            if value is not None and name not in from_flow:
                from_flow.append(name)
        if value is None:
            if name not in unresolved:
                unresolved.append(name)
            return match.group(0)
        return value

    resolved = PLACEHOLDER_RE.sub(_substitute, template)
    return Resolution(resolved, unresolved, from_flow)
