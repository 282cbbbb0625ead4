"""Immutable per-run map of node alias to response."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from waveflow.models import HttpResponse
from waveflow.resolver import parse_flow_path, resolve_flow_path


class FlowContext:
    """Responses of completed nodes, keyed by alias.

    Instances never change: ``add`` returns a new context. Alias matching is
    case-insensitive. The completion order is kept so that alias-less
    references (``$body.id``) pick the most recent response first.
    """

    __slots__ = ("_responses", "_order")

    def __init__(
        self,
        responses: Mapping[str, HttpResponse] | None = None,
        order: Iterable[str] = (),
    ) -> None:
        self._responses: Mapping[str, HttpResponse] = MappingProxyType(
            dict(responses or {})
        )
        self._order: tuple[str, ...] = tuple(order)

    @classmethod
    def empty(cls) -> FlowContext:
        return cls()

    def add(self, alias: str, response: HttpResponse) -> FlowContext:
        """Return a new context with ``alias`` bound to ``response``."""
        existing = self._canonical(alias)
        responses = dict(self._responses)
        order = [a for a in self._order if a != existing]
        if existing is not None:
            del responses[existing]
        responses[alias] = response
        order.append(alias)
        return FlowContext(responses, order)

    def get(self, alias: str) -> HttpResponse | None:
        key = self._canonical(alias)
        return self._responses[key] if key is not None else None

    @property
    def aliases(self) -> tuple[str, ...]:
        """Aliases in completion order."""
        return self._order

    def visible_to(self, aliases: Iterable[str]) -> FlowContext:
        """Copy restricted to ``aliases``."""
        allowed = {a.lower() for a in aliases}
        kept = [a for a in self._order if a.lower() in allowed]
        return FlowContext({a: self._responses[a] for a in kept}, kept)

    def lookup(self, name: str) -> str | None:
        """Resolve a flow reference such as ``auth.$body.token``."""
        parsed = parse_flow_path(name)
        if parsed is None:
            return None
        if parsed.alias is not None:
            response = self.get(parsed.alias)
            if response is None:
                return None
            return resolve_flow_path(response, parsed.section, parsed.path)
        for alias in reversed(self._order):
            value = resolve_flow_path(
                self._responses[alias], parsed.section, parsed.path
            )
            if value is not None:
                return value
        return None

    def to_variable_source(
        self, upstream_aliases: Iterable[str], referenced: Iterable[str]
    ) -> dict[str, str]:
        """Bindings for the referenced names, visible from upstream aliases only.

        Keys are the placeholder text as written, so the result can be layered
        directly over environment variables.
        """
        visible = self.visible_to(upstream_aliases)
        bindings: dict[str, str] = {}
        for name in referenced:
            value = visible.lookup(name)
            if value is not None:
                bindings[name] = value
        return bindings

    def _canonical(self, alias: str) -> str | None:
        if alias in self._responses:
            return alias
        lowered = alias.lower()
        for key in self._responses:
            if key.lower() == lowered:
                return key
        return None

    def __contains__(self, alias: object) -> bool:
        return isinstance(alias, str) and self._canonical(alias) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._responses)

    def __repr__(self) -> str:
        return f"FlowContext(aliases={list(self._order)!r})"
