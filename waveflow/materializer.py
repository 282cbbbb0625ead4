"""Turns a flow node into an executable request."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from waveflow.catalog import RequestCatalog
from waveflow.context import FlowContext
from waveflow.environment import EnvironmentStore
from waveflow.exceptions import RequestNotFoundError, UnresolvedVariablesError
from waveflow.graph import FlowGraph
from waveflow.logger import get_logger
from waveflow.models import (
    Flow,
    FlowNode,
    FormDataBody,
    HttpRequestConfig,
    KeyValueRow,
    RawBody,
    RequestTemplate,
    UrlEncodedBody,
)
from waveflow.resolver import extract_variables, resolve

log = get_logger(__name__)

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

RAW_CONTENT_TYPES = {
    "json": "application/json",
    "xml": "application/xml",
    "html": "text/html",
    "text": "text/plain",
    "csv": "text/csv",
    "javascript": "application/javascript",
}


@dataclass
class MaterializedRequest:
    """Either a request ready to send or the reason it could not be built."""

    config: HttpRequestConfig | None = None
    error: str | None = None
    unresolved: list[str] = field(default_factory=list)
    reference_id: str | None = None
    variables: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.config is not None

    def raise_for_error(self) -> HttpRequestConfig:
        """Return the config or raise the matching lookup/resolution error."""
        if self.config is not None:
            return self.config
        if self.unresolved:
            raise UnresolvedVariablesError(self.unresolved)
        raise RequestNotFoundError(self.reference_id or "")


def _enabled(rows: list[KeyValueRow]) -> list[KeyValueRow]:
    return [r for r in rows if not r.disabled and r.key.strip()]


def referenced_variables(template: RequestTemplate) -> list[str]:
    """Every placeholder name used anywhere in a request template."""
    texts: list[str | None] = [template.raw_url]
    for row in _enabled(template.header) + _enabled(template.query_rows):
        texts.extend((row.key, row.value))
    body = template.body
    if isinstance(body, RawBody):
        texts.append(body.raw)
    elif isinstance(body, UrlEncodedBody):
        for row in _enabled(body.urlencoded):
            texts.extend((row.key, row.value))
    elif isinstance(body, FormDataBody):
        for row in _enabled(body.formdata):
            texts.extend((row.key, row.value))

    names: list[str] = []
    for text in texts:
        for name in extract_variables(text):
            if name not in names:
                names.append(name)
    return names


def _strip_query(url: str) -> str:
    base, sep, rest = url.partition("?")
    if not sep:
        return url
    _, hash_sep, fragment = rest.partition("#")
    return base + (hash_sep + fragment if hash_sep else "")


def content_type_for(template: RequestTemplate) -> str | None:
    body = template.body
    if isinstance(body, RawBody):
        return RAW_CONTENT_TYPES.get(body.language or "", "text/plain")
    if isinstance(body, UrlEncodedBody):
        return "application/x-www-form-urlencoded"
    # multipart boundaries are added by the HTTP client
    return None


class _Resolver:
    """Resolves parts of one request and accumulates what stays unresolved."""

    def __init__(self, env_vars: Mapping[str, str]) -> None:
        self.env_vars = env_vars
        self.unresolved: list[str] = []

    def __call__(self, text: str | None) -> str:
        result = resolve(text or "", self.env_vars)
        for name in result.unresolved:
            if name not in self.unresolved:
                self.unresolved.append(name)
        return result.resolved

    def rows(self, rows: list[KeyValueRow]) -> list[tuple[str, str]]:
        return [(self(r.key), self(r.value)) for r in _enabled(rows)]


def build_node_request(
    flow: Flow,
    node: FlowNode,
    flow_context: FlowContext,
    *,
    catalog: RequestCatalog,
    store: EnvironmentStore,
    environment_id: str | None = None,
    default_auth_id: str | None = None,
    variables: Mapping[str, str] | None = None,
    graph: FlowGraph | None = None,
) -> MaterializedRequest:
    """Resolve a node's request template against environments and upstream responses.

    Only aliases of nodes with a path to ``node`` are visible; references to
    any other alias are reported as unresolved. Every unresolved name across
    URL, headers, query and body is listed in a single error.
    """
    lookup = catalog.find(node.request_id)
    if lookup is None:
        return MaterializedRequest(
            error=f"Request not found: {node.request_id}",
            reference_id=node.request_id,
        )
    template = lookup.request

    graph = graph or FlowGraph(flow)
    upstream = graph.upstream_aliases(node.id)
    bindings = flow_context.to_variable_source(upstream, referenced_variables(template))
    overrides = dict(variables or {})
    overrides.update(bindings)
    env_vars = store.variables(environment_id, overrides)

    resolve_part = _Resolver(env_vars)

    url = resolve_part(template.raw_url).strip()
    if url and not _SCHEME_RE.match(url):
        url = f"https://{url}"

    headers: dict[str, str | list[str]] = {}
    for key, value in resolve_part.rows(template.header):
        existing = headers.get(key)
        if existing is None:
            headers[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            headers[key] = [existing, value]

    query_rows = template.query_rows
    params = resolve_part.rows(query_rows)
    if params:
        # query rows are authoritative when present
        url = _strip_query(url)

    body = template.body
    body_mode = body.mode if body is not None else "none"
    raw_body: str | None = None
    form: list[tuple[str, str]] = []
    if isinstance(body, RawBody):
        raw_body = resolve_part(body.raw)
    elif isinstance(body, UrlEncodedBody):
        form = resolve_part.rows(body.urlencoded)
    elif isinstance(body, FormDataBody):
        form = resolve_part.rows(body.formdata)

    if body_mode != "none" and not any(k.lower() == "content-type" for k in headers):
        content_type = content_type_for(template)
        if content_type:
            headers["Content-Type"] = content_type

    if resolve_part.unresolved:
        names = resolve_part.unresolved
        log.debug("request_unresolved", node_id=node.id, names=names)
        return MaterializedRequest(
            error=f"Unresolved placeholders: {', '.join(names)}",
            unresolved=list(names),
        )

    auth_id = template.auth_id or default_auth_id
    auth = store.auth_for_request(auth_id, url)

    config = HttpRequestConfig(
        id=template.id or lookup.item.id,
        method=(template.method or "GET").upper(),
        url=url,
        headers=headers,
        params=params,
        body_mode=body_mode,
        body=raw_body,
        form=form,
        auth=auth,
        resolved_flow_params=bindings,
        validation=template.validation,
    )
    return MaterializedRequest(config=config, variables=env_vars)
