"""Shared test fixtures for WaveFlow."""
import asyncio
import json
from pathlib import Path
from typing import Any, Callable

import pytest

from waveflow.catalog import RequestCatalog
from waveflow.config import Settings
from waveflow.environment import EnvironmentStore
from waveflow.models import (
    Collection,
    CollectionInfo,
    CollectionItem,
    Environment,
    Flow,
    HttpRequestConfig,
    HttpResponse,
    RequestTemplate,
)

# Path to test fixtures
FIXTURES_DIR = Path(__file__).parent / "fixtures"
WORKSPACE_DIR = FIXTURES_DIR / "workspace"


def _response(
    status: int = 200,
    body: Any = "",
    headers: dict[str, str] | None = None,
    status_text: str = "OK",
    elapsed: float = 5.0,
) -> HttpResponse:
    if not isinstance(body, str):
        body = json.dumps(body)
        headers = {"content-type": "application/json", **(headers or {})}
    return HttpResponse(
        id="resp",
        status=status,
        status_text=status_text,
        elapsed_time=elapsed,
        size=len(body),
        body=body,
        headers=headers or {},
    )


class FakeHttpExecutor:
    """Scripted HTTP capability keyed by request id.

    ``hold(request_id)`` returns an event that must be set before that
    request completes, which lets tests observe in-flight states.
    """

    def __init__(self) -> None:
        self.responses: dict[str, HttpResponse | Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[HttpRequestConfig] = []
        self.in_flight: set[str] = set()
        self.max_in_flight = 0

    def respond(self, request_id: str, outcome: HttpResponse | Exception) -> None:
        self.responses[request_id] = outcome

    def hold(self, request_id: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[request_id] = gate
        return gate

    def called_ids(self) -> list[str]:
        return [c.id for c in self.calls]

    async def execute(self, request: HttpRequestConfig) -> HttpResponse:
        self.calls.append(request)
        self.in_flight.add(request.id)
        self.max_in_flight = max(self.max_in_flight, len(self.in_flight))
        try:
            gate = self.gates.get(request.id)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(0)
            outcome = self.responses.get(request.id, _response())
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight.discard(request.id)


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to test fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def workspace_dir() -> Path:
    """Path to the sample workspace."""
    return WORKSPACE_DIR


@pytest.fixture
def make_response() -> Callable[..., HttpResponse]:
    """Factory for HttpResponse; non-string bodies are sent as JSON."""
    return _response


@pytest.fixture
def fake_http() -> FakeHttpExecutor:
    return FakeHttpExecutor()


@pytest.fixture
def settings() -> Settings:
    return Settings(idle_wait=0.001, max_idle_rounds=5)


@pytest.fixture
def make_catalog() -> Callable[[dict[str, Any]], RequestCatalog]:
    """Build a one-collection catalog from ``{item_id: url | request dict}``."""

    def _make(requests: dict[str, Any]) -> RequestCatalog:
        items = []
        for item_id, entry in requests.items():
            data = {"url": entry} if isinstance(entry, str) else dict(entry)
            data.setdefault("id", item_id)
            items.append(
                CollectionItem(
                    id=item_id,
                    name=item_id,
                    request=RequestTemplate.model_validate(data),
                )
            )
        return RequestCatalog(
            [Collection(info=CollectionInfo(name="test"), item=items, filename="test.json")]
        )

    return _make


@pytest.fixture
def make_flow() -> Callable[..., Flow]:
    """Build a flow from ``(id, request_id, alias)`` nodes and connector tuples.

    Connectors are ``(id, source, target)`` or ``(id, source, target, condition)``.
    """

    def _make(
        nodes: list[tuple[str, str, str]],
        connectors: list[tuple] | None = None,
        flow_id: str = "flow-1",
    ) -> Flow:
        return Flow.model_validate(
            {
                "id": flow_id,
                "name": flow_id,
                "nodes": [
                    {"id": n, "requestId": r, "alias": a} for n, r, a in nodes
                ],
                "connectors": [
                    {
                        "id": c[0],
                        "sourceNodeId": c[1],
                        "targetNodeId": c[2],
                        "condition": c[3] if len(c) > 3 else None,
                    }
                    for c in connectors or []
                ],
            }
        )

    return _make


@pytest.fixture
def empty_store() -> EnvironmentStore:
    return EnvironmentStore()


@pytest.fixture
def env_store() -> EnvironmentStore:
    return EnvironmentStore(
        [
            Environment.model_validate(
                {
                    "id": "g",
                    "name": "Global",
                    "values": [
                        {"key": "baseUrl", "value": "https://global.example.com"},
                        {"key": "token", "value": "global-token"},
                    ],
                }
            ),
            Environment.model_validate(
                {
                    "id": "dev",
                    "name": "Dev",
                    "values": [
                        {"key": "baseUrl", "value": "https://dev.example.com"},
                        {"key": "secret", "value": "hidden", "enabled": False},
                    ],
                }
            ),
        ]
    )


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Poll a predicate on the event loop until it holds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached before timeout")
            await asyncio.sleep(0.001)

    return _wait
