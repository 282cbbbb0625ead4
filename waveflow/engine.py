"""WaveEngine: main entry point for running workspace flows."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from waveflow.catalog import RequestCatalog
from waveflow.config import Settings
from waveflow.context import FlowContext
from waveflow.environment import EnvironmentStore
from waveflow.exceptions import FlowValidationError
from waveflow.executor import FlowExecutor
from waveflow.loader import WorkspaceLoader
from waveflow.logger import get_logger
from waveflow.materializer import build_node_request
from waveflow.models import (
    Flow,
    FlowNodeStatus,
    FlowRunResult,
    HttpRequestConfig,
    RunOptions,
)
from waveflow.sinks import InMemoryRunStateSink, RunStateSink
from waveflow.transport import HttpExecutor, HttpxExecutor

log = get_logger(__name__)


class WaveEngine:
    """Loads a workspace and runs its flows, one executor per flow id."""

    def __init__(
        self,
        workspace_dir: str | Path,
        settings: Settings | None = None,
        sink: RunStateSink | None = None,
        http: HttpExecutor | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._loader = WorkspaceLoader(workspace_dir)
        self._sink = sink if sink is not None else InMemoryRunStateSink()
        self._http = http
        self._owns_http = http is None
        self._catalog = RequestCatalog()
        self._store = EnvironmentStore()
        self._executors: dict[str, FlowExecutor] = {}

    @property
    def sink(self) -> RunStateSink:
        return self._sink

    @property
    def loader(self) -> WorkspaceLoader:
        return self._loader

    # --- Lifecycle ---

    async def start(self) -> None:
        """Load the workspace and open the HTTP client."""
        self.refresh()
        if self._http is None:
            self._http = HttpxExecutor(
                timeout=self._settings.request_timeout,
                verify=self._settings.verify_ssl,
            )
        log.info("engine_started", workspace=str(self._loader.root))

    async def stop(self) -> None:
        """Close the HTTP client if the engine created it."""
        if self._owns_http and isinstance(self._http, HttpxExecutor):
            await self._http.aclose()
            self._http = None
        log.info("engine_stopped")

    async def __aenter__(self) -> WaveEngine:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    def refresh(self) -> None:
        """Re-read collections, environments, auths and shared rules from disk."""
        self._catalog.collections = self._loader.load_collections()
        self._store.environments = self._loader.load_environments()
        self._store.auths = self._loader.load_auths()
        self._store.validation_rules = self._loader.load_validation_rules()

    # --- Flows ---

    def list_flows(self) -> list[Flow]:
        return list(self._loader.load_all().values())

    def get_flow(self, flow_id: str) -> Flow:
        return self._loader.load(flow_id)

    def runner(self, flow_id: str) -> FlowExecutor:
        """The executor dedicated to ``flow_id``."""
        executor = self._executors.get(flow_id)
        if executor is None:
            if self._http is None:
                raise RuntimeError("Engine not started")
            executor = FlowExecutor(
                self._http,
                self._catalog,
                self._store,
                sink=self._sink,
                settings=self._settings,
            )
            self._executors[flow_id] = executor
        return executor

    # --- Execution ---

    async def run(
        self, flow_id: str, options: RunOptions | None = None
    ) -> FlowRunResult:
        """Run a flow by id and return the final result."""
        flow = self._loader.reload(flow_id)
        options = options or RunOptions(parallel=self._settings.parallel)
        return await self.runner(flow_id).run_flow(flow, options)

    def is_running(self, flow_id: str) -> bool:
        executor = self._executors.get(flow_id)
        return executor is not None and executor.is_running

    def cancel(self, flow_id: str) -> bool:
        """Request cancellation; returns False if the flow is not running."""
        if not self.is_running(flow_id):
            return False
        self._executors[flow_id].cancel_flow()
        return True

    def reset(self, flow_id: str) -> None:
        executor = self._executors.get(flow_id)
        if executor is not None:
            executor.reset_flow()
        else:
            self._sink.clear(flow_id)

    def preview_request(
        self, flow_id: str, node_id: str, options: RunOptions | None = None
    ) -> HttpRequestConfig:
        """Materialize one node against the responses of the last run.

        Raises ``RequestNotFoundError`` or ``UnresolvedVariablesError`` when
        the request cannot be built.
        """
        flow = self._loader.load(flow_id)
        node = next((n for n in flow.nodes if n.id == node_id), None)
        if node is None:
            raise FlowValidationError(flow_id, f"Unknown node: {node_id}")
        options = options or RunOptions()

        context = FlowContext.empty()
        executor = self._executors.get(flow_id)
        if executor is not None and executor.result is not None:
            completed = sorted(
                (
                    r
                    for r in executor.result.node_results.values()
                    if r.status == FlowNodeStatus.SUCCESS and r.response is not None
                ),
                key=lambda r: r.completed_at or r.started_at,
            )
            for node_result in completed:
                context = context.add(node_result.alias, node_result.response)

        return build_node_request(
            flow,
            node,
            context,
            catalog=self._catalog,
            store=self._store,
            environment_id=options.environment_id or flow.default_env_id,
            default_auth_id=options.default_auth_id or flow.default_auth_id,
            variables=options.variables,
        ).raise_for_error()
