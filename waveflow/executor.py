"""Continuous-dispatch scheduler for flow runs."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from waveflow.catalog import RequestCatalog
from waveflow.conditions import evaluate_connector, is_success_status
from waveflow.config import Settings
from waveflow.context import FlowContext
from waveflow.environment import EnvironmentStore
from waveflow.exceptions import FlowRunningError
from waveflow.graph import FlowGraph, validate_flow
from waveflow.logger import get_logger
from waveflow.materializer import build_node_request
from waveflow.models import (
    Flow,
    FlowNode,
    FlowNodeResult,
    FlowNodeStatus,
    FlowRunResult,
    FlowRunState,
    FlowRunStatus,
    RunOptions,
    RunProgress,
)
from waveflow.sinks import RunStateSink
from waveflow.transport import HttpExecutor
from waveflow.validation import derive_validation_status, execute_validation

log = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _append_unique(target: list[str], items: list[str]) -> None:
    for item in items:
        if item not in target:
            target.append(item)


class FlowExecutor:
    """Runs flows node by node as soon as their dependencies allow.

    The scheduling loop is the only writer of run state. Node tasks receive
    an immutable context snapshot and return a fresh ``FlowNodeResult``;
    the loop records it, folds the response into the next context and
    publishes progress.
    """

    def __init__(
        self,
        http: HttpExecutor,
        catalog: RequestCatalog,
        store: EnvironmentStore,
        sink: RunStateSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._http = http
        self._catalog = catalog
        self._store = store
        self._sink = sink
        self._settings = settings or Settings()
        self._result: FlowRunResult | None = None
        self._running_node_ids: dict[str, None] = {}
        self._is_running = False
        self._cancel_requested = False
        self._flow_id: str | None = None

    # --- State ---

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def result(self) -> FlowRunResult | None:
        return self._result

    @property
    def state(self) -> FlowRunState:
        return FlowRunState(
            is_running=self._is_running,
            result=self._result,
            running_node_ids=list(self._running_node_ids),
        )

    def get_node_result(self, node_id: str) -> FlowNodeResult | None:
        if self._result is None:
            return None
        return self._result.node_results.get(node_id)

    # --- Control ---

    def cancel_flow(self) -> None:
        """Stop dispatching; in-flight nodes finish and are recorded."""
        if not self._is_running:
            return
        self._cancel_requested = True
        log.info("flow_cancel_requested", flow_id=self._flow_id)

    def reset_flow(self) -> None:
        """Forget the last run and clear it from the sink."""
        if self._is_running:
            raise FlowRunningError(self._flow_id or "", "Cannot reset a running flow")
        self._result = None
        self._running_node_ids.clear()
        if self._sink is not None and self._flow_id is not None:
            self._sink.clear(self._flow_id)

    # --- Execution ---

    async def run_flow(
        self, flow: Flow, options: RunOptions | None = None
    ) -> FlowRunResult:
        """Execute a flow to completion, failure or cancellation."""
        if self._is_running:
            raise FlowRunningError(flow.id)
        options = options or RunOptions(parallel=self._settings.parallel)
        self._flow_id = flow.id
        self._cancel_requested = False
        self._running_node_ids.clear()

        self._result = FlowRunResult(
            flow_id=flow.id,
            status=FlowRunStatus.RUNNING,
            node_results={
                node.id: FlowNodeResult(
                    node_id=node.id, request_id=node.request_id, alias=node.alias
                )
                for node in flow.nodes
            },
            progress=RunProgress(total=len(flow.nodes)),
            started_at=_now(),
        )

        errors = validate_flow(flow)
        if errors:
            log.warning("flow_invalid", flow_id=flow.id, errors=errors)
            self._result.status = FlowRunStatus.FAILED
            self._result.error = f"Invalid flow: {'; '.join(errors)}"
            self._result.completed_at = _now()
            self._publish()
            return self._result

        graph = FlowGraph(flow)
        order = graph.topological_order() or []
        log.info(
            "flow_started",
            flow_id=flow.id,
            nodes=len(flow.nodes),
            parallel=options.parallel,
        )

        self._is_running = True
        self._publish()
        try:
            await self._schedule(flow, graph, order, options)
        finally:
            self._is_running = False
            self._running_node_ids.clear()

        self._finish()
        self._publish()
        return self._result

    async def _schedule(
        self,
        flow: Flow,
        graph: FlowGraph,
        order: list[FlowNode],
        options: RunOptions,
    ) -> None:
        result = self._result
        assert result is not None
        context = FlowContext.empty()
        pending: list[FlowNode] = list(order)
        in_flight: dict[asyncio.Task[FlowNodeResult], str] = {}
        stopped = False
        idle_rounds = 0

        try:
            while pending or in_flight:
                if self._cancel_requested:
                    stopped = True

                if not stopped:
                    ready, changed = self._scan(graph, pending)
                    for node, active, inactive in ready:
                        if not options.parallel and in_flight:
                            break
                        _append_unique(result.skipped_connector_ids, inactive)
                        _append_unique(result.active_connector_ids, active)
                        pending.remove(node)
                        in_flight[self._dispatch(flow, graph, node, context, options)] = node.id
                        changed = True
                    if changed:
                        self._publish()

                if not in_flight:
                    if stopped or not pending:
                        break
                    idle_rounds += 1
                    if idle_rounds > self._settings.max_idle_rounds:
                        self._abandon(pending)
                        break
                    await asyncio.sleep(self._settings.idle_wait)
                    continue
                idle_rounds = 0

                done, _ = await asyncio.wait(
                    in_flight.keys(), return_when=asyncio.FIRST_COMPLETED
                )
                for task in [t for t in in_flight if t in done]:
                    node_id = in_flight.pop(task)
                    node_result = task.result()
                    result.node_results[node_id] = node_result
                    self._running_node_ids.pop(node_id, None)
                    if node_result.status == FlowNodeStatus.SUCCESS and node_result.response:
                        context = context.add(node_result.alias, node_result.response)
                    elif node_result.status == FlowNodeStatus.FAILED:
                        stopped = True
                    log.info(
                        "node_completed",
                        flow_id=flow.id,
                        node_id=node_id,
                        status=node_result.status.value,
                        error=node_result.error,
                    )
                    self._publish()
        finally:
            for task in in_flight:
                task.cancel()

    def _scan(
        self, graph: FlowGraph, pending: list[FlowNode]
    ) -> tuple[list[tuple[FlowNode, list[str], list[str]]], bool]:
        """Find ready nodes in topological order, skipping unreachable ones.

        Ready nodes come with their active and inactive connector ids, which
        are recorded only once the node is dispatched. Skips cascade within
        one scan: a skipped node is terminal before any of its dependents are
        visited.
        """
        result = self._result
        assert result is not None
        ready: list[tuple[FlowNode, list[str], list[str]]] = []
        changed = False
        for node in list(pending):
            incoming = graph.incoming_connectors(node.id)
            if not incoming:
                ready.append((node, [], []))
                continue
            sources = [result.node_results[c.source_node_id] for c in incoming]
            if not all(source.is_terminal for source in sources):
                continue
            active = [
                c.id for c, source in zip(incoming, sources)
                if evaluate_connector(c, source)
            ]
            inactive = [c.id for c in incoming if c.id not in active]
            if active:
                ready.append((node, active, inactive))
                continue
            _append_unique(result.skipped_connector_ids, inactive)
            pending.remove(node)
            result.node_results[node.id] = result.node_results[node.id].model_copy(
                update={"status": FlowNodeStatus.SKIPPED, "completed_at": _now()}
            )
            changed = True
            log.info("node_skipped", flow_id=graph.flow.id, node_id=node.id)
        return ready, changed

    def _dispatch(
        self,
        flow: Flow,
        graph: FlowGraph,
        node: FlowNode,
        context: FlowContext,
        options: RunOptions,
    ) -> asyncio.Task[FlowNodeResult]:
        result = self._result
        assert result is not None
        running = result.node_results[node.id].model_copy(
            update={"status": FlowNodeStatus.RUNNING, "started_at": _now()}
        )
        result.node_results[node.id] = running
        self._running_node_ids[node.id] = None
        log.debug("node_dispatched", flow_id=flow.id, node_id=node.id)
        return asyncio.create_task(
            self._run_node(flow, graph, node, context, options, running),
            name=f"flow-node-{node.id}",
        )

    async def _run_node(
        self,
        flow: Flow,
        graph: FlowGraph,
        node: FlowNode,
        context: FlowContext,
        options: RunOptions,
        running: FlowNodeResult,
    ) -> FlowNodeResult:
        """Materialize and send one request. Failures are returned, not raised."""
        materialized = build_node_request(
            flow,
            node,
            context,
            catalog=self._catalog,
            store=self._store,
            environment_id=options.environment_id or flow.default_env_id,
            default_auth_id=options.default_auth_id or flow.default_auth_id,
            variables=options.variables,
            graph=graph,
        )
        if materialized.config is None:
            return running.model_copy(
                update={
                    "status": FlowNodeStatus.FAILED,
                    "error": materialized.error,
                    "completed_at": _now(),
                }
            )

        config = materialized.config
        try:
            response = await self._http.execute(config)
        except Exception as exc:
            log.warning("node_request_failed", node_id=node.id, error=str(exc))
            return running.model_copy(
                update={
                    "status": FlowNodeStatus.FAILED,
                    "error": str(exc) or type(exc).__name__,
                    "resolved_flow_params": config.resolved_flow_params or None,
                    "completed_at": _now(),
                }
            )

        outcome = execute_validation(
            config.validation, response, self._store.shared_rules(), materialized.variables
        )
        if outcome is not None:
            response = response.model_copy(update={"validation_result": outcome})

        succeeded = is_success_status(response.status)
        return running.model_copy(
            update={
                "status": FlowNodeStatus.SUCCESS if succeeded else FlowNodeStatus.FAILED,
                "response": response,
                "error": None
                if succeeded
                else f"HTTP {response.status} {response.status_text}".strip(),
                "resolved_flow_params": config.resolved_flow_params or None,
                "completed_at": _now(),
            }
        )

    def _abandon(self, pending: list[FlowNode]) -> None:
        result = self._result
        assert result is not None
        log.warning(
            "flow_dependencies_unresolved",
            flow_id=result.flow_id,
            node_ids=[n.id for n in pending],
        )
        for node in pending:
            result.node_results[node.id] = result.node_results[node.id].model_copy(
                update={
                    "status": FlowNodeStatus.SKIPPED,
                    "error": "Dependencies never resolved",
                    "completed_at": _now(),
                }
            )
        pending.clear()

    def _refresh_progress(self) -> None:
        result = self._result
        assert result is not None
        statuses = [r.status for r in result.node_results.values()]
        succeeded = statuses.count(FlowNodeStatus.SUCCESS)
        failed = statuses.count(FlowNodeStatus.FAILED)
        skipped = statuses.count(FlowNodeStatus.SKIPPED)
        result.progress = RunProgress(
            total=len(statuses),
            completed=succeeded + failed + skipped,
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
        )

    def _finish(self) -> None:
        result = self._result
        assert result is not None
        self._refresh_progress()
        if result.progress.failed:
            result.status = FlowRunStatus.FAILED
            result.error = f"{result.progress.failed} node(s) failed"
        elif self._cancel_requested:
            result.status = FlowRunStatus.CANCELLED
            result.error = "Flow was cancelled"
        else:
            result.status = FlowRunStatus.SUCCESS
        result.validation_status = derive_validation_status(result.node_results.values())
        result.completed_at = _now()
        log.info(
            "flow_completed",
            flow_id=result.flow_id,
            status=result.status.value,
            succeeded=result.progress.succeeded,
            failed=result.progress.failed,
            skipped=result.progress.skipped,
        )

    def _publish(self) -> None:
        if self._result is None:
            return
        self._refresh_progress()
        if self._sink is not None:
            self._sink.publish(self._result.flow_id, self.state)
