"""Destinations for live run state."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from waveflow.models import FlowRunState


class RunStateSink(Protocol):
    """Receives a snapshot after every observable change of a run."""

    def publish(self, flow_id: str, state: FlowRunState) -> None: ...

    def clear(self, flow_id: str) -> None: ...


class InMemoryRunStateSink:
    """Keeps the latest state per flow and, optionally, every snapshot."""

    def __init__(self, keep_history: bool = False) -> None:
        self._states: dict[str, FlowRunState] = {}
        self._history: dict[str, list[FlowRunState]] = {}
        self._keep_history = keep_history

    def publish(self, flow_id: str, state: FlowRunState) -> None:
        snapshot = state.model_copy(deep=True)
        self._states[flow_id] = snapshot
        if self._keep_history:
            self._history.setdefault(flow_id, []).append(snapshot)

    def clear(self, flow_id: str) -> None:
        self._states.pop(flow_id, None)
        self._history.pop(flow_id, None)

    def get(self, flow_id: str) -> FlowRunState | None:
        return self._states.get(flow_id)

    def history(self, flow_id: str) -> list[FlowRunState]:
        return list(self._history.get(flow_id, []))


class CallbackRunStateSink:
    """Forwards snapshots to a callable, e.g. a progress printer."""

    def __init__(self, callback: Callable[[str, FlowRunState], None]) -> None:
        self._callback = callback

    def publish(self, flow_id: str, state: FlowRunState) -> None:
        self._callback(flow_id, state.model_copy(deep=True))

    def clear(self, flow_id: str) -> None:
        return None
