"""WaveFlow: DAG runner for chained HTTP requests."""

from waveflow.engine import WaveEngine
from waveflow.exceptions import (
    FlowNotFoundError,
    FlowRunningError,
    FlowValidationError,
    HttpExecutionError,
    RequestNotFoundError,
    UnresolvedVariablesError,
    WaveFlowError,
    WorkspaceError,
)
from waveflow.executor import FlowExecutor
from waveflow.models import (
    Flow,
    FlowConnector,
    FlowNode,
    FlowNodeResult,
    FlowNodeStatus,
    FlowRunResult,
    FlowRunState,
    FlowRunStatus,
    HttpResponse,
    RunOptions,
    ValidationStatus,
)

__version__ = "0.1.0"

__all__ = [
    "Flow",
    "FlowConnector",
    "FlowExecutor",
    "FlowNode",
    "FlowNodeResult",
    "FlowNodeStatus",
    "FlowNotFoundError",
    "FlowRunResult",
    "FlowRunState",
    "FlowRunStatus",
    "FlowRunningError",
    "FlowValidationError",
    "HttpExecutionError",
    "HttpResponse",
    "RequestNotFoundError",
    "RunOptions",
    "UnresolvedVariablesError",
    "ValidationStatus",
    "WaveEngine",
    "WaveFlowError",
    "WorkspaceError",
    "__version__",
]
