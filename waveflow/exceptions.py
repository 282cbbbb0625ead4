"""WaveFlow exception hierarchy."""


class WaveFlowError(Exception):
    """Base exception for all WaveFlow errors."""


class FlowNotFoundError(WaveFlowError):
    """Raised when a flow cannot be found in the workspace."""

    def __init__(self, flow_id: str) -> None:
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")


class FlowValidationError(WaveFlowError):
    """Raised when a flow document fails schema or structural validation."""

    def __init__(self, flow_id: str, detail: str) -> None:
        self.flow_id = flow_id
        self.detail = detail
        super().__init__(f"Flow validation error in '{flow_id}': {detail}")


class FlowRunningError(WaveFlowError):
    """Raised when an operation conflicts with a run in progress."""

    def __init__(self, flow_id: str, detail: str = "Flow is already running") -> None:
        self.flow_id = flow_id
        self.detail = detail
        super().__init__(f"{detail}: {flow_id}")


class RequestNotFoundError(WaveFlowError):
    """Raised when a node's request reference matches no catalog entry."""

    def __init__(self, reference_id: str) -> None:
        self.reference_id = reference_id
        super().__init__(f"Request not found: {reference_id}")


class UnresolvedVariablesError(WaveFlowError):
    """Raised when placeholders remain after resolution."""

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(f"Unresolved placeholders: {', '.join(names)}")


class HttpExecutionError(WaveFlowError):
    """Raised when a request cannot be sent or no response arrives."""

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        self.detail = detail
        super().__init__(f"Request to {url} failed: {detail}")


class WorkspaceError(WaveFlowError):
    """Raised on unreadable or invalid workspace documents."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Invalid workspace file '{path}': {detail}")
