"""All Pydantic models for WaveFlow."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WaveModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Operators shared by connector conditions and validation rules ---

NumericOperator = Literal[
    "equals",
    "not_equals",
    "greater_than",
    "greater_than_or_equal",
    "less_than",
    "less_than_or_equal",
    "between",
    "in",
    "not_in",
]

StatusOperator = Literal[
    "equals",
    "not_equals",
    "greater_than",
    "greater_than_or_equal",
    "less_than",
    "less_than_or_equal",
    "between",
    "in",
    "not_in",
    "is_success",
    "is_not_success",
]

TextOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "matches_regex",
    "in",
    "not_in",
]

HeaderOperator = Literal[
    "exists",
    "not_exists",
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "matches_regex",
    "in",
    "not_in",
]

BodyOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "matches_regex",
    "in",
    "not_in",
    "is_json",
    "is_xml",
    "is_html",
    "json_path_equals",
    "json_path_contains",
    "json_path_exists",
    "json_schema_matches",
]

# older connector spellings
_BODY_OPERATOR_ALIASES = {
    "matches": "matches_regex",
    "path_equals": "json_path_equals",
    "path_exists": "json_path_exists",
    "path_contains": "json_path_contains",
}


# --- Connector conditions ---


class AnyCondition(WaveModel):
    """Always true once the source has executed."""

    kind: Literal["any"] = "any"


class SuccessCondition(WaveModel):
    """Source succeeded with a 2xx/3xx response."""

    kind: Literal["success"] = "success"


class FailureCondition(WaveModel):
    """Source failed or answered outside 200-399."""

    kind: Literal["failure"] = "failure"


class ValidationPassCondition(WaveModel):
    """Source response carries a validation result with every rule passed."""

    kind: Literal["validation_pass"] = "validation_pass"


class ValidationFailCondition(WaveModel):
    """Source response carries a validation result with a failed rule."""

    kind: Literal["validation_fail"] = "validation_fail"


class StatusCondition(WaveModel):
    """``in_range`` uses ``min``/``max``; ``between`` uses ``value``/``value2``."""

    kind: Literal["status"] = "status"
    operator: Literal[StatusOperator, "in_range"] = "equals"
    value: int | None = None
    value2: int | None = None
    values: list[int] | None = None
    min: int | None = None
    max: int | None = None


class HeaderCondition(WaveModel):
    kind: Literal["header"] = "header"
    name: str
    operator: HeaderOperator = "exists"
    value: str | None = None
    values: list[str] | None = None
    case_sensitive: bool = True


class BodyCondition(WaveModel):
    kind: Literal["body"] = "body"
    operator: BodyOperator = "contains"
    value: str | None = None
    path: str | None = None
    case_sensitive: bool = True

    @field_validator("operator", mode="before")
    @classmethod
    def _legacy_operator(cls, value: Any) -> Any:
        return _BODY_OPERATOR_ALIASES.get(value, value)


class TimeCondition(WaveModel):
    kind: Literal["time"] = "time"
    operator: NumericOperator = "less_than"
    value: float
    value2: float | None = None


ConnectorCondition = Annotated[
    Union[
        AnyCondition,
        SuccessCondition,
        FailureCondition,
        ValidationPassCondition,
        ValidationFailCondition,
        StatusCondition,
        HeaderCondition,
        BodyCondition,
        TimeCondition,
    ],
    Field(discriminator="kind"),
]


# --- Response validation rules ---


class ValidationRuleBase(WaveModel):
    id: str
    name: str = ""
    description: str | None = None
    enabled: bool = True


class StatusRule(ValidationRuleBase):
    category: Literal["status"] = "status"
    operator: StatusOperator = "equals"
    value: float | str | None = None
    value2: float | str | None = None
    values: list[float | str] | None = None


class HeaderRule(ValidationRuleBase):
    category: Literal["header"] = "header"
    header_name: str
    operator: HeaderOperator = "exists"
    value: str | None = None
    values: list[str] | None = None
    case_sensitive: bool = False


class BodyRule(ValidationRuleBase):
    category: Literal["body"] = "body"
    operator: BodyOperator = "contains"
    value: str | None = None
    json_path: str | None = None
    case_sensitive: bool = False


class TimeRule(ValidationRuleBase):
    category: Literal["time"] = "time"
    operator: NumericOperator = "less_than"
    value: float | str | None = None
    value2: float | str | None = None


ValidationRule = Annotated[
    Union[StatusRule, HeaderRule, BodyRule, TimeRule],
    Field(discriminator="category"),
]


class ValidationRuleRef(WaveModel):
    """Either an inline ``rule`` or the ``rule_id`` of a shared workspace rule."""

    rule_id: str | None = None
    rule: ValidationRule | None = None


class RequestValidation(WaveModel):
    enabled: bool = True
    rules: list[ValidationRuleRef] = Field(default_factory=list)


class ValidationRuleResult(WaveModel):
    rule_id: str
    rule_name: str = ""
    category: str
    passed: bool
    message: str
    expected: str | None = None
    actual: str | None = None
    error: str | None = None


class ValidationResult(WaveModel):
    enabled: bool = True
    total_rules: int = 0
    passed_rules: int = 0
    failed_rules: int = 0
    all_passed: bool = True
    results: list[ValidationRuleResult] = Field(default_factory=list)
    executed_at: datetime | None = None


class ValidationStatus(str, Enum):
    IDLE = "idle"
    PASS = "pass"
    FAIL = "fail"


# --- Flow definition ---


class NodePosition(WaveModel):
    x: float = 0
    y: float = 0


class FlowNode(WaveModel):
    """A node referencing a request template by id."""

    id: str
    request_id: str
    alias: str
    name: str | None = None
    method: str | None = None
    position: NodePosition | None = None


class FlowConnector(WaveModel):
    """Directed edge; a missing condition means unconditional."""

    id: str
    source_node_id: str
    target_node_id: str
    condition: ConnectorCondition | None = None

    @field_validator("condition", mode="before")
    @classmethod
    def _coerce_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"kind": value}
        return value


class Flow(WaveModel):
    """A complete flow definition."""

    id: str
    name: str
    description: str | None = None
    nodes: list[FlowNode] = Field(default_factory=list)
    connectors: list[FlowConnector] = Field(default_factory=list)
    default_env_id: str | None = None
    default_auth_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


# --- HTTP ---


class HttpResponse(WaveModel):
    """Response returned by the HTTP execution capability."""

    id: str
    status: int
    status_text: str = ""
    elapsed_time: float = 0
    size: int = 0
    body: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    is_encoded: bool = False
    validation_result: ValidationResult | None = None


class HttpRequestConfig(WaveModel):
    """A fully materialized request ready to send."""

    id: str
    method: str = "GET"
    url: str
    headers: dict[str, str | list[str]] = Field(default_factory=dict)
    params: list[tuple[str, str]] = Field(default_factory=list)
    body_mode: Literal["none", "raw", "urlencoded", "formdata"] = "none"
    body: str | None = None
    form: list[tuple[str, str]] = Field(default_factory=list)
    auth: Auth | None = None
    resolved_flow_params: dict[str, str] = Field(default_factory=dict)
    validation: RequestValidation | None = None


# --- Request templates ---


class KeyValueRow(WaveModel):
    id: str | None = None
    key: str = ""
    value: str | None = ""
    disabled: bool = False


class RawLanguage(WaveModel):
    language: Literal["json", "xml", "html", "text", "csv", "javascript"] | None = None


class RawOptions(WaveModel):
    raw: RawLanguage | None = None


class NoBody(WaveModel):
    mode: Literal["none"] = "none"


class RawBody(WaveModel):
    mode: Literal["raw"] = "raw"
    raw: str = ""
    options: RawOptions | None = None

    @property
    def language(self) -> str | None:
        if self.options and self.options.raw:
            return self.options.raw.language
        return None


class UrlEncodedBody(WaveModel):
    mode: Literal["urlencoded"] = "urlencoded"
    urlencoded: list[KeyValueRow] = Field(default_factory=list)


class FormDataBody(WaveModel):
    mode: Literal["formdata"] = "formdata"
    formdata: list[KeyValueRow] = Field(default_factory=list)


RequestBody = Annotated[
    Union[NoBody, RawBody, UrlEncodedBody, FormDataBody],
    Field(discriminator="mode"),
]


class CollectionUrl(WaveModel):
    raw: str = ""
    query: list[KeyValueRow] = Field(default_factory=list)


class RequestTemplate(WaveModel):
    """A request as stored in a collection, before resolution."""

    id: str | None = None
    name: str | None = None
    method: str = "GET"
    url: str | CollectionUrl = ""
    query: list[KeyValueRow] | None = None
    header: list[KeyValueRow] = Field(default_factory=list)
    body: RequestBody | None = None
    auth_id: str | None = None
    validation: RequestValidation | None = None

    @property
    def raw_url(self) -> str:
        if isinstance(self.url, CollectionUrl):
            return self.url.raw
        return self.url

    @property
    def query_rows(self) -> list[KeyValueRow]:
        if self.query is not None:
            return self.query
        if isinstance(self.url, CollectionUrl):
            return self.url.query
        return []


class CollectionItem(WaveModel):
    """A request or a folder of further items."""

    id: str
    name: str = ""
    request: RequestTemplate | None = None
    item: list[CollectionItem] | None = None


class CollectionInfo(WaveModel):
    name: str = ""
    description: str | None = None
    version: str | None = None


class Collection(WaveModel):
    info: CollectionInfo = Field(default_factory=CollectionInfo)
    item: list[CollectionItem] = Field(default_factory=list)
    filename: str | None = None


# --- Environments and auth ---


class EnvironmentVariable(WaveModel):
    key: str
    value: str = ""
    type: Literal["default", "secret"] = "default"
    enabled: bool = True


class Environment(WaveModel):
    id: str
    name: str
    values: list[EnvironmentVariable] = Field(default_factory=list)


class AuthBase(WaveModel):
    id: str
    name: str = ""
    enabled: bool = True
    domain_filters: list[str] = Field(default_factory=list)
    expiry_date: datetime | None = None
    base64_encode: bool = False


class ApiKeyAuth(AuthBase):
    type: Literal["apiKey"] = "apiKey"
    key: str
    value: str
    send_in: Literal["header", "query"] = "header"
    prefix: str | None = None


class BasicAuth(AuthBase):
    type: Literal["basic"] = "basic"
    username: str
    password: str = ""


class DigestAuth(AuthBase):
    type: Literal["digest"] = "digest"
    username: str
    password: str = ""


class OAuth2RefreshAuth(AuthBase):
    type: Literal["oauth2Refresh"] = "oauth2Refresh"
    token_url: str
    client_id: str
    client_secret: str | None = None
    refresh_token: str
    scope: str | None = None
    access_token: str | None = None
    token_expires_at: datetime | None = None


Auth = Annotated[
    Union[ApiKeyAuth, BasicAuth, DigestAuth, OAuth2RefreshAuth],
    Field(discriminator="type"),
]


# --- Execution models ---


class FlowNodeStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_NODE_STATUSES = frozenset(
    {FlowNodeStatus.SUCCESS, FlowNodeStatus.FAILED, FlowNodeStatus.SKIPPED}
)


class FlowRunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FlowNodeResult(WaveModel):
    """Per-node outcome within one run."""

    node_id: str
    request_id: str
    alias: str
    status: FlowNodeStatus = FlowNodeStatus.IDLE
    response: HttpResponse | None = None
    error: str | None = None
    resolved_flow_params: dict[str, str] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_NODE_STATUSES


class RunProgress(WaveModel):
    total: int = 0
    completed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class FlowRunResult(WaveModel):
    """Aggregate outcome of one flow run."""

    flow_id: str
    status: FlowRunStatus = FlowRunStatus.IDLE
    node_results: dict[str, FlowNodeResult] = Field(default_factory=dict)
    active_connector_ids: list[str] = Field(default_factory=list)
    skipped_connector_ids: list[str] = Field(default_factory=list)
    progress: RunProgress = Field(default_factory=RunProgress)
    validation_status: ValidationStatus = ValidationStatus.IDLE
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


class FlowRunState(WaveModel):
    """Snapshot pushed to run-state sinks."""

    is_running: bool = False
    result: FlowRunResult | None = None
    running_node_ids: list[str] = Field(default_factory=list)


class RunOptions(WaveModel):
    environment_id: str | None = None
    default_auth_id: str | None = None
    parallel: bool = True
    variables: dict[str, str] = Field(default_factory=dict)


HttpRequestConfig.model_rebuild()
CollectionItem.model_rebuild()
