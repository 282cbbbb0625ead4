"""Tests for WaveFlow Pydantic models."""

import pytest
from pydantic import TypeAdapter, ValidationError

from waveflow.models import (
    ApiKeyAuth,
    Auth,
    BasicAuth,
    CollectionItem,
    CollectionUrl,
    Flow,
    FlowConnector,
    FlowNodeResult,
    FlowNodeStatus,
    HeaderRule,
    OAuth2RefreshAuth,
    RawBody,
    RequestTemplate,
    RequestValidation,
    StatusCondition,
    SuccessCondition,
    UrlEncodedBody,
    ValidationFailCondition,
)


class TestFlow:
    def test_camel_case_document(self) -> None:
        flow = Flow.model_validate(
            {
                "id": "f",
                "name": "F",
                "defaultEnvId": "env",
                "nodes": [{"id": "n1", "requestId": "col.json:r1", "alias": "a"}],
                "connectors": [],
            }
        )
        assert flow.default_env_id == "env"
        assert flow.nodes[0].request_id == "col.json:r1"

    def test_snake_case_accepted(self) -> None:
        flow = Flow(id="f", name="F", nodes=[], default_auth_id="x")
        assert flow.default_auth_id == "x"

    def test_dump_by_alias(self) -> None:
        flow = Flow.model_validate(
            {"id": "f", "name": "F", "nodes": [{"id": "n", "requestId": "r", "alias": "a"}]}
        )
        data = flow.model_dump(by_alias=True, exclude_none=True)
        assert data["nodes"][0]["requestId"] == "r"


class TestConnectorCondition:
    def test_missing_condition_is_unconditional(self) -> None:
        c = FlowConnector.model_validate(
            {"id": "c", "sourceNodeId": "a", "targetNodeId": "b"}
        )
        assert c.condition is None

    def test_legacy_string_shorthand(self) -> None:
        c = FlowConnector.model_validate(
            {"id": "c", "sourceNodeId": "a", "targetNodeId": "b", "condition": "success"}
        )
        assert isinstance(c.condition, SuccessCondition)

    def test_tagged_status_condition(self) -> None:
        c = FlowConnector.model_validate(
            {
                "id": "c",
                "sourceNodeId": "a",
                "targetNodeId": "b",
                "condition": {"kind": "status", "operator": "in_range", "min": 200, "max": 204},
            }
        )
        assert isinstance(c.condition, StatusCondition)
        assert c.condition.max == 204

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FlowConnector.model_validate(
                {"id": "c", "sourceNodeId": "a", "targetNodeId": "b", "condition": "cookie"}
            )

    def test_validation_shorthand(self) -> None:
        c = FlowConnector.model_validate(
            {"id": "c", "sourceNodeId": "a", "targetNodeId": "b", "condition": "validation_fail"}
        )
        assert isinstance(c.condition, ValidationFailCondition)


class TestValidationModels:
    def test_rule_refs_parse_by_category(self) -> None:
        validation = RequestValidation.model_validate(
            {
                "rules": [
                    {"rule": {"id": "a", "category": "header", "headerName": "ETag"}},
                    {"ruleId": "shared"},
                ]
            }
        )
        assert validation.enabled is True
        assert isinstance(validation.rules[0].rule, HeaderRule)
        assert validation.rules[0].rule.operator == "exists"
        assert validation.rules[1].rule is None

    def test_template_carries_validation(self) -> None:
        req = RequestTemplate.model_validate(
            {"url": "https://x", "validation": {"rules": [{"ruleId": "r"}]}}
        )
        assert req.validation.rules[0].rule_id == "r"


class TestRequestTemplate:
    def test_url_object_with_query_fallback(self) -> None:
        req = RequestTemplate.model_validate(
            {"url": {"raw": "https://x/a?q=1", "query": [{"key": "q", "value": "1"}]}}
        )
        assert isinstance(req.url, CollectionUrl)
        assert req.raw_url == "https://x/a?q=1"
        assert [r.key for r in req.query_rows] == ["q"]

    def test_explicit_query_wins(self) -> None:
        req = RequestTemplate.model_validate(
            {
                "url": {"raw": "https://x/a", "query": [{"key": "old"}]},
                "query": [{"key": "new", "value": "1"}],
            }
        )
        assert [r.key for r in req.query_rows] == ["new"]

    def test_body_union(self) -> None:
        raw = RequestTemplate.model_validate(
            {"body": {"mode": "raw", "raw": "{}", "options": {"raw": {"language": "json"}}}}
        )
        form = RequestTemplate.model_validate(
            {"body": {"mode": "urlencoded", "urlencoded": [{"key": "a", "value": "b"}]}}
        )
        assert isinstance(raw.body, RawBody)
        assert raw.body.language == "json"
        assert isinstance(form.body, UrlEncodedBody)

    def test_nested_items(self) -> None:
        item = CollectionItem.model_validate(
            {"id": "folder", "item": [{"id": "r", "request": {"url": "https://x"}}]}
        )
        assert item.item[0].request.raw_url == "https://x"


class TestAuth:
    def test_discriminated_by_type(self) -> None:
        auths = TypeAdapter(list[Auth]).validate_python(
            [
                {"id": "k", "type": "apiKey", "key": "X-Key", "value": "v", "sendIn": "query"},
                {"id": "b", "type": "basic", "username": "u", "password": "p"},
                {
                    "id": "o",
                    "type": "oauth2Refresh",
                    "tokenUrl": "https://auth/token",
                    "clientId": "cid",
                    "refreshToken": "rt",
                },
            ]
        )
        assert isinstance(auths[0], ApiKeyAuth)
        assert auths[0].send_in == "query"
        assert isinstance(auths[1], BasicAuth)
        assert isinstance(auths[2], OAuth2RefreshAuth)
        assert auths[2].token_url == "https://auth/token"


class TestFlowNodeResult:
    def test_defaults_idle(self) -> None:
        r = FlowNodeResult(node_id="n", request_id="r", alias="a")
        assert r.status == FlowNodeStatus.IDLE
        assert r.is_terminal is False

    @pytest.mark.parametrize("status", ["success", "failed", "skipped"])
    def test_terminal_statuses(self, status: str) -> None:
        r = FlowNodeResult(node_id="n", request_id="r", alias="a", status=status)
        assert r.is_terminal is True
