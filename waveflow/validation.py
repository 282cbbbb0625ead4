"""Response validation rules.

A request template may carry a list of rules (inline, or references to
shared workspace rules) that are checked against its response. The outcome
is attached to the response and never changes the node status; connectors
read it through the ``validation_pass`` and ``validation_fail`` conditions.

The comparison helpers here are shared with connector conditions.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from waveflow.logger import get_logger
from waveflow.models import (
    BodyRule,
    FlowNodeResult,
    HeaderRule,
    HttpResponse,
    RequestValidation,
    StatusRule,
    TimeRule,
    ValidationResult,
    ValidationRule,
    ValidationRuleResult,
    ValidationStatus,
)
from waveflow.resolver import format_value, resolve, split_path

log = get_logger(__name__)

_HTML_RE = re.compile(r"<html|<!doctype\s+html", re.IGNORECASE)


# --- Comparisons ---


def compare_number(
    actual: float,
    operator: str,
    value: float | None = None,
    value2: float | None = None,
    values: list[float] | None = None,
) -> bool:
    if operator in ("in", "not_in"):
        if values is None:
            return False
        return (actual in values) == (operator == "in")
    if operator == "between":
        if value is None or value2 is None:
            return False
        return value <= actual <= value2
    if value is None:
        return False
    if operator == "equals":
        return actual == value
    if operator == "not_equals":
        return actual != value
    if operator == "greater_than":
        return actual > value
    if operator == "greater_than_or_equal":
        return actual >= value
    if operator == "less_than":
        return actual < value
    if operator == "less_than_or_equal":
        return actual <= value
    raise ValueError(f"Unknown numeric operator: {operator}")


def compare_status(
    status: int,
    operator: str,
    value: float | None = None,
    value2: float | None = None,
    values: list[float] | None = None,
) -> bool:
    if operator == "is_success":
        return 200 <= status < 300
    if operator == "is_not_success":
        return not 200 <= status < 300
    return compare_number(status, operator, value, value2, values)


def compare_text(
    actual: str,
    operator: str,
    expected: str = "",
    values: list[str] | None = None,
    case_sensitive: bool = False,
) -> bool:
    """String comparison; an invalid ``matches_regex`` pattern never matches."""
    if operator == "matches_regex":
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            return re.search(expected, actual, flags) is not None
        except re.error as exc:
            log.warning("invalid_pattern", pattern=expected, error=str(exc))
            return False

    if not case_sensitive:
        actual = actual.lower()
        expected = expected.lower()
        values = [v.lower() for v in values] if values is not None else None

    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if operator == "contains":
        return expected in actual
    if operator == "not_contains":
        return expected not in actual
    if operator == "starts_with":
        return actual.startswith(expected)
    if operator == "ends_with":
        return actual.endswith(expected)
    if operator in ("in", "not_in"):
        if values is None:
            return False
        return (actual in values) == (operator == "in")
    raise ValueError(f"Unknown text operator: {operator}")


def find_header(headers: Mapping[str, str], name: str) -> str | None:
    wanted = name.lower()
    return next((v for k, v in headers.items() if k.lower() == wanted), None)


def walk_json_path(data: Any, path: str) -> tuple[bool, Any]:
    """Follow ``$.a.b[0]`` style paths. JSON ``null`` counts as found."""
    path = path.strip()
    if path.startswith("$."):
        path = path[2:]
    elif path.startswith("$"):
        path = path[1:]
    current = data
    for segment in split_path(path):
        if isinstance(current, list):
            if isinstance(segment, str):
                if not segment.isdigit():
                    return False, None
                segment = int(segment)
            if segment >= len(current):
                return False, None
            current = current[segment]
        elif isinstance(current, dict) and str(segment) in current:
            current = current[str(segment)]
        else:
            return False, None
    return True, current


def body_text(response: HttpResponse) -> str:
    """The response body, base64-decoded when the transport encoded it."""
    if not response.is_encoded:
        return response.body
    try:
        return base64.b64decode(response.body).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return response.body


# --- Body checks ---


@dataclass
class BodyCheck:
    passed: bool
    actual: str | None = None
    detail: str | None = None


def _json_value_text(value: Any) -> str:
    text = format_value(value)
    return "null" if text is None else text


def _schema_check(data: Any, schema_text: str) -> BodyCheck:
    try:
        schema = json.loads(schema_text)
    except ValueError as exc:
        return BodyCheck(False, detail=f"Invalid JSON schema: {exc}")
    if not isinstance(schema, dict):
        return BodyCheck(False, detail="Invalid JSON schema: expected an object")
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        log.warning("json_schema_invalid", error=exc.message)
        return BodyCheck(False, detail=f"Invalid JSON schema: {exc.message}")
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])
    if errors:
        return BodyCheck(False, detail="; ".join(e.message for e in errors))
    return BodyCheck(True)


def check_body(
    response: HttpResponse,
    operator: str,
    expected: str = "",
    *,
    json_path: str | None = None,
    values: list[str] | None = None,
    case_sensitive: bool = False,
) -> BodyCheck:
    """Apply a body operator to a response."""
    body = body_text(response)
    if operator == "is_xml":
        return BodyCheck(body.strip().startswith("<"))
    if operator == "is_html":
        return BodyCheck(_HTML_RE.search(body) is not None)

    if operator == "is_json" or operator.startswith("json_"):
        try:
            data = json.loads(body)
        except ValueError:
            return BodyCheck(False, detail="Response body is not valid JSON")
        if operator == "is_json":
            return BodyCheck(True)
        if operator == "json_schema_matches":
            return _schema_check(data, expected)

        found, value = walk_json_path(data, json_path or "")
        if operator == "json_path_exists":
            return BodyCheck(found)
        if not found:
            return BodyCheck(False, detail=f"Path '{json_path}' not found")
        actual = _json_value_text(value)
        text_operator = "equals" if operator == "json_path_equals" else "contains"
        return BodyCheck(
            compare_text(actual, text_operator, expected, case_sensitive=case_sensitive),
            actual=actual,
        )

    return BodyCheck(compare_text(body, operator, expected, values, case_sensitive))


# --- Rules ---


def _spaced(operator: str) -> str:
    return operator.replace("_", " ")


def _number(value: float | str | None, env_vars: Mapping[str, str]) -> float | None:
    """A rule operand as a number; ``{{var}}`` text is resolved first."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = resolve(value, env_vars).resolved.strip()
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"Invalid number: {text!r}") from None


def _text(value: str | None, env_vars: Mapping[str, str]) -> str:
    return resolve(value or "", env_vars).resolved


def _expected_text(
    operator: str, value: Any, value2: Any = None, values: list[Any] | None = None
) -> str | None:
    if operator in ("is_success", "is_not_success"):
        return "2xx"
    if operator == "between":
        return f"{format_value(value)} and {format_value(value2)}"
    if operator in ("in", "not_in"):
        return ", ".join(format_value(v) or "" for v in values or [])
    return format_value(value)


def _result(
    rule: StatusRule | HeaderRule | BodyRule | TimeRule,
    passed: bool,
    message: str,
    expected: str | None = None,
    actual: str | None = None,
    error: str | None = None,
) -> ValidationRuleResult:
    return ValidationRuleResult(
        rule_id=rule.id,
        rule_name=rule.name,
        category=rule.category,
        passed=passed,
        message=message,
        expected=expected,
        actual=actual,
        error=error,
    )


def _numeric_rule(
    rule: StatusRule | TimeRule,
    label: str,
    actual: float,
    env_vars: Mapping[str, str],
) -> ValidationRuleResult:
    actual_text = format_value(actual)
    try:
        value = _number(rule.value, env_vars)
        value2 = _number(rule.value2, env_vars)
        values = (
            [n for n in (_number(v, env_vars) for v in rule.values) if n is not None]
            if isinstance(rule, StatusRule) and rule.values is not None
            else None
        )
    except ValueError as exc:
        return _result(rule, False, str(exc), actual=actual_text, error=str(exc))

    expected = _expected_text(rule.operator, value, value2, values)
    if isinstance(rule, StatusRule):
        passed = compare_status(int(actual), rule.operator, value, value2, values)
    else:
        passed = compare_number(actual, rule.operator, value, value2)
    if passed:
        message = f"{label} {actual_text} {_spaced(rule.operator)} {expected}"
    else:
        message = f"Expected {label.lower()} {_spaced(rule.operator)} {expected}, got {actual_text}"
    return _result(rule, passed, message, expected=expected, actual=actual_text)


def _header_rule(
    rule: HeaderRule, response: HttpResponse, env_vars: Mapping[str, str]
) -> ValidationRuleResult:
    name = _text(rule.header_name, env_vars)
    value = find_header(response.headers, name)
    if rule.operator in ("exists", "not_exists"):
        passed = (value is not None) == (rule.operator == "exists")
        state = "exists" if value is not None else "does not exist"
        return _result(rule, passed, f"Header '{name}' {state}", actual=value)
    if value is None:
        return _result(rule, False, f"Header '{name}' does not exist")

    expected = _text(rule.value, env_vars)
    values = [_text(v, env_vars) for v in rule.values] if rule.values is not None else None
    passed = compare_text(value, rule.operator, expected, values, rule.case_sensitive)
    expected_text = _expected_text(rule.operator, expected, values=values)
    if passed:
        message = f"Header '{name}' {_spaced(rule.operator)} {expected_text}"
    else:
        message = f"Expected header '{name}' {_spaced(rule.operator)} {expected_text}, got {value}"
    return _result(rule, passed, message, expected=expected_text, actual=value)


def _body_rule(
    rule: BodyRule, response: HttpResponse, env_vars: Mapping[str, str]
) -> ValidationRuleResult:
    expected = _text(rule.value, env_vars)
    json_path = _text(rule.json_path, env_vars) if rule.json_path else None
    check = check_body(
        response,
        rule.operator,
        expected,
        json_path=json_path,
        case_sensitive=rule.case_sensitive,
    )
    subject = f"Body at '{json_path}'" if json_path else "Body"
    description = _spaced(rule.operator)
    if rule.value is not None and rule.operator != "json_schema_matches":
        description = f"{description} {expected}"
    if check.passed:
        message = f"{subject} {description}"
    else:
        message = f"Expected {subject.lower()} {description}"
        if check.detail:
            message = f"{message}: {check.detail}"
    return _result(
        rule,
        check.passed,
        message,
        expected=expected or None,
        actual=check.actual,
        error=check.detail if not check.passed else None,
    )


def evaluate_rule(
    rule: StatusRule | HeaderRule | BodyRule | TimeRule,
    response: HttpResponse,
    env_vars: Mapping[str, str] | None = None,
) -> ValidationRuleResult:
    """Check one rule against a response. Disabled rules pass."""
    env_vars = env_vars or {}
    if not rule.enabled:
        return _result(rule, True, "Rule is disabled")
    if isinstance(rule, StatusRule):
        return _numeric_rule(rule, "Status", response.status, env_vars)
    if isinstance(rule, TimeRule):
        return _numeric_rule(rule, "Response time", response.elapsed_time, env_vars)
    if isinstance(rule, HeaderRule):
        return _header_rule(rule, response, env_vars)
    return _body_rule(rule, response, env_vars)


def execute_validation(
    validation: RequestValidation | None,
    response: HttpResponse,
    shared_rules: Mapping[str, ValidationRule] | None = None,
    env_vars: Mapping[str, str] | None = None,
) -> ValidationResult | None:
    """Run a request's rules. ``None`` when validation is off or empty."""
    if validation is None or not validation.enabled or not validation.rules:
        return None
    shared_rules = shared_rules or {}
    results: list[ValidationRuleResult] = []
    for ref in validation.rules:
        rule = ref.rule
        if rule is None and ref.rule_id is not None:
            rule = shared_rules.get(ref.rule_id)
        if rule is None:
            results.append(
                ValidationRuleResult(
                    rule_id=ref.rule_id or "",
                    category="unknown",
                    passed=False,
                    message=f"Global rule with ID '{ref.rule_id}' not found",
                    error="Rule not found",
                )
            )
            continue
        results.append(evaluate_rule(rule, response, env_vars))

    passed = sum(1 for r in results if r.passed)
    outcome = ValidationResult(
        enabled=True,
        total_rules=len(results),
        passed_rules=passed,
        failed_rules=len(results) - passed,
        all_passed=passed == len(results),
        results=results,
        executed_at=datetime.now(tz=timezone.utc),
    )
    log.debug(
        "validation_executed",
        response_id=response.id,
        passed=outcome.passed_rules,
        failed=outcome.failed_rules,
    )
    return outcome


def derive_validation_status(node_results: Iterable[FlowNodeResult]) -> ValidationStatus:
    """``idle`` when no node was validated, else ``pass`` only if all passed."""
    outcomes = [
        r.response.validation_result
        for r in node_results
        if r.response is not None and r.response.validation_result is not None
    ]
    if not outcomes:
        return ValidationStatus.IDLE
    if all(o.all_passed for o in outcomes):
        return ValidationStatus.PASS
    return ValidationStatus.FAIL
