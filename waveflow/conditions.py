"""Connector condition evaluation."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from waveflow.models import (
    AnyCondition,
    BodyCondition,
    FailureCondition,
    FlowConnector,
    FlowNodeResult,
    FlowNodeStatus,
    HeaderCondition,
    StatusCondition,
    SuccessCondition,
    TimeCondition,
    ValidationFailCondition,
    ValidationPassCondition,
)
from waveflow.validation import (
    check_body,
    compare_number,
    compare_status,
    compare_text,
    find_header,
)


def is_success_status(status: int) -> bool:
    return 200 <= status < 400


def _any(condition: AnyCondition, result: FlowNodeResult) -> bool:
    return True


def _success(condition: SuccessCondition, result: FlowNodeResult) -> bool:
    return (
        result.status == FlowNodeStatus.SUCCESS
        and result.response is not None
        and is_success_status(result.response.status)
    )


def _failure(condition: FailureCondition, result: FlowNodeResult) -> bool:
    if result.status == FlowNodeStatus.FAILED:
        return True
    return result.response is not None and not is_success_status(
        result.response.status
    )


def _validation_pass(condition: ValidationPassCondition, result: FlowNodeResult) -> bool:
    outcome = result.response.validation_result if result.response else None
    return outcome is not None and outcome.all_passed


def _validation_fail(condition: ValidationFailCondition, result: FlowNodeResult) -> bool:
    outcome = result.response.validation_result if result.response else None
    return outcome is not None and not outcome.all_passed


def _status(condition: StatusCondition, result: FlowNodeResult) -> bool:
    if result.response is None:
        return False
    status = result.response.status
    if condition.operator == "in_range":
        low = condition.min if condition.min is not None else 0
        high = condition.max if condition.max is not None else 999
        return low <= status <= high
    values = [float(v) for v in condition.values] if condition.values is not None else None
    return compare_status(
        status,
        condition.operator,
        condition.value,
        condition.value2,
        values,
    )


def _header(condition: HeaderCondition, result: FlowNodeResult) -> bool:
    if result.response is None:
        return False
    value = find_header(result.response.headers, condition.name)
    if condition.operator == "exists":
        return value is not None
    if condition.operator == "not_exists":
        return value is None
    if value is None:
        return False
    return compare_text(
        value,
        condition.operator,
        condition.value or "",
        condition.values,
        condition.case_sensitive,
    )


def _body(condition: BodyCondition, result: FlowNodeResult) -> bool:
    if result.response is None:
        return False
    return check_body(
        result.response,
        condition.operator,
        condition.value or "",
        json_path=condition.path,
        case_sensitive=condition.case_sensitive,
    ).passed


def _time(condition: TimeCondition, result: FlowNodeResult) -> bool:
    if result.response is None:
        return False
    return compare_number(
        result.response.elapsed_time,
        condition.operator,
        condition.value,
        condition.value2,
    )


_EVALUATORS: dict[str, Callable[[Any, FlowNodeResult], bool]] = {
    "any": _any,
    "success": _success,
    "failure": _failure,
    "validation_pass": _validation_pass,
    "validation_fail": _validation_fail,
    "status": _status,
    "header": _header,
    "body": _body,
    "time": _time,
}


def evaluate_connector(connector: FlowConnector, source: FlowNodeResult) -> bool:
    """Whether ``connector`` lets its target run given the source's result.

    A skipped source satisfies no condition, so skips propagate downstream.
    A connector without a condition is unconditional.
    """
    if source.status == FlowNodeStatus.SKIPPED:
        return False
    if not source.is_terminal:
        return False
    if connector.condition is None:
        return True
    return _EVALUATORS[connector.condition.kind](connector.condition, source)
