"""Readiness evaluation of Kubernetes Job objects."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class Status(str, enum.Enum):
    IN_PROGRESS = "InProgress"
    FAILED = "Failed"
    CURRENT = "Current"


@dataclass(frozen=True)
class Condition:
    type: str
    status: str
    reason: str
    message: str


@dataclass(frozen=True)
class Result:
    status: Status
    message: str
    conditions: list[Condition] = field(default_factory=list)


def _int_field(obj: dict[str, Any], path: str, default: int) -> int:
    value: Any = obj
    for key in path.strip(".").split("."):
        if not isinstance(value, dict) or key not in value:
            return default
        value = value[key]
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value


def _conditions(obj: dict[str, Any]) -> list[dict[str, Any]]:
    status = obj.get("status") or {}
    if not isinstance(status, dict):
        raise ValueError("status must be an object")
    conditions = status.get("conditions") or []
    if not isinstance(conditions, list) or not all(isinstance(c, dict) for c in conditions):
        raise ValueError("status.conditions must be a list of objects")
    return conditions


def supports(group: str, kind: str) -> bool:
    """Return True for the batch Job kind."""
    return group == "batch" and kind == "Job"


def job_conditions(obj: dict[str, Any]) -> Result:
    """Compute the readiness status of a Job from its unstructured content."""
    parallelism = _int_field(obj, ".spec.parallelism", 1)
    completions = _int_field(obj, ".spec.completions", parallelism)
    active = _int_field(obj, ".status.active", 1)
    succeeded = _int_field(obj, ".status.succeeded", 0)
    failed = _int_field(obj, ".status.failed", 0)

    for cond in _conditions(obj):
        ctype, cstatus = cond.get("type"), cond.get("status")
        if ctype == "Complete" and cstatus == "True":
            return Result(
                Status.CURRENT, f"Job Completed. succeeded: {succeeded}/{completions}", []
            )
        if ctype == "Failed" and cstatus == "True":
            cmsg = cond.get("message", "")
            return Result(
                Status.FAILED,
                f"Job Failed. failed: {failed}/{completions} error: {cmsg}",
                [Condition("Stalled", "True", "JobFailed", cmsg)],
            )

    message = f"Job in progress. active: {active}"
    return Result(
        Status.IN_PROGRESS,
        message,
        [Condition("Reconciling", "True", "JobInProgress", message)],
    )