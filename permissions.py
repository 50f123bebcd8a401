"""
Role-gated field updates for task edits.

Each role owns an explicit table of the fields it may change. A rule can
carry a side effect (completing a task stamps ``date_completed``) and an
assignment policy (managers assign anyone, employees only themselves).
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from errors import Conflict, Unauthorized

logger = logging.getLogger(__name__)

MANAGER = "manager"
EMPLOYEE = "employee"

ASSIGN_ANYONE = "anyone"
ASSIGN_SELF = "self"


def _stamp_completion(task: Dict[str, Any], value: Any, now: datetime) -> None:
    if value == "done":
        task["date_completed"] = now


@dataclass(frozen=True)
class FieldRule:
    effect: Optional[Callable[[Dict[str, Any], Any, datetime], None]] = None
    assign: Optional[str] = None


FIELD_RULES: Dict[str, Dict[str, FieldRule]] = {
    MANAGER: {
        "description": FieldRule(),
        "status": FieldRule(effect=_stamp_completion),
        "priority": FieldRule(),
        "due_date": FieldRule(),
        "assigned_to": FieldRule(assign=ASSIGN_ANYONE),
        "effort": FieldRule(),
    },
    EMPLOYEE: {
        "status": FieldRule(effect=_stamp_completion),
        "assigned_to": FieldRule(assign=ASSIGN_SELF),
        "effort": FieldRule(),
    },
}


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def check_can_edit(task: Dict[str, Any], requested_assignee: Optional[str], actor: Dict[str, Any]) -> None:
    if actor.get("role") == MANAGER:
        return
    current = task.get("assigned_to")
    if current is not None and str(current) == actor["id"]:
        return
    # Unassigned tasks form a pool any employee may claim for themselves.
    if current is None and requested_assignee == actor["id"]:
        return
    raise Unauthorized("Only manager or assignee can edit task", "Edit Task Error")


def apply_permitted_changes(
    task: Dict[str, Any],
    changes: Dict[str, Any],
    actor: Dict[str, Any],
    now: datetime,
    to_id: Callable[[str], Any] = lambda v: v,
) -> Dict[str, Any]:
    """
    Apply the subset of ``changes`` the actor's role permits to ``task`` in place.

    ``to_id`` converts an incoming assignee id string to the stored form; the
    requested assignee is compared in that canonical form. Returns the fields
    that were actually applied.
    """
    raw_assignee = changes.get("assigned_to")
    requested_id = None if _is_empty(raw_assignee) else to_id(raw_assignee)
    requested_assignee = None if requested_id is None else str(requested_id)

    check_can_edit(task, requested_assignee, actor)

    current = task.get("assigned_to")
    if requested_assignee is not None and current is not None and str(current) == requested_assignee:
        raise Conflict("Task already assigned to this user", "Edit Task Error")

    rules = FIELD_RULES.get(actor.get("role"), FIELD_RULES[EMPLOYEE])
    applied: Dict[str, Any] = {}
    for field, rule in rules.items():
        if rule.assign is not None:
            if requested_id is None:
                continue
            if rule.assign == ASSIGN_SELF and requested_assignee != actor["id"]:
                logger.debug("Ignoring assignment of task %s to %s by %s", task.get("_id"), requested_assignee, actor["id"])
                continue
            value = requested_id
        else:
            value = changes.get(field)
            if _is_empty(value):
                continue
        if rule.effect is not None:
            rule.effect(task, value, now)
        task[field] = value
        applied[field] = value
    return applied
