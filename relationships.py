"""
Back-reference maintenance.

``task.assigned_to`` and ``task.in_project`` are the authoritative relations.
``user.responsible_for`` and ``project.include_tasks`` are derived indexes kept
in step with them here. Writes are independent; there is no transaction.
"""
import logging
from typing import Any, Dict, List, Optional

from errors import NotFound

logger = logging.getLogger(__name__)


def _without(ids: List[Any], task_id: Any) -> List[Any]:
    return [i for i in ids if str(i) != str(task_id)]


def add_to_assignee(store, task_id: Any, assignee_id: Any, context: str) -> Dict[str, Any]:
    assignee = store.find_by_id("user", assignee_id)
    if not assignee:
        raise NotFound("Assignee not found", context)
    ids = assignee.get("responsible_for") or []
    if not any(str(i) == str(task_id) for i in ids):
        assignee["responsible_for"] = ids + [task_id]
        assignee = store.save("user", assignee)
    return assignee


def remove_from_assignee(store, task_id: Any, assignee_id: Any, context: str) -> Dict[str, Any]:
    assignee = store.find_by_id("user", assignee_id)
    if not assignee:
        raise NotFound("Previous assignee not found", context)
    assignee["responsible_for"] = _without(assignee.get("responsible_for") or [], task_id)
    return store.save("user", assignee)


def sync_assignee(store, task_id: Any, previous: Optional[Any], current: Optional[Any], context: str) -> None:
    """Move ``task_id`` from the previous assignee's index to the current one's."""
    if current is None or (previous is not None and str(previous) == str(current)):
        return
    if previous is not None:
        remove_from_assignee(store, task_id, previous, context)
    add_to_assignee(store, task_id, current, context)
    logger.info("Task %s reassigned from %s to %s", task_id, previous, current)


def add_to_project(store, task_id: Any, project_id: Any, context: str) -> Dict[str, Any]:
    project = store.find_by_id("project", project_id)
    if not project:
        raise NotFound("Project not found", context)
    ids = project.get("include_tasks") or []
    if not any(str(i) == str(task_id) for i in ids):
        project["include_tasks"] = ids + [task_id]
        project = store.save("project", project)
    return project


def _same_ids(a: List[Any], b: List[Any]) -> bool:
    return sorted(str(i) for i in a) == sorted(str(i) for i in b)


def reconcile_indexes(store) -> int:
    """
    Rebuild ``responsible_for`` and ``include_tasks`` from the tasks themselves.

    Repairs indexes left behind by a partially applied create or reassignment.
    Tombstoned tasks stay indexed; deletion never removes them. Returns the
    number of user and project records rewritten.
    """
    by_user: Dict[str, List[Any]] = {}
    by_project: Dict[str, List[Any]] = {}
    for task in store.find_many("task", {}, sort=[("created_at", 1)]):
        if task.get("assigned_to") is not None:
            by_user.setdefault(str(task["assigned_to"]), []).append(task["_id"])
        if task.get("in_project") is not None:
            by_project.setdefault(str(task["in_project"]), []).append(task["_id"])

    rewritten = 0
    for user in store.find_many("user", {}):
        expected = by_user.get(str(user["_id"]), [])
        if not _same_ids(user.get("responsible_for") or [], expected):
            user["responsible_for"] = expected
            store.save("user", user)
            rewritten += 1
    for project in store.find_many("project", {}):
        expected = by_project.get(str(project["_id"]), [])
        if not _same_ids(project.get("include_tasks") or [], expected):
            project["include_tasks"] = expected
            store.save("project", project)
            rewritten += 1

    logger.info("Reconciled relationship indexes: %d record(s) rewritten", rewritten)
    return rewritten
