"""
Task lifecycle engine.

Orchestrates task creation and edits across the store: role-gated field
updates, assignee/project back-references, and change notifications. Each
operation is a sequence of independent writes; when a later write fails the
earlier ones stay in place and the error propagates unchanged.
"""
import copy
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from database import now_utc, oid
from errors import AppError, BadRequest, NotFound
from notifier import notify_changes
from permissions import apply_permitted_changes
from relationships import add_to_assignee, add_to_project, sync_assignee
from schemas import TaskCreate, TaskUpdate
from task_query import find_tasks

logger = logging.getLogger(__name__)


def _validation_summary(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
    return "; ".join(parts) or "Invalid payload"


def lookup_many(store, collection: str, ids: Iterable[Any], fields: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Fetch records by id, keeping only ``fields`` (plus ``_id``), keyed by str(id)."""
    ids = list({str(i): i for i in ids if i is not None}.values())
    if not ids:
        return {}
    found = store.find_many(collection, {"_id": {"$in": ids}})
    keep = ("_id",) + tuple(fields)
    return {str(doc["_id"]): {k: doc.get(k) for k in keep} for doc in found}


def populate_assignee(store, tasks: List[Dict[str, Any]], fields: Tuple[str, ...] = ("name",)) -> List[Dict[str, Any]]:
    users = lookup_many(store, "user", (t.get("assigned_to") for t in tasks), fields)
    out = []
    for task in tasks:
        task = {**task}
        if task.get("assigned_to") is not None:
            task["assigned_to"] = users.get(str(task["assigned_to"]))
        out.append(task)
    return out


class TaskEngine:
    def __init__(self, store):
        self.store = store

    # -----------------------------
    # Create
    # -----------------------------
    def create_task(self, payload: Optional[Dict[str, Any]], actor: Dict[str, Any]) -> Dict[str, Any]:
        context = "Create Task Error"
        if not payload:
            raise BadRequest("Bad request", context)
        try:
            body = TaskCreate.model_validate(payload)
        except ValidationError as exc:
            raise BadRequest(_validation_summary(exc), context)

        doc = body.model_dump()
        doc["in_project"] = oid(body.in_project, context)
        doc["assigned_to"] = oid(body.assigned_to, context) if body.assigned_to else None
        doc["created_by"] = oid(actor["id"], context)
        doc["date_completed"] = now_utc() if body.status == "done" else None
        doc["is_deleted"] = False

        task = self.store.create("task", doc)
        logger.info("Task %s created by %s in project %s", task["_id"], actor["id"], doc["in_project"])

        try:
            if task["assigned_to"] is not None:
                add_to_assignee(self.store, task["_id"], task["assigned_to"], context)
            add_to_project(self.store, task["_id"], task["in_project"], context)
        except AppError:
            logger.warning("Task %s persisted but its relationship indexes are incomplete", task["_id"])
            raise
        return task

    # -----------------------------
    # Edit
    # -----------------------------
    def edit_task(
        self, task_id: str, payload: Optional[Dict[str, Any]], actor: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        """
        Apply an authorized partial edit.

        Returns the updated task (assignee populated with name and role) and
        the notifications created for it.
        """
        context = "Edit Task Error"
        try:
            changes = TaskUpdate.model_validate(payload or {}).model_dump(exclude_unset=True)
        except ValidationError as exc:
            raise BadRequest(_validation_summary(exc), context)

        task = self.store.find_by_id("task", oid(task_id, context))
        if not task:
            raise NotFound("Task not found", context)

        before = copy.deepcopy(task)
        previous_assignee = task.get("assigned_to")
        applied = apply_permitted_changes(
            task, changes, actor, now_utc(), to_id=lambda v: oid(v, context)
        )
        task = self.store.save("task", task)
        logger.info("Task %s edited by %s: %s", task["_id"], actor["id"], sorted(applied))

        if "assigned_to" in applied:
            try:
                sync_assignee(self.store, task["_id"], previous_assignee, task["assigned_to"], context)
            except AppError:
                logger.warning(
                    "Task %s saved with assignee %s but responsibility indexes are stale",
                    task["_id"], task["assigned_to"],
                )
                raise

        edited = self.store.find_by_id("task", task["_id"])
        notifications = notify_changes(self.store, before, edited)
        return populate_assignee(self.store, [edited], ("name", "role"))[0], notifications

    # -----------------------------
    # Delete / read
    # -----------------------------
    def delete_task(self, task_id: str) -> Dict[str, Any]:
        context = "Delete Task Error"
        task = self.store.find_by_id("task", oid(task_id, context))
        if not task:
            raise NotFound("Task not found", context)
        task["is_deleted"] = True
        task = self.store.save("task", task)
        logger.info("Task %s deleted", task["_id"])
        return task

    def get_task(self, task_id: str) -> Dict[str, Any]:
        context = "Get Single Task Error"
        task = self.store.find_by_id("task", oid(task_id, context))
        if not task:
            raise NotFound("Task not found", context)
        return populate_assignee(self.store, [task])[0]

    def list_tasks(self, params: Dict[str, Any], actor: Dict[str, Any]) -> Dict[str, Any]:
        result = find_tasks(self.store, params, actor)
        result["tasks"] = populate_assignee(self.store, result["tasks"])
        return result

    def list_project_tasks(self, project_id: str) -> List[Dict[str, Any]]:
        context = "Get Tasks By Project Error"
        tasks = self.store.find_many(
            "task",
            {"in_project": oid(project_id, context), "is_deleted": False},
            sort=[("created_at", -1)],
        )
        return populate_assignee(self.store, tasks, ("name", "role"))
