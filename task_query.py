"""Translate loosely-typed list parameters into a Mongo filter and a page of tasks."""
import math
import re
from typing import Any, Dict, List

from errors import NotFound
from permissions import MANAGER

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10


def _positive_int(raw: Any, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value >= 1 else default


def build_task_filter(store, params: Dict[str, Any], actor: Dict[str, Any]) -> Dict[str, Any]:
    conditions: List[Dict[str, Any]] = [{"is_deleted": False}]

    if params.get("assignee"):
        assignee = store.find_one(
            "user", {"name": {"$regex": re.escape(params["assignee"]), "$options": "i"}}
        )
        if not assignee:
            raise NotFound("Assignee not found", "Get All Tasks Error")
        conditions.append({"assigned_to": assignee["_id"]})

    for field in ("status", "priority"):
        if params.get(field):
            conditions.append({field: params[field]})

    # Non-managers only see the unassigned pool.
    if actor.get("role") != MANAGER:
        conditions.append({"assigned_to": None})

    return {"$and": conditions}


def paginate(params: Dict[str, Any]) -> Dict[str, int]:
    page = _positive_int(params.get("page"), DEFAULT_PAGE)
    limit = _positive_int(params.get("limit"), DEFAULT_LIMIT)
    return {"page": page, "limit": limit, "skip": limit * (page - 1)}


def find_tasks(store, params: Dict[str, Any], actor: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``{"tasks", "count", "total_pages"}`` for the requested page."""
    criteria = build_task_filter(store, params, actor)
    paging = paginate(params)
    count = store.count("task", criteria)
    tasks = store.find_many(
        "task",
        criteria,
        sort=[("created_at", -1)],
        skip=paging["skip"],
        limit=paging["limit"],
    )
    return {
        "tasks": tasks,
        "count": count,
        "total_pages": math.ceil(count / paging["limit"]),
    }
