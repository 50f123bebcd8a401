"""Notifications generated from the difference between two task snapshots."""
import logging
from datetime import datetime
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

WATCHED_FIELDS = ("due_date", "status", "priority")

CREATOR_TITLE = "A task created by you has been updated."
ASSIGNEE_TITLE = "A task assigned to you has been updated."


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def diff_messages(before: Dict[str, Any], after: Dict[str, Any]) -> List[str]:
    messages = []
    for field in WATCHED_FIELDS:
        new = _stringify(after.get(field))
        if _stringify(before.get(field)) != new:
            messages.append(f'{after.get("name")} - {field} has been set to "{new}"')
    return messages


def build_notifications(before: Dict[str, Any], after: Dict[str, Any]) -> List[Dict[str, Any]]:
    messages = diff_messages(before, after)
    notes = [
        {"title": CREATOR_TITLE, "message": m, "for_user": after["created_by"], "read": False}
        for m in messages
    ]
    if after.get("assigned_to") is not None:
        notes += [
            {"title": ASSIGNEE_TITLE, "message": m, "for_user": after["assigned_to"], "read": False}
            for m in messages
        ]
    return notes


def notify_changes(store, before: Dict[str, Any], after: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Persist one batch of notifications for the watched-field changes; may be empty."""
    notes = build_notifications(before, after)
    if not notes:
        return []
    created = store.create_many("notification", notes)
    logger.info("Created %d notification(s) for task %s", len(created), after.get("_id"))
    return created
