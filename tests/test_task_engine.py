# tests/test_task_engine.py

from __future__ import annotations

import pytest
from bson import ObjectId

from errors import BadRequest, Conflict, NotFound, Unauthorized

from .fakes import as_actor


def _responsible(store, user):
    return store.find_by_id("user", user["_id"])["responsible_for"]


# -----------------------------
# Create
# -----------------------------
def test_create_rejects_empty_payload(engine, manager_user) -> None:
    with pytest.raises(BadRequest) as exc:
        engine.create_task({}, as_actor(manager_user))
    assert exc.value.context == "Create Task Error"


def test_create_rejects_invalid_payload(engine, manager_user) -> None:
    with pytest.raises(BadRequest):
        engine.create_task({"name": "no project"}, as_actor(manager_user))


def test_create_stamps_creator_and_indexes(make_task, store, manager_user, employee, project) -> None:
    task = make_task(assigned_to=str(employee["_id"]))

    assert task["created_by"] == manager_user["_id"]
    assert task["is_deleted"] is False
    assert task["assigned_to"] == employee["_id"]
    assert _responsible(store, employee).count(task["_id"]) == 1
    assert store.find_by_id("project", project["_id"])["include_tasks"] == [task["_id"]]


def test_create_unassigned_touches_no_user(make_task, store, employee) -> None:
    task = make_task()
    assert task["assigned_to"] is None
    assert _responsible(store, employee) == []


def test_create_done_task_is_completed(make_task) -> None:
    assert make_task(status="done")["date_completed"] is not None


def test_create_with_missing_assignee(engine, store, manager_user, project) -> None:
    payload = {"name": "x", "in_project": str(project["_id"]), "assigned_to": str(ObjectId())}
    with pytest.raises(NotFound) as exc:
        engine.create_task(payload, as_actor(manager_user))
    assert exc.value.title == "Assignee not found"
    # the task write already happened; the project index did not
    assert len(store.all("task")) == 1
    assert store.find_by_id("project", project["_id"])["include_tasks"] == []


def test_create_with_missing_project_leaves_task(engine, store, manager_user, employee) -> None:
    payload = {"name": "x", "in_project": str(ObjectId()), "assigned_to": str(employee["_id"])}
    with pytest.raises(NotFound) as exc:
        engine.create_task(payload, as_actor(manager_user))
    assert exc.value.title == "Project not found"
    [task] = store.all("task")
    assert _responsible(store, employee) == [task["_id"]]


def test_create_with_invalid_project_id(engine, manager_user) -> None:
    with pytest.raises(BadRequest) as exc:
        engine.create_task({"name": "x", "in_project": "not-an-id"}, as_actor(manager_user))
    assert exc.value.title == "Invalid id"


# -----------------------------
# Edit
# -----------------------------
def test_edit_missing_task(engine, manager_user) -> None:
    with pytest.raises(NotFound):
        engine.edit_task(str(ObjectId()), {"status": "done"}, as_actor(manager_user))


def test_reassignment_moves_back_reference(make_task, engine, store, manager_user, employee, other_employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))

    edited, _ = engine.edit_task(str(task["_id"]), {"assigned_to": str(other_employee["_id"])}, as_actor(manager_user))

    assert edited["assigned_to"]["_id"] == other_employee["_id"]
    assert edited["assigned_to"]["name"] == "Erin Worker"
    assert edited["assigned_to"]["role"] == "employee"
    assert task["_id"] not in _responsible(store, employee)
    assert _responsible(store, other_employee) == [task["_id"]]


def test_reassign_to_same_user_conflicts(make_task, engine, manager_user, employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))
    with pytest.raises(Conflict):
        engine.edit_task(str(task["_id"]), {"assigned_to": str(employee["_id"])}, as_actor(manager_user))


def test_reassign_to_same_user_in_other_case_conflicts(make_task, engine, manager_user, employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))
    with pytest.raises(Conflict):
        engine.edit_task(str(task["_id"]), {"assigned_to": str(employee["_id"]).upper()}, as_actor(manager_user))


def test_done_sets_date_completed(make_task, engine, store, employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))
    engine.edit_task(str(task["_id"]), {"status": "done"}, as_actor(employee))
    assert store.find_by_id("task", task["_id"])["date_completed"] is not None


def test_other_status_keeps_date_completed(make_task, engine, store, manager_user) -> None:
    task = make_task()
    engine.edit_task(str(task["_id"]), {"status": "review"}, as_actor(manager_user))
    assert store.find_by_id("task", task["_id"])["date_completed"] is None


def test_employee_description_edit_has_no_effect(make_task, engine, store, manager_user, employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))

    engine.edit_task(str(task["_id"]), {"description": "by employee"}, as_actor(employee))
    assert store.find_by_id("task", task["_id"])["description"] == "Summarise the sprint"

    engine.edit_task(str(task["_id"]), {"description": "by manager"}, as_actor(manager_user))
    assert store.find_by_id("task", task["_id"])["description"] == "by manager"


def test_employee_self_claim(make_task, engine, store, employee) -> None:
    task = make_task()
    edited, _ = engine.edit_task(str(task["_id"]), {"assigned_to": str(employee["_id"])}, as_actor(employee))
    assert edited["assigned_to"]["_id"] == employee["_id"]
    assert _responsible(store, employee) == [task["_id"]]


def test_employee_assigning_other_user_is_ignored(make_task, engine, store, employee, other_employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))

    edited, notes = engine.edit_task(
        str(task["_id"]), {"assigned_to": str(other_employee["_id"])}, as_actor(employee)
    )

    assert edited["assigned_to"]["_id"] == employee["_id"]
    assert _responsible(store, other_employee) == []
    assert _responsible(store, employee) == [task["_id"]]
    assert notes == []


def test_unrelated_employee_is_unauthorized(make_task, engine, employee, other_employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))
    with pytest.raises(Unauthorized):
        engine.edit_task(str(task["_id"]), {"status": "done"}, as_actor(other_employee))


def test_reassign_to_missing_user(make_task, engine, store, manager_user, employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))
    with pytest.raises(NotFound) as exc:
        engine.edit_task(str(task["_id"]), {"assigned_to": str(ObjectId())}, as_actor(manager_user))
    assert exc.value.title == "Assignee not found"
    # the previous assignee was already released before the lookup failed
    assert _responsible(store, employee) == []


def test_priority_change_notifies_creator_and_assignee(make_task, engine, store, manager_user, employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]), priority="low")

    _, notes = engine.edit_task(str(task["_id"]), {"priority": "high"}, as_actor(manager_user))

    assert len(notes) == 2
    by_user = {n["for_user"]: n for n in store.all("notification")}
    assert set(by_user) == {manager_user["_id"], employee["_id"]}
    for note in by_user.values():
        assert note["message"] == 'Write release notes - priority has been set to "high"'
    assert by_user[manager_user["_id"]]["title"] == "A task created by you has been updated."
    assert by_user[employee["_id"]]["title"] == "A task assigned to you has been updated."


def test_edit_without_watched_changes_creates_no_notifications(make_task, engine, store, manager_user) -> None:
    task = make_task()
    _, notes = engine.edit_task(str(task["_id"]), {"effort": 13, "description": "more"}, as_actor(manager_user))
    assert notes == []
    assert store.all("notification") == []


def test_invalid_status_is_bad_request(make_task, engine, manager_user) -> None:
    task = make_task()
    with pytest.raises(BadRequest):
        engine.edit_task(str(task["_id"]), {"status": "finished"}, as_actor(manager_user))


# -----------------------------
# Delete / read
# -----------------------------
def test_delete_tombstones_task(make_task, engine, store, manager_user) -> None:
    task = make_task()

    deleted = engine.delete_task(str(task["_id"]))

    assert deleted["is_deleted"] is True
    listing = engine.list_tasks({}, as_actor(manager_user))
    assert listing["count"] == 0
    assert engine.get_task(str(task["_id"]))["is_deleted"] is True


def test_delete_missing_task(engine) -> None:
    with pytest.raises(NotFound):
        engine.delete_task(str(ObjectId()))


def test_get_task_populates_assignee_name(make_task, engine, employee) -> None:
    task = make_task(assigned_to=str(employee["_id"]))
    found = engine.get_task(str(task["_id"]))
    assert found["assigned_to"] == {"_id": employee["_id"], "name": "Eddie Employee"}


def test_list_project_tasks(make_task, engine, project, employee) -> None:
    make_task(name="one", assigned_to=str(employee["_id"]))
    gone = make_task(name="two")
    engine.delete_task(str(gone["_id"]))

    tasks = engine.list_project_tasks(str(project["_id"]))

    assert [t["name"] for t in tasks] == ["one"]
    assert tasks[0]["assigned_to"] == {"_id": employee["_id"], "name": "Eddie Employee", "role": "employee"}
