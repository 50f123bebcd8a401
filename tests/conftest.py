# tests/conftest.py

from __future__ import annotations

from typing import Any, Callable

import pytest

from task_engine import TaskEngine

from .fakes import FakeStore, as_actor


def _user(store: FakeStore, name: str, email: str, role: str) -> dict[str, Any]:
    return store.create(
        "user",
        {
            "name": name,
            "email": email,
            "password": "hashed",
            "role": role,
            "responsible_for": [],
            "member_of": [],
            "is_verified": True,
        },
    )


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def engine(store: FakeStore) -> TaskEngine:
    return TaskEngine(store)


@pytest.fixture()
def manager_user(store: FakeStore) -> dict[str, Any]:
    return _user(store, "Mona Manager", "mona@example.com", "manager")


@pytest.fixture()
def employee(store: FakeStore) -> dict[str, Any]:
    return _user(store, "Eddie Employee", "eddie@example.com", "employee")


@pytest.fixture()
def other_employee(store: FakeStore) -> dict[str, Any]:
    return _user(store, "Erin Worker", "erin@example.com", "employee")


@pytest.fixture()
def project(store: FakeStore, manager_user, employee, other_employee) -> dict[str, Any]:
    return store.create(
        "project",
        {
            "name": "Website relaunch",
            "include_tasks": [],
            "include_members": [manager_user["_id"], employee["_id"], other_employee["_id"]],
        },
    )


@pytest.fixture()
def make_task(engine: TaskEngine, manager_user, project) -> Callable[..., dict[str, Any]]:
    """Create a task as the manager; keyword arguments override the payload."""

    def _make(**overrides: Any) -> dict[str, Any]:
        payload = {
            "name": "Write release notes",
            "description": "Summarise the sprint",
            "status": "todo",
            "priority": "low",
            "effort": 3,
            "in_project": str(project["_id"]),
        }
        payload.update(overrides)
        return engine.create_task(payload, as_actor(manager_user))

    return _make
