"""
Request Schemas for the Task Tracker

Task documents live in the "task" collection; these models validate the
bodies accepted when creating and editing them. Ids arrive as strings and
are converted to ObjectId by the engine.
"""
from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field

TaskStatus = Literal["todo", "in-progress", "review", "done"]
TaskPriority = Literal["low", "medium", "high", "urgent"]


# Tasks
class TaskCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: TaskStatus = "todo"
    priority: TaskPriority = "medium"
    due_date: Optional[datetime] = None
    effort: Optional[float] = Field(None, ge=0)
    assigned_to: Optional[str] = Field(None, description="User id of the assignee")
    in_project: str = Field(..., description="Project id; fixed at creation")


class TaskUpdate(BaseModel):
    """Editable subset of a task. Fields outside the actor's role are ignored."""
    model_config = ConfigDict(extra="ignore")

    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[str] = None
    effort: Optional[float] = Field(None, ge=0)
