from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


TaskStatus = Literal["todo", "in_progress", "done"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
DependencyType = Literal["blocks", "blocked_by", "relates_to"]


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    legal_entity_id: UUID | None = None


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    legal_entity_id: UUID
    name: str
    description: str | None
    created_at: datetime


class TaskCreate(BaseModel):
    project_id: UUID
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    status: TaskStatus = "todo"
    priority: TaskPriority = "medium"


class TaskSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    status: TaskStatus
    priority: TaskPriority


class TaskRead(TaskSummary):
    project_id: UUID
    description: str | None
    created_at: datetime
    updated_at: datetime
    row_version: int


class TaskDependencyCreate(BaseModel):
    depends_on_task_id: UUID
    dependency_type: DependencyType


class TaskDependencyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    task_id: UUID
    depends_on_task_id: UUID
    dependency_type: DependencyType
    created_at: datetime
    depends_on_task: TaskSummary | None = None
