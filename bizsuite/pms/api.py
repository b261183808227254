from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from bizsuite.api.deps import get_current_user, require_permission
from bizsuite.api.errors import http_exception_response
from bizsuite.core.actor import ActorUser
from bizsuite.core.database import get_db
from bizsuite.pms.schemas import (
    ProjectCreate,
    ProjectRead,
    TaskCreate,
    TaskDependencyCreate,
    TaskDependencyRead,
    TaskRead,
)
from bizsuite.pms.service import ProjectService, TaskService

router = APIRouter(prefix="/api/pms", tags=["pms"])
project_service = ProjectService()
task_service = TaskService()


@router.post("/projects", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    request: Request,
    dto: ProjectCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ProjectRead | JSONResponse:
    try:
        require_permission(user, "pms.projects.write")
        return project_service.create_project(db, user, dto)
    except HTTPException as exc:
        return http_exception_response(request, exc, "pms_project_create_failed")


@router.post("/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "pms.tasks.write")
        return task_service.create_task(db, user, dto)
    except HTTPException as exc:
        return http_exception_response(request, exc, "pms_task_create_failed")


@router.get("/tasks/{task_id}", response_model=TaskRead)
def get_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "pms.tasks.read")
        return task_service.get_task(db, user, task_id)
    except HTTPException as exc:
        return http_exception_response(request, exc, "pms_task_get_failed")


@router.post(
    "/tasks/{task_id}/dependencies",
    response_model=TaskDependencyRead,
    status_code=status.HTTP_201_CREATED,
)
def add_task_dependency(
    request: Request,
    task_id: uuid.UUID,
    dto: TaskDependencyCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskDependencyRead | JSONResponse:
    try:
        require_permission(user, "pms.tasks.write")
        return task_service.add_dependency(db, user, task_id, dto)
    except HTTPException as exc:
        return http_exception_response(request, exc, "pms_task_dependency_create_failed")


@router.get("/tasks/{task_id}/dependencies", response_model=list[TaskDependencyRead])
def list_task_dependencies(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TaskDependencyRead] | JSONResponse:
    try:
        require_permission(user, "pms.tasks.read")
        return task_service.list_dependencies(db, user, task_id)
    except HTTPException as exc:
        return http_exception_response(request, exc, "pms_task_dependency_list_failed")


@router.delete("/tasks/{task_id}/dependencies/{dependency_id}", status_code=status.HTTP_200_OK, response_model=None)
def remove_task_dependency(
    request: Request,
    task_id: uuid.UUID,
    dependency_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "pms.tasks.write")
        task_service.remove_dependency(db, user, task_id, dependency_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_exception_response(request, exc, "pms_task_dependency_delete_failed")
