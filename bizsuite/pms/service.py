from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from opentelemetry import trace
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from bizsuite import audit, events
from bizsuite.core.actor import ActorUser
from bizsuite.hierarchy import dependency_path
from bizsuite.logging import hierarchy_log_fields
from bizsuite.metrics import observe_hierarchy_cycle_rejection, observe_hierarchy_traversal
from bizsuite.otel import hierarchy_span
from bizsuite.pms.models import PMSProject, PMSTask, PMSTaskDependency
from bizsuite.pms.schemas import (
    ProjectCreate,
    ProjectRead,
    TaskCreate,
    TaskDependencyCreate,
    TaskDependencyRead,
    TaskRead,
)


logger = logging.getLogger("bizsuite.pms.tasks")
tracer = trace.get_tracer("bizsuite.pms.tasks")

DEPENDENCY_ENTITY = "task_dependency"


class TaskDependencyGraph:
    """Outgoing "depends on" edges of the tasks in one project."""

    def __init__(self, session: Session, project_id: uuid.UUID) -> None:
        self.session = session
        self.project_id = project_id
        self.lookups = 0

    def lookup_dependencies(self, task_id: uuid.UUID) -> list[uuid.UUID]:
        self.lookups += 1
        return list(
            self.session.scalars(
                select(PMSTaskDependency.depends_on_task_id)
                .join(PMSTask, PMSTask.id == PMSTaskDependency.task_id)
                .where(and_(PMSTaskDependency.task_id == task_id, PMSTask.project_id == self.project_id))
            ).all()
        )


class ProjectService:
    entity_type = "pms.project"

    def create_project(self, session: Session, actor_user: ActorUser, dto: ProjectCreate) -> ProjectRead:
        name = dto.name.strip()
        if not name:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="name is required")

        legal_entity_id = dto.legal_entity_id or actor_user.current_legal_entity_id
        if legal_entity_id is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="legal_entity_id is required")
        if not actor_user.can_access_legal_entity(legal_entity_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="legal entity not allowed")

        project = PMSProject(legal_entity_id=legal_entity_id, name=name, description=dto.description)
        session.add(project)
        session.flush()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(project.id),
            action="create",
            before=None,
            after={"name": project.name, "legal_entity_id": str(legal_entity_id)},
            correlation_id=actor_user.correlation_id,
            tenant_id=str(legal_entity_id),
        )
        session.commit()
        session.refresh(project)
        return ProjectRead.model_validate(project)


class TaskService:
    entity_type = "pms.task"

    def create_task(self, session: Session, actor_user: ActorUser, dto: TaskCreate) -> TaskRead:
        title = dto.title.strip()
        if not title:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="title is required")

        project = session.scalar(select(PMSProject).where(PMSProject.id == dto.project_id))
        if project is None or not actor_user.can_access_legal_entity(project.legal_entity_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="project not found")

        task = PMSTask(
            project_id=project.id,
            title=title,
            description=dto.description,
            status=dto.status,
            priority=dto.priority,
        )
        session.add(task)
        session.flush()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(task.id),
            action="create",
            before=None,
            after={"project_id": str(project.id), "title": task.title, "status": task.status},
            correlation_id=actor_user.correlation_id,
            tenant_id=str(project.legal_entity_id),
        )
        events.publish(
            events.build_envelope(
                "pms.task.created",
                actor_user_id=actor_user.user_id,
                legal_entity_id=str(project.legal_entity_id),
                payload={"task_id": str(task.id), "project_id": str(project.id)},
            )
        )
        session.commit()
        session.refresh(task)
        return TaskRead.model_validate(task)

    def get_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> TaskRead:
        return TaskRead.model_validate(self._get_visible(session, actor_user, task_id))

    def add_dependency(
        self,
        session: Session,
        actor_user: ActorUser,
        task_id: uuid.UUID,
        dto: TaskDependencyCreate,
    ) -> TaskDependencyRead:
        task = self._get_visible(session, actor_user, task_id)
        depends_on = self._get_visible(session, actor_user, dto.depends_on_task_id)

        if task.id == depends_on.id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="A task cannot depend on itself",
            )
        if task.project_id != depends_on.project_id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Tasks must be in the same project to create a dependency",
            )

        existing = session.scalar(
            select(PMSTaskDependency).where(
                and_(PMSTaskDependency.task_id == task.id, PMSTaskDependency.depends_on_task_id == depends_on.id)
            )
        )
        if existing is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Dependency already exists")

        graph = TaskDependencyGraph(session, task.project_id)
        with hierarchy_span(tracer, "pms.task.add_dependency", task_id=task.id, depends_on_task_id=depends_on.id):
            try:
                path = dependency_path(task.id, depends_on.id, graph.lookup_dependencies)
            finally:
                observe_hierarchy_traversal(DEPENDENCY_ENTITY, "dependency_path", graph.lookups)

        if path:
            cycle = [str(task.id), *[str(node) for node in path]]
            observe_hierarchy_cycle_rejection(DEPENDENCY_ENTITY)
            logger.info(
                "hierarchy.cycle_rejected",
                extra=hierarchy_log_fields(DEPENDENCY_ENTITY, task.id, depends_on.id, cycle_path=cycle),
            )
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "code": "pms_task_dependency_cycle",
                    "message": "This dependency would create a circular reference",
                    "details": {"cycle_path": cycle},
                },
            )

        dependency = PMSTaskDependency(
            task_id=task.id,
            depends_on_task_id=depends_on.id,
            dependency_type=dto.dependency_type,
        )
        session.add(dependency)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Dependency already exists")

        legal_entity_id = str(task.project.legal_entity_id)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"{self.entity_type}.dependency",
            entity_id=str(dependency.id),
            action="create",
            before=None,
            after={
                "task_id": str(task.id),
                "depends_on_task_id": str(depends_on.id),
                "dependency_type": dependency.dependency_type,
            },
            correlation_id=actor_user.correlation_id,
            tenant_id=legal_entity_id,
        )
        events.publish(
            events.build_envelope(
                "pms.task.dependency_added",
                actor_user_id=actor_user.user_id,
                legal_entity_id=legal_entity_id,
                payload={"task_id": str(task.id), "depends_on_task_id": str(depends_on.id)},
            )
        )
        session.commit()
        return self._to_dependency_read(session, dependency.id)

    def list_dependencies(
        self,
        session: Session,
        actor_user: ActorUser,
        task_id: uuid.UUID,
    ) -> list[TaskDependencyRead]:
        task = self._get_visible(session, actor_user, task_id)
        rows = session.scalars(
            select(PMSTaskDependency)
            .where(PMSTaskDependency.task_id == task.id)
            .options(selectinload(PMSTaskDependency.depends_on_task))
            .order_by(PMSTaskDependency.created_at.asc())
        ).all()
        return [TaskDependencyRead.model_validate(row) for row in rows]

    def remove_dependency(
        self,
        session: Session,
        actor_user: ActorUser,
        task_id: uuid.UUID,
        dependency_id: uuid.UUID,
    ) -> None:
        task = self._get_visible(session, actor_user, task_id)
        dependency = session.scalar(select(PMSTaskDependency).where(PMSTaskDependency.id == dependency_id))
        if dependency is None or dependency.task_id != task.id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dependency not found")

        legal_entity_id = str(task.project.legal_entity_id)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=f"{self.entity_type}.dependency",
            entity_id=str(dependency.id),
            action="delete",
            before={"task_id": str(task.id), "depends_on_task_id": str(dependency.depends_on_task_id)},
            after=None,
            correlation_id=actor_user.correlation_id,
            tenant_id=legal_entity_id,
        )
        events.publish(
            events.build_envelope(
                "pms.task.dependency_removed",
                actor_user_id=actor_user.user_id,
                legal_entity_id=legal_entity_id,
                payload={"task_id": str(task.id), "depends_on_task_id": str(dependency.depends_on_task_id)},
            )
        )
        session.delete(dependency)
        session.commit()

    def _get_visible(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> PMSTask:
        task = session.scalar(
            select(PMSTask).where(PMSTask.id == task_id).options(selectinload(PMSTask.project))
        )
        if task is None or not actor_user.can_access_legal_entity(task.project.legal_entity_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="task not found")
        return task

    def _to_dependency_read(self, session: Session, dependency_id: uuid.UUID) -> TaskDependencyRead:
        dependency = session.scalar(
            select(PMSTaskDependency)
            .where(PMSTaskDependency.id == dependency_id)
            .options(selectinload(PMSTaskDependency.depends_on_task))
        )
        if dependency is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dependency not found")
        return TaskDependencyRead.model_validate(dependency)
