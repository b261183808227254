from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException, status
from opentelemetry import trace
from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from bizsuite import audit, events
from bizsuite.core.actor import ActorUser, coerce_user_uuid
from bizsuite.core.config import get_settings
from bizsuite.core.pagination import build_page_meta, normalize_pagination
from bizsuite.crm.models import CRMCompany, utcnow
from bizsuite.crm.repositories import CompanyHierarchyRepository, StaleCompanyError
from bizsuite.crm.schemas import (
    CompanyCreate,
    CompanyHierarchyRead,
    CompanyPage,
    CompanyRead,
    CompanySetParentRequest,
    CompanySummary,
    CompanyUpdate,
)
from bizsuite.hierarchy import CorruptHierarchyError, CycleError, ancestors, descendants, set_parent, would_create_cycle
from bizsuite.logging import hierarchy_log_fields
from bizsuite.metrics import observe_hierarchy_corruption, observe_hierarchy_cycle_rejection, observe_hierarchy_traversal
from bizsuite.otel import hierarchy_span


logger = logging.getLogger("bizsuite.crm.companies")
tracer = trace.get_tracer("bizsuite.crm.companies")

HIERARCHY_ENTITY = "company"
READ_ALL_PERMISSION = "crm.companies.read_all"

_SORT_COLUMNS = {
    "created_at": CRMCompany.created_at,
    "updated_at": CRMCompany.updated_at,
    "name": CRMCompany.name,
    "annual_revenue": CRMCompany.annual_revenue,
    "employee_count": CRMCompany.employee_count,
}

_UPDATABLE_FIELDS = (
    "domain",
    "industry",
    "phone",
    "city",
    "state",
    "country",
    "employee_count",
    "annual_revenue",
    "company_type",
    "owner_user_id",
    "custom_properties",
)


def _error(status_code: int, code: str, message: str, details: Any = None) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message, "details": details})


class CompanyService:
    entity_type = "crm.company"

    def create_company(self, session: Session, actor_user: ActorUser, dto: CompanyCreate) -> CompanyRead:
        name = dto.name.strip()
        if not name:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="name is required")

        legal_entity_id = dto.legal_entity_id or actor_user.current_legal_entity_id
        if legal_entity_id is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="legal_entity_id is required",
            )
        if not actor_user.can_access_legal_entity(legal_entity_id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="legal entity not allowed")

        if dto.domain:
            self._ensure_domain_available(session, dto.domain)

        repository = CompanyHierarchyRepository(session, legal_entity_id)
        if dto.parent_company_id is not None and repository.get_live(dto.parent_company_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="parent company not found")

        company = CRMCompany(
            legal_entity_id=legal_entity_id,
            name=name,
            domain=dto.domain,
            industry=dto.industry,
            phone=dto.phone,
            city=dto.city,
            state=dto.state,
            country=dto.country,
            employee_count=dto.employee_count,
            annual_revenue=dto.annual_revenue,
            company_type=dto.company_type,
            parent_company_id=dto.parent_company_id,
            owner_user_id=dto.owner_user_id or coerce_user_uuid(actor_user.user_id),
            custom_properties=dto.custom_properties or {},
        )
        session.add(company)
        session.flush()

        after = self._to_read(company).model_dump(mode="json")
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(company.id),
            action="create",
            before=None,
            after=after,
            correlation_id=actor_user.correlation_id,
            tenant_id=str(legal_entity_id),
        )
        events.publish(
            events.build_envelope(
                "crm.company.created",
                actor_user_id=actor_user.user_id,
                legal_entity_id=str(legal_entity_id),
                payload={
                    "company_id": str(company.id),
                    "name": company.name,
                    "parent_company_id": str(company.parent_company_id) if company.parent_company_id else None,
                },
            )
        )
        session.commit()
        return self._to_read_model(session, company.id)

    def list_companies(
        self,
        session: Session,
        actor_user: ActorUser,
        filters: dict[str, Any],
        *,
        page: int | None = None,
        limit: int | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> CompanyPage:
        settings = get_settings()
        resolved_page, resolved_limit = normalize_pagination(
            page,
            limit,
            default_limit=settings.default_page_size,
            max_limit=settings.max_page_size,
        )

        stmt: Select[tuple[CRMCompany]] = select(CRMCompany).where(CRMCompany.deleted_at.is_(None))
        if READ_ALL_PERMISSION not in actor_user.permissions and not actor_user.is_super_admin:
            if not actor_user.allowed_legal_entity_ids:
                return CompanyPage(data=[], meta=build_page_meta(0, resolved_page, resolved_limit))
            stmt = stmt.where(CRMCompany.legal_entity_id.in_(actor_user.allowed_legal_entity_ids))

        if filters.get("parent_company_id"):
            stmt = stmt.where(CRMCompany.parent_company_id == filters["parent_company_id"])
        if filters.get("company_type"):
            stmt = stmt.where(CRMCompany.company_type == filters["company_type"])
        if filters.get("owner_user_id"):
            stmt = stmt.where(CRMCompany.owner_user_id == filters["owner_user_id"])
        if filters.get("industry"):
            stmt = stmt.where(CRMCompany.industry == filters["industry"])
        search = (filters.get("search") or "").strip()
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    CRMCompany.name.ilike(pattern),
                    CRMCompany.domain.ilike(pattern),
                    CRMCompany.industry.ilike(pattern),
                )
            )

        total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)

        sort_column = _SORT_COLUMNS.get(sort_by or "", CRMCompany.created_at)
        ordering = sort_column.asc() if (sort_order or "").lower() == "asc" else sort_column.desc()
        stmt = (
            stmt.options(selectinload(CRMCompany.parent_company), selectinload(CRMCompany.subsidiaries))
            .order_by(ordering, CRMCompany.id.asc())
            .offset((resolved_page - 1) * resolved_limit)
            .limit(resolved_limit)
        )
        companies = session.scalars(stmt).all()
        return CompanyPage(
            data=[self._to_read(company) for company in companies],
            meta=build_page_meta(total, resolved_page, resolved_limit),
        )

    def get_company(self, session: Session, actor_user: ActorUser, company_id: uuid.UUID) -> CompanyRead:
        company = self._get_visible(session, actor_user, company_id)
        return self._to_read_model(session, company.id)

    def update_company(
        self,
        session: Session,
        actor_user: ActorUser,
        company_id: uuid.UUID,
        dto: CompanyUpdate,
    ) -> CompanyRead:
        existing = self._get_visible(session, actor_user, company_id)
        before = self._to_read(existing).model_dump(mode="json")
        provided = dto.model_fields_set

        changes: dict[str, Any] = {}
        if "name" in provided and dto.name is not None:
            if not dto.name.strip():
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="name cannot be empty")
            changes["name"] = dto.name.strip()
        for field_name in _UPDATABLE_FIELDS:
            if field_name in provided:
                changes[field_name] = getattr(dto, field_name)
        if changes.get("domain") and changes["domain"] != existing.domain:
            self._ensure_domain_available(session, changes["domain"], exclude_id=existing.id)

        reparented = False
        if "parent_company_id" in provided and dto.parent_company_id != existing.parent_company_id:
            self._validate_reparent(session, existing, dto.parent_company_id)
            changes["parent_company_id"] = dto.parent_company_id
            reparented = True

        if not changes:
            return self._to_read_model(session, existing.id)

        changes["updated_at"] = utcnow()
        changes["row_version"] = CRMCompany.row_version + 1
        result = session.execute(
            update(CRMCompany)
            .where(
                and_(
                    CRMCompany.id == company_id,
                    CRMCompany.row_version == dto.row_version,
                    CRMCompany.deleted_at.is_(None),
                )
            )
            .values(**changes)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

        session.refresh(existing)
        after = self._to_read(existing).model_dump(mode="json")
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(existing.id),
            action="update",
            before=before,
            after=after,
            correlation_id=actor_user.correlation_id,
            tenant_id=str(existing.legal_entity_id),
        )
        events.publish(
            events.build_envelope(
                "crm.company.updated",
                actor_user_id=actor_user.user_id,
                legal_entity_id=str(existing.legal_entity_id),
                payload={"company_id": str(existing.id), "row_version": existing.row_version},
            )
        )
        if reparented:
            self._publish_reparented(actor_user, existing, before.get("parent_company_id"))
        session.commit()
        return self._to_read_model(session, company_id)

    def set_parent_company(
        self,
        session: Session,
        actor_user: ActorUser,
        company_id: uuid.UUID,
        dto: CompanySetParentRequest,
    ) -> CompanyRead:
        company = self._get_visible(session, actor_user, company_id)
        if dto.parent_company_id == company.parent_company_id:
            # Already in place; only the caller's row_version is checked.
            if dto.row_version != company.row_version:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")
            return self._to_read_model(session, company.id)

        previous_parent_id = company.parent_company_id
        repository = CompanyHierarchyRepository(session, company.legal_entity_id)

        with hierarchy_span(
            tracer,
            "crm.company.set_parent",
            company_id=company.id,
            parent_company_id=dto.parent_company_id,
        ):
            self._ensure_parent_visible(repository, company, dto.parent_company_id)

            def apply_parent(node_id: uuid.UUID, parent_id: uuid.UUID | None) -> None:
                repository.apply_parent(node_id, parent_id, expected_row_version=dto.row_version)

            try:
                set_parent(company.id, dto.parent_company_id, repository.lookup_parent, apply_parent)
            except CycleError as exc:
                raise self._reject_cycle(exc) from exc
            except StaleCompanyError as exc:
                session.rollback()
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict") from exc
            finally:
                observe_hierarchy_traversal(HIERARCHY_ENTITY, "set_parent", repository.lookups)

        session.refresh(company)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(company.id),
            action="set_parent",
            before={"parent_company_id": str(previous_parent_id) if previous_parent_id else None},
            after={"parent_company_id": str(company.parent_company_id) if company.parent_company_id else None},
            correlation_id=actor_user.correlation_id,
            tenant_id=str(company.legal_entity_id),
        )
        self._publish_reparented(actor_user, company, str(previous_parent_id) if previous_parent_id else None)
        session.commit()
        return self._to_read_model(session, company_id)

    def soft_delete_company(self, session: Session, actor_user: ActorUser, company_id: uuid.UUID) -> None:
        company = self._get_visible(session, actor_user, company_id)
        repository = CompanyHierarchyRepository(session, company.legal_entity_id)
        subsidiaries = repository.count_subsidiaries(company.id)
        if subsidiaries > 0:
            raise _error(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                "crm_company_has_subsidiaries",
                "Cannot delete company with subsidiaries. Please reassign or delete subsidiaries first.",
                {"subsidiaries": subsidiaries},
            )

        company.deleted_at = utcnow()
        company.updated_at = utcnow()
        company.row_version = company.row_version + 1
        session.add(company)

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(company.id),
            action="soft_delete",
            before={"deleted_at": None},
            after={"deleted_at": company.deleted_at.isoformat()},
            correlation_id=actor_user.correlation_id,
            tenant_id=str(company.legal_entity_id),
        )
        events.publish(
            events.build_envelope(
                "crm.company.deleted",
                actor_user_id=actor_user.user_id,
                legal_entity_id=str(company.legal_entity_id),
                payload={"company_id": str(company.id), "deleted_at": company.deleted_at.isoformat()},
            )
        )
        session.commit()

    def list_ancestors(self, session: Session, actor_user: ActorUser, company_id: uuid.UUID) -> CompanyHierarchyRead:
        company = self._get_visible(session, actor_user, company_id)
        repository = CompanyHierarchyRepository(session, company.legal_entity_id)
        max_depth = get_settings().hierarchy_max_depth
        try:
            ancestor_ids = list(ancestors(company.id, repository.lookup_parent, max_depth=max_depth))
        except CorruptHierarchyError as exc:
            raise self._report_corruption(exc) from exc
        finally:
            observe_hierarchy_traversal(HIERARCHY_ENTITY, "ancestors", repository.lookups)
        return self._to_hierarchy_read(repository, company.id, "ancestors", ancestor_ids)

    def list_descendants(self, session: Session, actor_user: ActorUser, company_id: uuid.UUID) -> CompanyHierarchyRead:
        company = self._get_visible(session, actor_user, company_id)
        repository = CompanyHierarchyRepository(session, company.legal_entity_id)
        try:
            descendant_ids = list(descendants(company.id, repository.lookup_children))
        finally:
            observe_hierarchy_traversal(HIERARCHY_ENTITY, "descendants", repository.lookups)
        return self._to_hierarchy_read(repository, company.id, "descendants", descendant_ids)

    def _validate_reparent(
        self,
        session: Session,
        company: CRMCompany,
        candidate_parent_id: uuid.UUID | None,
    ) -> None:
        repository = CompanyHierarchyRepository(session, company.legal_entity_id)
        with hierarchy_span(
            tracer,
            "crm.company.check_parent",
            company_id=company.id,
            parent_company_id=candidate_parent_id,
        ):
            self._ensure_parent_visible(repository, company, candidate_parent_id)
            try:
                unsafe = would_create_cycle(company.id, candidate_parent_id, repository.lookup_parent)
            finally:
                observe_hierarchy_traversal(HIERARCHY_ENTITY, "would_create_cycle", repository.lookups)
            if unsafe:
                raise self._reject_cycle(CycleError(company.id, candidate_parent_id))

    def _ensure_parent_visible(
        self,
        repository: CompanyHierarchyRepository,
        company: CRMCompany,
        candidate_parent_id: uuid.UUID | None,
    ) -> None:
        if candidate_parent_id is None or candidate_parent_id == company.id:
            return
        if repository.get_live(candidate_parent_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="parent company not found")

    def _reject_cycle(self, exc: CycleError) -> HTTPException:
        observe_hierarchy_cycle_rejection(HIERARCHY_ENTITY)
        logger.info(
            "hierarchy.cycle_rejected",
            extra=hierarchy_log_fields(self.entity_type, exc.node_id, exc.candidate_parent_id),
        )
        if exc.is_self_reference:
            message = "Company cannot be its own parent"
        else:
            message = "This would create a circular reference in the company hierarchy"
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "crm_company_hierarchy_cycle",
            message,
            {"company_id": str(exc.node_id), "parent_company_id": str(exc.candidate_parent_id)},
        )

    def _report_corruption(self, exc: CorruptHierarchyError) -> HTTPException:
        observe_hierarchy_corruption(HIERARCHY_ENTITY)
        logger.error(
            "hierarchy.corrupt",
            extra=hierarchy_log_fields(self.entity_type, exc.node_id, steps=exc.steps, error=exc.reason),
        )
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "crm_company_hierarchy_corrupt",
            "Company hierarchy data is inconsistent",
            {"company_id": str(exc.node_id)},
        )

    def _publish_reparented(
        self,
        actor_user: ActorUser,
        company: CRMCompany,
        previous_parent_id: str | None,
    ) -> None:
        events.publish(
            events.build_envelope(
                "crm.company.reparented",
                actor_user_id=actor_user.user_id,
                legal_entity_id=str(company.legal_entity_id),
                payload={
                    "company_id": str(company.id),
                    "previous_parent_company_id": previous_parent_id,
                    "parent_company_id": str(company.parent_company_id) if company.parent_company_id else None,
                },
            )
        )

    def _ensure_domain_available(
        self,
        session: Session,
        domain: str,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        stmt = select(CRMCompany.id).where(
            and_(func.lower(CRMCompany.domain) == domain.lower(), CRMCompany.deleted_at.is_(None))
        )
        if exclude_id is not None:
            stmt = stmt.where(CRMCompany.id != exclude_id)
        if session.scalar(stmt.limit(1)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Company with this domain already exists")

    def _get_visible(self, session: Session, actor_user: ActorUser, company_id: uuid.UUID) -> CRMCompany:
        company = session.scalar(
            select(CRMCompany).where(and_(CRMCompany.id == company_id, CRMCompany.deleted_at.is_(None)))
        )
        if company is None or not actor_user.can_access_legal_entity(
            company.legal_entity_id,
            bypass_permission=READ_ALL_PERMISSION,
        ):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="company not found")
        return company

    def _to_read_model(self, session: Session, company_id: uuid.UUID) -> CompanyRead:
        company = session.scalar(
            select(CRMCompany)
            .where(CRMCompany.id == company_id)
            .options(selectinload(CRMCompany.parent_company), selectinload(CRMCompany.subsidiaries))
            .execution_options(populate_existing=True)
        )
        if company is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="company not found")
        return self._to_read(company)

    def _to_read(self, company: CRMCompany) -> CompanyRead:
        parent = company.parent_company
        return CompanyRead.model_validate(
            {
                "id": company.id,
                "legal_entity_id": company.legal_entity_id,
                "name": company.name,
                "domain": company.domain,
                "industry": company.industry,
                "phone": company.phone,
                "city": company.city,
                "state": company.state,
                "country": company.country,
                "employee_count": company.employee_count,
                "annual_revenue": company.annual_revenue,
                "company_type": company.company_type,
                "parent_company_id": company.parent_company_id,
                "owner_user_id": company.owner_user_id,
                "custom_properties": company.custom_properties or {},
                "parent_company": CompanySummary.model_validate(parent) if parent is not None else None,
                "subsidiaries": [
                    CompanySummary.model_validate(child)
                    for child in sorted(company.subsidiaries, key=lambda row: row.name)
                    if child.deleted_at is None
                ],
                "created_at": company.created_at,
                "updated_at": company.updated_at,
                "row_version": company.row_version,
            }
        )

    def _to_hierarchy_read(
        self,
        repository: CompanyHierarchyRepository,
        company_id: uuid.UUID,
        direction: str,
        node_ids: list[uuid.UUID],
    ) -> CompanyHierarchyRead:
        rows = repository.get_many(node_ids)
        return CompanyHierarchyRead(
            company_id=company_id,
            direction=direction,  # type: ignore[arg-type]
            items=[CompanySummary.model_validate(rows[node_id]) for node_id in node_ids if node_id in rows],
        )
