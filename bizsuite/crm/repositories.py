from __future__ import annotations

import uuid

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from bizsuite.crm.models import CRMCompany, utcnow


class StaleCompanyError(Exception):
    def __init__(self, company_id: uuid.UUID, expected_row_version: int) -> None:
        self.company_id = company_id
        self.expected_row_version = expected_row_version
        super().__init__(f"company {company_id} is not at row_version {expected_row_version}")


class CompanyHierarchyRepository:
    """Parent-link lookups for live companies of one legal entity.

    Companies in other legal entities and soft-deleted companies are invisible,
    so a hierarchy never crosses a tenant boundary. ``lookups`` counts the
    queries issued, for traversal metrics.
    """

    def __init__(self, session: Session, legal_entity_id: uuid.UUID) -> None:
        self.session = session
        self.legal_entity_id = legal_entity_id
        self.lookups = 0

    def _live(self):  # type: ignore[no-untyped-def]
        return and_(CRMCompany.legal_entity_id == self.legal_entity_id, CRMCompany.deleted_at.is_(None))

    def lookup_parent(self, company_id: uuid.UUID) -> uuid.UUID | None:
        self.lookups += 1
        return self.session.scalar(
            select(CRMCompany.parent_company_id).where(and_(CRMCompany.id == company_id, self._live()))
        )

    def lookup_children(self, company_id: uuid.UUID) -> list[uuid.UUID]:
        self.lookups += 1
        return list(
            self.session.scalars(
                select(CRMCompany.id)
                .where(and_(CRMCompany.parent_company_id == company_id, self._live()))
                .order_by(CRMCompany.name.asc(), CRMCompany.id.asc())
            ).all()
        )

    def get_live(self, company_id: uuid.UUID) -> CRMCompany | None:
        return self.session.scalar(select(CRMCompany).where(and_(CRMCompany.id == company_id, self._live())))

    def get_many(self, company_ids: list[uuid.UUID]) -> dict[uuid.UUID, CRMCompany]:
        if not company_ids:
            return {}
        rows = self.session.scalars(select(CRMCompany).where(CRMCompany.id.in_(company_ids))).all()
        return {row.id: row for row in rows}

    def count_subsidiaries(self, company_id: uuid.UUID) -> int:
        return len(self.lookup_children(company_id))

    def apply_parent(
        self,
        company_id: uuid.UUID,
        parent_company_id: uuid.UUID | None,
        *,
        expected_row_version: int,
    ) -> None:
        result = self.session.execute(
            update(CRMCompany)
            .where(
                and_(
                    CRMCompany.id == company_id,
                    CRMCompany.row_version == expected_row_version,
                    self._live(),
                )
            )
            .values(
                parent_company_id=parent_company_id,
                updated_at=utcnow(),
                row_version=CRMCompany.row_version + 1,
            )
        )
        if result.rowcount == 0:
            raise StaleCompanyError(company_id, expected_row_version)
