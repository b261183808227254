from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


CompanyType = Literal["prospect", "customer", "partner", "vendor"]
CompanySortField = Literal["created_at", "updated_at", "name", "annual_revenue", "employee_count"]


def _normalize_domain(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    return normalized or None


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    domain: str | None = Field(default=None, max_length=255)
    industry: str | None = None
    phone: str | None = Field(default=None, max_length=64)
    city: str | None = None
    state: str | None = None
    country: str | None = None
    employee_count: int | None = Field(default=None, ge=0)
    annual_revenue: Decimal | None = Field(default=None, ge=0)
    company_type: CompanyType | None = None
    parent_company_id: UUID | None = None
    owner_user_id: UUID | None = None
    legal_entity_id: UUID | None = None
    custom_properties: dict[str, Any] | None = None

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, value: str | None) -> str | None:
        return _normalize_domain(value)


class CompanyUpdate(BaseModel):
    row_version: int
    name: str | None = Field(default=None, max_length=255)
    domain: str | None = Field(default=None, max_length=255)
    industry: str | None = None
    phone: str | None = Field(default=None, max_length=64)
    city: str | None = None
    state: str | None = None
    country: str | None = None
    employee_count: int | None = Field(default=None, ge=0)
    annual_revenue: Decimal | None = Field(default=None, ge=0)
    company_type: CompanyType | None = None
    parent_company_id: UUID | None = None
    owner_user_id: UUID | None = None
    custom_properties: dict[str, Any] | None = None

    @field_validator("domain")
    @classmethod
    def normalize_domain(cls, value: str | None) -> str | None:
        return _normalize_domain(value)


class CompanySetParentRequest(BaseModel):
    parent_company_id: UUID | None
    row_version: int


class CompanySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    domain: str | None = None
    parent_company_id: UUID | None = None


class CompanyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    legal_entity_id: UUID
    name: str
    domain: str | None
    industry: str | None
    phone: str | None
    city: str | None
    state: str | None
    country: str | None
    employee_count: int | None
    annual_revenue: Decimal | None
    company_type: CompanyType | None
    parent_company_id: UUID | None
    owner_user_id: UUID | None
    custom_properties: dict[str, Any]
    parent_company: CompanySummary | None = None
    subsidiaries: list[CompanySummary] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    row_version: int


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class CompanyPage(BaseModel):
    data: list[CompanyRead]
    meta: PageMeta


class CompanyHierarchyRead(BaseModel):
    company_id: UUID
    direction: Literal["ancestors", "descendants"]
    items: list[CompanySummary]
