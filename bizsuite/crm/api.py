from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from bizsuite.api.deps import get_current_user, require_permission
from bizsuite.api.errors import http_exception_response
from bizsuite.core.actor import ActorUser
from bizsuite.core.database import get_db
from bizsuite.crm.schemas import (
    CompanyCreate,
    CompanyHierarchyRead,
    CompanyPage,
    CompanyRead,
    CompanySetParentRequest,
    CompanySortField,
    CompanyType,
    CompanyUpdate,
)
from bizsuite.crm.service import CompanyService

router = APIRouter(prefix="/api/crm/companies", tags=["crm.companies"])
service = CompanyService()


@router.post("", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(
    request: Request,
    dto: CompanyCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.write")
        return service.create_company(db, user, dto)
    except HTTPException as exc:
        return http_exception_response(request, exc, "crm_company_create_failed")


@router.get("", response_model=CompanyPage)
def list_companies(
    request: Request,
    parent_company_id: uuid.UUID | None = Query(default=None),
    company_type: CompanyType | None = Query(default=None),
    owner_user_id: uuid.UUID | None = Query(default=None),
    industry: str | None = Query(default=None),
    search: str | None = Query(default=None),
    sort_by: CompanySortField | None = Query(default=None),
    sort_order: str | None = Query(default=None, pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyPage | JSONResponse:
    try:
        require_permission(user, "crm.companies.read")
        return service.list_companies(
            db,
            user,
            filters={
                "parent_company_id": parent_company_id,
                "company_type": company_type,
                "owner_user_id": owner_user_id,
                "industry": industry,
                "search": search,
            },
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except HTTPException as exc:
        return http_exception_response(request, exc, "crm_company_list_failed")


@router.get("/{company_id}", response_model=CompanyRead)
def get_company(
    request: Request,
    company_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.read")
        return service.get_company(db, user, company_id)
    except HTTPException as exc:
        return http_exception_response(request, exc, "crm_company_get_failed")


@router.patch("/{company_id}", response_model=CompanyRead)
def patch_company(
    request: Request,
    company_id: uuid.UUID,
    dto: CompanyUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.write")
        return service.update_company(db, user, company_id, dto)
    except HTTPException as exc:
        return http_exception_response(request, exc, "crm_company_update_failed")


@router.put("/{company_id}/parent", response_model=CompanyRead)
def set_parent_company(
    request: Request,
    company_id: uuid.UUID,
    dto: CompanySetParentRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.write")
        return service.set_parent_company(db, user, company_id, dto)
    except HTTPException as exc:
        return http_exception_response(request, exc, "crm_company_set_parent_failed")


@router.delete("/{company_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_company(
    request: Request,
    company_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.companies.delete")
        service.soft_delete_company(db, user, company_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_exception_response(request, exc, "crm_company_delete_failed")


@router.get("/{company_id}/ancestors", response_model=CompanyHierarchyRead)
def list_company_ancestors(
    request: Request,
    company_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyHierarchyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.read")
        return service.list_ancestors(db, user, company_id)
    except HTTPException as exc:
        return http_exception_response(request, exc, "crm_company_ancestors_failed")


@router.get("/{company_id}/descendants", response_model=CompanyHierarchyRead)
def list_company_descendants(
    request: Request,
    company_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CompanyHierarchyRead | JSONResponse:
    try:
        require_permission(user, "crm.companies.read")
        return service.list_descendants(db, user, company_id)
    except HTTPException as exc:
        return http_exception_response(request, exc, "crm_company_descendants_failed")
