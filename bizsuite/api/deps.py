from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request, status

from bizsuite.context import get_correlation_id, tenant_from_headers
from bizsuite.core.actor import ActorUser
from bizsuite.core.auth import AuthUser, get_current_user as get_auth_user


def _parse_uuid_list(raw: str | None) -> list[uuid.UUID]:
    if not raw:
        return []
    parsed: list[uuid.UUID] = []
    for value in raw.split(","):
        value = value.strip()
        if not value:
            continue
        try:
            parsed.append(uuid.UUID(value))
        except ValueError:
            continue
    return parsed


def _parse_uuid(raw: str | None) -> uuid.UUID | None:
    if not raw:
        return None
    try:
        return uuid.UUID(raw)
    except ValueError:
        return None


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    current_legal_entity_id = _parse_uuid(tenant_from_headers(request.headers))
    if current_legal_entity_id is None:
        current_legal_entity_id = _parse_uuid(auth_user.tenant_id)

    allowed_legal_entities = _parse_uuid_list(request.headers.get("x-allowed-legal-entities"))
    if not allowed_legal_entities and current_legal_entity_id is not None:
        allowed_legal_entities = [current_legal_entity_id]

    normalized_roles = {str(role).lower() for role in auth_user.roles}
    is_super_admin = "admin" in normalized_roles or "system.admin" in normalized_roles

    return ActorUser(
        user_id=auth_user.sub,
        allowed_legal_entity_ids=allowed_legal_entities,
        current_legal_entity_id=current_legal_entity_id,
        permissions=set(auth_user.roles),
        is_super_admin=is_super_admin,
        correlation_id=correlation_id,
    )


def require_permission(user: ActorUser, permission: str) -> None:
    if user.is_super_admin:
        return
    if permission not in user.permissions:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")
