from __future__ import annotations

import uuid
from dataclasses import dataclass


@dataclass
class ActorUser:
    user_id: str
    allowed_legal_entity_ids: list[uuid.UUID]
    current_legal_entity_id: uuid.UUID | None
    permissions: set[str]
    is_super_admin: bool = False
    correlation_id: str | None = None

    def can_access_legal_entity(self, legal_entity_id: uuid.UUID, *, bypass_permission: str | None = None) -> bool:
        if self.is_super_admin:
            return True
        if bypass_permission is not None and bypass_permission in self.permissions:
            return True
        return legal_entity_id in set(self.allowed_legal_entity_ids)


def coerce_user_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        return uuid.uuid5(uuid.NAMESPACE_URL, f"bizsuite-actor:{value}")
