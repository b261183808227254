from __future__ import annotations

import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bizsuite import audit, events
from bizsuite.core.actor import ActorUser
from bizsuite.core.config import get_settings
from bizsuite.core.database import Base, get_db
from bizsuite.crm.api import get_current_user as crm_get_current_user
from bizsuite.main import app


ALL_PERMISSIONS = {
    "crm.companies.read",
    "crm.companies.write",
    "pms.projects.write",
    "pms.tasks.read",
    "pms.tasks.write",
}


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def legal_entity_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def client(db_session: Session, legal_entity_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            allowed_legal_entity_ids=[legal_entity_id],
            current_legal_entity_id=legal_entity_id,
            permissions=ALL_PERMISSIONS,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_company(client: TestClient, name: str, correlation_id: str, parent_id: str | None = None) -> dict:
    response = client.post(
        "/api/crm/companies",
        json={"name": name, "parent_company_id": parent_id},
        headers={"X-Correlation-Id": correlation_id},
    )
    assert response.status_code == 201
    return response.json()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/crm/companies/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/api/crm/companies/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_request_id_header_used_as_fallback(client: TestClient) -> None:
    response = client.get(f"/api/crm/companies/{uuid.uuid4()}", headers={"X-Request-Id": "req-42"})
    assert response.headers.get("x-correlation-id") == "req-42"
    assert response.json()["correlation_id"] == "req-42"


def test_overlong_correlation_id_truncated(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "x" * 300})
    assert response.headers.get("x-correlation-id") == "x" * 128


def test_audit_uses_request_correlation_id(client: TestClient) -> None:
    _create_company(client, "Corr Company", "corr-audit-1")

    company_audits = [entry for entry in audit.audit_entries if entry.get("entity_type") == "crm.company"]
    assert company_audits
    assert company_audits[-1]["correlation_id"] == "corr-audit-1"


def test_reparent_event_includes_correlation_id(client: TestClient) -> None:
    parent = _create_company(client, "Corr Parent", "corr-setup")
    child = _create_company(client, "Corr Child", "corr-setup")

    response = client.put(
        f"/api/crm/companies/{child['id']}/parent",
        json={"parent_company_id": parent["id"], "row_version": child["row_version"]},
        headers={"X-Correlation-Id": "corr-event-1"},
    )
    assert response.status_code == 200

    reparented = [item for item in events.published_events if item.get("event_type") == "crm.company.reparented"]
    assert reparented
    assert reparented[-1].get("correlation_id") == "corr-event-1"


def test_reparent_event_logged_by_lifecycle_subscriber(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    parent = _create_company(client, "Logged Parent", "corr-setup")
    child = _create_company(client, "Logged Child", "corr-setup")

    response = client.put(
        f"/api/crm/companies/{child['id']}/parent",
        json={"parent_company_id": parent["id"], "row_version": child["row_version"]},
        headers={"X-Correlation-Id": "corr-changed-1"},
    )
    assert response.status_code == 200

    records = [
        record
        for record in caplog.records
        if record.name == "bizsuite.lifecycle" and record.getMessage() == "hierarchy.changed"
    ]
    assert any(
        getattr(record, "entity_type", None) == "crm.company.reparented"
        and getattr(record, "node_id", None) == child["id"]
        and getattr(record, "candidate_parent_id", None) == parent["id"]
        and getattr(record, "correlation_id", None) == "corr-changed-1"
        for record in records
    )
