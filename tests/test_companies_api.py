from __future__ import annotations

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
from bizsuite.crm.api import get_current_user
from bizsuite.crm.models import CRMCompany
from bizsuite.main import app


ALL_PERMISSIONS = {
    "crm.companies.read",
    "crm.companies.write",
    "crm.companies.delete",
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
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_company(client: TestClient, name: str, **fields: object) -> dict:
    response = client.post("/api/crm/companies", json={"name": name, **fields})
    assert response.status_code == 201, response.text
    return response.json()


def test_create_company_success(client: TestClient, legal_entity_id: uuid.UUID) -> None:
    response = client.post(
        "/api/crm/companies",
        json={
            "name": "Acme Inc",
            "domain": " Acme.COM ",
            "industry": "Manufacturing",
            "company_type": "customer",
            "employee_count": 120,
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Acme Inc"
    assert body["domain"] == "acme.com"
    assert body["legal_entity_id"] == str(legal_entity_id)
    assert body["parent_company_id"] is None
    assert body["subsidiaries"] == []
    assert body["row_version"] == 1
    assert any(entry["action"] == "create" for entry in audit.entries_for("crm.company", body["id"]))
    assert any(event["event_type"] == "crm.company.created" for event in events.published_events)


def test_create_company_missing_name(client: TestClient) -> None:
    response = client.post("/api/crm/companies", json={"domain": "nameless.example"})
    assert response.status_code == 422


def test_create_company_blank_name(client: TestClient) -> None:
    response = client.post("/api/crm/companies", json={"name": "   "})
    assert response.status_code == 422
    assert response.json()["code"] == "crm_company_create_failed"


def test_create_company_duplicate_domain(client: TestClient) -> None:
    _create_company(client, "Globex", domain="globex.example")

    response = client.post("/api/crm/companies", json={"name": "Globex Copy", "domain": "GLOBEX.example"})

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "crm_company_create_failed"
    assert body["message"] == "Company with this domain already exists"


def test_create_company_with_parent(client: TestClient) -> None:
    parent = _create_company(client, "Holding")

    child = _create_company(client, "Subsidiary", parent_company_id=parent["id"])

    assert child["parent_company_id"] == parent["id"]
    assert child["parent_company"]["name"] == "Holding"
    refreshed = client.get(f"/api/crm/companies/{parent['id']}").json()
    assert [item["name"] for item in refreshed["subsidiaries"]] == ["Subsidiary"]


def test_create_company_unknown_parent(client: TestClient) -> None:
    response = client.post("/api/crm/companies", json={"name": "Orphan", "parent_company_id": str(uuid.uuid4())})

    assert response.status_code == 404
    assert response.json()["message"] == "parent company not found"


def test_create_company_in_foreign_legal_entity_forbidden(client: TestClient) -> None:
    response = client.post("/api/crm/companies", json={"name": "Elsewhere", "legal_entity_id": str(uuid.uuid4())})
    assert response.status_code == 403


def test_list_companies_paginated(client: TestClient) -> None:
    for name in ("Charlie", "Alpha", "Bravo"):
        _create_company(client, name)

    first = client.get("/api/crm/companies", params={"sort_by": "name", "sort_order": "asc", "limit": 2})
    assert first.status_code == 200
    body = first.json()
    assert [item["name"] for item in body["data"]] == ["Alpha", "Bravo"]
    assert body["meta"] == {
        "total": 3,
        "page": 1,
        "limit": 2,
        "total_pages": 2,
        "has_next_page": True,
        "has_previous_page": False,
    }

    second = client.get("/api/crm/companies", params={"sort_by": "name", "sort_order": "asc", "limit": 2, "page": 2})
    assert [item["name"] for item in second.json()["data"]] == ["Charlie"]
    assert second.json()["meta"]["has_previous_page"] is True


def test_list_companies_search_and_filters(client: TestClient) -> None:
    parent = _create_company(client, "Umbrella Group", industry="Pharma")
    _create_company(client, "Umbrella Labs", industry="Pharma", parent_company_id=parent["id"])
    _create_company(client, "Initech", industry="Software", company_type="vendor")

    search = client.get("/api/crm/companies", params={"search": "umbrella"})
    assert {item["name"] for item in search.json()["data"]} == {"Umbrella Group", "Umbrella Labs"}

    by_parent = client.get("/api/crm/companies", params={"parent_company_id": parent["id"]})
    assert [item["name"] for item in by_parent.json()["data"]] == ["Umbrella Labs"]

    by_type = client.get("/api/crm/companies", params={"company_type": "vendor"})
    assert [item["name"] for item in by_type.json()["data"]] == ["Initech"]


def test_list_companies_scoped(db_session: Session, client: TestClient, legal_entity_id: uuid.UUID) -> None:
    _create_company(client, "Visible Company")
    hidden = CRMCompany(legal_entity_id=uuid.uuid4(), name="Hidden Company", custom_properties={})
    db_session.add(hidden)
    db_session.commit()

    response = client.get("/api/crm/companies")
    names = [item["name"] for item in response.json()["data"]]
    assert "Visible Company" in names
    assert "Hidden Company" not in names

    assert client.get(f"/api/crm/companies/{hidden.id}").status_code == 404


def test_update_company_fields(client: TestClient) -> None:
    company = _create_company(client, "Stark")

    response = client.patch(
        f"/api/crm/companies/{company['id']}",
        json={"row_version": company["row_version"], "name": "Stark Industries", "city": "New York"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Stark Industries"
    assert body["city"] == "New York"
    assert body["row_version"] == company["row_version"] + 1
    assert any(event["event_type"] == "crm.company.updated" for event in events.published_events)
    assert not any(event["event_type"] == "crm.company.reparented" for event in events.published_events)


def test_update_company_row_version_conflict(client: TestClient) -> None:
    company = _create_company(client, "Conflict Co")

    first_patch = client.patch(
        f"/api/crm/companies/{company['id']}",
        json={"row_version": company["row_version"], "name": "Updated Once"},
    )
    assert first_patch.status_code == 200

    stale_patch = client.patch(
        f"/api/crm/companies/{company['id']}",
        json={"row_version": company["row_version"], "name": "Updated Twice"},
    )
    assert stale_patch.status_code == 409
    assert stale_patch.json()["code"] == "crm_company_update_failed"


def test_update_company_duplicate_domain(client: TestClient) -> None:
    _create_company(client, "First", domain="first.example")
    second = _create_company(client, "Second", domain="second.example")

    response = client.patch(
        f"/api/crm/companies/{second['id']}",
        json={"row_version": second["row_version"], "domain": "first.example"},
    )
    assert response.status_code == 409


def test_delete_company_with_subsidiaries_rejected(client: TestClient) -> None:
    parent = _create_company(client, "Parent Co")
    child = _create_company(client, "Child Co", parent_company_id=parent["id"])

    blocked = client.delete(f"/api/crm/companies/{parent['id']}")
    assert blocked.status_code == 422
    assert blocked.json()["code"] == "crm_company_has_subsidiaries"
    assert blocked.json()["details"] == {"subsidiaries": 1}

    assert client.delete(f"/api/crm/companies/{child['id']}").json() == {"status": "deleted"}
    assert client.get(f"/api/crm/companies/{child['id']}").status_code == 404

    deleted = client.delete(f"/api/crm/companies/{parent['id']}")
    assert deleted.status_code == 200
    assert any(event["event_type"] == "crm.company.deleted" for event in events.published_events)


def test_missing_permission_rejected(client: TestClient, legal_entity_id: uuid.UUID) -> None:
    def read_only_user() -> ActorUser:
        return ActorUser(
            user_id="reader",
            allowed_legal_entity_ids=[legal_entity_id],
            current_legal_entity_id=legal_entity_id,
            permissions={"crm.companies.read"},
        )

    app.dependency_overrides[get_current_user] = read_only_user

    response = client.post("/api/crm/companies", json={"name": "Nope"})
    assert response.status_code == 403
    assert response.json()["message"] == "Missing permission: crm.companies.write"
