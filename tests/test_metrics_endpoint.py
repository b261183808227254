from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bizsuite.core.actor import ActorUser
from bizsuite.core.auth import AuthUser, get_current_user as auth_get_current_user
from bizsuite.core.config import get_settings
from bizsuite.core.database import Base, get_db
from bizsuite.crm.api import get_current_user as crm_get_current_user
from bizsuite.main import app


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def legal_entity_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def client(db_session: Session, legal_entity_id: uuid.UUID) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_crm_user() -> ActorUser:
        return ActorUser(
            user_id="metrics-user",
            allowed_legal_entity_ids=[legal_entity_id],
            current_legal_entity_id=legal_entity_id,
            permissions={"crm.companies.read", "crm.companies.write"},
            correlation_id="metrics-corr-1",
        )

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=["system.metrics.read"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_crm_user
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_hierarchy_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    parent = client.post("/api/crm/companies", json={"name": "Metrics Parent"})
    assert parent.status_code == 201
    child = client.post(
        "/api/crm/companies",
        json={"name": "Metrics Child", "parent_company_id": parent.json()["id"]},
    )
    assert child.status_code == 201

    rejected = client.put(
        f"/api/crm/companies/{parent.json()['id']}/parent",
        json={"parent_company_id": child.json()["id"], "row_version": parent.json()["row_version"]},
    )
    assert rejected.status_code == 422

    ancestors = client.get(f"/api/crm/companies/{child.json()['id']}/ancestors")
    assert ancestors.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert 'path="/health"' in body
    assert 'path="/api/crm/companies/{company_id}/parent"' in body
    assert 'hierarchy_cycle_rejections_total{entity="company"}' in body
    assert 'hierarchy_traversal_steps_count{entity="company",operation="set_parent"}' in body
    assert 'hierarchy_traversal_steps_count{entity="company",operation="ancestors"}' in body


def test_metrics_endpoint_requires_permission(client: TestClient) -> None:
    app.dependency_overrides[auth_get_current_user] = lambda: AuthUser(sub="someone", roles=["user"])

    response = client.get("/metrics")

    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")

    assert response.status_code == 404
