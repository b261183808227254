from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from bizsuite.core.config import Settings, get_settings
from bizsuite.main import app


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_hierarchy_max_depth_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HIERARCHY_MAX_DEPTH", "25")

    assert get_settings().hierarchy_max_depth == 25


def test_hierarchy_max_depth_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(hierarchy_max_depth=0)


def test_default_page_size_cannot_exceed_max() -> None:
    with pytest.raises(ValidationError):
        Settings(default_page_size=50, max_page_size=10)


def test_health_reports_service_and_depth_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("HIERARCHY_MAX_DEPTH", "40")

    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "service": "Bizsuite API",
        "environment": "test",
        "hierarchy_max_depth": 40,
    }
