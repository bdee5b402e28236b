from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from billing_analytics.core.config import get_settings
from billing_analytics.core.database import get_db, get_session_factory
from billing_analytics.core.security import AuthUser, get_current_user
from billing_analytics.main import app

from conftest import SeededAccount


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def roles() -> list[str]:
    return ["analytics.refresh", "analytics.sanity.read", "system.metrics.read"]


@pytest.fixture()
def client(
    db_session: Session, session_factory: sessionmaker[Session], roles: list[str]
) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=roles)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_refresh_metrics(client: TestClient, seeded_account: SeededAccount) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    refresh = client.post(f"/api/analytics/accounts/{seeded_account.account_id}/bundles/refresh")
    assert refresh.status_code == 200

    sanity = client.get("/api/analytics/sanity/bundles")
    assert sanity.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert metrics.headers["content-type"].startswith("text/plain")

    body = metrics.text
    assert "http_requests_total" in body
    assert 'path="/api/analytics/accounts/{account_id}/bundles/refresh"' in body
    refresh_lines = [line for line in body.splitlines() if line.startswith("analytics_refresh_total{")]
    assert any('table="analytics_bundles"' in line and 'status="Succeeded"' in line for line in refresh_lines)
    assert 'analytics_records_built_total{table="analytics_bundles"}' in body
    assert "analytics_refresh_duration_seconds_bucket" in body


def test_metrics_endpoint_counts_sanity_mismatches(client: TestClient, seeded_account: SeededAccount) -> None:
    sanity = client.get("/api/analytics/sanity/bundles", params={"account_id": str(seeded_account.account_id)})
    assert sanity.status_code == 200
    assert sanity.json()["passed"] is False

    body = client.get("/metrics").text
    assert 'analytics_sanity_mismatches_total{check="bundles_missing"}' in body


def test_metrics_endpoint_requires_permission(client: TestClient, roles: list[str]) -> None:
    roles.remove("system.metrics.read")

    response = client.get("/metrics")

    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")

    assert response.status_code == 404
