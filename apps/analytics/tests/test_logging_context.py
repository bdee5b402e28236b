from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from billing_analytics.core.database import get_db, get_session_factory
from billing_analytics.core.security import AuthUser, get_current_user
from billing_analytics.logging import JsonLogFormatter
from billing_analytics.main import app

from conftest import SeededAccount


@pytest.fixture()
def client(db_session: Session, session_factory: sessionmaker[Session]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="log-user", roles=["analytics.refresh", "analytics.sanity.read"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(
    client: TestClient, seeded_account: SeededAccount, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        f"/api/analytics/accounts/{seeded_account.account_id}/bundles/refresh",
        headers={"X-Correlation-Id": "abc-123"},
    )
    assert response.status_code == 200

    records = [
        record
        for record in caplog.records
        if record.name == "billing_analytics.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "POST"
        and getattr(record, "path", None) == "/api/analytics/accounts/{account_id}/bundles/refresh"
        and getattr(record, "status_code", None) == 200
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_refresh_context_and_correlation_id(
    client: TestClient, seeded_account: SeededAccount, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        f"/api/analytics/accounts/{seeded_account.account_id}/bundles/refresh",
        headers={"X-Correlation-Id": "refresh-log-1"},
    )
    assert response.status_code == 200

    refresh_records = [record for record in caplog.records if record.name == "billing_analytics.refresh"]
    assert {record.getMessage() for record in refresh_records} == {"bundles.refresh.started", "bundles.refresh.finished"}
    finished = [record for record in refresh_records if record.getMessage() == "bundles.refresh.finished"]
    assert len(finished) == 1
    assert getattr(finished[0], "correlation_id", None) == "refresh-log-1"
    assert getattr(finished[0], "account_id", None) == str(seeded_account.account_id)
    assert getattr(finished[0], "status", None) == "Succeeded"
    assert getattr(finished[0], "record_count", None) == 3
    assert getattr(finished[0], "table", None) == "analytics_bundles"


def test_failed_refresh_is_logged_with_error(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/analytics/accounts/00000000-0000-4000-8000-000000000000/bundles/refresh",
        headers={"X-Correlation-Id": "refresh-log-2"},
    )
    assert response.status_code == 404

    finished = [
        record
        for record in caplog.records
        if record.name == "billing_analytics.refresh" and record.getMessage() == "bundles.refresh.finished"
    ]
    assert len(finished) == 1
    assert getattr(finished[0], "status", None) == "Failed"
    assert "not found" in getattr(finished[0], "error", "")


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "billing_analytics.bundles",
            "levelno": logging.WARNING,
            "levelname": "WARNING",
            "msg": "bundles.build.suppressed_error",
            "correlation_id": "fmt-1",
            "bundle_id": "b-1",
            "error": "x" * 800,
            "password": "hunter2",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "bundles.build.suppressed_error"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"]["bundle_id"] == "b-1"
    assert len(payload["fields"]["error"]) == 500
    assert "password" not in payload["fields"]
    assert "thread" in payload
