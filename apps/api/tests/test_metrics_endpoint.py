from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from nexa_ledger.core.auth import AuthUser, get_current_user
from nexa_ledger.core.config import get_settings
from nexa_ledger.core.database import Base, get_db
from nexa_ledger.main import app
from nexa_ledger.platform.ledger.projector import projector_registry


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
    projector_registry.reset()
    yield
    get_settings.cache_clear()
    projector_registry.reset()


@pytest.fixture()
def roles() -> list[str]:
    return ["system.metrics.read", "ledger.admin"]


@pytest.fixture()
def client(db_session: Session, roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=list(roles))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _post_sale(client: TestClient) -> None:
    headers = {"x-tenant-id": "tenant-metrics"}
    seeded = client.post("/ledger/seeds/chart-of-accounts", headers=headers)
    assert seeded.status_code == 201
    accounts = {item["code"]: item["id"] for item in seeded.json()["accounts"]}

    period = client.post("/ledger/periods", json={"start_date": "2026-01-01", "end_date": "2026-01-31"}, headers=headers)
    assert period.status_code == 201

    recorded = client.post(
        "/ledger/transactions",
        json={
            "entry_date": "2026-01-15",
            "description": "Metrics sale",
            "source": "POS_SALE",
            "lines": [
                {"account_id": accounts["1105"], "direction": "DEBIT", "amount": "10"},
                {"account_id": accounts["4135"], "direction": "CREDIT", "amount": "10"},
            ],
        },
        headers=headers,
    )
    assert recorded.status_code == 201

    rejected = client.post(
        "/ledger/transactions",
        json={
            "entry_date": "2026-03-15",
            "description": "Outside any period",
            "source": "POS_SALE",
            "lines": [
                {"account_id": accounts["1105"], "direction": "DEBIT", "amount": "10"},
                {"account_id": accounts["4135"], "direction": "CREDIT", "amount": "10"},
            ],
        },
        headers=headers,
    )
    assert rejected.status_code == 409

    trial = client.get("/ledger/reports/trial-balance", params={"as_of_date": "2026-01-31"}, headers=headers)
    assert trial.status_code == 200


def test_metrics_endpoint_exposes_http_and_ledger_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    _post_sale(client)

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "ledger_entries_posted_count_total" in body
    assert "ledger_lines_posted_count_total" in body
    assert "ledger_report_duration_seconds" in body

    assert 'path="/health"' in body
    assert 'path="/ledger/transactions"' in body
    assert 'reason="period_closed"' in body
    assert 'report="trial_balance"' in body


@pytest.mark.parametrize("roles", [["ledger.admin"]])
def test_metrics_endpoint_requires_permission(client: TestClient, roles: list[str]) -> None:
    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")
    assert response.status_code == 404
