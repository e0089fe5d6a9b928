from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from nexa_ledger.core.auth import AuthUser, get_current_user
from nexa_ledger.core.database import Base, get_db
from nexa_ledger.main import app
from nexa_ledger.platform.ledger.projector import projector_registry
from nexa_ledger.platform.ledger.seed import DEFAULT_CHART


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


@pytest.fixture()
def roles() -> list[str]:
    return ["ledger.admin"]


@pytest.fixture()
def client(db_session: Session, roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="ledger-user", roles=list(roles))

    projector_registry.reset()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    projector_registry.reset()


def _headers(tenant_id: str = "tenant-a") -> dict[str, str]:
    return {"x-tenant-id": tenant_id}


def _seed(client: TestClient) -> dict[str, str]:
    seeded = client.post("/ledger/seeds/chart-of-accounts", headers=_headers())
    assert seeded.status_code == 201
    assert seeded.json()["created"] == len(DEFAULT_CHART)
    return {item["code"]: item["id"] for item in seeded.json()["accounts"]}


def _open_january(client: TestClient) -> dict:
    response = client.post(
        "/ledger/periods",
        json={"start_date": "2026-01-01", "end_date": "2026-01-31", "name": "January 2026"},
        headers=_headers(),
    )
    assert response.status_code == 201
    return response.json()


def _transaction(accounts: dict[str, str], amount: str = "100", credit_amount: str | None = None) -> dict:
    return {
        "entry_date": "2026-01-15",
        "description": "Counter sale",
        "source": "POS_SALE",
        "source_ref": "pos-77",
        "lines": [
            {"account_id": accounts["1105"], "direction": "DEBIT", "amount": amount},
            {"account_id": accounts["4135"], "direction": "CREDIT", "amount": credit_amount or amount},
        ],
    }


def test_record_transaction_and_trial_balance(client: TestClient) -> None:
    accounts = _seed(client)
    _open_january(client)

    recorded = client.post("/ledger/transactions", json=_transaction(accounts), headers=_headers())
    assert recorded.status_code == 201
    assert recorded.json()["entry_number"] == 1
    assert recorded.json()["display_number"] == "CE-00001"

    entry = client.get(f"/ledger/journal-entries/{recorded.json()['entry_id']}", headers=_headers())
    assert entry.status_code == 200
    assert entry.json()["status"] == "POSTED"
    assert entry.json()["source_ref"] == "pos-77"

    trial = client.get("/ledger/reports/trial-balance", params={"as_of_date": "2026-01-31"}, headers=_headers())
    assert trial.status_code == 200
    assert trial.json()["total_debit"] == "100.00"
    assert trial.json()["total_credit"] == "100.00"

    periods = client.get("/ledger/periods", headers=_headers())
    assert periods.json()[0]["posted_entry_count"] == 1


def test_draft_post_and_void_flow(client: TestClient) -> None:
    accounts = _seed(client)
    _open_january(client)

    draft = client.post(
        "/ledger/journal-entries",
        json={
            "entry_date": "2026-01-10",
            "description": "Manual adjustment",
            "lines": _transaction(accounts, "42.5")["lines"],
        },
        headers=_headers(),
    )
    assert draft.status_code == 201
    assert draft.json()["status"] == "DRAFT"
    entry_id = draft.json()["id"]

    posted = client.post(f"/ledger/journal-entries/{entry_id}/post", headers=_headers())
    assert posted.status_code == 200
    assert posted.json()["entry_number"] == 1

    voided = client.post(
        f"/ledger/journal-entries/{entry_id}/void",
        json={"reason": "typo", "void_date": "2026-01-11"},
        headers=_headers(),
    )
    assert voided.status_code == 200
    assert voided.json()["original"]["status"] == "VOIDED"
    assert voided.json()["reversal"]["entry_number"] == 2
    assert voided.json()["reversal"]["reversal_of_id"] == entry_id

    again = client.post(
        f"/ledger/journal-entries/{entry_id}/void",
        json={"reason": "typo", "void_date": "2026-01-11"},
        headers=_headers(),
    )
    assert again.status_code == 409
    assert again.json()["code"] == "ENTRY_NOT_POSTED"

    listed = client.get("/ledger/journal-entries", params={"status": "VOIDED"}, headers=_headers())
    assert [item["id"] for item in listed.json()] == [entry_id]


def test_delete_draft_returns_no_content(client: TestClient) -> None:
    accounts = _seed(client)
    draft = client.post(
        "/ledger/journal-entries",
        json={"entry_date": "2026-01-10", "description": "scratch", "lines": _transaction(accounts)["lines"]},
        headers=_headers(),
    )
    assert draft.status_code == 201

    deleted = client.delete(f"/ledger/journal-entries/{draft.json()['id']}", headers=_headers())
    assert deleted.status_code == 204

    missing = client.get(f"/ledger/journal-entries/{draft.json()['id']}", headers=_headers())
    assert missing.status_code == 404
    assert missing.json()["code"] == "ENTRY_NOT_FOUND"


def test_validation_errors_map_to_status_codes(client: TestClient) -> None:
    accounts = _seed(client)
    _open_january(client)

    unbalanced = client.post("/ledger/transactions", json=_transaction(accounts, "100", "90"), headers=_headers())
    assert unbalanced.status_code == 422
    assert unbalanced.json()["code"] == "UNBALANCED_ENTRY"

    closed = _transaction(accounts)
    closed["entry_date"] = "2026-02-15"
    no_period = client.post("/ledger/transactions", json=closed, headers=_headers())
    assert no_period.status_code == 409
    assert no_period.json()["code"] == "PERIOD_CLOSED"

    duplicate = client.post("/ledger/accounts", json={"code": "1105", "name": "Cash", "type": "ASSET"}, headers=_headers())
    assert duplicate.status_code == 409
    assert duplicate.json() == {"detail": "account code 1105 already exists", "code": "DUPLICATE_CODE"}

    reseed = client.post("/ledger/seeds/chart-of-accounts", headers=_headers())
    assert reseed.status_code == 409
    assert reseed.json()["code"] == "CHART_ALREADY_INITIALIZED"

    missing = client.get(f"/ledger/accounts/{uuid.uuid4()}", headers=_headers())
    assert missing.status_code == 404
    assert missing.json()["code"] == "ACCOUNT_NOT_FOUND"

    gap = client.post("/ledger/periods", json={"start_date": "2026-02-02", "end_date": "2026-02-28"}, headers=_headers())
    assert gap.status_code == 409
    assert gap.json()["code"] == "PERIOD_GAP"

    bad_range = client.get(
        "/ledger/reports/income-statement",
        params={"start_date": "2026-01-31", "end_date": "2026-01-01"},
        headers=_headers(),
    )
    assert bad_range.status_code == 422
    assert bad_range.json()["code"] == "INVALID_PERIOD_RANGE"

    non_positive = client.post("/ledger/transactions", json=_transaction(accounts, "0"), headers=_headers())
    assert non_positive.status_code == 422


def test_accounts_endpoints(client: TestClient) -> None:
    accounts = _seed(client)

    by_code = client.get("/ledger/accounts/by-code/1105", headers=_headers())
    assert by_code.status_code == 200
    assert by_code.json()["id"] == accounts["1105"]
    assert by_code.json()["normal_side"] == "DEBIT"

    revenue = client.get("/ledger/accounts", params={"type": "REVENUE"}, headers=_headers())
    assert {item["code"] for item in revenue.json()} == {"4", "41", "4135", "42", "4295"}

    created = client.post(
        "/ledger/accounts",
        json={"code": "1115", "name": "Savings account", "type": "ASSET", "parent_id": accounts["11"]},
        headers=_headers(),
    )
    assert created.status_code == 201
    assert created.json()["depth"] == 2
    assert created.json()["cash_flow_category"] == "CASH"

    renamed = client.patch(f"/ledger/accounts/{created.json()['id']}", json={"name": "High-yield savings"}, headers=_headers())
    assert renamed.json()["name"] == "High-yield savings"

    deactivated = client.post(f"/ledger/accounts/{created.json()['id']}/deactivate", headers=_headers())
    assert deactivated.json()["is_active"] is False

    tree = client.get("/ledger/accounts/tree", params={"type": "ASSET"}, headers=_headers())
    assert tree.status_code == 200
    assert [node["code"] for node in tree.json()] == ["1"]
    assert tree.json()[0]["aggregated_balance"] == "0"


def test_period_close_and_reopen_endpoints(client: TestClient) -> None:
    january = _open_january(client)

    lookup = client.get("/ledger/periods/for-date", params={"on": "2026-01-20"}, headers=_headers())
    assert lookup.json()["id"] == january["id"]

    closed = client.post(f"/ledger/periods/{january['id']}/close", headers=_headers())
    assert closed.status_code == 200
    assert closed.json()["status"] == "CLOSED"

    reopened = client.post(f"/ledger/periods/{january['id']}/reopen", json={"reason": "audit fix"}, headers=_headers())
    assert reopened.status_code == 200
    assert reopened.json()["status"] == "OPEN"

    no_reason = client.post(f"/ledger/periods/{january['id']}/reopen", json={}, headers=_headers())
    assert no_reason.status_code == 422


def test_missing_tenant_header_is_rejected(client: TestClient) -> None:
    response = client.get("/ledger/accounts")
    assert response.status_code == 400


@pytest.mark.parametrize("roles", [["ledger.read"]])
def test_read_only_role_cannot_write(client: TestClient, roles: list[str]) -> None:
    listed = client.get("/ledger/accounts", headers=_headers())
    assert listed.status_code == 200

    seeded = client.post("/ledger/seeds/chart-of-accounts", headers=_headers())
    assert seeded.status_code == 403

    recorded = client.post(
        "/ledger/transactions",
        json={"entry_date": "2026-01-01", "description": "x", "source": "MANUAL", "lines": []},
        headers=_headers(),
    )
    assert recorded.status_code == 403


@pytest.mark.parametrize("roles", [["ledger.record"]])
def test_record_role_is_limited_to_transactions(client: TestClient, roles: list[str]) -> None:
    created = client.post("/ledger/periods", json={"start_date": "2026-01-01", "end_date": "2026-01-31"}, headers=_headers())
    assert created.status_code == 403

    reports = client.get("/ledger/reports/trial-balance", params={"as_of_date": "2026-01-31"}, headers=_headers())
    assert reports.status_code == 403


def test_tenants_do_not_see_each_other(client: TestClient) -> None:
    accounts = _seed(client)

    foreign = client.get(f"/ledger/accounts/{accounts['1105']}", headers=_headers("tenant-b"))
    assert foreign.status_code == 404

    listed = client.get("/ledger/accounts", headers=_headers("tenant-b"))
    assert listed.json() == []
