from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import nexa_ledger.platform.ledger.accounts as accounts_module
from nexa_ledger.core.database import Base
from nexa_ledger.platform.ledger.accounts import AccountRegistry, flatten_tree
from nexa_ledger.platform.ledger.errors import (
    AccountInUse,
    AccountNotFound,
    ChartAlreadyInitialized,
    DuplicateCode,
    InvalidAccount,
    InvalidParent,
)
from nexa_ledger.platform.ledger.journal import JournalEngine
from nexa_ledger.platform.ledger.models import LedgerSequence
from nexa_ledger.platform.ledger.periods import PeriodManager
from nexa_ledger.platform.ledger.projector import projector_registry
from nexa_ledger.platform.ledger.schemas import (
    AccountCreate,
    AccountUpdate,
    JournalLineInput,
    PeriodCreate,
    TransactionRecordRequest,
)
from nexa_ledger.platform.ledger.seed import DEFAULT_CHART, seed_default_chart
from nexa_ledger.platform.ledger.types import AccountType, CashFlowCategory, EntryDirection, EntrySource
from nexa_ledger.platform.security.context import AuthContext


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
def reset_projections() -> Generator[None, None, None]:
    projector_registry.reset()
    yield
    projector_registry.reset()


@pytest.fixture()
def ctx() -> AuthContext:
    return AuthContext(user_id="accountant-1", tenant_id="tenant-a", roles=["ledger.admin"])


def _record(session: Session, ctx: AuthContext, entry_date: date, debit: uuid.UUID, credit: uuid.UUID, amount: str) -> None:
    JournalEngine().record_transaction(
        session,
        ctx,
        TransactionRecordRequest(
            entry_date=entry_date,
            description="test posting",
            source=EntrySource.MANUAL,
            lines=[
                JournalLineInput(account_id=debit, direction=EntryDirection.DEBIT, amount=Decimal(amount)),
                JournalLineInput(account_id=credit, direction=EntryDirection.CREDIT, amount=Decimal(amount)),
            ],
        ),
    )


def test_create_account_rejects_duplicate_code(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()
    registry.create_account(db_session, ctx, AccountCreate(code="1105", name="Cash", type=AccountType.ASSET))

    with pytest.raises(DuplicateCode):
        registry.create_account(db_session, ctx, AccountCreate(code="1105", name="Cash again", type=AccountType.ASSET))


def test_same_code_allowed_in_another_tenant(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()
    registry.create_account(db_session, ctx, AccountCreate(code="1105", name="Cash", type=AccountType.ASSET))
    other = AuthContext(user_id="accountant-2", tenant_id="tenant-b", roles=["ledger.admin"])

    created = registry.create_account(db_session, other, AccountCreate(code="1105", name="Cash", type=AccountType.ASSET))

    assert created.tenant_id == "tenant-b"
    assert len(registry.list_accounts(db_session, ctx)) == 1


def test_child_must_share_parent_type(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()
    assets = registry.create_account(db_session, ctx, AccountCreate(code="1", name="Assets", type=AccountType.ASSET))

    with pytest.raises(InvalidParent):
        registry.create_account(
            db_session,
            ctx,
            AccountCreate(code="21", name="Loans", type=AccountType.LIABILITY, parent_id=assets.id),
        )

    with pytest.raises(InvalidParent):
        registry.create_account(
            db_session,
            ctx,
            AccountCreate(code="11", name="Cash", type=AccountType.ASSET, parent_id=uuid.uuid4()),
        )


def test_parent_from_other_tenant_is_invalid(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()
    foreign = registry.create_account(
        db_session,
        AuthContext(user_id="u2", tenant_id="tenant-b"),
        AccountCreate(code="1", name="Assets", type=AccountType.ASSET),
    )

    with pytest.raises(InvalidParent):
        registry.create_account(
            db_session,
            ctx,
            AccountCreate(code="11", name="Cash", type=AccountType.ASSET, parent_id=foreign.id),
        )


def test_materialized_path_and_depth(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()
    root = registry.create_account(db_session, ctx, AccountCreate(code="1", name="Assets", type=AccountType.ASSET))
    group = registry.create_account(
        db_session, ctx, AccountCreate(code="11", name="Cash", type=AccountType.ASSET, parent_id=root.id)
    )
    leaf = registry.create_account(
        db_session, ctx, AccountCreate(code="1105", name="Cash on hand", type=AccountType.ASSET, parent_id=group.id)
    )

    assert root.depth == 0
    assert leaf.depth == 2
    assert leaf.path == f"{root.id}/{group.id}/{leaf.id}"
    assert leaf.level == 3
    assert leaf.normal_side == EntryDirection.DEBIT

    descendants = registry.list_descendants(db_session, ctx, root.id)
    assert [item.code for item in descendants] == ["11", "1105"]


def test_cash_flow_category_rules(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()

    with pytest.raises(InvalidAccount):
        registry.create_account(
            db_session,
            ctx,
            AccountCreate(code="4", name="Revenue", type=AccountType.REVENUE, cash_flow_category=CashFlowCategory.OPERATING),
        )
    with pytest.raises(InvalidAccount):
        registry.create_account(
            db_session,
            ctx,
            AccountCreate(code="2", name="Liabilities", type=AccountType.LIABILITY, cash_flow_category=CashFlowCategory.CASH),
        )

    revenue = registry.create_account(db_session, ctx, AccountCreate(code="4", name="Revenue", type=AccountType.REVENUE))
    equity = registry.create_account(db_session, ctx, AccountCreate(code="3", name="Equity", type=AccountType.EQUITY))
    cash = registry.create_account(
        db_session,
        ctx,
        AccountCreate(code="11", name="Cash", type=AccountType.ASSET, cash_flow_category=CashFlowCategory.CASH),
    )
    petty = registry.create_account(
        db_session, ctx, AccountCreate(code="1105", name="Petty cash", type=AccountType.ASSET, parent_id=cash.id)
    )

    assert revenue.cash_flow_category is None
    assert equity.cash_flow_category == CashFlowCategory.FINANCING
    assert petty.cash_flow_category == CashFlowCategory.CASH


def test_update_account_only_touches_given_fields(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()
    account = registry.create_account(
        db_session,
        ctx,
        AccountCreate(code="1305", name="Customers", type=AccountType.ASSET, description="Trade receivables"),
    )

    updated = registry.update_account(db_session, ctx, account.id, AccountUpdate(name="Customers (domestic)"))

    assert updated.name == "Customers (domestic)"
    assert updated.description == "Trade receivables"
    assert updated.code == "1305"


def test_get_by_code_and_missing_account(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()
    registry.create_account(db_session, ctx, AccountCreate(code="1105", name="Cash", type=AccountType.ASSET))

    assert registry.get_by_code(db_session, ctx, "1105").name == "Cash"
    with pytest.raises(AccountNotFound):
        registry.get_by_code(db_session, ctx, "9999")
    with pytest.raises(AccountNotFound):
        registry.get_account(db_session, ctx, uuid.uuid4())


def test_deactivate_blocked_while_postings_in_open_period(db_session: Session, ctx: AuthContext) -> None:
    seed_default_chart(db_session, ctx)
    registry = AccountRegistry()
    periods = PeriodManager()
    period = periods.create_period(db_session, ctx, PeriodCreate(start_date=date(2026, 1, 1), end_date=date(2026, 1, 31)))
    cash = registry.get_by_code(db_session, ctx, "1105")
    sales = registry.get_by_code(db_session, ctx, "4135")
    unused = registry.get_by_code(db_session, ctx, "1435")
    _record(db_session, ctx, date(2026, 1, 10), cash.id, sales.id, "100")

    with pytest.raises(AccountInUse):
        registry.deactivate_account(db_session, ctx, cash.id)

    assert registry.deactivate_account(db_session, ctx, unused.id).is_active is False

    periods.close_period(db_session, ctx, period.id)
    deactivated = registry.deactivate_account(db_session, ctx, cash.id)

    assert deactivated.is_active is False
    assert all(item.code != "1105" for item in registry.list_accounts(db_session, ctx))
    assert any(item.code == "1105" for item in registry.list_accounts(db_session, ctx, active_only=False))


def test_account_tree_aggregates_child_balances(db_session: Session, ctx: AuthContext) -> None:
    seed_default_chart(db_session, ctx)
    registry = AccountRegistry()
    PeriodManager().create_period(db_session, ctx, PeriodCreate(start_date=date(2026, 1, 1), end_date=date(2026, 1, 31)))
    cash = registry.get_by_code(db_session, ctx, "1105")
    bank = registry.get_by_code(db_session, ctx, "1110")
    sales = registry.get_by_code(db_session, ctx, "4135")
    _record(db_session, ctx, date(2026, 1, 5), cash.id, sales.id, "100")
    _record(db_session, ctx, date(2026, 1, 20), bank.id, sales.id, "40.50")

    roots = registry.get_account_tree(db_session, ctx, account_type=AccountType.ASSET)
    nodes = {node.code: node for node in flatten_tree(roots)}

    assert [node.code for node in roots] == ["1"]
    assert nodes["1105"].balance == Decimal("100")
    assert nodes["11"].balance == Decimal("0")
    assert nodes["11"].aggregated_balance == Decimal("140.50")
    assert nodes["1"].aggregated_balance == Decimal("140.50")

    early = registry.get_account_tree(db_session, ctx, as_of=date(2026, 1, 10), root_id=nodes["11"].id)
    assert [node.code for node in early] == ["11"]
    assert early[0].aggregated_balance == Decimal("100")

    revenue = registry.get_account_tree(db_session, ctx, account_type=AccountType.REVENUE)
    assert revenue[0].aggregated_balance == Decimal("140.50")


def test_seed_default_chart_once_per_tenant(db_session: Session, ctx: AuthContext) -> None:
    result = seed_default_chart(db_session, ctx)

    assert result.created == len(DEFAULT_CHART)
    assert all(item.is_system_account for item in result.accounts)
    codes = {item.code: item for item in result.accounts}
    assert codes["11"].cash_flow_category == CashFlowCategory.CASH
    assert codes["1110"].cash_flow_category == CashFlowCategory.CASH
    assert codes["1524"].cash_flow_category == CashFlowCategory.INVESTING
    assert codes["2105"].cash_flow_category == CashFlowCategory.FINANCING
    assert codes["1110"].parent_id == codes["11"].id

    with pytest.raises(ChartAlreadyInitialized):
        seed_default_chart(db_session, ctx)

    other = AuthContext(user_id="accountant-2", tenant_id="tenant-b")
    assert seed_default_chart(db_session, other).created == len(DEFAULT_CHART)


def test_rejected_update_leaves_account_unchanged(db_session: Session, ctx: AuthContext) -> None:
    registry = AccountRegistry()
    account = registry.create_account(
        db_session,
        ctx,
        AccountCreate(code="4175", name="Service revenue", type=AccountType.REVENUE),
    )

    with pytest.raises(InvalidAccount):
        registry.update_account(
            db_session,
            ctx,
            account.id,
            AccountUpdate(name="Consulting revenue", cash_flow_category=CashFlowCategory.OPERATING),
        )

    assert registry.get_account(db_session, ctx, account.id).name == "Service revenue"


@pytest.fixture()
def session_factory(tmp_path: Path) -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_deactivate_sees_posting_committed_by_other_session(
    session_factory: sessionmaker[Session],
    ctx: AuthContext,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    setup = session_factory()
    try:
        accounts = {item.code: item.id for item in seed_default_chart(setup, ctx).accounts}
        PeriodManager().create_period(setup, ctx, PeriodCreate(start_date=date(2026, 1, 1), end_date=date(2026, 1, 31)))
    finally:
        setup.close()

    real_lock = accounts_module.acquire_tenant_lock
    pending = [accounts["1105"]]

    def lock_after_other_post(session: Session, tenant_id: str) -> LedgerSequence:
        if pending:
            cash_id = pending.pop()
            other = session_factory()
            try:
                _record(other, ctx, date(2026, 1, 12), cash_id, accounts["4135"], "40")
            finally:
                other.close()
        return real_lock(session, tenant_id)

    monkeypatch.setattr(accounts_module, "acquire_tenant_lock", lock_after_other_post)

    admin = session_factory()
    try:
        with pytest.raises(AccountInUse):
            AccountRegistry().deactivate_account(admin, ctx, accounts["1105"])
        assert AccountRegistry().get_account(admin, ctx, accounts["1105"]).is_active is True
    finally:
        admin.close()
