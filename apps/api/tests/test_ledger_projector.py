from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from nexa_ledger.core.database import Base
from nexa_ledger.core.events import LEDGER_ENTRY_POSTED, InternalEvent
from nexa_ledger.platform.ledger.errors import LedgerIntegrityError
from nexa_ledger.platform.ledger.journal import JournalEngine
from nexa_ledger.platform.ledger.models import JournalLine
from nexa_ledger.platform.ledger.periods import PeriodManager
from nexa_ledger.platform.ledger.projector import (
    LedgerProjector,
    PostedEntry,
    PostedLine,
    ProjectorRegistry,
    projector_registry,
)
from nexa_ledger.platform.ledger.schemas import JournalLineInput, PeriodCreate, TransactionRecordRequest
from nexa_ledger.platform.ledger.seed import seed_default_chart
from nexa_ledger.platform.ledger.types import AccountType, EntryDirection, EntrySource
from nexa_ledger.platform.security.context import AuthContext


CASH = uuid.uuid4()
SALES = uuid.uuid4()


def _entry(number: int, amount: str = "100", *, entry_id: uuid.UUID | None = None, credit: str | None = None) -> PostedEntry:
    return PostedEntry(
        id=entry_id or uuid.uuid4(),
        tenant_id="tenant-a",
        entry_number=number,
        entry_date=date(2026, 1, number),
        description=f"entry {number}",
        source=EntrySource.MANUAL.value,
        source_ref=None,
        lines=(
            PostedLine(line_no=1, account_id=CASH, account_type=AccountType.ASSET, direction=EntryDirection.DEBIT, amount=Decimal(amount)),
            PostedLine(
                line_no=2,
                account_id=SALES,
                account_type=AccountType.REVENUE,
                direction=EntryDirection.CREDIT,
                amount=Decimal(credit or amount),
            ),
        ),
    )


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


def test_apply_entry_is_idempotent() -> None:
    projector = LedgerProjector("tenant-a")
    entry = _entry(1)

    assert projector.apply_entry(entry) is True
    assert projector.apply_entry(entry) is False

    assert projector.high_water_mark == 1
    assert entry.id in projector
    assert projector.balance_as_of(CASH) == Decimal("100")
    assert projector.balance_as_of(SALES) == Decimal("100")


def test_apply_entry_rejects_gaps_and_reordering() -> None:
    projector = LedgerProjector("tenant-a")

    with pytest.raises(LedgerIntegrityError) as gap:
        projector.apply_entry(_entry(2))
    assert gap.value.check == "projector_gap"

    first = _entry(1)
    projector.apply_entry(first)
    with pytest.raises(LedgerIntegrityError) as order:
        projector.apply_entry(_entry(1))
    assert order.value.check == "projector_order"

    with pytest.raises(LedgerIntegrityError) as renumbered:
        projector.apply_entry(_entry(2, entry_id=first.id))
    assert renumbered.value.check == "projector_order"
    assert projector.high_water_mark == 1


def test_apply_entry_rejects_unbalanced_and_foreign_entries() -> None:
    projector = LedgerProjector("tenant-b")
    with pytest.raises(LedgerIntegrityError) as foreign:
        projector.apply_entry(_entry(1))
    assert foreign.value.check == "projector_tenant"

    projector = LedgerProjector("tenant-a")
    with pytest.raises(LedgerIntegrityError) as unbalanced:
        projector.apply_entry(_entry(1, "100", credit="99.99"))
    assert unbalanced.value.check == "projector_unbalanced"
    assert projector.high_water_mark == 0


def test_balances_by_date_and_snapshot_pinning() -> None:
    projector = LedgerProjector("tenant-a")
    projector.apply_entry(_entry(1, "100"))
    projector.apply_entry(_entry(2, "50.25"))
    snapshot = projector.snapshot()
    projector.apply_entry(_entry(3, "10"))

    assert projector.balance_as_of(CASH) == Decimal("160.25")
    assert projector.balance_as_of(CASH, date(2026, 1, 1)) == Decimal("100")
    assert projector.debit_credit_totals_as_of(SALES) == (Decimal("0"), Decimal("160.25"))
    assert projector.debit_delta(SALES, date(2026, 1, 2), date(2026, 1, 3)) == Decimal("-60.25")
    assert [item.entry.entry_number for item in projector.movements(CASH, date(2026, 1, 2))] == [2, 3]

    assert snapshot.through == 2
    assert snapshot.balance_as_of(CASH) == Decimal("150.25")
    assert [item.entry.entry_number for item in snapshot.movements(CASH)] == [1, 2]
    assert projector.balance_as_of(uuid.uuid4()) == Decimal("0")


def _record(session: Session, ctx: AuthContext, chart: dict[str, uuid.UUID], amount: str, day: int) -> uuid.UUID:
    recorded = JournalEngine().record_transaction(
        session,
        ctx,
        TransactionRecordRequest(
            entry_date=date(2026, 1, day),
            description="sale",
            source=EntrySource.POS_SALE,
            lines=[
                JournalLineInput(account_id=chart["1105"], direction=EntryDirection.DEBIT, amount=Decimal(amount)),
                JournalLineInput(account_id=chart["4135"], direction=EntryDirection.CREDIT, amount=Decimal(amount)),
            ],
        ),
    )
    return recorded.entry_id


@pytest.fixture()
def ledger(db_session: Session) -> tuple[AuthContext, dict[str, uuid.UUID]]:
    ctx = AuthContext(user_id="accountant-1", tenant_id="tenant-a", roles=["ledger.admin"])
    result = seed_default_chart(db_session, ctx)
    PeriodManager().create_period(db_session, ctx, PeriodCreate(start_date=date(2026, 1, 1), end_date=date(2026, 1, 31)))
    return ctx, {item.code: item.id for item in result.accounts}


def test_registry_catches_up_and_verifies(db_session: Session, ledger: tuple[AuthContext, dict[str, uuid.UUID]]) -> None:
    ctx, chart = ledger
    registry = ProjectorRegistry()
    _record(db_session, ctx, chart, "100", 5)
    _record(db_session, ctx, chart, "40", 6)

    projector = registry.get(db_session, "tenant-a")
    assert projector.high_water_mark == 2

    _record(db_session, ctx, chart, "10", 7)
    assert registry.get(db_session, "tenant-a") is projector
    assert projector.high_water_mark == 3
    assert projector.balance_as_of(chart["1105"]) == Decimal("150")

    assert registry.verify(db_session, "tenant-a") == 2


def test_rebuild_replays_the_full_log(db_session: Session, ledger: tuple[AuthContext, dict[str, uuid.UUID]]) -> None:
    ctx, chart = ledger
    registry = ProjectorRegistry()
    entry_id = _record(db_session, ctx, chart, "100", 5)
    JournalEngine().void(db_session, ctx, entry_id, "mistake", date(2026, 1, 8))

    cached = registry.get(db_session, "tenant-a")
    rebuilt = registry.rebuild(db_session, "tenant-a")

    assert rebuilt is not cached
    assert rebuilt.high_water_mark == cached.high_water_mark == 2
    assert rebuilt.balance_as_of(chart["1105"]) == Decimal("0")
    assert rebuilt.balance_as_of(chart["1105"], date(2026, 1, 7)) == Decimal("100")


def test_verify_detects_tampered_log(db_session: Session, ledger: tuple[AuthContext, dict[str, uuid.UUID]]) -> None:
    ctx, chart = ledger
    registry = ProjectorRegistry()
    entry_id = _record(db_session, ctx, chart, "100", 5)
    registry.get(db_session, "tenant-a")

    line = db_session.scalar(
        select(JournalLine).where(JournalLine.journal_entry_id == entry_id, JournalLine.line_no == 1)
    )
    assert line is not None
    line.amount = Decimal("90")
    db_session.commit()

    with pytest.raises(LedgerIntegrityError) as exc_info:
        registry.verify(db_session, "tenant-a")
    assert exc_info.value.check == "projector_replay"


def test_stale_cache_is_replaced(db_session: Session, ledger: tuple[AuthContext, dict[str, uuid.UUID]]) -> None:
    ctx, chart = ledger
    registry = ProjectorRegistry()
    unrelated = LedgerProjector("tenant-a")
    unrelated.apply_entry(_entry(1))
    registry._projectors["tenant-a"] = unrelated

    entry_id = _record(db_session, ctx, chart, "100", 5)
    projector = registry.get(db_session, "tenant-a")

    assert projector is not unrelated
    assert projector.entry_at(1) is not None
    assert projector.entry_at(1).id == entry_id


def test_posted_event_advances_cached_projection(db_session: Session, ledger: tuple[AuthContext, dict[str, uuid.UUID]]) -> None:
    ctx, chart = ledger
    registry = ProjectorRegistry()
    _record(db_session, ctx, chart, "100", 5)
    projector = registry.get(db_session, "tenant-a")

    registry.handle_entry_posted(InternalEvent(name=LEDGER_ENTRY_POSTED, payload={"entry": _entry(3)}))
    assert projector.high_water_mark == 1

    follow_up = _entry(2)
    registry.handle_entry_posted(InternalEvent(name=LEDGER_ENTRY_POSTED, payload={"entry": follow_up}))
    assert projector.high_water_mark == 2
    assert follow_up.id in projector

    registry.handle_entry_posted(InternalEvent(name=LEDGER_ENTRY_POSTED, payload={"entry": _entry(1)}))
    assert registry._projectors.get("tenant-a") is None
