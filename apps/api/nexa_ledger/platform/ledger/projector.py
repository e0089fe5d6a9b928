"""Event-sourced balance projection over the posted-entry log.

A ``LedgerProjector`` holds an arena of immutable ``PostedEntry`` records for one
tenant, indexed by entry number and by account. It is a pure function of the
append-only log: entries are applied strictly in entry-number order and
re-applying an entry is a no-op, so the projection can be thrown away and
rebuilt by replay at any time.

``ProjectorRegistry`` caches one projector per tenant and catches it up from the
database before handing it out. The ``ledger.entry.posted`` event only lets the
cache advance without a query; the database stays the source of truth.
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nexa_ledger.core.config import get_settings
from nexa_ledger.core.events import InternalEvent
from nexa_ledger.metrics import observe_projector_replayed
from nexa_ledger.platform.ledger.errors import LedgerIntegrityError
from nexa_ledger.platform.ledger.models import JournalEntry, JournalLine, LedgerAccount
from nexa_ledger.platform.ledger.sequence import current_entry_number
from nexa_ledger.platform.ledger.types import (
    LOGGED_STATUSES,
    AccountType,
    EntryDirection,
    normal_side,
    signed_amount,
)


logger = logging.getLogger("nexa_ledger.ledger.projector")

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class PostedLine:
    line_no: int
    account_id: uuid.UUID
    account_type: AccountType
    direction: EntryDirection
    amount: Decimal
    cost_center_id: str | None = None
    memo: str | None = None


@dataclass(frozen=True, slots=True)
class PostedEntry:
    id: uuid.UUID
    tenant_id: str
    entry_number: int
    entry_date: date
    description: str
    source: str
    source_ref: str | None
    lines: tuple[PostedLine, ...]

    @property
    def total_debit(self) -> Decimal:
        return sum((line.amount for line in self.lines if line.direction == EntryDirection.DEBIT), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.amount for line in self.lines if line.direction == EntryDirection.CREDIT), ZERO)

    @classmethod
    def from_model(cls, entry: JournalEntry) -> PostedEntry:
        if entry.entry_number is None:
            raise LedgerIntegrityError("projector_snapshot", "entry has no number", entry_id=str(entry.id))
        return cls(
            id=entry.id,
            tenant_id=entry.tenant_id,
            entry_number=entry.entry_number,
            entry_date=entry.entry_date,
            description=entry.description,
            source=entry.source,
            source_ref=entry.source_ref,
            lines=tuple(
                PostedLine(
                    line_no=line.line_no,
                    account_id=line.account_id,
                    account_type=AccountType(line.account.type),
                    direction=EntryDirection(line.direction),
                    amount=Decimal(line.amount),
                    cost_center_id=line.cost_center_id,
                    memo=line.memo,
                )
                for line in entry.lines
            ),
        )


@dataclass(frozen=True, slots=True)
class Movement:
    """One line of a posted entry as seen from the account it touches."""

    entry: PostedEntry
    line: PostedLine

    @property
    def entry_date(self) -> date:
        return self.entry.entry_date

    @property
    def debit_delta(self) -> Decimal:
        return signed_amount(self.line.direction, self.line.amount, EntryDirection.DEBIT)


class LedgerProjector:
    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        self._entries: list[PostedEntry] = []
        self._by_id: dict[uuid.UUID, PostedEntry] = {}
        self._by_account: dict[uuid.UUID, list[Movement]] = defaultdict(list)
        self._account_types: dict[uuid.UUID, AccountType] = {}

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._by_id

    @property
    def high_water_mark(self) -> int:
        return len(self._entries)

    def entry_at(self, entry_number: int) -> PostedEntry | None:
        if 1 <= entry_number <= len(self._entries):
            return self._entries[entry_number - 1]
        return None

    def apply_entry(self, entry: PostedEntry) -> bool:
        """Apply the next entry of the log. Returns False when it was already applied."""
        if entry.tenant_id != self.tenant_id:
            raise LedgerIntegrityError(
                "projector_tenant",
                f"entry belongs to tenant {entry.tenant_id}",
                tenant_id=self.tenant_id,
                entry_id=str(entry.id),
            )

        applied = self._by_id.get(entry.id)
        if applied is not None:
            if applied.entry_number != entry.entry_number:
                raise LedgerIntegrityError(
                    "projector_order",
                    f"entry was applied as #{applied.entry_number}, replayed as #{entry.entry_number}",
                    tenant_id=self.tenant_id,
                    entry_id=str(entry.id),
                    entry_number=entry.entry_number,
                )
            return False

        expected = self.high_water_mark + 1
        if entry.entry_number != expected:
            check = "projector_order" if entry.entry_number < expected else "projector_gap"
            raise LedgerIntegrityError(
                check,
                f"expected entry #{expected}, got #{entry.entry_number}",
                tenant_id=self.tenant_id,
                entry_id=str(entry.id),
                entry_number=entry.entry_number,
            )
        if entry.total_debit != entry.total_credit:
            raise LedgerIntegrityError(
                "projector_unbalanced",
                "posted entry does not balance",
                tenant_id=self.tenant_id,
                entry_id=str(entry.id),
                entry_number=entry.entry_number,
            )

        self._entries.append(entry)
        self._by_id[entry.id] = entry
        for line in entry.lines:
            self._account_types[line.account_id] = line.account_type
            self._by_account[line.account_id].append(Movement(entry=entry, line=line))
        return True

    def account_ids(self) -> set[uuid.UUID]:
        return set(self._by_account)

    def snapshot(self) -> ProjectionSnapshot:
        """A read view pinned to the entries applied so far."""
        return ProjectionSnapshot(projector=self, through=self.high_water_mark)

    def _movements_through(self, account_id: uuid.UUID, through: int | None) -> Iterator[Movement]:
        for item in self._by_account.get(account_id, ()):
            if through is not None and item.entry.entry_number > through:
                break
            yield item

    def balance_as_of(
        self,
        account_id: uuid.UUID,
        as_of: date | None = None,
        *,
        through: int | None = None,
    ) -> Decimal:
        """Balance in the account's normal-side sign, over entries dated on or before ``as_of``."""
        account_type = self._account_types.get(account_id)
        if account_type is None:
            return ZERO
        side = normal_side(account_type)
        return sum(
            (
                signed_amount(item.line.direction, item.line.amount, side)
                for item in self._movements_through(account_id, through)
                if as_of is None or item.entry_date <= as_of
            ),
            ZERO,
        )

    def debit_credit_totals_as_of(
        self,
        account_id: uuid.UUID,
        as_of: date | None = None,
        *,
        through: int | None = None,
    ) -> tuple[Decimal, Decimal]:
        debit = ZERO
        credit = ZERO
        for item in self._movements_through(account_id, through):
            if as_of is not None and item.entry_date > as_of:
                continue
            if item.line.direction == EntryDirection.DEBIT:
                debit += item.line.amount
            else:
                credit += item.line.amount
        return debit, credit

    def movements(
        self,
        account_id: uuid.UUID,
        date_from: date | None = None,
        date_to: date | None = None,
        *,
        through: int | None = None,
    ) -> list[Movement]:
        """Lines touching the account inside the range, in entry-number order."""
        return [
            item
            for item in self._movements_through(account_id, through)
            if (date_from is None or item.entry_date >= date_from) and (date_to is None or item.entry_date <= date_to)
        ]

    def debit_delta(self, account_id: uuid.UUID, date_from: date, date_to: date, *, through: int | None = None) -> Decimal:
        return sum((item.debit_delta for item in self.movements(account_id, date_from, date_to, through=through)), ZERO)


@dataclass(frozen=True, slots=True)
class ProjectionSnapshot:
    projector: LedgerProjector
    through: int

    @property
    def tenant_id(self) -> str:
        return self.projector.tenant_id

    def balance_as_of(self, account_id: uuid.UUID, as_of: date | None = None) -> Decimal:
        return self.projector.balance_as_of(account_id, as_of, through=self.through)

    def debit_credit_totals_as_of(self, account_id: uuid.UUID, as_of: date | None = None) -> tuple[Decimal, Decimal]:
        return self.projector.debit_credit_totals_as_of(account_id, as_of, through=self.through)

    def movements(self, account_id: uuid.UUID, date_from: date | None = None, date_to: date | None = None) -> list[Movement]:
        return self.projector.movements(account_id, date_from, date_to, through=self.through)

    def debit_delta(self, account_id: uuid.UUID, date_from: date, date_to: date) -> Decimal:
        return self.projector.debit_delta(account_id, date_from, date_to, through=self.through)


class ProjectorRegistry:
    def __init__(self) -> None:
        self._projectors: dict[str, LedgerProjector] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, tenant_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[tenant_id] = lock
            return lock

    def get(self, session: Session, tenant_id: str) -> LedgerProjector:
        with self._lock_for(tenant_id):
            projector = self._projectors.get(tenant_id)
            if projector is None or self._is_stale(session, projector):
                if projector is not None:
                    logger.warning("ledger.projector.stale", extra={"tenant_id": tenant_id})
                projector = LedgerProjector(tenant_id)
                self._projectors[tenant_id] = projector
            self._catch_up(session, projector)
            return projector

    def rebuild(self, session: Session, tenant_id: str) -> LedgerProjector:
        with self._lock_for(tenant_id):
            projector = LedgerProjector(tenant_id)
            replayed = self._catch_up(session, projector)
            self._projectors[tenant_id] = projector
        logger.info("ledger.projector.rebuilt", extra={"tenant_id": tenant_id, "entry_number": replayed})
        return projector

    def reset(self) -> None:
        with self._guard:
            self._projectors.clear()
            self._locks.clear()

    def handle_entry_posted(self, event: InternalEvent) -> None:
        entry = event.payload.get("entry")
        if not isinstance(entry, PostedEntry):
            return
        with self._lock_for(entry.tenant_id):
            projector = self._projectors.get(entry.tenant_id)
            # not cached yet, or behind: the next get() replays from the database
            if projector is None or entry.entry_number > projector.high_water_mark + 1:
                return
            if entry.entry_number <= projector.high_water_mark and entry.id not in projector:
                # cache predates the log it is being fed from
                logger.warning("ledger.projector.stale", extra={"tenant_id": entry.tenant_id})
                del self._projectors[entry.tenant_id]
                return
            projector.apply_entry(entry)

    def verify(self, session: Session, tenant_id: str) -> int:
        """Compare the projection with a SQL aggregate over the log. Returns accounts checked."""
        projector = self.get(session, tenant_id)

        log_high_water = current_entry_number(session, tenant_id)
        if projector.high_water_mark != log_high_water:
            raise LedgerIntegrityError(
                "projector_high_water",
                f"projector at #{projector.high_water_mark}, log at #{log_high_water}",
                tenant_id=tenant_id,
            )

        stmt = (
            select(JournalLine.account_id, JournalLine.direction, func.sum(JournalLine.amount))
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .where(JournalEntry.tenant_id == tenant_id, JournalEntry.status.in_(LOGGED_STATUSES))
            .group_by(JournalLine.account_id, JournalLine.direction)
        )
        expected: dict[uuid.UUID, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        for account_id, direction, total in session.execute(stmt):
            slot = 0 if direction == EntryDirection.DEBIT.value else 1
            expected[account_id][slot] = Decimal(total or 0)

        account_ids = set(expected) | projector.account_ids()
        for account_id in account_ids:
            debit, credit = projector.debit_credit_totals_as_of(account_id)
            want_debit, want_credit = expected.get(account_id, [ZERO, ZERO])
            if debit != want_debit or credit != want_credit:
                raise LedgerIntegrityError(
                    "projector_replay",
                    f"projected {debit}/{credit}, log has {want_debit}/{want_credit}",
                    tenant_id=tenant_id,
                    account_id=str(account_id),
                )
        logger.info("ledger.projector.verified", extra={"tenant_id": tenant_id, "check": "projector_replay"})
        return len(account_ids)

    def _is_stale(self, session: Session, projector: LedgerProjector) -> bool:
        high_water = projector.high_water_mark
        if high_water == 0:
            return False
        stored_id = session.scalar(
            select(JournalEntry.id).where(
                JournalEntry.tenant_id == projector.tenant_id,
                JournalEntry.entry_number == high_water,
            )
        )
        cached = projector.entry_at(high_water)
        return cached is None or stored_id != cached.id

    def _catch_up(self, session: Session, projector: LedgerProjector) -> int:
        rows = session.execute(
            select(
                JournalEntry.id,
                JournalEntry.tenant_id,
                JournalEntry.entry_number,
                JournalEntry.entry_date,
                JournalEntry.description,
                JournalEntry.source,
                JournalEntry.source_ref,
                JournalLine.line_no,
                JournalLine.account_id,
                LedgerAccount.type,
                JournalLine.direction,
                JournalLine.amount,
                JournalLine.cost_center_id,
                JournalLine.memo,
            )
            .join(JournalLine, JournalLine.journal_entry_id == JournalEntry.id)
            .join(LedgerAccount, LedgerAccount.id == JournalLine.account_id)
            .where(
                JournalEntry.tenant_id == projector.tenant_id,
                JournalEntry.status.in_(LOGGED_STATUSES),
                JournalEntry.entry_number > projector.high_water_mark,
            )
            .order_by(JournalEntry.entry_number.asc(), JournalLine.line_no.asc())
            .execution_options(yield_per=get_settings().ledger_stream_batch_size)
        )

        replayed = 0
        for _, group in itertools.groupby(rows, key=lambda row: row.id):
            group_rows = list(group)
            head = group_rows[0]
            projector.apply_entry(
                PostedEntry(
                    id=head.id,
                    tenant_id=head.tenant_id,
                    entry_number=head.entry_number,
                    entry_date=head.entry_date,
                    description=head.description,
                    source=head.source,
                    source_ref=head.source_ref,
                    lines=tuple(
                        PostedLine(
                            line_no=row.line_no,
                            account_id=row.account_id,
                            account_type=AccountType(row.type),
                            direction=EntryDirection(row.direction),
                            amount=Decimal(row.amount),
                            cost_center_id=row.cost_center_id,
                            memo=row.memo,
                        )
                        for row in group_rows
                    ),
                )
            )
            replayed += 1

        if replayed:
            observe_projector_replayed(replayed)
            logger.info(
                "ledger.projector.caught_up",
                extra={"tenant_id": projector.tenant_id, "entry_number": projector.high_water_mark},
            )
        return replayed


projector_registry = ProjectorRegistry()


def on_entry_posted(event: InternalEvent) -> None:
    projector_registry.handle_entry_posted(event)
