from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Protocol

from opentelemetry import trace
from sqlalchemy import Select, select
from sqlalchemy.orm import Session, selectinload

from nexa_ledger.context import get_correlation_id
from nexa_ledger.core.config import get_settings
from nexa_ledger.core.events import LEDGER_ENTRY_POSTED, LEDGER_ENTRY_VOIDED, event_bus
from nexa_ledger.metrics import (
    observe_ledger_entries_posted,
    observe_ledger_entry_voided,
    observe_ledger_lines_posted,
    observe_ledger_post_failure,
)
from nexa_ledger.platform.ledger.errors import (
    EntryNotDraft,
    EntryNotFound,
    EntryNotPosted,
    InvalidAccount,
    LedgerValidationError,
    PeriodClosed,
    UnbalancedEntry,
)
from nexa_ledger.platform.ledger.models import JournalEntry, JournalLine, LedgerAccount, LedgerSequence
from nexa_ledger.platform.ledger.periods import PeriodManager
from nexa_ledger.platform.ledger.projector import ZERO, PostedEntry
from nexa_ledger.platform.ledger.schemas import (
    JournalEntryCreate,
    JournalEntryRead,
    JournalEntryUpdate,
    JournalEntryVoided,
    JournalLineInput,
    JournalLineRead,
    TransactionRecorded,
    TransactionRecordRequest,
)
from nexa_ledger.platform.ledger.sequence import acquire_tenant_lock, next_entry_number
from nexa_ledger.platform.ledger.types import EntryDirection, EntrySource, EntryStatus
from nexa_ledger.platform.security.context import AuthContext
from nexa_ledger.services.audit import write_audit_log


logger = logging.getLogger("nexa_ledger.ledger.journal")
tracer = trace.get_tracer("nexa_ledger.ledger.journal")


class _LineLike(Protocol):
    account_id: uuid.UUID
    direction: str
    amount: Decimal


def display_number(entry_number: int | None) -> str | None:
    if entry_number is None:
        return None
    return f"{get_settings().ledger_entry_number_prefix}-{entry_number:05d}"


@dataclass(slots=True)
class JournalEngine:
    periods: PeriodManager = field(default_factory=PeriodManager)

    def create_draft(self, session: Session, ctx: AuthContext, dto: JournalEntryCreate) -> JournalEntryRead:
        try:
            entry = self._stage_draft(
                session,
                ctx,
                entry_date=dto.entry_date,
                description=dto.description,
                lines=dto.lines,
                source=dto.source,
                source_ref=dto.source_ref,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info("ledger.entry.drafted", extra={"tenant_id": ctx.tenant_id, "entry_id": str(entry.id)})
        return self._to_entry_read(self._load(session, ctx, entry.id))

    def update_draft(
        self,
        session: Session,
        ctx: AuthContext,
        entry_id: uuid.UUID,
        dto: JournalEntryUpdate,
    ) -> JournalEntryRead:
        try:
            acquire_tenant_lock(session, ctx.tenant_id)
            entry = self._load(session, ctx, entry_id)
            if entry.status != EntryStatus.DRAFT.value:
                raise EntryNotDraft(f"entry is {entry.status}", entry_id=str(entry.id))
            self._check_lines(session, ctx.tenant_id, dto.lines)
            entry.entry_date = dto.entry_date
            entry.description = dto.description
            entry.source_ref = dto.source_ref
            entry.lines.clear()
            session.flush()
            entry.lines.extend(self._build_lines(dto.lines))
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info("ledger.entry.updated", extra={"tenant_id": ctx.tenant_id, "entry_id": str(entry.id)})
        return self._to_entry_read(self._load(session, ctx, entry.id))

    def delete_draft(self, session: Session, ctx: AuthContext, entry_id: uuid.UUID) -> None:
        try:
            acquire_tenant_lock(session, ctx.tenant_id)
            entry = self._load(session, ctx, entry_id)
            if entry.status != EntryStatus.DRAFT.value:
                raise EntryNotDraft(f"entry is {entry.status}", entry_id=str(entry.id))
            session.delete(entry)
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info("ledger.entry.deleted", extra={"tenant_id": ctx.tenant_id, "entry_id": str(entry_id)})

    def post(self, session: Session, ctx: AuthContext, entry_id: uuid.UUID) -> JournalEntryRead:
        with tracer.start_as_current_span("ledger.post") as span:
            self._tag_span(span, ctx)
            span.set_attribute("ledger.entry_id", str(entry_id))
            try:
                sequence = acquire_tenant_lock(session, ctx.tenant_id)
                entry = self._load(session, ctx, entry_id)
                self._post_locked(session, ctx, sequence, entry)
                session.commit()
            except LedgerValidationError as exc:
                self._reject(session, ctx, "post", exc)
                raise
            except Exception:
                session.rollback()
                raise

            span.set_attribute("ledger.entry_number", entry.entry_number or 0)
            self._after_post(session, ctx, entry)
            return self._to_entry_read(self._load(session, ctx, entry.id))

    def void(
        self,
        session: Session,
        ctx: AuthContext,
        entry_id: uuid.UUID,
        reason: str,
        void_date: date,
    ) -> JournalEntryVoided:
        """Offset a posted entry with a mirrored reversal dated ``void_date``.

        The original keeps its lines and number; it only gains VOIDED status and
        a pointer to its reversal. The reversal consumes the next entry number.
        """
        with tracer.start_as_current_span("ledger.void") as span:
            self._tag_span(span, ctx)
            span.set_attribute("ledger.entry_id", str(entry_id))
            try:
                sequence = acquire_tenant_lock(session, ctx.tenant_id)
                original = self._load(session, ctx, entry_id)
                if original.status != EntryStatus.POSTED.value:
                    raise EntryNotPosted(f"entry is {original.status}", entry_id=str(original.id))
                if not self.periods.is_open_for_date(session, ctx.tenant_id, void_date):
                    raise PeriodClosed(
                        f"no open period covers {void_date.isoformat()}",
                        entry_id=str(original.id),
                        date=void_date.isoformat(),
                    )

                reversal = JournalEntry(
                    tenant_id=ctx.tenant_id,
                    entry_date=void_date,
                    description=f"Reversal of {display_number(original.entry_number)}: {reason}",
                    status=EntryStatus.DRAFT.value,
                    source=EntrySource.REVERSAL.value,
                    source_ref=str(original.id),
                    created_by=ctx.user_id,
                    reversal_of_id=original.id,
                    lines=[
                        JournalLine(
                            line_no=line.line_no,
                            account_id=line.account_id,
                            direction=EntryDirection(line.direction).opposite.value,
                            amount=line.amount,
                            cost_center_id=line.cost_center_id,
                            memo=line.memo,
                        )
                        for line in original.lines
                    ],
                )
                session.add(reversal)
                session.flush()
                # the reversal may touch accounts deactivated since the original posted
                self._post_locked(session, ctx, sequence, reversal, require_active=False)

                original.status = EntryStatus.VOIDED.value
                original.voided_at = datetime.now(timezone.utc)
                original.void_reason = reason
                original.reversed_by_id = reversal.id
                write_audit_log(
                    session,
                    ctx,
                    action="ledger.entry.voided",
                    entity_type="ledger.journal_entry",
                    entity_id=str(original.id),
                    metadata={
                        "entry_number": original.entry_number,
                        "reversal_entry_id": str(reversal.id),
                        "reversal_entry_number": reversal.entry_number,
                        "reason": reason,
                    },
                )
                session.commit()
            except LedgerValidationError as exc:
                self._reject(session, ctx, "void", exc)
                raise
            except Exception:
                session.rollback()
                raise

            span.set_attribute("ledger.reversal_entry_id", str(reversal.id))
            self._after_post(session, ctx, reversal)
            observe_ledger_entry_voided()
            logger.info(
                "ledger.entry.voided",
                extra={
                    "tenant_id": ctx.tenant_id,
                    "entry_id": str(original.id),
                    "entry_number": original.entry_number,
                    "reversal_entry_id": str(reversal.id),
                    "reason": reason,
                },
            )
            event_bus.publish(
                LEDGER_ENTRY_VOIDED,
                {"tenant_id": ctx.tenant_id, "entry_id": str(original.id), "reversal_entry_id": str(reversal.id)},
            )
            return JournalEntryVoided(
                original=self._to_entry_read(self._load(session, ctx, original.id)),
                reversal=self._to_entry_read(self._load(session, ctx, reversal.id)),
            )

    def record_transaction(self, session: Session, ctx: AuthContext, dto: TransactionRecordRequest) -> TransactionRecorded:
        """Draft and post in one transaction; a rejected request leaves nothing behind."""
        with tracer.start_as_current_span("ledger.record_transaction") as span:
            self._tag_span(span, ctx)
            span.set_attribute("ledger.source", EntrySource(dto.source).value)
            try:
                sequence = acquire_tenant_lock(session, ctx.tenant_id)
                entry = self._stage_draft(
                    session,
                    ctx,
                    entry_date=dto.entry_date,
                    description=dto.description,
                    lines=dto.lines,
                    source=dto.source,
                    source_ref=dto.source_ref,
                )
                self._post_locked(session, ctx, sequence, entry)
                session.commit()
            except LedgerValidationError as exc:
                self._reject(session, ctx, "record", exc)
                raise
            except Exception:
                session.rollback()
                raise

            self._after_post(session, ctx, entry)
            number = int(entry.entry_number or 0)
            span.set_attribute("ledger.entry_number", number)
            return TransactionRecorded(entry_id=entry.id, entry_number=number, display_number=display_number(number) or "")

    def get_entry(self, session: Session, ctx: AuthContext, entry_id: uuid.UUID) -> JournalEntryRead:
        return self._to_entry_read(self._load(session, ctx, entry_id))

    def list_entries(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        status: EntryStatus | None = None,
        source: EntrySource | None = None,
        source_ref: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[JournalEntryRead]:
        stmt: Select[tuple[JournalEntry]] = (
            select(JournalEntry)
            .where(JournalEntry.tenant_id == ctx.tenant_id)
            .options(selectinload(JournalEntry.lines))
        )
        if status is not None:
            stmt = stmt.where(JournalEntry.status == EntryStatus(status).value)
        if source is not None:
            stmt = stmt.where(JournalEntry.source == EntrySource(source).value)
        if source_ref is not None:
            stmt = stmt.where(JournalEntry.source_ref == source_ref)
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)
        # drafts have no number and sort after posted entries
        rows = session.scalars(
            stmt.order_by(
                JournalEntry.entry_number.is_(None),
                JournalEntry.entry_number.asc(),
                JournalEntry.created_at.asc(),
            )
        ).all()
        return [self._to_entry_read(row) for row in rows]

    def _stage_draft(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        entry_date: date,
        description: str,
        lines: Sequence[JournalLineInput],
        source: EntrySource | str,
        source_ref: str | None,
    ) -> JournalEntry:
        self._check_lines(session, ctx.tenant_id, lines)
        entry = JournalEntry(
            tenant_id=ctx.tenant_id,
            entry_date=entry_date,
            description=description,
            status=EntryStatus.DRAFT.value,
            source=EntrySource(source).value,
            source_ref=source_ref,
            created_by=ctx.user_id,
            lines=self._build_lines(lines),
        )
        session.add(entry)
        session.flush()
        return entry

    def _build_lines(self, lines: Iterable[JournalLineInput]) -> list[JournalLine]:
        return [
            JournalLine(
                line_no=index,
                account_id=line.account_id,
                direction=EntryDirection(line.direction).value,
                amount=Decimal(line.amount),
                cost_center_id=line.cost_center_id,
                memo=line.memo,
            )
            for index, line in enumerate(lines, start=1)
        ]

    def _check_lines(
        self,
        session: Session,
        tenant_id: str,
        lines: Sequence[_LineLike],
        *,
        require_active: bool = True,
    ) -> None:
        if len(lines) < 2:
            raise UnbalancedEntry("an entry needs at least two lines", line_count=len(lines))

        debit_total = ZERO
        credit_total = ZERO
        for line in lines:
            amount = Decimal(line.amount)
            if amount <= 0:
                raise UnbalancedEntry("line amounts must be positive", account_id=str(line.account_id))
            if EntryDirection(line.direction) == EntryDirection.DEBIT:
                debit_total += amount
            else:
                credit_total += amount

        account_ids = {line.account_id for line in lines}
        accounts = {
            account.id: account
            for account in session.scalars(
                select(LedgerAccount).where(LedgerAccount.tenant_id == tenant_id, LedgerAccount.id.in_(account_ids))
            ).all()
        }
        missing = sorted((str(item) for item in account_ids - set(accounts)))
        if missing:
            raise InvalidAccount("account not found", account_id=missing[0])
        if require_active:
            for account in accounts.values():
                if not account.is_active:
                    raise InvalidAccount(f"account {account.code} is inactive", account_id=str(account.id))

        if debit_total != credit_total:
            raise UnbalancedEntry(
                f"debits {debit_total} do not equal credits {credit_total}",
                debit_total=str(debit_total),
                credit_total=str(credit_total),
            )

    def _post_locked(
        self,
        session: Session,
        ctx: AuthContext,
        sequence: LedgerSequence,
        entry: JournalEntry,
        *,
        require_active: bool = True,
    ) -> None:
        """Post an entry while the caller holds the tenant lock. Does not commit."""
        if entry.status != EntryStatus.DRAFT.value:
            raise EntryNotDraft(f"entry is {entry.status}", entry_id=str(entry.id))
        if not self.periods.is_open_for_date(session, ctx.tenant_id, entry.entry_date):
            raise PeriodClosed(
                f"no open period covers {entry.entry_date.isoformat()}",
                entry_id=str(entry.id),
                date=entry.entry_date.isoformat(),
            )
        self._check_lines(session, ctx.tenant_id, entry.lines, require_active=require_active)

        entry.entry_number = next_entry_number(sequence)
        entry.status = EntryStatus.POSTED.value
        entry.posted_at = datetime.now(timezone.utc)
        write_audit_log(
            session,
            ctx,
            action="ledger.entry.posted",
            entity_type="ledger.journal_entry",
            entity_id=str(entry.id),
            metadata={
                "entry_number": entry.entry_number,
                "source": entry.source,
                "source_ref": entry.source_ref,
                "line_count": len(entry.lines),
            },
        )
        session.flush()

    def _after_post(self, session: Session, ctx: AuthContext, entry: JournalEntry) -> None:
        snapshot = PostedEntry.from_model(entry)
        observe_ledger_entries_posted()
        observe_ledger_lines_posted(len(snapshot.lines))
        logger.info(
            "ledger.entry.posted",
            extra={"tenant_id": ctx.tenant_id, "entry_id": str(entry.id), "entry_number": snapshot.entry_number},
        )
        event_bus.publish(LEDGER_ENTRY_POSTED, {"tenant_id": ctx.tenant_id, "entry": snapshot})

    def _reject(self, session: Session, ctx: AuthContext, operation: str, exc: LedgerValidationError) -> None:
        session.rollback()
        observe_ledger_post_failure(exc.code.lower())
        logger.info(
            f"ledger.entry.{operation}_rejected",
            extra={"tenant_id": ctx.tenant_id, "code": exc.code, "error": exc.message},
        )

    def _tag_span(self, span: trace.Span, ctx: AuthContext) -> None:
        span.set_attribute("ledger.tenant_id", ctx.tenant_id)
        correlation_id = ctx.correlation_id or get_correlation_id()
        if correlation_id:
            span.set_attribute("correlation_id", correlation_id)

    def _load(self, session: Session, ctx: AuthContext, entry_id: uuid.UUID) -> JournalEntry:
        entry = session.get(JournalEntry, entry_id, populate_existing=True)
        if entry is None or entry.tenant_id != ctx.tenant_id:
            raise EntryNotFound("journal entry not found", entry_id=str(entry_id))
        return entry

    def _to_entry_read(self, entry: JournalEntry) -> JournalEntryRead:
        lines = [JournalLineRead.model_validate(line) for line in entry.lines]
        return JournalEntryRead(
            id=entry.id,
            tenant_id=entry.tenant_id,
            entry_number=entry.entry_number,
            display_number=display_number(entry.entry_number),
            entry_date=entry.entry_date,
            description=entry.description,
            status=EntryStatus(entry.status),
            source=EntrySource(entry.source),
            source_ref=entry.source_ref,
            created_by=entry.created_by,
            created_at=entry.created_at,
            posted_at=entry.posted_at,
            voided_at=entry.voided_at,
            void_reason=entry.void_reason,
            reversal_of_id=entry.reversal_of_id,
            reversed_by_id=entry.reversed_by_id,
            total_debit=sum((line.amount for line in lines if line.direction == EntryDirection.DEBIT), ZERO),
            total_credit=sum((line.amount for line in lines if line.direction == EntryDirection.CREDIT), ZERO),
            lines=lines,
        )


journal_engine = JournalEngine()


def record_transaction(
    session: Session,
    tenant_id: str,
    entry_date: date,
    description: str,
    lines: Sequence[JournalLineInput],
    source_ref: str | None,
    source: EntrySource,
    *,
    actor_id: str = "system",
) -> uuid.UUID:
    """In-process recording surface for producers. Returns the posted entry id."""
    ctx = AuthContext(
        user_id=actor_id,
        tenant_id=tenant_id,
        correlation_id=get_correlation_id(),
        roles=["ledger.record"],
    )
    recorded = journal_engine.record_transaction(
        session,
        ctx,
        TransactionRecordRequest(
            entry_date=entry_date,
            description=description,
            lines=list(lines),
            source=source,
            source_ref=source_ref,
        ),
    )
    return recorded.entry_id
