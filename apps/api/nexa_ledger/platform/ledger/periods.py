from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nexa_ledger.core.events import LEDGER_PERIOD_CLOSED, LEDGER_PERIOD_REOPENED, event_bus
from nexa_ledger.metrics import observe_period_transition
from nexa_ledger.platform.ledger.errors import (
    EarlierPeriodOpen,
    InvalidPeriodRange,
    LaterPeriodClosed,
    PeriodGap,
    PeriodNotClosed,
    PeriodNotFound,
    PeriodNotOpen,
    PeriodOverlap,
)
from nexa_ledger.platform.ledger.models import AccountingPeriod, JournalEntry
from nexa_ledger.platform.ledger.schemas import PeriodCreate, PeriodRead
from nexa_ledger.platform.ledger.sequence import acquire_tenant_lock
from nexa_ledger.platform.ledger.types import LOGGED_STATUSES, PeriodStatus
from nexa_ledger.platform.security.context import AuthContext
from nexa_ledger.services.audit import write_audit_log


logger = logging.getLogger("nexa_ledger.ledger.periods")


@dataclass(slots=True)
class PeriodManager:
    def create_period(self, session: Session, ctx: AuthContext, dto: PeriodCreate) -> PeriodRead:
        if dto.end_date < dto.start_date:
            raise InvalidPeriodRange(
                "period end precedes its start",
                start_date=dto.start_date.isoformat(),
                end_date=dto.end_date.isoformat(),
            )

        overlapping = session.scalar(
            select(AccountingPeriod).where(
                AccountingPeriod.tenant_id == ctx.tenant_id,
                AccountingPeriod.start_date <= dto.end_date,
                AccountingPeriod.end_date >= dto.start_date,
            )
        )
        if overlapping is not None:
            raise PeriodOverlap(
                f"range intersects period {overlapping.name}",
                period_id=str(overlapping.id),
            )

        latest = session.scalar(
            select(AccountingPeriod)
            .where(AccountingPeriod.tenant_id == ctx.tenant_id)
            .order_by(AccountingPeriod.end_date.desc())
            .limit(1)
        )
        if latest is not None and dto.start_date != latest.end_date + timedelta(days=1):
            expected = latest.end_date + timedelta(days=1)
            raise PeriodGap(
                f"next period must start on {expected.isoformat()}",
                expected_start=expected.isoformat(),
            )

        period = AccountingPeriod(
            tenant_id=ctx.tenant_id,
            name=dto.name or f"{dto.start_date.isoformat()}..{dto.end_date.isoformat()}",
            start_date=dto.start_date,
            end_date=dto.end_date,
            status=PeriodStatus.OPEN.value,
            notes=dto.notes,
        )
        session.add(period)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise PeriodOverlap("a period with this start date already exists", start_date=dto.start_date.isoformat())
        session.refresh(period)
        logger.info("ledger.period.created", extra={"tenant_id": ctx.tenant_id, "period_id": str(period.id)})
        return PeriodRead.model_validate(period)

    def close_period(self, session: Session, ctx: AuthContext, period_id: uuid.UUID) -> PeriodRead:
        try:
            acquire_tenant_lock(session, ctx.tenant_id)
            period = self._load(session, ctx, period_id)
            if period.status != PeriodStatus.OPEN.value:
                raise PeriodNotOpen(f"period {period.name} is already closed", period_id=str(period.id))

            earlier_open = session.scalar(
                select(AccountingPeriod)
                .where(
                    AccountingPeriod.tenant_id == ctx.tenant_id,
                    AccountingPeriod.end_date < period.start_date,
                    AccountingPeriod.status == PeriodStatus.OPEN.value,
                )
                .order_by(AccountingPeriod.start_date.asc())
                .limit(1)
            )
            if earlier_open is not None:
                raise EarlierPeriodOpen(
                    f"period {earlier_open.name} must be closed first",
                    period_id=str(earlier_open.id),
                )

            period.status = PeriodStatus.CLOSED.value
            period.closed_at = datetime.now(timezone.utc)
            period.closed_by = ctx.user_id
            write_audit_log(
                session,
                ctx,
                action="ledger.period.closed",
                entity_type="ledger.accounting_period",
                entity_id=str(period.id),
                metadata={"start_date": period.start_date.isoformat(), "end_date": period.end_date.isoformat()},
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(period)
        observe_period_transition("close")
        logger.info("ledger.period.closed", extra={"tenant_id": ctx.tenant_id, "period_id": str(period.id)})
        event_bus.publish(LEDGER_PERIOD_CLOSED, {"tenant_id": ctx.tenant_id, "period_id": str(period.id)})
        return self._to_read(session, period)

    def reopen_period(self, session: Session, ctx: AuthContext, period_id: uuid.UUID, reason: str) -> PeriodRead:
        try:
            acquire_tenant_lock(session, ctx.tenant_id)
            period = self._load(session, ctx, period_id)
            if period.status != PeriodStatus.CLOSED.value:
                raise PeriodNotClosed(f"period {period.name} is open", period_id=str(period.id))

            later_closed = session.scalar(
                select(AccountingPeriod)
                .where(
                    AccountingPeriod.tenant_id == ctx.tenant_id,
                    AccountingPeriod.start_date > period.end_date,
                    AccountingPeriod.status == PeriodStatus.CLOSED.value,
                )
                .limit(1)
            )
            if later_closed is not None:
                raise LaterPeriodClosed(
                    f"period {later_closed.name} must be reopened first",
                    period_id=str(later_closed.id),
                )

            previous = {
                "closed_at": period.closed_at.isoformat() if period.closed_at else None,
                "closed_by": period.closed_by,
            }
            period.status = PeriodStatus.OPEN.value
            period.closed_at = None
            period.closed_by = None
            write_audit_log(
                session,
                ctx,
                action="ledger.period.reopened",
                entity_type="ledger.accounting_period",
                entity_id=str(period.id),
                metadata={"reason": reason, **previous},
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(period)
        observe_period_transition("reopen")
        logger.warning(
            "ledger.period.reopened",
            extra={"tenant_id": ctx.tenant_id, "period_id": str(period.id), "reason": reason},
        )
        event_bus.publish(LEDGER_PERIOD_REOPENED, {"tenant_id": ctx.tenant_id, "period_id": str(period.id)})
        return self._to_read(session, period)

    def is_open_for_date(self, session: Session, tenant_id: str, on: date) -> bool:
        found = session.scalar(
            select(AccountingPeriod.id).where(
                AccountingPeriod.tenant_id == tenant_id,
                AccountingPeriod.start_date <= on,
                AccountingPeriod.end_date >= on,
                AccountingPeriod.status == PeriodStatus.OPEN.value,
            )
        )
        return found is not None

    def period_for_date(self, session: Session, ctx: AuthContext, on: date) -> PeriodRead:
        period = session.scalar(
            select(AccountingPeriod).where(
                AccountingPeriod.tenant_id == ctx.tenant_id,
                AccountingPeriod.start_date <= on,
                AccountingPeriod.end_date >= on,
            )
        )
        if period is None:
            raise PeriodNotFound(f"no period covers {on.isoformat()}", date=on.isoformat())
        return self._to_read(session, period)

    def get_period(self, session: Session, ctx: AuthContext, period_id: uuid.UUID) -> PeriodRead:
        return self._to_read(session, self._load(session, ctx, period_id))

    def list_periods(self, session: Session, ctx: AuthContext) -> list[PeriodRead]:
        rows = session.execute(
            select(AccountingPeriod, func.count(JournalEntry.id))
            .outerjoin(
                JournalEntry,
                and_(
                    JournalEntry.tenant_id == AccountingPeriod.tenant_id,
                    JournalEntry.entry_date >= AccountingPeriod.start_date,
                    JournalEntry.entry_date <= AccountingPeriod.end_date,
                    JournalEntry.status.in_(LOGGED_STATUSES),
                ),
            )
            .where(AccountingPeriod.tenant_id == ctx.tenant_id)
            .group_by(AccountingPeriod.id)
            .order_by(AccountingPeriod.start_date.desc())
        ).all()
        result = []
        for period, posted_count in rows:
            item = PeriodRead.model_validate(period)
            item.posted_entry_count = int(posted_count)
            result.append(item)
        return result

    def _load(self, session: Session, ctx: AuthContext, period_id: uuid.UUID) -> AccountingPeriod:
        period = session.get(AccountingPeriod, period_id, populate_existing=True)
        if period is None or period.tenant_id != ctx.tenant_id:
            raise PeriodNotFound("period not found", period_id=str(period_id))
        return period

    def _to_read(self, session: Session, period: AccountingPeriod) -> PeriodRead:
        posted_count = session.scalar(
            select(func.count(JournalEntry.id)).where(
                JournalEntry.tenant_id == period.tenant_id,
                JournalEntry.entry_date >= period.start_date,
                JournalEntry.entry_date <= period.end_date,
                JournalEntry.status.in_(LOGGED_STATUSES),
            )
        )
        item = PeriodRead.model_validate(period)
        item.posted_entry_count = int(posted_count or 0)
        return item


period_manager = PeriodManager()
