"""Per-tenant serialization point.

Every order-dependent ledger write (post, void, period close and reopen) begins
by locking the tenant's ``ledger_tenant_sequence`` row with ``SELECT ... FOR
UPDATE``. The lock is held until the caller's transaction ends, so the period
check, the balance check and the number assignment all read the same state.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nexa_ledger.platform.ledger.errors import LedgerIntegrityError
from nexa_ledger.platform.ledger.models import LedgerSequence


logger = logging.getLogger("nexa_ledger.ledger.sequence")


def ensure_sequence(session: Session, tenant_id: str) -> None:
    """Create the tenant counter row on first use.

    The insert runs in a SAVEPOINT on the caller's transaction. Anything the
    caller staged before it commits or rolls back together with the caller.
    """
    exists = session.scalar(select(LedgerSequence.tenant_id).where(LedgerSequence.tenant_id == tenant_id))
    if exists is not None:
        return
    try:
        with session.begin_nested():
            session.add(LedgerSequence(tenant_id=tenant_id, last_entry_number=0))
    except IntegrityError:
        # another writer created it first
        return
    logger.info("ledger.sequence.created", extra={"tenant_id": tenant_id})


def lock_sequence(session: Session, tenant_id: str) -> LedgerSequence:
    sequence = session.scalar(
        select(LedgerSequence)
        .where(LedgerSequence.tenant_id == tenant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if sequence is None:
        raise LedgerIntegrityError("sequence", "tenant sequence row is missing", tenant_id=tenant_id)
    return sequence


def acquire_tenant_lock(session: Session, tenant_id: str) -> LedgerSequence:
    ensure_sequence(session, tenant_id)
    return lock_sequence(session, tenant_id)


def next_entry_number(sequence: LedgerSequence) -> int:
    """Advance a locked counter. The value is consumed only if the caller commits."""
    sequence.last_entry_number += 1
    return sequence.last_entry_number


def current_entry_number(session: Session, tenant_id: str) -> int:
    value = session.scalar(select(LedgerSequence.last_entry_number).where(LedgerSequence.tenant_id == tenant_id))
    return int(value or 0)
