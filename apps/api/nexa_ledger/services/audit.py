from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from nexa_ledger.context import get_correlation_id
from nexa_ledger.models.audit import AuditLog
from nexa_ledger.platform.security.context import AuthContext


def write_audit_log(
    db: Session,
    ctx: AuthContext,
    action: str,
    entity_type: str,
    entity_id: str,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction; the caller commits."""
    event = AuditLog(
        tenant_id=ctx.tenant_id,
        actor_id=ctx.user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        event_metadata=metadata or {},
        correlation_id=ctx.correlation_id or get_correlation_id(),
    )
    db.add(event)
    return event


def list_audit_logs(db: Session, tenant_id: str, entity_type: str, entity_id: str) -> list[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(AuditLog.tenant_id == tenant_id, AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.id.asc())
    )
    return list(db.scalars(stmt).all())
