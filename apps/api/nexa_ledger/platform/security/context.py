from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class AuthContext:
    """Caller identity and tenant scope for a ledger operation."""

    user_id: str
    tenant_id: str
    correlation_id: str | None = None
    roles: list[str] = field(default_factory=list)

    @classmethod
    def system(cls, tenant_id: str, *, correlation_id: str | None = None) -> AuthContext:
        return cls(user_id="system", tenant_id=tenant_id, correlation_id=correlation_id, roles=["system.admin"])
