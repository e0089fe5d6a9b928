from nexa_ledger.models.audit import AuditLog

__all__ = ["AuditLog"]
