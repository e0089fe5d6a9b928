from nexa_ledger.platform.security.context import AuthContext

__all__ = ["AuthContext"]
