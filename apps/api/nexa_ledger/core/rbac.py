from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from nexa_ledger.core.auth import AuthUser, get_current_user

SUPERUSER_ROLES = frozenset({"admin", "system.admin"})

# permissions granted implicitly by a broader one
IMPLIED_PERMISSIONS: dict[str, frozenset[str]] = {
    "ledger.admin": frozenset({"ledger.read", "ledger.record"}),
}


def effective_permissions(user: AuthUser) -> set[str]:
    granted = set(user.roles)
    for role in user.roles:
        granted.update(IMPLIED_PERMISSIONS.get(role, ()))
    return granted


def has_permissions(user: AuthUser, *permissions: str) -> bool:
    if SUPERUSER_ROLES.intersection(user.roles):
        return True
    granted = effective_permissions(user)
    return all(permission in granted for permission in permissions)


def require_permissions(*permissions: str) -> Callable[[AuthUser], AuthUser]:
    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if not has_permissions(user, *permissions):
            granted = effective_permissions(user)
            missing_permissions = [permission for permission in permissions if permission not in granted]
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing_permissions)}",
            )
        return user

    return checker
