"""
Role guards for admin endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from quota_ledger.app.models.enums import UserRole
from quota_ledger.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory: the caller's role claim must be one of `allowed_roles`.

    Usage:
        @router.post("/admin/tenants")
        async def create_tenant(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...

    Raises:
        HTTPException 403 for an unknown or disallowed role
    """
    allowed = ", ".join(r.value for r in allowed_roles)

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            role = UserRole(current_user["role"])
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {allowed}"
            )
        return current_user

    return role_checker
