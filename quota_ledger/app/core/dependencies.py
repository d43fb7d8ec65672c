"""
Caller identity dependencies.

Tenant-facing endpoints act on the tenant named in the token, never on a
tenant id taken from the request body or path.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from quota_ledger.app.core.jwt import decode_access_token

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Verified token claims of the caller.

    Raises:
        HTTPException: 401 for an invalid or expired token, or one without
            a role claim
    """
    claims = decode_access_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Could not validate credentials")
    if not claims.get("role"):
        raise _unauthorized("Invalid token payload")
    return claims


async def get_current_tenant_id(current_user: dict = Depends(get_current_user)) -> str:
    """
    Tenant the caller acts for.

    Raises:
        HTTPException: 403 if the token carries no tenant claim
    """
    tenant_id = current_user.get("tenant_id")
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token is not scoped to a tenant",
        )
    return str(tenant_id)
