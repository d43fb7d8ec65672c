"""
Access tokens.

Tokens are issued by the platform's identity service; this service only
verifies them. `create_access_token` exists for operators and tests.

Claims:
    sub        caller name (operator, UI client)
    role       ADMIN | TENANT
    tenant_id  tenant the caller acts for (absent on ADMIN tokens)
    exp        expiry
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from quota_ledger.app.core.config import settings


def create_access_token(
    subject: str,
    role: str,
    tenant_id: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    claims: Dict[str, Any] = {"sub": subject, "role": role, "exp": expire}
    if tenant_id:
        claims["tenant_id"] = tenant_id
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verified claims, or None for a bad signature, malformed or expired token."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
