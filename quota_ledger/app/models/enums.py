"""
Caller roles enumeration.

Defines the role claims accepted in access tokens.
"""

import enum


class UserRole(str, enum.Enum):
    """
    Role enumeration.

    Roles:
        ADMIN: Operator with access to catalogue, tenant and audit endpoints
        TENANT: A tenant's billing / activation surface (default role)
    """
    ADMIN = "ADMIN"
    TENANT = "TENANT"
