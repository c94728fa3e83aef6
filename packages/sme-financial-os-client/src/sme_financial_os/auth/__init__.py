"""Auth/tenant context and its domain models."""

from __future__ import annotations

from sme_financial_os.auth.context import AuthContext
from sme_financial_os.auth.models import (
    AuthSnapshot,
    AuthStatus,
    MemberRole,
    OrganizationMembership,
    User,
)

__all__ = [
    "AuthContext",
    "AuthSnapshot",
    "AuthStatus",
    "MemberRole",
    "OrganizationMembership",
    "User",
]
