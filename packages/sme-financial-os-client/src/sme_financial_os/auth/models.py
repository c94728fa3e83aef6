"""Auth domain models: user, memberships, context snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MemberRole(str, Enum):
    """Role of the user inside one organization."""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    MEMBER = "MEMBER"


class AuthStatus(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED_NO_ORG = "authenticated_no_org"
    AUTHENTICATED = "authenticated"


class User(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    email: str
    name: str | None = None
    avatar_url: str | None = Field(default=None, alias="avatarUrl")


class OrganizationMembership(BaseModel):
    """Read-only projection of an organization the user belongs to."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    name: str
    role: MemberRole
    country: str | None = None
    currency: str | None = None


@dataclass(frozen=True)
class AuthSnapshot:
    status: AuthStatus
    user: User | None = None
    organizations: tuple[OrganizationMembership, ...] = ()
    current_organization: OrganizationMembership | None = None

    @property
    def is_loading(self) -> bool:
        return self.status is AuthStatus.LOADING

    @property
    def is_authenticated(self) -> bool:
        return self.status in (AuthStatus.AUTHENTICATED, AuthStatus.AUTHENTICATED_NO_ORG)

    @property
    def current_organization_id(self) -> str | None:
        return self.current_organization.id if self.current_organization else None
