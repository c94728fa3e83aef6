"""Protocol for pluggable credential storage backends."""

from __future__ import annotations

from typing import Protocol

SESSION_TOKEN_KEY = "sessionToken"
ORGANIZATION_ID_KEY = "organizationId"


class CredentialStore(Protocol):
    """Durable key/value storage for the session token and active organization."""

    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str) -> None: ...
    async def clear(self, key: str) -> None: ...
