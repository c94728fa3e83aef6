"""Per-request authentication and tenant header injection."""

from __future__ import annotations

from sme_financial_os.storage.base import ORGANIZATION_ID_KEY, SESSION_TOKEN_KEY, CredentialStore

AUTHORIZATION_HEADER = "authorization"
ORGANIZATION_HEADER = "x-organization-id"


async def build_headers(store: CredentialStore) -> dict[str, str]:
    """Read the store and return the headers for one outbound request.

    No header is emitted for an absent value, and the organization header is
    only sent alongside a session token.
    """
    headers: dict[str, str] = {}

    token = await store.get(SESSION_TOKEN_KEY)
    if not token:
        return headers
    headers[AUTHORIZATION_HEADER] = f"Bearer {token}"

    organization_id = await store.get(ORGANIZATION_ID_KEY)
    if organization_id:
        headers[ORGANIZATION_HEADER] = organization_id

    return headers


def bearer_token(headers: dict[str, str]) -> str | None:
    """Extract the token from headers produced by :func:`build_headers`."""
    value = headers.get(AUTHORIZATION_HEADER, "")
    if value.startswith("Bearer "):
        return value.removeprefix("Bearer ")
    return None
