"""Exception hierarchy for the API transport and the auth/tenant context."""

from __future__ import annotations

from typing import Any

# JSON-RPC numeric codes used by tRPC, keyed by their symbolic name
RPC_ERROR_CODES: dict[str, int] = {
    "PARSE_ERROR": -32700,
    "BAD_REQUEST": -32600,
    "INTERNAL_SERVER_ERROR": -32603,
    "UNAUTHORIZED": -32001,
    "FORBIDDEN": -32003,
    "NOT_FOUND": -32004,
    "METHOD_NOT_SUPPORTED": -32005,
    "TIMEOUT": -32008,
    "CONFLICT": -32009,
    "PRECONDITION_FAILED": -32012,
    "PAYLOAD_TOO_LARGE": -32013,
    "TOO_MANY_REQUESTS": -32029,
    "CLIENT_CLOSED_REQUEST": -32099,
}

_CODE_NAMES = {number: name for name, number in RPC_ERROR_CODES.items()}


class ApiError(Exception):
    """Base class for everything raised by the API client."""


class TransportError(ApiError):
    """The request never produced a decodable batch response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RPCError(ApiError):
    """A procedure call completed with an application-level error."""

    def __init__(
        self,
        message: str,
        code: str,
        http_status: int | None = None,
        path: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.http_status = http_status
        self.path = path
        self.data = data or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, path={self.path!r}, message={str(self)!r})"


class UnauthorizedError(RPCError):
    """The session token was missing, expired or rejected."""


class ForbiddenError(RPCError):
    """Valid session, but the tenant or action is not permitted."""


class CallCancelledError(ApiError):
    """The caller cancelled the call before its response was delivered."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Call to {path!r} was cancelled")
        self.path = path


class UnknownOrganizationError(ValueError):
    """An organization switch named an id outside the current memberships."""

    def __init__(self, organization_id: str) -> None:
        super().__init__(f"Organization {organization_id!r} is not one of the user's memberships")
        self.organization_id = organization_id


def rpc_error_from_shape(shape: Any, fallback_path: str) -> RPCError:
    """Build the matching RPCError subclass from a decoded tRPC error shape."""
    if not isinstance(shape, dict):
        return RPCError(str(shape), "INTERNAL_SERVER_ERROR", path=fallback_path)

    data = shape.get("data") if isinstance(shape.get("data"), dict) else {}
    code = data.get("code") or _CODE_NAMES.get(shape.get("code"), "INTERNAL_SERVER_ERROR")
    message = shape.get("message") or code
    path = data.get("path") or fallback_path
    http_status = data.get("httpStatus")

    cls: type[RPCError] = RPCError
    if code == "UNAUTHORIZED":
        cls = UnauthorizedError
    elif code == "FORBIDDEN":
        cls = ForbiddenError
    return cls(message, code, http_status=http_status, path=path, data=data)
