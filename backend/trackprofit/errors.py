"""
Error taxonomy shared by provider clients, services and the HTTP layer.

Every failure that crosses a module boundary is a ``ServiceError`` tagged with
an ``ErrorKind``. Provider clients raise the ``ProviderError`` subclass so the
dashboard can name the degraded provider in its warnings.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    AUTH_EXPIRED = "auth_expired"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_BAD_RESPONSE = "upstream_bad_response"
    NETWORK = "network"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    INTERNAL = "internal"


# HTTP status per kind. auth_expired is a misconfiguration from the caller's
# point of view (reconnect needed), so it shares 409 with conflict.
HTTP_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.AUTH_EXPIRED: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_BAD_RESPONSE: 502,
    ErrorKind.NETWORK: 502,
    ErrorKind.INTERNAL: 500,
}


class ServiceError(Exception):
    """Base error with a machine-readable kind and reason."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        reason: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.reason = reason or kind.value
        self.retry_after = retry_after

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.kind, 500)

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message, "reason": self.reason}
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        return body


class ProviderError(ServiceError):
    """Failure talking to an external provider (orders, ads, courier)."""

    def __init__(
        self,
        provider: str,
        kind: ErrorKind,
        message: str,
        reason: Optional[str] = None,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(kind, message, reason=reason, retry_after=retry_after)
        self.provider = provider
        self.upstream_status = status_code

    @property
    def warning(self) -> str:
        """Dashboard warning tag, e.g. ``ads:auth_expired``."""
        return f"{self.provider}:{self.kind.value}"

    def __str__(self) -> str:
        return f"[{self.provider}] {self.kind.value}: {self.message}"


def invalid_input(message: str, reason: Optional[str] = None) -> ServiceError:
    return ServiceError(ErrorKind.INVALID_INPUT, message, reason=reason)


def not_found(message: str, reason: Optional[str] = None) -> ServiceError:
    return ServiceError(ErrorKind.NOT_FOUND, message, reason=reason)


def conflict(message: str, reason: Optional[str] = None) -> ServiceError:
    return ServiceError(ErrorKind.CONFLICT, message, reason=reason)
