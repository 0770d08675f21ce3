"""Exceptions raised by the gateway and the local entity store."""

from __future__ import annotations

from typing import Any, Dict


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


class GatewayError(SyncError):
    """A remote operation failed. The coordinator absorbs these."""

    kind = "gateway"

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "operation": self.operation, "message": self.message}


class TransportError(GatewayError):
    """No connectivity, timeout or an unconfigured remote."""

    kind = "transport"


class AuthError(GatewayError):
    """Session expired or rejected by the remote store."""

    kind = "auth"


class ServerError(GatewayError):
    """The remote store rejected the request (validation, conflict, missing row)."""

    kind = "server"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.status_code = status_code
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["statusCode"] = self.status_code
        return payload


class LocalStorageError(SyncError, RuntimeError):
    """The local cache could not be written. Surfaces to callers."""


class RecordNotFoundError(SyncError, LookupError):
    """A record id does not exist in the local cache."""
