"""
Error kinds surfaced by the session façade.

Each error carries:
- kind: stable machine-readable discriminant (returned to HTTP callers)
- status_code: HTTP status the server maps it to

Transport implementations raise TransientTransportError (retryable) or
TerminalAuthError (credentials rejected); every other exception escaping
the transport is wrapped in InternalError at the session boundary.
"""

from __future__ import annotations

from typing import Any

from orchestrator.enums.state import State


class SessionError(Exception):
    """Base class for all errors the façade raises to callers."""

    kind: str = "session_error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.kind, "message": self.message}


class ValidationError(SessionError):
    """Missing or malformed caller input. Never retried."""

    kind = "validation_error"
    status_code = 400


class PreconditionError(SessionError):
    """Operation is not valid in the session's current state."""

    kind = "precondition_error"
    status_code = 409

    def __init__(self, message: str, *, state: State) -> None:
        super().__init__(message)
        self.state = state

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "state": self.state.value}


class TransientTransportError(SessionError):
    """Recoverable network/protocol failure reported by the transport."""

    kind = "transient_transport_error"
    status_code = 503


class TerminalAuthError(SessionError):
    """The remote network rejected the credentials; a fresh start is required."""

    kind = "terminal_auth_error"
    status_code = 401


class InternalError(SessionError):
    """Unexpected transport or codec failure."""

    kind = "internal_error"
    status_code = 500
