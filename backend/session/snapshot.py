"""
Caller-facing lifecycle snapshot.

A StatusSnapshot is the only view of a session callers ever get. It is
derived from one immutable SessionState, so it can never show a
half-applied transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from orchestrator.enums.error_kind import ErrorKind
from orchestrator.enums.state import State
from orchestrator.state_dataclass import SessionState
from transport.base import ConnectionInfo


@dataclass(frozen=True)
class StatusSnapshot:
    identity: str
    state: State
    pairing_artifact: str | None = None
    pairing_expires_at_ms: int | None = None
    connection_info: ConnectionInfo | None = None
    last_error: str | None = None
    error_kind: ErrorKind | None = None
    retry_attempt: int = 0
    next_retry_at_ms: int | None = None

    @classmethod
    def from_state(cls, state: SessionState) -> StatusSnapshot:
        """
        Project a SessionState.

        The artifact is exposed only in AWAITING_PAIRING and connection
        info only in CONNECTED, whatever the underlying fields hold.
        """
        awaiting = state.state is State.AWAITING_PAIRING
        connected = state.state is State.CONNECTED
        return cls(
            identity=state.identity,
            state=state.state,
            pairing_artifact=state.pairing_artifact if awaiting else None,
            pairing_expires_at_ms=state.pairing_expires_at_ms if awaiting else None,
            connection_info=state.connection_info if connected else None,
            last_error=state.last_error,
            error_kind=state.error_kind,
            retry_attempt=state.retry_attempt.attempt,
            next_retry_at_ms=state.next_retry_at_ms if state.retry_pending else None,
        )

    @classmethod
    def disconnected(cls, identity: str) -> StatusSnapshot:
        """Snapshot for an identity with no session."""
        return cls(identity=identity, state=State.DISCONNECTED)

    @classmethod
    def terminated(cls, identity: str) -> StatusSnapshot:
        return cls(identity=identity, state=State.TERMINATED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "state": self.state.value,
            "pairing_artifact": self.pairing_artifact,
            "pairing_expires_at_ms": self.pairing_expires_at_ms,
            "connection_info": (
                self.connection_info.to_dict() if self.connection_info else None
            ),
            "last_error": self.last_error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "retry_attempt": self.retry_attempt,
            "next_retry_at_ms": self.next_retry_at_ms,
        }
