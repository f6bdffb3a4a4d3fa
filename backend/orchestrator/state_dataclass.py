"""
Authoritative session state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no side effects.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from orchestrator.enums.error_kind import ErrorKind
from orchestrator.enums.state import State
from orchestrator.retry import ReconnectPolicy, RetryAttempt

from transport.base import ConnectionInfo

from constants import PAIRING_ARTIFACT_TTL_S_DEFAULT


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class LifecyclePolicy:
    """
    Tunables the reducer consults.

    Built once from AppConfig and shared by every session.
    """
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    pairing_ttl_ms: int = int(PAIRING_ARTIFACT_TTL_S_DEFAULT * 1000)


# =============================================================================
# Session State
# =============================================================================

@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of all lifecycle-owned state for one identity."""

    identity: str

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    state: State = State.UNINITIALIZED

    # ------------------------------------------------------------------
    # Transport run tracking
    # ------------------------------------------------------------------
    # Bumped on every OpenTransport; 0 means "never opened".
    run_id: int = 0

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------
    # Bumped on every challenge and on connect; stale artifacts are dropped.
    pairing_seq: int = 0
    pairing_artifact: str | None = None
    pairing_expires_at_ms: int | None = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------
    connection_info: ConnectionInfo | None = None

    # ------------------------------------------------------------------
    # Reconnection bookkeeping
    # ------------------------------------------------------------------
    retry_attempt: RetryAttempt = RetryAttempt(attempt=0)
    retry_pending: bool = False
    next_retry_at_ms: int | None = None

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None
    error_kind: ErrorKind | None = None
