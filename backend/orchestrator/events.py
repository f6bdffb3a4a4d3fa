"""
Unified event definitions for the session lifecycle reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Transport-originated events carry the run_id of the transport handle
that produced them so the reducer can drop events from stale handles.
Pairing events carry the pairing_seq they were produced for.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from orchestrator.enums.close_reason import CloseReason
from transport.base import ConnectionInfo


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Caller commands (via façade)
    # ------------------------------------------------------------------
    START_REQUESTED = "START_REQUESTED"
    DISCONNECT_REQUESTED = "DISCONNECT_REQUESTED"

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------
    TRANSPORT_OPEN_FAILED = "TRANSPORT_OPEN_FAILED"
    PAIRING_CHALLENGE = "PAIRING_CHALLENGE"
    CONNECTED = "CONNECTED"
    TRANSPORT_CLOSED = "TRANSPORT_CLOSED"
    AUTH_FAILURE = "AUTH_FAILURE"

    # ------------------------------------------------------------------
    # Pairing coordinator
    # ------------------------------------------------------------------
    PAIRING_ARTIFACT_READY = "PAIRING_ARTIFACT_READY"
    PAIRING_ENCODE_FAILED = "PAIRING_ENCODE_FAILED"
    PAIRING_EXPIRED = "PAIRING_EXPIRED"

    # ------------------------------------------------------------------
    # Timers / internal control
    # ------------------------------------------------------------------
    RETRY_READY = "RETRY_READY"
    SESSION_RELEASED = "SESSION_RELEASED"
    INTERNAL_FAULT = "INTERNAL_FAULT"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class TransportScopedEvent(Event):
    """
    Base class for events produced by one transport handle.

    The reducer MUST ignore events whose run_id does not match the
    currently active transport run.
    """

    run_id: int


# =============================================================================
# Caller Events
# =============================================================================

@dataclass(frozen=True)
class StartRequested(Event):
    """Caller asked for the session to be started."""


@dataclass(frozen=True)
class DisconnectRequested(Event):
    """
    Caller asked for the session to be torn down.

    purge_credentials=False is used on process shutdown so sessions can
    be restored on the next start.
    """
    purge_credentials: bool = True


# =============================================================================
# Transport Events
# =============================================================================

@dataclass(frozen=True)
class TransportOpenFailed(TransportScopedEvent):
    """transport.open() raised."""
    reason: str
    transient: bool


@dataclass(frozen=True)
class PairingChallenge(TransportScopedEvent):
    """Raw pairing challenge received from the transport."""
    payload: str | bytes


@dataclass(frozen=True)
class Connected(TransportScopedEvent):
    """Transport authenticated and connected."""
    info: ConnectionInfo = field(default_factory=ConnectionInfo)


@dataclass(frozen=True)
class TransportClosed(TransportScopedEvent):
    """Transport connection closed (already classified by retry policy)."""
    reason: CloseReason
    raw_reason: str | None = None


@dataclass(frozen=True)
class AuthFailure(TransportScopedEvent):
    """Stored credentials were rejected by the remote network."""
    detail: str = ""


# =============================================================================
# Pairing Coordinator Events
# =============================================================================

@dataclass(frozen=True)
class PairingArtifactReady(Event):
    """Display-ready artifact produced for challenge pairing_seq."""
    pairing_seq: int
    artifact: str


@dataclass(frozen=True)
class PairingEncodeFailed(Event):
    """The artifact encoder raised for challenge pairing_seq."""
    pairing_seq: int
    reason: str


@dataclass(frozen=True)
class PairingExpired(Event):
    """Validity window of the artifact for pairing_seq elapsed."""
    pairing_seq: int


# =============================================================================
# Timer / Internal Events
# =============================================================================

@dataclass(frozen=True)
class RetryReady(Event):
    """Backoff delay before reconnect attempt `attempt` elapsed."""
    attempt: int


@dataclass(frozen=True)
class SessionReleased(Event):
    """Runtime finished releasing transport, timers and registry entry."""


@dataclass(frozen=True)
class InternalFault(Event):
    """
    Unexpected failure while applying an event or executing a command.

    Moves the session to a safe terminal state.
    """
    reason: str
