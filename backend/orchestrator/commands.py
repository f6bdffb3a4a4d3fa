"""
Side-effect command definitions for the session lifecycle.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Transport
    OPEN_TRANSPORT = "OPEN_TRANSPORT"
    CLOSE_TRANSPORT = "CLOSE_TRANSPORT"

    # Pairing
    ENCODE_PAIRING = "ENCODE_PAIRING"
    CANCEL_PAIRING = "CANCEL_PAIRING"

    # Reconnection
    SCHEDULE_RETRY = "SCHEDULE_RETRY"
    CANCEL_RETRY = "CANCEL_RETRY"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Session / lifecycle
    RELEASE_SESSION = "RELEASE_SESSION"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Transport Commands
# =============================================================================

@dataclass(frozen=True)
class OpenTransport(Command):
    """Open a new transport handle for run_id."""
    run_id: int
    command_type: CommandType = CommandType.OPEN_TRANSPORT


@dataclass(frozen=True)
class CloseTransport(Command):
    """Close the handle opened for run_id, if any."""
    run_id: int
    command_type: CommandType = CommandType.CLOSE_TRANSPORT


# =============================================================================
# Pairing Commands
# =============================================================================

@dataclass(frozen=True)
class EncodePairing(Command):
    """Materialize a display artifact for pairing challenge pairing_seq."""
    pairing_seq: int
    payload: str | bytes
    command_type: CommandType = CommandType.ENCODE_PAIRING


@dataclass(frozen=True)
class CancelPairing(Command):
    """Abort any in-flight artifact encoding."""
    command_type: CommandType = CommandType.CANCEL_PAIRING


# =============================================================================
# Reconnection Commands
# =============================================================================

@dataclass(frozen=True)
class ScheduleRetry(Command):
    """
    Schedule reconnect attempt `attempt` after delay_ms.

    Retry is just a delayed RetryReady event.
    """
    attempt: int
    delay_ms: int
    command_type: CommandType = CommandType.SCHEDULE_RETRY


@dataclass(frozen=True)
class CancelRetry(Command):
    """Cancel a pending reconnect timer."""
    command_type: CommandType = CommandType.CANCEL_RETRY


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Start (or replace) a timer that emits a pairing expiry event.

    pairing_seq scopes the expiry to the artifact it was started for.
    """
    timer_id: str
    duration_ms: int
    pairing_seq: int
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Cancel an in-flight timer."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Session Commands
# =============================================================================

@dataclass(frozen=True)
class ReleaseSession(Command):
    """
    Tear down everything the session owns and leave the registry.

    Cancels timers and tasks, closes any remaining handle, optionally
    instructs the transport to delete stored credentials, then emits
    SessionReleased.
    """
    purge_credentials: bool
    command_type: CommandType = CommandType.RELEASE_SESSION


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured log record describing a reducer decision."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
