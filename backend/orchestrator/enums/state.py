"""
Authoritative session lifecycle state enumeration.

Rules:
- This enum defines ONLY the lifecycle states of one messaging session.
- No behavior, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class State(str, Enum):
    """
    Lifecycle states for a single identity's messaging session.

    DISCONNECTED is never held by a live session. The façade reports it
    for identities that have no session in the registry.
    """

    UNINITIALIZED = "UNINITIALIZED"
    STARTING = "STARTING"
    AWAITING_PAIRING = "AWAITING_PAIRING"
    CONNECTED = "CONNECTED"
    AUTH_FAILED = "AUTH_FAILED"
    DISCONNECTING = "DISCONNECTING"
    TERMINATED = "TERMINATED"
    DISCONNECTED = "DISCONNECTED"


# States in which the session owns (or is acquiring) a transport handle
LIVE_STATES: frozenset[State] = frozenset({
    State.STARTING,
    State.AWAITING_PAIRING,
    State.CONNECTED,
})

# States from which the session never leaves
TERMINAL_STATES: frozenset[State] = frozenset({
    State.AUTH_FAILED,
    State.TERMINATED,
})
