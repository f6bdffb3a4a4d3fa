"""
LIFECYCLE CONSTANTS
-------------------
Single source of truth for default behavioral parameters.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment overrides go through config.AppConfig, which falls back to
  these values.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Identity & credential storage
# =============================================================================

# Identities derive a filesystem location, so they are restricted to a
# path-safe alphabet.
IDENTITY_PATTERN: Final[str] = r"^[A-Za-z0-9._@+-]{1,128}$"

CREDENTIALS_DIR_DEFAULT: Final[str] = "./sessions"
CREDENTIAL_DIR_PREFIX: Final[str] = "session_"

# =============================================================================
# Reconnection policy
# =============================================================================

RECONNECT_MAX_RETRIES_DEFAULT: Final[int] = 5
RECONNECT_BASE_DELAY_MS_DEFAULT: Final[int] = 1_000
RECONNECT_MAX_DELAY_MS_DEFAULT: Final[int] = 30_000
RECONNECT_BACKOFF_DEFAULT: Final[str] = "exponential"

# Transport close reasons that mean the remote side revoked the credentials.
# Compared case-insensitively.
LOGOUT_CLOSE_REASONS: Final[frozenset[str]] = frozenset({
    "logout",
    "logged_out",
    "unpaired",
    "conflict_logout",
})

# =============================================================================
# Pairing
# =============================================================================

PAIRING_ARTIFACT_TTL_S_DEFAULT: Final[float] = 60.0
PAIRING_ARTIFACT_FORMAT_DEFAULT: Final[str] = "png"

QR_BOX_SIZE: Final[int] = 10
QR_BORDER: Final[int] = 2

# =============================================================================
# Start façade
# =============================================================================

START_MODE_DEFAULT: Final[str] = "async"
START_WAIT_TIMEOUT_S_DEFAULT: Final[float] = 20.0

# =============================================================================
# Status push channel
# =============================================================================

STATUS_WATCH_QUEUE_MAX: Final[int] = 32

# Final snapshots of sessions that ended with an error. The oldest are
# forgotten first once the limit is reached.
OUTCOME_TOMBSTONES_MAX: Final[int] = 1_024

# =============================================================================
# Server
# =============================================================================

HOST_DEFAULT: Final[str] = "0.0.0.0"
PORT_DEFAULT: Final[int] = 3001
