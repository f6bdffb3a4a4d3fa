"""
Transport close reason classification.

The transport reports why a connection closed; the reconnection policy
only cares whether the credentials survived.
"""

from __future__ import annotations

from enum import Enum


class CloseReason(str, Enum):
    """
    LOGGED_OUT:
        The remote side revoked the credentials. Terminal; no retry.

    TRANSIENT:
        Network or protocol drop. Recoverable by reconnecting with the
        stored credentials.
    """

    LOGGED_OUT = "logged_out"
    TRANSIENT = "transient"
