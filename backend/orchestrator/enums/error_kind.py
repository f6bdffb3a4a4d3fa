"""
Classification of the error recorded on a failed session.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """
    AUTH:
        The transport rejected the stored credentials.

    RETRIES_EXHAUSTED:
        Transient disconnects exceeded the reconnect bound.

    INTERNAL:
        Unexpected transport or codec failure.
    """

    AUTH = "auth"
    RETRIES_EXHAUSTED = "retries_exhausted"
    INTERNAL = "internal"
