"""
Credential store locations.

The transport owns the on-disk credential format; the core only derives
where each identity's credentials live and enumerates identities that
already have stored credentials (for restore on startup).
"""

from __future__ import annotations

import re
from pathlib import Path

from session.errors import ValidationError

from constants import CREDENTIAL_DIR_PREFIX, IDENTITY_PATTERN

_IDENTITY_RE = re.compile(IDENTITY_PATTERN)


def validate_identity(identity: str | None) -> str:
    """
    Return the identity stripped of surrounding whitespace.

    Raises:
        ValidationError if missing or outside the path-safe alphabet.
    """
    if identity is None or not str(identity).strip():
        raise ValidationError("Missing identity.")
    identity = str(identity).strip()
    if not _IDENTITY_RE.match(identity) or identity in (".", ".."):
        raise ValidationError(
            "Invalid identity: use 1-128 characters from [A-Za-z0-9._@+-]."
        )
    return identity


def credential_path(root: Path, identity: str) -> Path:
    """Storage location for one identity's credentials."""
    return root / f"{CREDENTIAL_DIR_PREFIX}{identity}"


def stored_identities(root: Path) -> list[str]:
    """
    Identities that have a credential directory under root.

    Entries whose suffix is not a valid identity are skipped.
    """
    if not root.is_dir():
        return []

    found: list[str] = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir() or not entry.name.startswith(CREDENTIAL_DIR_PREFIX):
            continue
        candidate = entry.name[len(CREDENTIAL_DIR_PREFIX):]
        if _IDENTITY_RE.match(candidate) and candidate not in (".", ".."):
            found.append(candidate)
    return found
