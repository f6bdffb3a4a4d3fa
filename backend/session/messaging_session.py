"""
Messaging session container.

- Owns the runtime (which owns the authoritative state)
- Owned by SessionRegistry
- NOT a state machine
- Contains no orchestration logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from orchestrator.runtime import SessionRuntime
from session.snapshot import StatusSnapshot


# ---------------------------------------------------------------------
# MessagingSession
# ---------------------------------------------------------------------


@dataclass
class MessagingSession:
    """Registry entry for a single identity."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    identity: str
    credential_path: Path
    runtime: SessionRuntime
    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    @property
    def is_finished(self) -> bool:
        return self.runtime.is_finished

    def snapshot(self) -> StatusSnapshot:
        """Consistent caller-facing view of the current state."""
        return StatusSnapshot.from_state(self.runtime.state)

    def log_context(self) -> dict[str, Any]:
        """
        Return standard logging context for this session.

        Intended for registry / gateway enrichment.
        """
        state = self.runtime.state
        return {
            "identity": self.identity,
            "state": state.state.value,
            "run_id": state.run_id,
        }
