"""
Runtime execution context.

Provides SessionRuntime with the session-owned collaborators it needs
for command execution (transport, credential location, artifact encoder,
release hook).

This module contains:
- Zero lifecycle logic
- Zero state mutation
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from orchestrator.pairing import ArtifactEncoder
from orchestrator.state_dataclass import SessionState
from transport.base import MessagingTransport

if TYPE_CHECKING:
    from orchestrator.runtime import SessionRuntime


# Called exactly once, after the runtime released its transport and timers.
ReleaseHook = Callable[["SessionRuntime", SessionState], None]


def _no_release_hook(runtime: SessionRuntime, final_state: SessionState) -> None:
    pass


@dataclass(frozen=True)
class RuntimeExecutionContext:
    """
    Live collaborators for one session's runtime.

    The transport is shared across sessions; everything it hands back
    (handles, events) is scoped to the session that opened it.
    """

    identity: str
    credential_path: Path
    transport: MessagingTransport
    encoder: ArtifactEncoder
    on_released: ReleaseHook = _no_release_hook
