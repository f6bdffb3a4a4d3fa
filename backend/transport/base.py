"""
Transport collaborator boundary.

The transport is the library that actually speaks the remote messaging
network's protocol (device pairing, connection, sending). This module
defines only what the session lifecycle consumes from it:

- Boundary value types (connection info, outbound content)
- Lifecycle events a transport emits
- The MessagingTransport protocol

Contract:
- open() allocates a handle bound to a credential store location and
  begins the connection handshake. It should return promptly; progress
  is reported through on_event.
- on_event is non-blocking and may be called from any coroutine running
  on the session's event loop, including from inside open().
- Raising TransientTransportError from open()/send() marks the failure
  as retryable. Any other exception is treated as an internal failure.
- Credential persistence is owned by the transport; the core only
  passes the location and asks for deletion.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol, runtime_checkable

from orchestrator.enums.close_reason import CloseReason


# ---------------------------------------------------------------------
# Boundary value types
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionInfo:
    """Who the session is connected as."""
    display_name: str | None = None
    remote_address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "display_name": self.display_name,
            "remote_address": self.remote_address,
        }


@dataclass(frozen=True)
class MediaAttachment:
    """
    One media file to send.

    data is the base64-encoded file body, as received over HTTP.
    """
    mimetype: str
    data: str
    filename: str | None = None

    def is_valid(self) -> bool:
        return bool(self.mimetype) and bool(self.data)


@dataclass(frozen=True)
class MessageContent:
    """
    Outbound message intent.

    When sending an attachment, caption carries the text that
    accompanies that media item (only the first one gets it).
    """
    text: str = ""
    attachment: MediaAttachment | None = None
    caption: str | None = None


# ---------------------------------------------------------------------
# Transport lifecycle events
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class TransportEvent:
    """Base class for events emitted by a transport handle."""


@dataclass(frozen=True)
class PairingChallengeReceived(TransportEvent):
    """A new raw pairing challenge is ready to be shown to the user."""
    payload: str | bytes


@dataclass(frozen=True)
class TransportReady(TransportEvent):
    """Authenticated and connected."""
    info: ConnectionInfo = field(default_factory=ConnectionInfo)


@dataclass(frozen=True)
class TransportClosed(TransportEvent):
    """
    Connection closed by the remote side or the network.

    reason may be a CloseReason or the transport's raw reason string;
    the reconnection policy classifies raw strings.
    """
    reason: CloseReason | str = CloseReason.TRANSIENT


@dataclass(frozen=True)
class AuthenticationFailed(TransportEvent):
    """Stored credentials were rejected."""
    detail: str = ""


TransportEventSink = Callable[[TransportEvent], None]


# ---------------------------------------------------------------------
# Transport protocol
# ---------------------------------------------------------------------

@runtime_checkable
class MessagingTransport(Protocol):
    async def open(
        self,
        credential_path: Path,
        on_event: TransportEventSink,
    ) -> Any: ...

    async def send(
        self,
        handle: Any,
        recipient: str,
        content: MessageContent,
    ) -> str: ...

    async def close(self, handle: Any) -> None: ...

    async def purge_credentials(self, credential_path: Path) -> None:
        """
        Delete whatever the transport persisted under credential_path.
        Must be a no-op when nothing is stored there.
        """
