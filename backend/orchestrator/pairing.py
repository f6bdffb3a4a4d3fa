"""
Pairing coordinator.

Responsibilities:
- Turn raw pairing challenges into caller-displayable artifacts
- Encode exactly once per challenge, off the event loop
- Abort superseded encodings (new challenge, connect, teardown)
- Report results back as events tagged with pairing_seq

Non-responsibilities:
- Deciding whether an artifact is still wanted (reducer gates on
  pairing_seq and state, so a late result is simply discarded)
- Expiry timers (runtime timers, scheduled by the reducer)
"""

from __future__ import annotations

import asyncio
import base64
import io
import time
from typing import Callable

import qrcode

from orchestrator.events import (
    Event,
    EventType,
    PairingArtifactReady,
    PairingEncodeFailed,
)
from observability.logger import log_event

from constants import QR_BORDER, QR_BOX_SIZE


ArtifactEncoder = Callable[[str | bytes], str]
EventPoster = Callable[[Event], None]


# ---------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------

def _as_text(payload: str | bytes) -> str:
    if isinstance(payload, bytes):
        return payload.decode("utf-8")
    return payload


def encode_qr_png_base64(payload: str | bytes) -> str:
    """
    Render the challenge as a QR code PNG and return it base64-encoded
    (the body of a data:image/png URL).
    """
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(_as_text(payload))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def encode_text(payload: str | bytes) -> str:
    """Expose the raw challenge string; the caller renders it."""
    return _as_text(payload)


ENCODERS: dict[str, ArtifactEncoder] = {
    "png": encode_qr_png_base64,
    "text": encode_text,
}


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# ---------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------

class PairingCoordinator:
    """
    Per-session artifact producer.

    At most one encoding is in flight; starting a new one cancels the
    previous. Results flow back through post_event so they are applied
    in order with every other session event.
    """

    def __init__(
        self,
        *,
        identity: str,
        encoder: ArtifactEncoder,
        post_event: EventPoster,
    ) -> None:
        self._identity = identity
        self._encoder = encoder
        self._post_event = post_event
        self._task: asyncio.Task[None] | None = None

    def encode(self, *, pairing_seq: int, payload: str | bytes) -> None:
        """Start encoding the challenge for pairing_seq, superseding any other."""
        self.cancel()
        self._task = asyncio.create_task(
            self._encode_task(pairing_seq=pairing_seq, payload=payload)
        )

    def cancel(self) -> None:
        """Abort the in-flight encoding, if any. Idempotent."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def aclose(self) -> None:
        """Cancel and wait for the in-flight encoding to finish unwinding."""
        task = self._task
        self.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _encode_task(self, *, pairing_seq: int, payload: str | bytes) -> None:
        try:
            artifact = await asyncio.to_thread(self._encoder, payload)
        except asyncio.CancelledError:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "PAIRING_ENCODE_CANCELLED",
                "identity": self._identity,
                "pairing_seq": pairing_seq,
            })
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._post_event(
                PairingEncodeFailed(
                    event_type=EventType.PAIRING_ENCODE_FAILED,
                    ts_ms=_now_ms(),
                    pairing_seq=pairing_seq,
                    reason=f"{type(exc).__name__}: {exc}",
                )
            )
            return

        self._post_event(
            PairingArtifactReady(
                event_type=EventType.PAIRING_ARTIFACT_READY,
                ts_ms=_now_ms(),
                pairing_seq=pairing_seq,
                artifact=artifact,
            )
        )
