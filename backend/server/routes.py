"""
Route registration for the messaging session API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Parse request bodies (accepting the legacy field names)
- Map SessionError kinds to HTTP status codes
- Pull the gateway from app.state
"""

from __future__ import annotations

import time

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from observability.logger import log_event
from session.errors import SessionError
from session.gateway import SessionGateway
from transport.base import MediaAttachment


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------

class IdentityBody(BaseModel):
    identity: str | None = Field(
        default=None, validation_alias=AliasChoices("identity", "userId")
    )


class AttachmentBody(BaseModel):
    mimetype: str | None = None
    data: str | None = None
    filename: str | None = None

    def to_attachment(self) -> MediaAttachment:
        return MediaAttachment(
            mimetype=self.mimetype or "",
            data=self.data or "",
            filename=self.filename,
        )


class SendBody(IdentityBody):
    recipient: str | None = Field(
        default=None, validation_alias=AliasChoices("recipient", "number")
    )
    content: str | None = Field(
        default=None, validation_alias=AliasChoices("content", "message")
    )
    media_attachments: list[AttachmentBody] = Field(default_factory=list)


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _gateway(app: FastAPI) -> SessionGateway:
    return app.state.gateway


def register_routes(app: FastAPI) -> None:
    """Register all routes and error handlers on the FastAPI app."""

    @app.exception_handler(SessionError)
    async def session_error_handler(  # pyright: ignore[reportUnusedFunction]
        request: Request, exc: SessionError
    ) -> JSONResponse:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "REQUEST_FAILED",
            "path": request.url.path,
            "error": exc.kind,
            "status_code": exc.status_code,
            "message": exc.message,
        })
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(  # pyright: ignore[reportUnusedFunction]
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "validation_error",
                "message": "Malformed request body.",
                "details": [str(e.get("msg")) for e in exc.errors()],
            },
        )

    @app.get("/health")
    async def health() -> dict[str, str]:  # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.post("/start")
    async def start(body: IdentityBody) -> JSONResponse:  # pyright: ignore[reportUnusedFunction]
        result = await _gateway(app).start(body.identity)
        return JSONResponse(
            status_code=202 if result.created else 200,
            content={
                "success": True,
                "created": result.created,
                **result.snapshot.to_dict(),
            },
        )

    @app.get("/status")
    async def status(  # pyright: ignore[reportUnusedFunction]
        identity: str | None = None,
        userId: str | None = None,  # pylint: disable=invalid-name
    ) -> dict[str, object]:
        snapshot = _gateway(app).status(identity or userId)
        return snapshot.to_dict()

    @app.post("/send")
    async def send(body: SendBody) -> dict[str, object]:  # pyright: ignore[reportUnusedFunction]
        result = await _gateway(app).send_message(
            body.identity,
            recipient=body.recipient,
            text=body.content,
            attachments=[a.to_attachment() for a in body.media_attachments],
        )
        return {
            "success": True,
            "message_ids": list(result.message_ids),
            "message": f"{len(result.message_ids)} messages sent to {body.recipient}.",
        }

    @app.post("/disconnect")
    async def disconnect(body: IdentityBody) -> dict[str, object]:  # pyright: ignore[reportUnusedFunction]
        snapshot = await _gateway(app).disconnect(body.identity)
        return {"success": True, **snapshot.to_dict()}

    @app.websocket("/ws/status")
    async def status_stream(ws: WebSocket) -> None:  # pyright: ignore[reportUnusedFunction]
        await ws.accept()
        identity = ws.query_params.get("identity") or ws.query_params.get("userId")

        try:
            async for snapshot in _gateway(app).watch(identity):
                await ws.send_json(snapshot.to_dict())
            await ws.close()

        except SessionError as exc:
            await ws.send_json(exc.to_dict())
            await ws.close(code=1008)

        except WebSocketDisconnect:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "STATUS_STREAM_CLOSED",
                "identity": identity,
                "reason": "client_disconnect",
            })

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "STATUS_STREAM_FATAL_ERROR",
                "identity": identity,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
