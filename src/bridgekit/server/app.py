"""FastAPI application exposing signaling and the operational endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketState

from bridgekit._version import __version__
from bridgekit.core.bridge import CompanionBridge

logger = logging.getLogger("bridgekit.server")


class StarletteSocket:
    """Adapts a Starlette WebSocket to :class:`~bridgekit.signaling.channel.SignalingSocket`."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    async def send(self, data: str) -> None:
        await self._ws.send_text(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        while True:
            message = await self._ws.receive()
            if message["type"] == "websocket.disconnect":
                return
            if message.get("text") is not None:
                yield message["text"]
            elif message.get("bytes") is not None:
                yield message["bytes"]


# -- Request bodies --


class PromptUpdate(BaseModel):
    prompt: str = Field(min_length=1)


class VoiceUpdate(BaseModel):
    voice: str


class TemperatureUpdate(BaseModel):
    temperature: float


class ForceReplyRequest(BaseModel):
    client_id: str | None = None


def create_app(bridge: CompanionBridge) -> FastAPI:
    """Build the service application around *bridge*."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Bridge service starting (signaling at %s)", bridge.config.signaling_path)
        yield
        logger.info("Bridge service shutting down")
        await bridge.close()

    app = FastAPI(title="bridgekit", version=__version__, lifespan=lifespan)
    app.state.bridge = bridge

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    @app.get("/")
    async def info() -> dict[str, Any]:
        return {
            "name": "bridgekit",
            "version": __version__,
            "signaling": bridge.config.signaling_path,
            "endpoints": [
                "GET /health",
                "GET /prompt",
                "POST /prompt",
                "GET /session/config",
                "POST /session/config",
                "POST /session/voice",
                "POST /session/temperature",
                "POST /force-reply",
            ],
        }

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return bridge.health()

    @app.get("/prompt")
    async def get_prompt() -> dict[str, Any]:
        return {"prompt": bridge.instructions}

    @app.post("/prompt")
    async def set_prompt(body: PromptUpdate) -> dict[str, Any]:
        applied = await bridge.update_instructions(body.prompt)
        return {"success": True, "prompt": body.prompt, "applied": applied}

    @app.get("/session/config")
    async def get_session_config() -> dict[str, Any]:
        return bridge.session_defaults()

    @app.post("/session/config")
    async def set_session_config(body: dict[str, Any]) -> dict[str, Any]:
        if not body:
            raise ValueError("Session config update must not be empty")
        applied = await bridge.update_session_config(body)
        return {"success": True, "config": bridge.session_defaults(), "applied": applied}

    @app.post("/session/voice")
    async def set_voice(body: VoiceUpdate) -> dict[str, Any]:
        applied = await bridge.set_voice(body.voice)
        return {"success": True, "voice": body.voice, "applied": applied}

    @app.post("/session/temperature")
    async def set_temperature(body: TemperatureUpdate) -> dict[str, Any]:
        applied = await bridge.set_temperature(body.temperature)
        return {"success": True, "temperature": body.temperature, "applied": applied}

    @app.post("/force-reply")
    async def force_reply(body: ForceReplyRequest | None = None) -> dict[str, Any]:
        results = await bridge.force_reply(body.client_id if body else None)
        return {"success": any(results.values()), "sessions": results}

    @app.websocket(bridge.config.signaling_path)
    async def signaling(websocket: WebSocket) -> None:
        await websocket.accept()
        await bridge.signaling.serve(StarletteSocket(websocket))

    return app
