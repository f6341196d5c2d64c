"""OpenAI Realtime API client for bridge sessions."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import copy
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import websockets
from websockets.exceptions import InvalidStatus

from bridgekit.core._helpers import deep_merge
from bridgekit.core.errors import ProviderConnectionError, TranscriptMissingError
from bridgekit.models.enums import ProviderErrorKind, ProviderStatus
from bridgekit.providers.openai.config import OpenAIRealtimeConfig
from bridgekit.realtime.events import (
    TRANSCRIPT_PLACEHOLDER,
    AudioCommitted,
    AudioDelta,
    ProviderConnected,
    ProviderDisconnected,
    ProviderErrorEvent,
    ProviderStatusChanged,
    ResponseDone,
    ResponseStarted,
    SessionReady,
    SpeechStarted,
    SpeechStopped,
    TextComplete,
    TextDelta,
    ToolCall,
    UserTranscript,
)
from bridgekit.realtime.provider import RealtimeProvider
from bridgekit.realtime.transcript import ConversationItem

logger = logging.getLogger("bridgekit.providers.openai.realtime")

Connector = Callable[[str, dict[str, str]], Awaitable[Any]]
"""(url, headers) -> connected WebSocket"""

# Beta and GA event names are both accepted.
_TEXT_DELTA_EVENTS = frozenset(
    {
        "response.text.delta",
        "response.output_text.delta",
        "response.audio_transcript.delta",
        "response.output_audio_transcript.delta",
    }
)
# event type -> field carrying the authoritative text
_TEXT_DONE_EVENTS = {
    "response.text.done": "text",
    "response.output_text.done": "text",
    "response.audio_transcript.done": "transcript",
    "response.output_audio_transcript.done": "transcript",
}
_AUDIO_DELTA_EVENTS = frozenset({"response.audio.delta", "response.output_audio.delta"})

_TERMINAL_KINDS = frozenset(
    {ProviderErrorKind.AUTHENTICATION, ProviderErrorKind.RATE_LIMIT, ProviderErrorKind.SERVER}
)


def classify_error(error_type: str | None, code: str | None = None) -> ProviderErrorKind:
    """Map a provider ``error.type``/``error.code`` to a :class:`ProviderErrorKind`."""
    value = (error_type or code or "").lower()
    if value in ("authentication_error", "permission_error", "invalid_api_key"):
        return ProviderErrorKind.AUTHENTICATION
    if value in ("rate_limit_error", "rate_limit_exceeded", "insufficient_quota"):
        return ProviderErrorKind.RATE_LIMIT
    if value in ("server_error", "api_error", "overloaded_error"):
        return ProviderErrorKind.SERVER
    if value == "not_found_error":
        return ProviderErrorKind.NOT_FOUND
    if value == "invalid_request_error":
        return ProviderErrorKind.INVALID_REQUEST
    return ProviderErrorKind.UNKNOWN


def _classify_connect_failure(exc: Exception) -> ProviderConnectionError:
    if isinstance(exc, InvalidStatus):
        status = exc.response.status_code
        if status in (401, 403):
            return ProviderConnectionError(
                f"Authentication rejected ({status})", kind=ProviderErrorKind.AUTHENTICATION
            )
        if status == 429:
            return ProviderConnectionError("Rate limited (429)", kind=ProviderErrorKind.RATE_LIMIT)
        return ProviderConnectionError(
            f"Handshake failed ({status})", kind=ProviderErrorKind.CONNECTION_CLOSED, retryable=True
        )
    return ProviderConnectionError(
        f"Connection failed: {exc}", kind=ProviderErrorKind.CONNECTION_CLOSED, retryable=True
    )


async def _websockets_connector(url: str, headers: dict[str, str]) -> Any:
    return await websockets.connect(url, additional_headers=headers, max_size=None)


@dataclass
class _Connection:
    """Per-session provider connection state."""

    client_id: str
    config: dict[str, Any]
    ws: Any = None
    status: ProviderStatus = ProviderStatus.DISCONNECTED
    receive_task: asyncio.Task[None] | None = None
    reconnect_task: asyncio.Task[None] | None = None
    reconnect_attempts: int = 0
    closing: bool = False
    terminal: bool = False
    item: ConversationItem = field(default_factory=ConversationItem)
    session_updated: asyncio.Event = field(default_factory=asyncio.Event)
    seen_call_ids: set[str] = field(default_factory=set)


class OpenAIRealtimeClient(RealtimeProvider):
    """Realtime provider client using the OpenAI Realtime API.

    Keeps one WebSocket per bridge session, authenticated with a bearer
    token. The full session config is retained per connection and re-sent
    with every ``session.update`` and after every reconnect, since the
    provider expects the whole still-relevant object.

    Text is reconciled per response: deltas accumulate from
    ``response.created`` and the completion event's transcript wins when
    present, the buffer is used otherwise, and a visible placeholder plus a
    ``transcript_missing`` error are emitted when neither exists.

    Unexpected disconnects are retried with linear backoff
    (``delay_seconds * attempt``) up to ``max_attempts`` times, after which
    a single terminal ``max_reconnects`` error is emitted. Authentication,
    rate-limit and server errors are terminal and never retried.

    Example:
        client = OpenAIRealtimeClient(OpenAIRealtimeConfig(api_key="sk-..."))
        client.on_event(handle_event)

        await client.connect("client_1")
        await client.append_audio("client_1", pcm16_bytes)
    """

    def __init__(
        self,
        config: OpenAIRealtimeConfig,
        *,
        connector: Connector | None = None,
    ) -> None:
        super().__init__()
        self._config = config
        self._connector = connector or _websockets_connector
        self._connections: dict[str, _Connection] = {}

    @property
    def name(self) -> str:
        return "OpenAIRealtimeClient"

    @property
    def config(self) -> OpenAIRealtimeConfig:
        return self._config

    # -- Commands --

    async def connect(self, client_id: str, *, overrides: dict[str, Any] | None = None) -> None:
        existing = self._connections.get(client_id)
        if existing is not None and existing.ws is not None:
            logger.warning("Provider already connected for %s", client_id)
            return

        config = self._config.session_payload()
        if overrides:
            deep_merge(config, overrides)
        conn = _Connection(client_id=client_id, config=config)
        self._connections[client_id] = conn
        try:
            await self._open(conn)
        except ProviderConnectionError as exc:
            if exc.retryable:
                logger.warning("Initial provider connect failed for %s: %s", client_id, exc)
                self._schedule_reconnect(conn)
                return
            await self._fail_terminal(conn, ProviderErrorKind(exc.kind), str(exc))
            raise

    async def update_session_config(self, client_id: str, partial: dict[str, Any]) -> bool:
        conn = self._connections.get(client_id)
        if conn is None:
            logger.warning("Session config update for unknown session %s", client_id)
            return False
        turn_detection = partial.get("turn_detection")
        if (
            isinstance(turn_detection, dict)
            and "type" not in turn_detection
            and conn.config.get("turn_detection") is None
        ):
            logger.warning(
                "Rejected turn_detection update without 'type' for %s: turn detection is off",
                client_id,
            )
            return False
        deep_merge(conn.config, partial)
        if conn.ws is None:
            logger.info("Provider for %s not connected; config applied on reconnect", client_id)
            return False

        conn.session_updated.clear()
        if not await self._send(conn, {"type": "session.update", "session": conn.config}):
            return False
        try:
            await asyncio.wait_for(conn.session_updated.wait(), self._config.session_ack_timeout)
        except TimeoutError:
            logger.warning("No session.updated acknowledgement for %s", client_id)
            return False
        return True

    async def append_audio(self, client_id: str, audio: bytes) -> None:
        conn = self._connections.get(client_id)
        if conn is None or conn.ws is None:
            logger.debug("Dropping %d audio bytes for %s: not connected", len(audio), client_id)
            return
        await self._send(
            conn,
            {
                "type": "input_audio_buffer.append",
                "audio": base64.b64encode(audio).decode("ascii"),
            },
        )

    async def commit_audio(self, client_id: str) -> bool:
        conn = self._connections.get(client_id)
        if conn is None:
            return False
        return await self._send(conn, {"type": "input_audio_buffer.commit"})

    async def create_response(self, client_id: str) -> bool:
        conn = self._connections.get(client_id)
        if conn is None:
            return False
        return await self._send(conn, {"type": "response.create"})

    async def send_user_text(self, client_id: str, text: str) -> bool:
        conn = self._connections.get(client_id)
        if conn is None:
            return False
        sent = await self._send(
            conn,
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": text}],
                },
            },
        )
        if not sent:
            return False
        return await self._send(conn, {"type": "response.create"})

    async def submit_tool_result(
        self, client_id: str, call_id: str, output: dict[str, Any] | str
    ) -> bool:
        conn = self._connections.get(client_id)
        if conn is None:
            return False
        payload = output if isinstance(output, str) else json.dumps(output)
        sent = await self._send(
            conn,
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "function_call_output",
                    "call_id": call_id,
                    "output": payload,
                },
            },
        )
        if not sent:
            return False
        # The provider does not continue on its own after a tool result
        return await self._send(conn, {"type": "response.create"})

    async def disconnect(self, client_id: str) -> None:
        conn = self._connections.pop(client_id, None)
        if conn is None:
            return
        conn.closing = True
        for task in (conn.reconnect_task, conn.receive_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        ws, conn.ws = conn.ws, None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        await self._set_status(conn, ProviderStatus.DISCONNECTED)
        await self._emit(ProviderDisconnected(client_id=client_id, reason="closed"))
        logger.info("OpenAI Realtime session disconnected: %s", client_id)

    async def close(self) -> None:
        for client_id in list(self._connections):
            await self.disconnect(client_id)

    def status(self, client_id: str) -> ProviderStatus:
        conn = self._connections.get(client_id)
        return conn.status if conn is not None else ProviderStatus.DISCONNECTED

    def session_config(self, client_id: str) -> dict[str, Any] | None:
        conn = self._connections.get(client_id)
        return copy.deepcopy(conn.config) if conn is not None else None

    def auto_commit(self, client_id: str) -> bool:
        conn = self._connections.get(client_id)
        config = conn.config if conn is not None else self._config.session_payload()
        return config.get("turn_detection") is not None

    # -- Connection management --

    async def _open(self, conn: _Connection) -> None:
        await self._set_status(
            conn,
            ProviderStatus.RECONNECTING if conn.reconnect_attempts else ProviderStatus.CONNECTING,
        )
        url = f"{self._config.base_url}?model={self._config.model}"
        headers = {
            "Authorization": f"Bearer {self._config.api_key.get_secret_value()}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            ws = await self._connector(url, headers)
        except Exception as exc:
            raise _classify_connect_failure(exc) from exc

        if conn.closing:
            with contextlib.suppress(Exception):
                await ws.close()
            return

        conn.ws = ws
        conn.item.reset()
        conn.session_updated.clear()
        logger.info(
            "Sending session.update: turn_detection=%s, voice=%s",
            conn.config.get("turn_detection"),
            conn.config.get("voice"),
        )
        await ws.send(json.dumps({"type": "session.update", "session": conn.config}))

        conn.receive_task = asyncio.create_task(
            self._receive_loop(conn, ws),
            name=f"openai_rt_recv:{conn.client_id}",
        )
        conn.reconnect_attempts = 0
        await self._set_status(conn, ProviderStatus.CONNECTED)
        await self._emit(ProviderConnected(client_id=conn.client_id))
        logger.info("OpenAI Realtime session connected: %s", conn.client_id)

    def _schedule_reconnect(self, conn: _Connection) -> None:
        if conn.reconnect_task is not None and not conn.reconnect_task.done():
            return
        conn.reconnect_task = asyncio.create_task(
            self._reconnect_loop(conn),
            name=f"openai_rt_reconnect:{conn.client_id}",
        )

    async def _reconnect_loop(self, conn: _Connection) -> None:
        policy = self._config.reconnect
        while not conn.closing:
            if conn.reconnect_attempts >= policy.max_attempts:
                await self._fail_terminal(
                    conn,
                    ProviderErrorKind.MAX_RECONNECTS,
                    f"Gave up after {conn.reconnect_attempts} reconnect attempts",
                )
                return

            conn.reconnect_attempts += 1
            delay = policy.delay_for(conn.reconnect_attempts)
            await self._set_status(conn, ProviderStatus.RECONNECTING)
            logger.info(
                "Reconnecting %s in %.1fs (attempt %d/%d)",
                conn.client_id,
                delay,
                conn.reconnect_attempts,
                policy.max_attempts,
            )
            await asyncio.sleep(delay)
            if conn.closing:
                return
            try:
                await self._open(conn)
                return
            except ProviderConnectionError as exc:
                if not exc.retryable:
                    await self._fail_terminal(conn, ProviderErrorKind(exc.kind), str(exc))
                    return
                logger.warning(
                    "Reconnect attempt %d for %s failed: %s",
                    conn.reconnect_attempts,
                    conn.client_id,
                    exc,
                )

    async def _fail_terminal(
        self,
        conn: _Connection,
        kind: ProviderErrorKind,
        message: str,
        *,
        code: str | None = None,
    ) -> None:
        if conn.terminal:
            return
        conn.terminal = True
        logger.error("Provider connection for %s failed [%s]: %s", conn.client_id, kind, message)
        ws, conn.ws = conn.ws, None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        await self._set_status(conn, ProviderStatus.FAILED)
        await self._emit(
            ProviderErrorEvent(
                client_id=conn.client_id, kind=kind, message=message, terminal=True, code=code
            )
        )

    async def _on_unexpected_close(self, conn: _Connection, reason: str) -> None:
        conn.ws = None
        logger.warning("OpenAI WebSocket closed unexpectedly for %s: %s", conn.client_id, reason)
        await self._emit(
            ProviderErrorEvent(
                client_id=conn.client_id,
                kind=ProviderErrorKind.CONNECTION_CLOSED,
                message=f"WebSocket closed unexpectedly: {reason}",
            )
        )
        await self._emit(ProviderDisconnected(client_id=conn.client_id, reason=reason))
        if conn.terminal:
            return
        self._schedule_reconnect(conn)

    async def _send(self, conn: _Connection, payload: dict[str, Any]) -> bool:
        ws = conn.ws
        if ws is None:
            logger.warning("Cannot send %s for %s: not connected", payload.get("type"), conn.client_id)
            return False
        try:
            await ws.send(json.dumps(payload))
        except Exception:
            logger.warning(
                "Send of %s failed for %s", payload.get("type"), conn.client_id, exc_info=True
            )
            return False
        return True

    async def _set_status(self, conn: _Connection, status: ProviderStatus) -> None:
        if conn.status == status:
            return
        logger.info("Provider %s: %s -> %s", conn.client_id, conn.status, status)
        conn.status = status
        await self._emit(ProviderStatusChanged(client_id=conn.client_id, status=status))

    # -- Receive loop --

    async def _receive_loop(self, conn: _Connection, ws: Any) -> None:
        """Process server events until the socket closes."""
        reason = "connection closed"
        try:
            async for raw_message in ws:
                try:
                    event = json.loads(raw_message)
                    await self._handle_server_event(conn, event)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from OpenAI for session %s", conn.client_id)
                except Exception:
                    logger.exception("Error handling OpenAI event for session %s", conn.client_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = str(exc) or type(exc).__name__

        if conn.closing or conn.ws is not ws:
            logger.debug("OpenAI WebSocket closed for session %s", conn.client_id)
            return
        await self._on_unexpected_close(conn, reason)

    async def _handle_server_event(self, conn: _Connection, event: dict[str, Any]) -> None:
        """Map OpenAI server events to normalized events."""
        event_type = event.get("type", "")
        client_id = conn.client_id

        if event_type == "input_audio_buffer.speech_started":
            logger.info("[VAD] speech_start (session %s)", client_id)
            await self._emit(SpeechStarted(client_id=client_id))

        elif event_type == "input_audio_buffer.speech_stopped":
            logger.info("[VAD] speech_end (session %s)", client_id)
            await self._emit(SpeechStopped(client_id=client_id))

        elif event_type == "input_audio_buffer.committed":
            logger.debug("[OpenAI] audio_buffer committed (session %s)", client_id)
            await self._emit(AudioCommitted(client_id=client_id, item_id=event.get("item_id")))

        elif event_type == "response.created":
            response_id = event.get("response", {}).get("id")
            conn.item.reset(response_id)
            logger.info("[OpenAI] response_start %s (session %s)", response_id, client_id)
            await self._emit(ResponseStarted(client_id=client_id, response_id=response_id))

        elif event_type in _TEXT_DELTA_EVENTS:
            delta = event.get("delta", "")
            response_id = event.get("response_id")
            if response_id and conn.item.response_id not in (None, response_id):
                conn.item.reset(response_id)
            if delta:
                conn.item.append(delta)
                await self._emit(TextDelta(client_id=client_id, text=delta, response_id=response_id))

        elif event_type in _TEXT_DONE_EVENTS:
            authoritative = event.get(_TEXT_DONE_EVENTS[event_type])
            await self._complete_text(
                conn, authoritative if isinstance(authoritative, str) else None
            )

        elif event_type in _AUDIO_DELTA_EVENTS:
            audio_b64 = event.get("delta", "")
            if audio_b64:
                await self._emit(
                    AudioDelta(
                        client_id=client_id,
                        audio=base64.b64decode(audio_b64),
                        response_id=event.get("response_id"),
                    )
                )

        elif event_type == "response.function_call_arguments.done":
            await self._handle_tool_call(
                conn, event.get("call_id", ""), event.get("name", ""), event.get("arguments", "{}")
            )

        elif event_type == "response.output_item.done":
            item = event.get("item", {})
            if item.get("type") == "function_call":
                await self._handle_tool_call(
                    conn, item.get("call_id", ""), item.get("name", ""), item.get("arguments", "{}")
                )

        elif event_type == "conversation.item.input_audio_transcription.completed":
            text = event.get("transcript", "")
            if text:
                logger.info("[OpenAI] user said: %s (session %s)", text, client_id)
                await self._emit(
                    UserTranscript(client_id=client_id, text=text, item_id=event.get("item_id"))
                )

        elif event_type == "response.done":
            await self._handle_response_done(conn, event.get("response", {}))

        elif event_type in ("session.created", "session.updated"):
            session = event.get("session", {})
            logger.info(
                "[OpenAI] %s: turn_detection=%s (session %s)",
                event_type,
                session.get("turn_detection"),
                client_id,
            )
            if event_type == "session.updated":
                conn.session_updated.set()
                await self._emit(SessionReady(client_id=client_id, session=session))

        elif event_type == "error":
            await self._handle_error(conn, event.get("error", {}))

        else:
            logger.debug("[OpenAI] unhandled event %s (session %s)", event_type, client_id)

    async def _complete_text(self, conn: _Connection, authoritative: str | None) -> None:
        item = conn.item
        if item.completed:
            logger.debug("Duplicate completion for response %s ignored", item.response_id)
            return
        try:
            text = item.resolve(authoritative)
        except TranscriptMissingError as exc:
            logger.warning("%s (session %s)", exc, conn.client_id)
            await self._emit(
                ProviderErrorEvent(
                    client_id=conn.client_id,
                    kind=ProviderErrorKind.TRANSCRIPT_MISSING,
                    message=str(exc),
                )
            )
            await self._emit(
                TextComplete(
                    client_id=conn.client_id,
                    text=TRANSCRIPT_PLACEHOLDER,
                    response_id=item.response_id,
                    placeholder=True,
                )
            )
            return
        await self._emit(
            TextComplete(client_id=conn.client_id, text=text, response_id=item.response_id)
        )

    async def _handle_response_done(self, conn: _Connection, response: dict[str, Any]) -> None:
        response_id = response.get("id") or conn.item.response_id
        status = response.get("status", "completed")
        if status == "failed":
            err = response.get("status_details", {}).get("error", {})
            err_type = err.get("type", "unknown")
            message = err.get("message", "Unknown error")
            logger.error(
                "[OpenAI] response FAILED: type=%s message=%s (session %s)",
                err_type,
                message,
                conn.client_id,
            )
            await self._emit(
                ProviderErrorEvent(
                    client_id=conn.client_id,
                    kind=ProviderErrorKind.RESPONSE_FAILED,
                    message=message,
                    code=err.get("code") or err_type,
                )
            )
        elif not conn.item.completed:
            # Last chance: text carried only in the final response output
            messages = [o for o in response.get("output", []) if o.get("type") == "message"]
            authoritative = None
            for output in messages:
                for part in output.get("content", []):
                    authoritative = part.get("transcript") or part.get("text") or authoritative
            if messages or conn.item.current_transcript:
                await self._complete_text(conn, authoritative)
        logger.info("[OpenAI] response_done status=%s (session %s)", status, conn.client_id)
        await self._emit(ResponseDone(client_id=conn.client_id, response_id=response_id, status=status))

    async def _handle_tool_call(
        self, conn: _Connection, call_id: str, name: str, arguments: str
    ) -> None:
        if not call_id or call_id in conn.seen_call_ids:
            return
        conn.seen_call_ids.add(call_id)
        try:
            parsed = json.loads(arguments) if arguments else {}
        except json.JSONDecodeError:
            parsed = {"raw": arguments}
        if not isinstance(parsed, dict):
            parsed = {"value": parsed}
        logger.info("[OpenAI] tool call %s(%s) (session %s)", name, call_id, conn.client_id)
        await self._continue_tool_call(
            ToolCall(client_id=conn.client_id, call_id=call_id, name=name, arguments=parsed)
        )

    async def _handle_error(self, conn: _Connection, error: dict[str, Any]) -> None:
        err_type = error.get("type")
        code = error.get("code")
        message = error.get("message", "Unknown error")
        kind = classify_error(err_type, code)
        logger.error("[OpenAI] error [%s/%s] %s (session %s)", err_type, code, message, conn.client_id)
        if kind in _TERMINAL_KINDS:
            await self._fail_terminal(conn, kind, message, code=code or err_type)
            return
        await self._emit(
            ProviderErrorEvent(
                client_id=conn.client_id, kind=kind, message=message, code=code or err_type
            )
        )

