"""GridCast — Viewer Session Lifecycle.

Client-side state machine for one live layout subscription::

    IDLE → CONNECTING → SUBSCRIBED → (RECONNECTING ⇄ CONNECTING) → CLOSED

A dropped connection for the layout the viewer still wants is retried after
a fixed delay, up to a fixed number of attempts; past that the subscription
is CLOSED and the error is surfaced. Switching layouts detaches the old
connection's close handler before closing it, so an intentional close never
triggers a reconnect.

All callbacks run on the event loop that called ``select``.
"""

import asyncio
import json
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from gridcast.config import settings
from gridcast.core.logging import get_logger

logger = get_logger("viewer.session")

Connector = Callable[[str], AbstractAsyncContextManager]
MessageHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]
PrepareHook = Callable[[str], Awaitable[None]]
ErrorHandler = Callable[[str, Exception], None]


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class ReconnectExhaustedError(Exception):
    """Raised (surfaced) when a layout's connection cannot be re-established."""

    def __init__(self, layout_id: str, attempts: int):
        self.layout_id = layout_id
        self.attempts = attempts
        super().__init__(
            f"Lost connection for layout {layout_id} after {attempts} reconnect attempts"
        )


class _Connection:
    """One transport attempt. Clearing ``on_close`` detaches it from the manager."""

    def __init__(self, layout_id: str):
        self.layout_id = layout_id
        self.on_close: Optional[Callable[["_Connection", Optional[Exception]], None]] = None
        self.task: Optional[asyncio.Task] = None
        self.populated = False


class SessionLifecycleManager:
    """Owns the connection for the currently selected layout."""

    def __init__(
        self,
        on_message: MessageHandler,
        url: Optional[str] = None,
        connector: Optional[Connector] = None,
        prepare: Optional[PrepareHook] = None,
        on_error: Optional[ErrorHandler] = None,
        reconnect_delay: Optional[float] = None,
        max_reconnect_attempts: Optional[int] = None,
    ):
        self.url = url or settings.viewer_ws_url
        self.on_message = on_message
        self.connector = connector or websockets.connect
        self.prepare = prepare
        self.on_error = on_error
        self.reconnect_delay = (
            settings.viewer_reconnect_delay if reconnect_delay is None else reconnect_delay
        )
        self.max_reconnect_attempts = (
            settings.viewer_max_reconnect_attempts
            if max_reconnect_attempts is None
            else max_reconnect_attempts
        )

        self.state = SessionState.IDLE
        self.layout_id: Optional[str] = None  # layout the viewer wants
        self.reconnect_attempts = 0
        self.last_error: Optional[Exception] = None

        self._pending_layout_id: Optional[str] = None
        self._connection: Optional[_Connection] = None
        self._reconnect_timer: Optional[asyncio.TimerHandle] = None
        self._closed = asyncio.Event()

    @property
    def populated(self) -> bool:
        """Whether data has arrived on the current connection."""
        return bool(self._connection and self._connection.populated)

    def is_pending(self, layout_id: str) -> bool:
        return self._pending_layout_id == layout_id

    # ── Public API ──

    async def select(self, layout_id: str) -> None:
        """Start a fresh subscription lifecycle for ``layout_id``.

        A second request for a layout that is still connecting is ignored.
        """
        if self._pending_layout_id == layout_id:
            logger.debug("Layout already pending; ignoring", extra={"layout_id": layout_id})
            return

        self._pending_layout_id = layout_id
        self._teardown()
        self.layout_id = layout_id
        self.reconnect_attempts = 0
        self.last_error = None
        self._closed.clear()
        self._set_state(SessionState.CONNECTING)

        if self.prepare is not None:
            try:
                await self.prepare(layout_id)
            except Exception as e:
                if self.layout_id == layout_id:
                    self._fail(e)
                return
            if self.layout_id != layout_id:
                return  # another selection took over while preparing

        self._open(layout_id)

    async def close(self) -> None:
        """Intentionally end the subscription."""
        self._teardown()
        self.layout_id = None
        self._pending_layout_id = None
        self._set_state(SessionState.CLOSED)
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    # ── Connection handling ──

    def _open(self, layout_id: str) -> None:
        self._reconnect_timer = None
        if layout_id != self.layout_id:
            return
        self._set_state(SessionState.CONNECTING)
        connection = _Connection(layout_id)
        connection.on_close = self._handle_close
        connection.task = asyncio.get_running_loop().create_task(
            self._run(connection), name=f"viewer:{layout_id}"
        )
        self._connection = connection

    async def _run(self, connection: _Connection) -> None:
        error: Optional[Exception] = None
        try:
            async with self.connector(self.url) as transport:
                await transport.send(
                    json.dumps({"type": "subscribe", "layoutId": connection.layout_id})
                )
                if connection.on_close is None:
                    return
                self._pending_layout_id = None
                self._set_state(SessionState.SUBSCRIBED)
                async for raw in transport:
                    await self._handle_raw(connection, raw)
        except Exception as e:
            error = e
            logger.warning(
                f"WebSocket error: {e}", extra={"layout_id": connection.layout_id}
            )

        handler = connection.on_close
        if handler is not None:
            handler(connection, error)

    async def _handle_raw(self, connection: _Connection, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"Error parsing WebSocket message: {e}")
            return
        if not isinstance(message, dict):
            return

        connection.populated = True
        try:
            await self.on_message(connection.layout_id, message)
        except Exception as e:
            logger.error(
                f"Message handler failed: {e}", extra={"layout_id": connection.layout_id}
            )

    def _handle_close(self, connection: _Connection, error: Optional[Exception]) -> None:
        if connection is not self._connection or connection.layout_id != self.layout_id:
            return

        if self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            self._set_state(SessionState.RECONNECTING)
            logger.info(
                f"Reconnecting in {self.reconnect_delay}s "
                f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})",
                extra={"layout_id": connection.layout_id},
            )
            self._reconnect_timer = asyncio.get_running_loop().call_later(
                self.reconnect_delay, self._open, connection.layout_id
            )
            return

        self._fail(ReconnectExhaustedError(connection.layout_id, self.reconnect_attempts))

    def _fail(self, error: Exception) -> None:
        layout_id = self.layout_id or ""
        self.last_error = error
        self._pending_layout_id = None
        self._set_state(SessionState.CLOSED)
        self._closed.set()
        logger.error(f"Subscription closed: {error}", extra={"layout_id": layout_id})
        if self.on_error is not None:
            self.on_error(layout_id, error)

    def _teardown(self) -> None:
        """Detach and close the current connection and any pending reconnect."""
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.on_close = None
            if connection.task is not None and not connection.task.done():
                connection.task.cancel()

    def _set_state(self, state: SessionState) -> None:
        if state != self.state:
            logger.debug(
                f"Session {self.state.value} → {state.value}",
                extra={"layout_id": self.layout_id},
            )
            self.state = state
