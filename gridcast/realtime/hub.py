"""GridCast — Broadcast Hub.

Keeps the live viewer sessions and the layout each one is subscribed to,
and fans classified updates out to the matching sessions.

Every session owns a bounded outbound queue drained by its own writer
(``pump``), so a slow viewer never holds up delivery to the others and
updates reach each viewer in the order they were published.

Thread-safe: the session registry is guarded by one lock. Publishing takes
a snapshot of the matching sessions under the lock and enqueues outside it.
"""

import asyncio
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from gridcast.config import settings
from gridcast.models.updates import ClassifiedUpdate
from gridcast.core.logging import get_logger

logger = get_logger("realtime.hub")

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(eq=False)
class ViewerSession:
    """One connected viewer.

    Attributes:
        send: Coroutine function writing one message to the viewer's transport.
        session_id: Unique identifier for this connection.
        subscribed_layout_id: Layout this viewer wants updates for, if any.
        is_alive: False once the hub has dropped the session.
        queue: Outbound messages waiting for the writer.
    """

    send: SendFunc
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    subscribed_layout_id: Optional[str] = None
    is_alive: bool = True
    queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = field(
        default_factory=lambda: asyncio.Queue(maxsize=settings.hub_queue_size)
    )


class BroadcastHub:
    """Registry of viewer sessions and their layout subscriptions."""

    def __init__(self) -> None:
        self._sessions: Set[ViewerSession] = set()
        self._lock = threading.Lock()

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def subscriptions(self) -> Dict[str, Optional[str]]:
        """Snapshot of ``session_id → subscribed layout id``."""
        with self._lock:
            return {s.session_id: s.subscribed_layout_id for s in self._sessions}

    def connect(self, send: SendFunc) -> ViewerSession:
        """Register a new session."""
        session = ViewerSession(send=send)
        with self._lock:
            self._sessions.add(session)
        logger.info("Viewer connected", extra={"session_id": session.session_id})
        return session

    def subscribe(self, session: ViewerSession, layout_id: str) -> bool:
        """Point a session at a layout, replacing any earlier subscription.

        Returns False if the session has already been dropped.
        """
        with self._lock:
            if session not in self._sessions:
                return False
            previous = session.subscribed_layout_id
            session.subscribed_layout_id = layout_id
        if previous and previous != layout_id:
            logger.info(
                f"Subscription moved from {previous} to {layout_id}",
                extra={"session_id": session.session_id, "layout_id": layout_id},
            )
        else:
            logger.info(
                f"Subscribed to {layout_id}",
                extra={"session_id": session.session_id, "layout_id": layout_id},
            )
        return True

    def disconnect(self, session: ViewerSession) -> bool:
        """Remove a session. Safe to call repeatedly; returns True only once."""
        with self._lock:
            if session not in self._sessions:
                return False
            self._sessions.discard(session)
            session.is_alive = False
        try:
            session.queue.put_nowait(None)  # wake the writer so it can exit
        except asyncio.QueueFull:
            pass  # writer sees is_alive=False after its current send
        logger.info("Viewer disconnected", extra={"session_id": session.session_id})
        return True

    def deliver(self, session: ViewerSession, message: Dict[str, Any]) -> bool:
        """Queue a message for one session. A full queue drops the session."""
        if not session.is_alive:
            return False
        try:
            session.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Outbound queue full; dropping viewer",
                extra={"session_id": session.session_id},
            )
            self.disconnect(session)
            return False
        return True

    def publish(self, update: ClassifiedUpdate) -> int:
        """Send an update to every session subscribed to its routing key.

        Returns:
            Number of sessions the update was queued for.
        """
        if not update.routing_key:
            return 0

        with self._lock:
            targets = [
                s
                for s in self._sessions
                if s.is_alive and s.subscribed_layout_id == update.routing_key
            ]

        message = update.to_message()
        delivered = sum(1 for session in targets if self.deliver(session, message))
        if delivered:
            logger.info(
                f"Sent {update.update_kind.value} to {delivered} viewer(s)",
                extra={
                    "update_type": update.update_kind.value,
                    "layout_id": update.routing_key,
                },
            )
        return delivered

    async def pump(self, session: ViewerSession) -> None:
        """Writer loop: send queued messages in order until the session ends.

        A failed send drops the session; the error never reaches publishers.
        """
        while session.is_alive:
            message = await session.queue.get()
            if message is None or not session.is_alive:
                break
            try:
                await session.send(message)
            except Exception as e:
                logger.warning(
                    f"Send failed, dropping viewer: {e}",
                    extra={"session_id": session.session_id},
                )
                self.disconnect(session)
                break
