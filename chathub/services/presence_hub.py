"""
PresenceHub - live connections, chatroom subscriptions and event fan-out.

Every registered WebSocket gets a Connection with a bounded outbox and its own
writer task. publish() only enqueues, so a slow or dead client never blocks
the publisher, and events reach each connection in the order they were
published. A connection whose outbox is full or whose socket errors out is
dropped: its socket is closed in the background, it leaves every chatroom
and the on_departure callback announces it. There is no replay.

User presence (ONLINE/OFFLINE) is derived from whether a user has at least one
live connection and projected to the directory in the background.
"""

import asyncio
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import WebSocket

from chathub.config import settings
from chathub.core import metrics
from chathub.core.logging_config import get_logger
from chathub.services.directory import Directory, PresenceStatus

logger = get_logger(__name__)

# Close codes for connections the server drops
CLOSE_CODES = {
    "backpressure": 1008,
    "send_error": 1011,
}


class Connection:
    """One live WebSocket owned by one user."""

    def __init__(self, websocket: WebSocket, user_id: str, outbox_size: int):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self.chatrooms: Set[str] = set()
        self.alive = True
        self.writer: Optional[asyncio.Task] = None

    def offer(self, event: Dict[str, Any]) -> bool:
        """Queue an event without waiting. False if the connection is dead or saturated."""
        if not self.alive:
            return False
        try:
            self.outbox.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued event has been handed to the socket."""
        await self.outbox.join()

    def discard_pending(self) -> int:
        dropped = 0
        while True:
            try:
                self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self.outbox.task_done()
            dropped += 1

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id}>"


class PresenceHub:
    """Tracks chatroom_id -> subscribed connections and multiplexes events to them."""

    def __init__(self, directory: Optional[Directory] = None, outbox_size: Optional[int] = None):
        self.directory = directory
        self.outbox_size = outbox_size or settings.WS_OUTBOX_SIZE
        # chatroom_id -> connections subscribed to chat/{chatroom_id}
        self.subscriptions: Dict[str, Set[Connection]] = {}
        self.connections: Dict[str, Connection] = {}
        # user_id -> ids of that user's live connections
        self.user_connections: Dict[str, Set[str]] = {}
        self._background: Set[asyncio.Task] = set()
        # Called with (connection, chatroom ids it left) whenever a connection goes away
        self.on_departure: Optional[Callable[[Connection, List[str]], None]] = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def register(self, websocket: WebSocket, user_id: str) -> Connection:
        """Accept a WebSocket, start its writer and mark the user online if this is their first connection."""
        await websocket.accept()

        conn = Connection(websocket, user_id, self.outbox_size)
        self.connections[conn.id] = conn
        conn.writer = asyncio.create_task(self._write_loop(conn))

        user_conns = self.user_connections.setdefault(user_id, set())
        first_connection = not user_conns
        user_conns.add(conn.id)

        metrics.websocket_connections_total.inc()
        metrics.websocket_connections_active.set(len(self.connections))

        logger.info(
            "connection_registered",
            connection_id=conn.id,
            user_id=user_id,
            user_connections=len(user_conns),
        )

        if first_connection:
            self._project_presence(user_id)
        return conn

    def on_disconnect(self, conn: Connection, reason: str = "normal") -> List[str]:
        """
        Remove a connection from every chatroom it joined.

        Idempotent. Returns the chatroom ids it was subscribed to and hands
        them to on_departure. Connections dropped by the server (backpressure,
        send errors) also get their socket closed.
        """
        if not conn.alive:
            return []
        conn.alive = False

        left = sorted(conn.chatrooms)
        for chatroom_id in left:
            self._remove_subscriber(conn, chatroom_id)
        conn.chatrooms.clear()

        self.connections.pop(conn.id, None)
        user_conns = self.user_connections.get(conn.user_id)
        if user_conns is not None:
            user_conns.discard(conn.id)
            if not user_conns:
                del self.user_connections[conn.user_id]
                self._project_presence(conn.user_id)

        if conn.writer is not None and conn.writer is not asyncio.current_task():
            conn.writer.cancel()
        dropped = conn.discard_pending()

        metrics.websocket_disconnections_total.labels(reason=reason).inc()
        metrics.websocket_connections_active.set(len(self.connections))

        logger.info(
            "connection_removed",
            connection_id=conn.id,
            user_id=conn.user_id,
            reason=reason,
            chatrooms=left,
            dropped_events=dropped,
        )

        close_code = CLOSE_CODES.get(reason)
        if close_code is not None:
            self._spawn(self._close_socket(conn, close_code))

        if left and self.on_departure is not None:
            try:
                self.on_departure(conn, left)
            except Exception as e:
                logger.error(
                    "departure_callback_failed",
                    connection_id=conn.id,
                    error_type=type(e).__name__,
                    error=str(e),
                    exc_info=True,
                )
        return left

    async def _close_socket(self, conn: Connection, code: int) -> None:
        try:
            await conn.websocket.close(code=code)
        except Exception as e:
            logger.debug("websocket_close_failed", connection_id=conn.id, code=code, error=str(e))
            return
        logger.info("websocket_closed_by_server", connection_id=conn.id, user_id=conn.user_id, code=code)

    async def _write_loop(self, conn: Connection) -> None:
        while True:
            event = await conn.outbox.get()
            try:
                await conn.websocket.send_json(event)
            except Exception as e:
                logger.warning(
                    "websocket_send_failed",
                    connection_id=conn.id,
                    user_id=conn.user_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                conn.outbox.task_done()
                self.on_disconnect(conn, reason="send_error")
                return
            conn.outbox.task_done()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, conn: Connection, chatroom_id: str) -> bool:
        """Subscribe to a chatroom topic. Returns False if already subscribed."""
        if not conn.alive:
            return False
        subscribers = self.subscriptions.setdefault(chatroom_id, set())
        if conn in subscribers:
            return False

        subscribers.add(conn)
        conn.chatrooms.add(chatroom_id)
        metrics.chatroom_subscribers_active.labels(chatroom_id=chatroom_id).set(len(subscribers))
        return True

    def unsubscribe(self, conn: Connection, chatroom_id: str) -> bool:
        """Unsubscribe from a chatroom topic. Returns False if it was not subscribed."""
        if chatroom_id not in conn.chatrooms:
            return False
        conn.chatrooms.discard(chatroom_id)
        self._remove_subscriber(conn, chatroom_id)
        return True

    def _remove_subscriber(self, conn: Connection, chatroom_id: str) -> None:
        subscribers = self.subscriptions.get(chatroom_id)
        if subscribers is None:
            return
        subscribers.discard(conn)
        metrics.chatroom_subscribers_active.labels(chatroom_id=chatroom_id).set(len(subscribers))
        if not subscribers:
            del self.subscriptions[chatroom_id]
            metrics.chatroom_subscribers_active.remove(chatroom_id)

    def is_subscribed(self, conn: Connection, chatroom_id: str) -> bool:
        return conn in self.subscriptions.get(chatroom_id, ())

    def subscriber_count(self, chatroom_id: str) -> int:
        return len(self.subscriptions.get(chatroom_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self.user_connections.get(user_id))

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def publish(self, chatroom_id: str, event: Dict[str, Any]) -> int:
        """
        Offer an event to every current subscriber of a chatroom.

        Never waits on the network. Subscribers that cannot take the event are
        scheduled for cleanup. Returns how many connections accepted it.
        """
        subscribers = list(self.subscriptions.get(chatroom_id, ()))
        accepted = 0

        for conn in subscribers:
            if conn.offer(event):
                accepted += 1
                continue

            metrics.events_dropped_total.labels(reason="outbox_full" if conn.alive else "dead").inc()
            logger.warning(
                "subscriber_dropped",
                chatroom_id=chatroom_id,
                connection_id=conn.id,
                user_id=conn.user_id,
                event_type=event.get("type"),
            )
            asyncio.get_running_loop().call_soon(self.on_disconnect, conn, "backpressure")

        metrics.events_published_total.labels(event_type=event.get("type", "unknown")).inc()
        logger.debug(
            "event_published",
            chatroom_id=chatroom_id,
            event_type=event.get("type"),
            subscribers=len(subscribers),
            accepted=accepted,
        )
        return accepted

    def send_personal(self, conn: Connection, event: Dict[str, Any]) -> bool:
        """Queue an event for a single connection (acks, errors, pongs)."""
        return conn.offer(event)

    async def flush(self) -> None:
        """Wait until every live connection has written its queued events."""
        await asyncio.gather(*(conn.drain() for conn in list(self.connections.values())))

    # ------------------------------------------------------------------
    # Presence projection
    # ------------------------------------------------------------------

    def _project_presence(self, user_id: str) -> None:
        if self.directory is None:
            return
        self._spawn(self._write_presence(user_id))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _write_presence(self, user_id: str) -> None:
        # Read the state at write time so a quick reconnect never ends OFFLINE
        status = PresenceStatus.ONLINE if self.is_online(user_id) else PresenceStatus.OFFLINE
        try:
            await self.directory.set_presence(user_id, status)
        except Exception as e:
            metrics.presence_projection_errors_total.inc()
            logger.warning(
                "presence_projection_failed",
                user_id=user_id,
                status=status.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            return
        logger.debug("presence_projected", user_id=user_id, status=status.value)

    async def wait_for_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown_all(self) -> None:
        """
        Notify and close every connection.

        Clients receive a server_shutdown event and a 1001 (going away) close.
        """
        conns = list(self.connections.values())
        if not conns:
            logger.info("websocket_shutdown", message="No active connections to close")
            return

        logger.info("websocket_shutdown_started", connection_count=len(conns))

        for conn in conns:
            if conn.writer is not None:
                conn.writer.cancel()

        async def close_connection(conn: Connection):
            try:
                await conn.websocket.send_json({
                    "type": "server_shutdown",
                    "message": "Server is restarting. Please reconnect in a few seconds."
                })
                await conn.websocket.close(code=1001)
            except Exception as e:
                logger.debug("websocket_shutdown_close_failed", connection_id=conn.id, error=str(e))

        await asyncio.gather(*(close_connection(conn) for conn in conns), return_exceptions=True)

        for conn in conns:
            conn.alive = False
            conn.discard_pending()
        self.subscriptions.clear()
        self.connections.clear()
        self.user_connections.clear()
        metrics.websocket_connections_active.set(0)
        logger.info("websocket_shutdown_completed", connections_closed=len(conns))
