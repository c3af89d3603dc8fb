"""
Subscriber connections and the identity -> connection registry.

A SubscriberConnection moves CONNECTING -> OPEN -> CLOSED. Frames are queued
on a bounded per-connection outbox and written by that connection's own
writer task, so a subscriber that stops reading only ever stalls itself. When
the outbox is full new frames are dropped. Once CLOSED every send is a no-op.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple
import asyncio
import logging
import uuid

from pairstream.api import metrics

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 256


class ConnectionState(Enum):
    """Lifecycle of a subscriber connection."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class SubscriberConnection:
    """
    A subscriber's live transport plus its liveness state.

    `transport` is anything with async `send_json(data)` and
    `close(code, reason)` (a Starlette WebSocket in production).
    """

    def __init__(self, transport: Any, identity: Optional[str] = None, max_pending: int = DEFAULT_MAX_PENDING):
        self.transport = transport
        self.identity = identity
        self.connection_id = str(uuid.uuid4())
        self.state = ConnectionState.CONNECTING
        self.frames_sent = 0
        self.frames_dropped = 0
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._writer: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def pending(self) -> int:
        """Frames queued but not yet written."""
        return self._outbox.qsize()

    def mark_open(self) -> None:
        """Move to OPEN. Requires a non-empty identity."""
        if self.state is not ConnectionState.CONNECTING:
            raise ValueError(f"Cannot open a connection in state {self.state.value}")
        if not self.identity:
            raise ValueError("Wallet address required")
        self.state = ConnectionState.OPEN

    def mark_closed(self) -> None:
        """Move to CLOSED, stop the writer and discard queued frames."""
        self.state = ConnectionState.CLOSED
        writer, self._writer = self._writer, None
        if writer is not None and not writer.done():
            writer.cancel()
        self._discard_pending()

    def send(self, frame: Dict[str, Any]) -> bool:
        """
        Queue one JSON frame for the writer task. Never waits on the transport.

        Must be called from the event loop.

        Returns:
            True if the frame was queued, False if the connection is not open
            or its outbox is full (the frame is dropped)
        """
        if not self.is_open:
            return False
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            self.frames_dropped += 1
            metrics.messages_dropped_total.inc()
            logger.warning(
                f"Outbox full for {self.short_identity}, dropping {frame.get('type')} frame",
                extra={"event": "message_dropped", "pending": self._outbox.qsize()},
            )
            return False
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(
                self._write_loop(), name=f"subscriber-writer-{self.connection_id[:8]}"
            )
        return True

    async def drain(self) -> None:
        """Wait until every queued frame has been written or discarded."""
        await self._outbox.join()

    async def reject(self, frame: Dict[str, Any], *, code: int, reason: Optional[str] = None) -> None:
        """Write one frame straight to a never-opened transport, then close it."""
        if self.state is ConnectionState.CONNECTING:
            try:
                await self.transport.send_json(frame)
            except Exception as e:
                metrics.send_failures_total.inc()
                logger.debug(f"Rejection frame not delivered: {e}")
            else:
                self.frames_sent += 1
                metrics.frames_sent_total.labels(type=frame.get("type", "unknown")).inc()
        await self.close(code=code, reason=reason)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """Close the transport (once) and mark the connection CLOSED."""
        if self.state is ConnectionState.CLOSED:
            return
        self.mark_closed()
        try:
            await self.transport.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Close of {self.short_identity} raised: {e}")

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self.transport.send_json(frame)
            except Exception as e:
                metrics.send_failures_total.inc()
                logger.warning(
                    f"Send to {self.short_identity} failed: {e}",
                    extra={"event": "send_failed", "frame_type": frame.get("type")},
                )
                # The writer is exiting on its own; nothing to cancel
                self._writer = None
                self.mark_closed()
                return
            else:
                self.frames_sent += 1
                metrics.frames_sent_total.labels(type=frame.get("type", "unknown")).inc()
            finally:
                self._outbox.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._outbox.task_done()

    @property
    def short_identity(self) -> str:
        return self.identity[:8] if self.identity else "<anonymous>"

    def __repr__(self):
        return f"<SubscriberConnection({self.short_identity}, {self.state.value})>"


class SubscriberRegistry:
    """
    Identity -> connection map with at most one connection per identity.

    Only mutated from the event loop thread. Fan-out must iterate snapshot(),
    never the live map.
    """

    def __init__(self):
        self._connections: Dict[str, SubscriberConnection] = {}

    def add(self, identity: str, connection: SubscriberConnection) -> Optional[SubscriberConnection]:
        """
        Register a connection, replacing any existing one for the identity.

        Returns:
            The replaced connection (left open; the caller decides), or None
        """
        if not identity:
            raise ValueError("identity must be non-empty")
        previous = self._connections.get(identity)
        self._connections[identity] = connection
        metrics.subscribers_active.set(len(self._connections))
        return previous if previous is not connection else None

    def remove(self, identity: str, connection: Optional[SubscriberConnection] = None) -> bool:
        """
        Remove an identity's entry.

        If `connection` is given, the entry is only removed while it is still
        that connection, so a stale disconnect cannot evict its replacement.
        """
        current = self._connections.get(identity)
        if current is None:
            return False
        if connection is not None and current is not connection:
            return False
        del self._connections[identity]
        metrics.subscribers_active.set(len(self._connections))
        return True

    def get(self, identity: str) -> Optional[SubscriberConnection]:
        return self._connections.get(identity)

    def snapshot(self) -> Tuple[Tuple[str, SubscriberConnection], ...]:
        """Point-in-time copy of (identity, connection) pairs."""
        return tuple(self._connections.items())

    def __contains__(self, identity: object) -> bool:
        return identity in self._connections

    def __len__(self) -> int:
        return len(self._connections)
