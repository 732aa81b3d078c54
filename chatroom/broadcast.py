"""Fan-out of server events to connected clients.

Every connection gets its own bounded outbox and a pump task that drains it
in FIFO order, so two events enqueued one after the other reach each client
in that order. Enqueueing never waits on a socket: a slow client fills its
own outbox and starts losing events, everybody else is unaffected.
"""

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

OUTBOX_SIZE = 1024


def _pump_task_done_callback(task: asyncio.Task):
    """Log exceptions from pump tasks instead of silently swallowing."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Outbox pump failed: %s", exc, exc_info=exc)


class ClientConnection:
    """Outbox and send loop for one WebSocket."""

    def __init__(self, connection_id: str, websocket: WebSocket, maxsize: int = OUTBOX_SIZE):
        self.connection_id = connection_id
        self.ws = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.alive = True
        self._task: asyncio.Task | None = None

    def start(self):
        if self._task is None:
            self._task = asyncio.ensure_future(self._pump())
            self._task.add_done_callback(_pump_task_done_callback)

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        # Release anyone waiting in drain() on events that will never be sent.
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()

    def enqueue(self, event: dict) -> bool:
        if not self.alive:
            return False
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(
                "Outbox full for connection %s, dropping %s event",
                self.connection_id, event.get("type"),
            )
            return False

    async def _pump(self):
        while True:
            event = await self.queue.get()
            try:
                if self.alive:
                    await self.ws.send_json(event)
            except (WebSocketDisconnect, RuntimeError, OSError):
                # Socket is gone; the transport will report the disconnect.
                self.alive = False
                logger.debug("Send to connection %s failed, marking dead", self.connection_id)
            finally:
                self.queue.task_done()


class BroadcastChannel:
    def __init__(self, outbox_size: int = OUTBOX_SIZE):
        self._connections: dict[str, ClientConnection] = {}
        self._outbox_size = outbox_size

    def __len__(self) -> int:
        return len(self._connections)

    def connection_ids(self) -> list[str]:
        return list(self._connections)

    def attach(self, connection_id: str, websocket: WebSocket) -> ClientConnection:
        """Start delivering events to *websocket* under *connection_id*."""
        conn = ClientConnection(connection_id, websocket, maxsize=self._outbox_size)
        self._connections[connection_id] = conn
        conn.start()
        return conn

    async def detach(self, connection_id: str) -> None:
        conn = self._connections.pop(connection_id, None)
        if conn is not None:
            conn.alive = False
            await conn.stop()

    def to_all(self, event: dict) -> None:
        for conn in list(self._connections.values()):
            conn.enqueue(event)

    def to_all_except(self, connection_id: str, event: dict) -> None:
        for conn in list(self._connections.values()):
            if conn.connection_id != connection_id:
                conn.enqueue(event)

    def to_one(self, connection_id: str, event: dict) -> None:
        conn = self._connections.get(connection_id)
        if conn is None:
            logger.debug("No connection %s for %s event", connection_id, event.get("type"))
            return
        conn.enqueue(event)

    async def drain(self) -> None:
        """Wait until every outbox has been handed to its socket."""
        await asyncio.gather(*(c.queue.join() for c in list(self._connections.values())))

    async def close(self) -> None:
        for connection_id in list(self._connections):
            await self.detach(connection_id)
