"""WebSocket chat handler: turns client frames into coordinator calls.

The main entry point is ``websocket_chat()``, which is mounted as
``/ws/chat`` by server.py. Everything sent back to the client goes through
the broadcast channel so private replies stay ordered with broadcasts.
"""

import asyncio
import json
import logging
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from .broadcast import BroadcastChannel
from .coordinator import SessionCoordinator
from .message_store import MessageStoreError
from .ws_constants import (
    MSG_JOIN,
    MSG_TEXT_MESSAGE,
    MSG_IMAGE_MESSAGE,
    MSG_TYPING,
    MSG_STOP_TYPING,
    MSG_ERROR,
    ERR_INVALID_CONTENT,
    ERR_MESSAGE_NOT_SAVED,
)

logger = logging.getLogger(__name__)

# In-flight disconnect tasks; the event loop only keeps weak references.
_disconnect_tasks: set[asyncio.Task] = set()


def _disconnect_task_done_callback(task: asyncio.Task):
    """Log exceptions from background disconnect tasks instead of silently swallowing."""
    _disconnect_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Disconnect handling failed: %s", exc, exc_info=exc)


class WebSocketSession:
    """Transport state for a single WebSocket connection.

    Each event type is handled by a ``handle_<type>`` method, keeping the
    main loop thin and each handler focused on one concern.
    """

    def __init__(
        self,
        websocket: WebSocket,
        connection_id: str,
        *,
        coordinator: SessionCoordinator,
        channel: BroadcastChannel,
    ):
        self.ws = websocket
        self.connection_id = connection_id
        self.coordinator = coordinator
        self.channel = channel

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def send_error(self, content: str, code: str | None = None) -> None:
        event = {"type": MSG_ERROR, "content": content}
        if code:
            event["code"] = code
        self.channel.to_one(self.connection_id, event)

    @staticmethod
    def _text_field(msg: dict, key: str) -> str | None:
        value = msg.get(key)
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    async def _submit(self, submit, content: str | None, what: str) -> None:
        if content is None:
            self.send_error(f"Invalid {what} content.", ERR_INVALID_CONTENT)
            return
        try:
            await submit(self.connection_id, content)
        except MessageStoreError:
            logger.exception("Failed to save %s message from %s", what, self.connection_id)
            self.send_error("Message could not be saved.", ERR_MESSAGE_NOT_SAVED)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def handle_join(self, msg: dict) -> None:
        await self.coordinator.join(
            self.connection_id,
            username=msg.get("username") if isinstance(msg.get("username"), str) else None,
            avatar=self._text_field(msg, "avatar"),
            color=self._text_field(msg, "color"),
        )

    async def handle_text_message(self, msg: dict) -> None:
        await self._submit(self.coordinator.submit_text, self._text_field(msg, "content"), "text")

    async def handle_image_message(self, msg: dict) -> None:
        await self._submit(self.coordinator.submit_image, self._text_field(msg, "url"), "image")

    async def handle_typing(self, msg: dict) -> None:
        await self.coordinator.typing(self.connection_id)

    async def handle_stop_typing(self, msg: dict) -> None:
        await self.coordinator.stop_typing(self.connection_id)

    # ------------------------------------------------------------------
    # Main loop & cleanup
    # ------------------------------------------------------------------

    # Dispatch table: event type -> handler method name
    _HANDLERS = {
        MSG_JOIN: "handle_join",
        MSG_TEXT_MESSAGE: "handle_text_message",
        MSG_IMAGE_MESSAGE: "handle_image_message",
        MSG_TYPING: "handle_typing",
        MSG_STOP_TYPING: "handle_stop_typing",
    }

    async def run(self) -> None:
        """Main event loop: dispatches to handler methods until disconnect."""
        try:
            while True:
                data = await self.ws.receive_text()

                try:
                    msg = json.loads(data)
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning("Malformed JSON from client %s: %s", self.connection_id, e)
                    self.send_error("Invalid message format.")
                    continue

                if not isinstance(msg, dict):
                    self.send_error("Invalid message format.")
                    continue

                msg_type = msg.get("type")
                if not msg_type or not isinstance(msg_type, str):
                    self.send_error("Missing message type.")
                    continue

                handler_name = self._HANDLERS.get(msg_type)
                if not handler_name:
                    self.send_error(f"Unknown message type: {msg_type}")
                    continue

                try:
                    await getattr(self, handler_name)(msg)
                except Exception:
                    logger.exception("Unexpected error handling message type=%s", msg_type)
                    self.send_error("An internal error occurred.")
        except (WebSocketDisconnect, RuntimeError):
            pass

    async def cleanup(self) -> None:
        """Stop delivery to this socket and run the disconnect transition.

        The leave sequence runs in its own task: the endpoint itself may be
        cancelled as the socket goes away, and a half-finished leave would
        leave a ghost in everyone's roster.
        """
        task = asyncio.ensure_future(self.coordinator.disconnect(self.connection_id))
        _disconnect_tasks.add(task)
        task.add_done_callback(_disconnect_task_done_callback)
        try:
            await self.channel.detach(self.connection_id)
        except Exception:
            logger.exception("Failed to detach connection %s", self.connection_id)


# ------------------------------------------------------------------
# FastAPI endpoint; this is what server.py mounts at /ws/chat
# ------------------------------------------------------------------

async def websocket_chat(
    websocket: WebSocket,
    *,
    coordinator: SessionCoordinator,
    channel: BroadcastChannel,
) -> None:
    """WebSocket endpoint handler for /ws/chat."""
    await websocket.accept()

    connection_id = uuid4().hex
    channel.attach(connection_id, websocket)
    coordinator.connect(connection_id)

    session = WebSocketSession(
        websocket,
        connection_id,
        coordinator=coordinator,
        channel=channel,
    )
    try:
        await session.run()
    finally:
        await session.cleanup()
