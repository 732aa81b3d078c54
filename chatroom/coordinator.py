"""Session coordinator: join, submit, typing and disconnect for every connection.

Owns the per-connection state machine (CONNECTING -> JOINED -> DISCONNECTED)
and ties the message store, presence registry and broadcast channel together.
Transport code (``ws_handler.py``) only translates frames into calls here.

Every "append then broadcast" sequence runs under ``_publish_lock`` so the
order messages land in the log is the order every client sees them.
"""

import asyncio
import logging
import random
from enum import Enum

from .broadcast import BroadcastChannel
from .message_store import MessageStore
from .models import Message, MessageKind, Participant
from .participant_log import ParticipantLog
from .presence import PresenceRegistry
from .ws_constants import (
    MSG_MESSAGE,
    MSG_USERS,
    MSG_WELCOME,
    MSG_USER_TYPING,
    MSG_USER_STOP_TYPING,
)

logger = logging.getLogger(__name__)

AVATARS = ['😀', '😎', '🤖', '👻', '🦊', '🐱', '🐶', '🐼', '🦁', '🐯', '🐨', '🐸', '🐵', '🦄', '🐲']
COLORS = ['#FF6B6B', '#4ECDC4', '#45B7D1', '#96CEB4', '#FFEAA7', '#DDA0DD', '#98D8C8', '#F7DC6F', '#BB8FCE', '#85C1E9']


class SessionState(str, Enum):
    CONNECTING = "connecting"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


def fallback_username(connection_id: str) -> str:
    return f"User{connection_id[:4]}"


class SessionCoordinator:
    def __init__(
        self,
        *,
        message_store: MessageStore,
        presence: PresenceRegistry,
        channel: BroadcastChannel,
        participant_log: ParticipantLog | None = None,
        rng: random.Random | None = None,
    ):
        self.message_store = message_store
        self.presence = presence
        self.channel = channel
        self.participant_log = participant_log
        self._rng = rng or random.Random()
        self._states: dict[str, SessionState] = {}
        self._publish_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def state(self, connection_id: str) -> SessionState:
        return self._states.get(connection_id, SessionState.DISCONNECTED)

    async def _publish(self, message: Message) -> Message:
        """Append then broadcast. Caller must hold ``_publish_lock``."""
        await self.message_store.append(message)
        self.channel.to_all({"type": MSG_MESSAGE, "message": message.to_dict()})
        return message

    async def _broadcast_roster(self) -> int:
        participants = await self.presence.all()
        self.channel.to_all({
            "type": MSG_USERS,
            "users": [p.to_dict() for p in participants],
        })
        return len(participants)

    async def _record_participant(self, participant: Participant) -> None:
        if not self.participant_log:
            return
        try:
            await self.participant_log.record(participant)
        except Exception:
            logger.exception("Failed to record participant snapshot for %s", participant.connection_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def connect(self, connection_id: str) -> None:
        self._states[connection_id] = SessionState.CONNECTING
        logger.info("Connection opened: %s", connection_id)

    async def join(
        self,
        connection_id: str,
        *,
        username: str | None = None,
        avatar: str | None = None,
        color: str | None = None,
    ) -> Participant | None:
        """Register (or re-register) the participant for *connection_id*."""
        if self.state(connection_id) == SessionState.DISCONNECTED:
            logger.debug("Ignoring join from closed connection %s", connection_id)
            return None

        name = username.strip() if isinstance(username, str) else ""
        participant = Participant(
            connection_id=connection_id,
            username=name or fallback_username(connection_id),
            avatar=avatar or self._rng.choice(AVATARS),
            color=color or self._rng.choice(COLORS),
        )

        async with self._publish_lock:
            previous = await self.presence.get(connection_id)
            previous_state = self.state(connection_id)
            await self.presence.register(connection_id, participant)
            self._states[connection_id] = SessionState.JOINED
            try:
                await self._publish(Message.system(f"{participant.username} joined the chat"))
            except Exception:
                # Undo the registration so the roster never shows an unannounced member
                if previous is not None:
                    await self.presence.register(connection_id, previous)
                else:
                    await self.presence.unregister(connection_id)
                if connection_id in self._states:
                    self._states[connection_id] = previous_state
                raise
            await self._record_participant(participant)
            online = await self._broadcast_roster()
            self.channel.to_one(connection_id, {
                "type": MSG_WELCOME,
                "user": participant.to_dict(),
                "users_count": online,
            })

        logger.info("%s joined (%s)", participant.username, connection_id)
        return participant

    async def _submit(self, connection_id: str, kind: MessageKind, content: str) -> Message | None:
        async with self._publish_lock:
            participant = await self.presence.get(connection_id)
            if participant is None:
                # Message raced a disconnect, or arrived before join.
                logger.debug("Dropping %s message from unregistered connection %s", kind.value, connection_id)
                return None
            return await self._publish(Message.authored(kind, participant, content))

    async def submit_text(self, connection_id: str, content: str) -> Message | None:
        return await self._submit(connection_id, MessageKind.TEXT, content)

    async def submit_image(self, connection_id: str, url: str) -> Message | None:
        return await self._submit(connection_id, MessageKind.IMAGE, url)

    async def _relay_typing(self, connection_id: str, event_type: str) -> None:
        participant = await self.presence.get(connection_id)
        if participant is None:
            return
        self.channel.to_all_except(connection_id, {
            "type": event_type,
            "username": participant.username,
        })

    async def typing(self, connection_id: str) -> None:
        await self._relay_typing(connection_id, MSG_USER_TYPING)

    async def stop_typing(self, connection_id: str) -> None:
        await self._relay_typing(connection_id, MSG_USER_STOP_TYPING)

    async def disconnect(self, connection_id: str) -> None:
        self._states.pop(connection_id, None)
        async with self._publish_lock:
            participant = await self.presence.unregister(connection_id)
            if participant is None:
                logger.info("Connection closed before join: %s", connection_id)
                return
            try:
                await self._publish(Message.system(f"{participant.username} left the chat"))
            except Exception:
                logger.exception("Failed to record leave message for %s", connection_id)
            await self._broadcast_roster()
        logger.info("%s left (%s)", participant.username, connection_id)
