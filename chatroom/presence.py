import asyncio
import logging

from .models import Participant

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Who is online right now, keyed by connection id.

    Rebuilt empty on every process start; join/leave history lives in the
    message log, not here. Participants are frozen, so returning them
    hands out no mutable state.
    """

    def __init__(self):
        self._participants: dict[str, Participant] = {}
        self._lock = asyncio.Lock()

    async def register(self, connection_id: str, participant: Participant) -> None:
        async with self._lock:
            replaced = connection_id in self._participants
            self._participants[connection_id] = participant
        if replaced:
            logger.info("Replaced participant for connection %s", connection_id)

    async def unregister(self, connection_id: str) -> Participant | None:
        async with self._lock:
            return self._participants.pop(connection_id, None)

    async def get(self, connection_id: str) -> Participant | None:
        async with self._lock:
            return self._participants.get(connection_id)

    async def all(self) -> list[Participant]:
        async with self._lock:
            return list(self._participants.values())

    async def count(self) -> int:
        async with self._lock:
            return len(self._participants)
