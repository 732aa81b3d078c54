"""Chat records shared by the store, the registry and the coordinator.

``Message.authored`` is the only way to build a user message: it copies the
author's name, avatar and colour at send time, so a later re-join under a
different name never rewrites history.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    SYSTEM = "system"


@dataclass(frozen=True)
class Participant:
    connection_id: str
    username: str
    avatar: str
    color: str
    joined_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.connection_id,
            "username": self.username,
            "avatar": self.avatar,
            "color": self.color,
            "joined_at": self.joined_at,
        }


@dataclass(frozen=True)
class Message:
    id: str
    kind: MessageKind
    content: str
    timestamp: str
    author_id: str | None = None
    author_name: str | None = None
    avatar: str | None = None
    color: str | None = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(id=uuid4().hex, kind=MessageKind.SYSTEM, content=content, timestamp=_now())

    @classmethod
    def authored(cls, kind: MessageKind, participant: Participant, content: str) -> "Message":
        if kind == MessageKind.SYSTEM:
            raise ValueError("System messages have no author")
        return cls(
            id=uuid4().hex,
            kind=kind,
            content=content,
            timestamp=_now(),
            author_id=participant.connection_id,
            author_name=participant.username,
            avatar=participant.avatar,
            color=participant.color,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "content": self.content,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "avatar": self.avatar,
            "color": self.color,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """Rebuild a stored message. Raises ValueError on malformed records."""
        if not isinstance(data, dict):
            raise ValueError("Message record must be an object")
        missing = [k for k in ("id", "kind", "content", "timestamp") if k not in data]
        if missing:
            raise ValueError(f"Message record missing fields: {', '.join(missing)}")
        return cls(
            id=data["id"],
            kind=MessageKind(data["kind"]),
            content=data["content"],
            timestamp=data["timestamp"],
            author_id=data.get("author_id"),
            author_name=data.get("author_name"),
            avatar=data.get("avatar"),
            color=data.get("color"),
        )
