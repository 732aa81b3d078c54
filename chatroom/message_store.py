"""Message log: appends, trims, and serves recent chat history.

A single JSON array in ``messages.json``, oldest first. Follows the same
atomic-write pattern used by ``participant_log.py``: every write goes to a
temp file in the same directory and is swapped in with ``os.replace``.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from .models import Message

logger = logging.getLogger(__name__)

MAX_STORED_MESSAGES = 500
HISTORY_LIMIT = 100


class MessageStoreError(Exception):
    """The log could not be written; the message was not persisted."""


class MessageStore:
    def __init__(self, filepath: str | Path, max_messages: int = MAX_STORED_MESSAGES):
        self.filepath = Path(filepath).resolve()
        self.max_messages = max_messages
        self._lock = asyncio.Lock()

    def _read_sync(self) -> list[dict]:
        if not self.filepath.exists():
            return []
        try:
            with open(self.filepath, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            logger.warning("Corrupt message log: %s", self.filepath)
            return []
        if not isinstance(data, list):
            logger.warning("Message log is not a list: %s", self.filepath)
            return []
        return data

    def _load_sync(self) -> list[Message]:
        """Read the log and parse it, dropping records that are not messages."""
        messages = []
        skipped = 0
        for record in self._read_sync():
            try:
                messages.append(Message.from_dict(record))
            except (ValueError, TypeError):
                skipped += 1
        if skipped:
            logger.warning("Skipping %d malformed message record(s) in %s", skipped, self.filepath)
        return messages

    def _write_sync(self, records: list[dict]) -> None:
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(self.filepath.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.filepath)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    async def append(self, message: Message) -> Message:
        """Persist *message* and trim the log to ``max_messages``.

        Raises MessageStoreError if the log cannot be written.
        """
        async with self._lock:
            existing = await asyncio.to_thread(self._load_sync)
            records = [m.to_dict() for m in existing]
            records.append(message.to_dict())
            if len(records) > self.max_messages:
                records = records[-self.max_messages:]
            try:
                await asyncio.to_thread(self._write_sync, records)
            except OSError as e:
                raise MessageStoreError(f"Failed to write message log: {e}") from e
        return message

    async def recent(self, limit: int = HISTORY_LIMIT) -> list[Message]:
        """Return up to *limit* most recent messages, oldest first."""
        if limit <= 0:
            return []
        async with self._lock:
            messages = await asyncio.to_thread(self._load_sync)
        return messages[-limit:]

    async def count(self) -> int:
        async with self._lock:
            messages = await asyncio.to_thread(self._load_sync)
        return len(messages)
