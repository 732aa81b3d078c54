import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from .models import Participant

logger = logging.getLogger(__name__)


class ParticipantLog:
    """Snapshot side-table of everyone who has joined, keyed by connection id.

    Written on every join, never read by the chat core.
    """

    def __init__(self, filepath: str | Path):
        self.filepath = Path(filepath).resolve()
        self._lock = asyncio.Lock()

    def _load_sync(self) -> list[dict]:
        if not self.filepath.exists():
            return []
        try:
            with open(self.filepath, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            logger.warning("Corrupt users.json, starting fresh")
            return []
        return data if isinstance(data, list) else []

    def _save_sync(self, records: list[dict]):
        """Synchronous save, must be called via asyncio.to_thread()."""
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

    async def record(self, participant: Participant):
        async with self._lock:
            records = await asyncio.to_thread(self._load_sync)
            entry = participant.to_dict()
            for i, existing in enumerate(records):
                if isinstance(existing, dict) and existing.get("id") == entry["id"]:
                    records[i] = entry
                    break
            else:
                records.append(entry)
            await asyncio.to_thread(self._save_sync, records)

    async def get_all(self) -> list[dict]:
        async with self._lock:
            return await asyncio.to_thread(self._load_sync)
