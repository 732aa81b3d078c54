"""Login gate: credential store and login rate limiting.

Separate from the chat session lifecycle -- joining the room never asks for
a password. Passwords are stored as given in ``accounts.json``; swap
``CredentialStore`` out for something stronger if that matters.
"""

import asyncio
import hmac
import json
import logging
import time
from collections import defaultdict
from pathlib import Path

from fastapi import HTTPException
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNTS = {
    "admin": "admin123",
    "user1": "password1",
}

# Login rate limiting: IP -> list of attempt timestamps
_login_attempts: dict[str, list[float]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5        # max attempts
_LOGIN_RATE_WINDOW = 60.0    # per this many seconds


class CredentialStore:
    def __init__(self, filepath: str | Path):
        self.filepath = Path(filepath).resolve()

    def ensure_defaults(self) -> None:
        """Seed the default accounts if no accounts file exists yet."""
        if self.filepath.exists():
            return
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self.filepath.write_text(json.dumps(DEFAULT_ACCOUNTS, indent=2), encoding="utf-8")
        logger.info("Created default accounts file at %s", self.filepath)

    def _load_sync(self) -> dict[str, str]:
        try:
            with open(self.filepath, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            logger.warning("Unreadable accounts file: %s", self.filepath)
            return {}
        return data if isinstance(data, dict) else {}

    async def verify(self, username: str, password: str) -> bool:
        """Check a username/password pair. Uses constant-time comparison."""
        accounts = await asyncio.to_thread(self._load_sync)
        stored = accounts.get(username)
        if not isinstance(stored, str):
            return False
        return hmac.compare_digest(password.encode(), stored.encode())


# --- Rate Limiting ---

def _prune_stale_attempts(now: float) -> None:
    stale_ips = [
        ip for ip, attempts in _login_attempts.items()
        if attempts and attempts[-1] < now - _LOGIN_RATE_WINDOW
    ]
    for ip in stale_ips:
        del _login_attempts[ip]


def check_login_rate_limit(client_ip: str) -> None:
    """Raise 429 if the IP has exceeded the login rate limit."""
    now = time.monotonic()
    _prune_stale_attempts(now)
    attempts = _login_attempts[client_ip]
    cutoff = now - _LOGIN_RATE_WINDOW
    _login_attempts[client_ip] = [t for t in attempts if t > cutoff]
    if len(_login_attempts[client_ip]) >= _LOGIN_RATE_LIMIT:
        raise HTTPException(status_code=429, detail="Too many login attempts. Try again later.")
    _login_attempts[client_ip].append(now)


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""
