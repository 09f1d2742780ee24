"""Per-user session preferences and their persistence.

The session is the only state kept locally between runs: the selected
member, which member passed the PIN check, and the dark-mode toggle. It
is stored as one JSON blob under a fixed key. The tracker collections are
never persisted locally.

PINs are compared in plaintext; this is a convenience gate, not a
security boundary.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import redis.asyncio as redis
import structlog
from pydantic import BaseModel, ValidationError

from algoholics.config import Settings
from algoholics.models import Member

logger = structlog.get_logger()

DEFAULT_SESSION_KEY = "algoholics-state"


class SessionState(BaseModel):
    """Current member, authenticated member and theme preference."""

    current_member: Member | None = None
    authenticated_member_id: str | None = None
    dark_mode: bool = False

    @property
    def is_authenticated(self) -> bool:
        return (
            self.current_member is not None
            and self.authenticated_member_id is not None
            and self.current_member.id == self.authenticated_member_id
        )

    def register(self, member: Member) -> None:
        """Select a freshly registered member and mark them authenticated."""
        self.current_member = member
        self.authenticated_member_id = member.id

    def sign_in(self, member: Member, pin: str) -> bool:
        """Select ``member`` if ``pin`` matches. Returns whether it did."""
        if (pin or "").strip() != member.pin:
            logger.info("sign_in_rejected", member_id=member.id)
            return False
        self.register(member)
        return True

    def sign_out(self) -> None:
        self.current_member = None
        self.authenticated_member_id = None

    def toggle_dark_mode(self) -> bool:
        self.dark_mode = not self.dark_mode
        return self.dark_mode

    def can_delete_member(self, member_id: str) -> bool:
        """Members may only delete themselves."""
        return self.is_authenticated and self.authenticated_member_id == member_id

    def can_edit_submissions(self) -> bool:
        return self.is_authenticated

    def reconcile(self, members: Iterable[Member]) -> bool:
        """Sign out if the current member no longer exists. Returns True if it did."""
        if self.current_member is None:
            return False
        if any(m.id == self.current_member.id for m in members):
            return False
        logger.info("session_member_gone", member_id=self.current_member.id)
        self.sign_out()
        return True


class SessionStore(Protocol):
    async def load(self) -> SessionState: ...

    async def save(self, state: SessionState) -> None: ...

    async def close(self) -> None: ...


class FileSessionStore:
    """Session blob stored as ``<directory>/<key>.json``."""

    def __init__(self, directory: str | Path, key: str = DEFAULT_SESSION_KEY) -> None:
        self.path = Path(directory).expanduser() / f"{key}.json"

    async def load(self) -> SessionState:
        if not self.path.exists():
            return SessionState()
        try:
            raw = await asyncio.to_thread(self.path.read_bytes)
            return SessionState.model_validate_json(raw)
        except (OSError, UnicodeDecodeError, ValidationError):
            logger.exception("session_load_failed", path=str(self.path))
            return SessionState()

    async def save(self, state: SessionState) -> None:
        try:
            await asyncio.to_thread(self._write, state.model_dump_json())
        except OSError:
            logger.exception("session_save_failed", path=str(self.path))

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(payload, encoding="utf-8")

    async def close(self) -> None:
        pass


class RedisSessionStore:
    """Session blob stored as a Redis string under a fixed key."""

    def __init__(self, client: redis.Redis, key: str = DEFAULT_SESSION_KEY) -> None:
        self._client = client
        self.key = key

    async def load(self) -> SessionState:
        try:
            raw = await self._client.get(self.key)
        except (redis.RedisError, UnicodeDecodeError):
            logger.exception("session_load_failed", key=self.key)
            return SessionState()
        if raw is None:
            return SessionState()
        try:
            return SessionState.model_validate_json(raw)
        except ValidationError:
            logger.warning("session_blob_invalid", key=self.key)
            return SessionState()

    async def save(self, state: SessionState) -> None:
        try:
            await self._client.set(self.key, state.model_dump_json())
        except redis.RedisError:
            logger.exception("session_save_failed", key=self.key)

    async def close(self) -> None:
        await self._client.aclose()


def session_store_from_settings(settings: Settings) -> SessionStore:
    """Build the configured session store."""
    if settings.session_backend == "redis":
        client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        return RedisSessionStore(client, settings.session_key)
    if settings.session_backend == "file":
        return FileSessionStore(settings.session_dir, settings.session_key)
    msg = f"Unknown session backend: {settings.session_backend!r}"
    raise ValueError(msg)
