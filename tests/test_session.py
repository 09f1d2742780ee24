"""Tests for session state and its persistence."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from factories import make_member

from algoholics.config import Settings
from algoholics.session import (
    DEFAULT_SESSION_KEY,
    FileSessionStore,
    RedisSessionStore,
    SessionState,
    session_store_from_settings,
)


class TestSessionState:
    def test_defaults(self) -> None:
        state = SessionState()
        assert state.current_member is None
        assert state.authenticated_member_id is None
        assert state.dark_mode is False
        assert state.is_authenticated is False

    def test_sign_in_with_matching_pin(self) -> None:
        alice = make_member("alice")
        state = SessionState()
        assert state.sign_in(alice, " 1234 ") is True
        assert state.current_member == alice
        assert state.is_authenticated is True

    def test_sign_in_with_wrong_pin(self) -> None:
        state = SessionState()
        assert state.sign_in(make_member("alice"), "9999") is False
        assert state.current_member is None

    def test_only_owner_can_delete_member(self) -> None:
        state = SessionState()
        state.register(make_member("alice"))
        assert state.can_delete_member("alice") is True
        assert state.can_delete_member("bob") is False

    def test_stale_authentication_is_not_authenticated(self) -> None:
        state = SessionState(current_member=make_member("alice"), authenticated_member_id="bob")
        assert state.is_authenticated is False
        assert state.can_edit_submissions() is False
        assert state.can_delete_member("bob") is False

    def test_reconcile_signs_out_deleted_member(self) -> None:
        state = SessionState()
        state.register(make_member("alice"))
        assert state.reconcile([make_member("alice"), make_member("bob")]) is False
        assert state.reconcile([make_member("bob")]) is True
        assert state.current_member is None
        assert state.authenticated_member_id is None

    def test_toggle_dark_mode(self) -> None:
        state = SessionState()
        assert state.toggle_dark_mode() is True
        assert state.toggle_dark_mode() is False


@pytest.mark.asyncio
class TestFileSessionStore:
    async def test_missing_file_loads_default(self, tmp_path) -> None:
        store = FileSessionStore(tmp_path)
        assert await store.load() == SessionState()

    async def test_save_then_load(self, tmp_path) -> None:
        store = FileSessionStore(tmp_path / "nested")
        state = SessionState(dark_mode=True)
        state.register(make_member("alice"))
        await store.save(state)

        assert store.path.name == f"{DEFAULT_SESSION_KEY}.json"
        loaded = await store.load()
        assert loaded.current_member == state.current_member
        assert loaded.authenticated_member_id == "alice"
        assert loaded.dark_mode is True

    async def test_corrupt_file_loads_default(self, tmp_path) -> None:
        store = FileSessionStore(tmp_path)
        store.path.write_text("{not json", encoding="utf-8")
        assert await store.load() == SessionState()

    async def test_undecodable_file_loads_default(self, tmp_path) -> None:
        store = FileSessionStore(tmp_path)
        store.path.write_bytes(b"\xff\xfe{not utf8")
        assert await store.load() == SessionState()

    async def test_blob_never_contains_collections(self, tmp_path) -> None:
        store = FileSessionStore(tmp_path)
        await store.save(SessionState())
        blob = json.loads(store.path.read_text(encoding="utf-8"))
        assert set(blob) == {"current_member", "authenticated_member_id", "dark_mode"}


@pytest.mark.asyncio
class TestRedisSessionStore:
    async def test_load_missing_key(self) -> None:
        client = AsyncMock()
        client.get = AsyncMock(return_value=None)
        store = RedisSessionStore(client)
        assert await store.load() == SessionState()
        client.get.assert_awaited_once_with(DEFAULT_SESSION_KEY)

    async def test_save_writes_json_under_key(self) -> None:
        client = AsyncMock()
        store = RedisSessionStore(client, key="custom")
        await store.save(SessionState(dark_mode=True))
        key, payload = client.set.await_args.args
        assert key == "custom"
        assert json.loads(payload)["dark_mode"] is True

    async def test_load_roundtrips_saved_blob(self) -> None:
        state = SessionState(authenticated_member_id="alice", dark_mode=True)
        client = AsyncMock()
        client.get = AsyncMock(return_value=state.model_dump_json())
        assert await RedisSessionStore(client).load() == state

    async def test_redis_errors_are_swallowed(self) -> None:
        client = AsyncMock()
        client.get = AsyncMock(side_effect=redis.ConnectionError("down"))
        client.set = AsyncMock(side_effect=redis.ConnectionError("down"))
        store = RedisSessionStore(client)
        assert await store.load() == SessionState()
        await store.save(SessionState())

    async def test_invalid_blob_loads_default(self) -> None:
        client = AsyncMock()
        client.get = AsyncMock(return_value="[]")
        assert await RedisSessionStore(client).load() == SessionState()

    async def test_undecodable_value_loads_default(self) -> None:
        client = AsyncMock()
        client.get = AsyncMock(side_effect=UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"))
        assert await RedisSessionStore(client).load() == SessionState()


class TestStoreFactory:
    def test_file_backend(self, tmp_path) -> None:
        store = session_store_from_settings(Settings(session_backend="file", session_dir=str(tmp_path)))
        assert isinstance(store, FileSessionStore)
        assert store.path.parent == tmp_path

    def test_redis_backend(self) -> None:
        store = session_store_from_settings(Settings(session_backend="redis", session_key="k"))
        assert isinstance(store, RedisSessionStore)
        assert store.key == "k"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown session backend"):
            session_store_from_settings(Settings(session_backend="sqlite"))
