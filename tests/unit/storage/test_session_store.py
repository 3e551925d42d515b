# ABOUTME: Unit tests for session snapshot persistence.
# ABOUTME: Redis store is exercised against a dict-backed mock client; the in-memory store must behave the same.

from datetime import UTC, datetime, timedelta

import pytest
from redis import RedisError

from storyteller.models.game_state import Character, Genre, Round, Session, SimpleChoice
from storyteller.storage.exceptions import PersistenceError
from storyteller.storage.session_store import InMemorySessionStore, RedisSessionStore


def _session(name: str = "Li Wei", updated_at: datetime | None = None) -> Session:
    session = Session(
        genre=Genre.WUXIA,
        character=Character(name=name),
        rounds=[Round(content="Rain on the inn roof.", choices=[SimpleChoice(text="Wait")])],
        max_rounds=6,
    )
    if updated_at is not None:
        session.updated_at = updated_at
    return session


class TestRedisSessionStore:
    """Test suite for RedisSessionStore"""

    def test_save_and_load(self, mock_redis_client):
        store = RedisSessionStore(mock_redis_client)
        session = _session()

        store.save(session)
        loaded = store.load_by_id(session.id)

        assert loaded == session
        assert f"storyteller:session:{session.id}" in mock_redis_client.data
        mock_redis_client.sadd.assert_called_once_with("storyteller:session:index", session.id)

    def test_save_overwrites_snapshot(self, mock_redis_client):
        store = RedisSessionStore(mock_redis_client)
        session = _session()
        store.save(session)

        session.rounds[0].chosen = "Wait"
        store.save(session)

        assert store.load_by_id(session.id).rounds[0].chosen == "Wait"

    def test_load_missing_returns_none(self, mock_redis_client):
        assert RedisSessionStore(mock_redis_client).load_by_id("session-missing") is None

    def test_corrupt_snapshot_raises(self, mock_redis_client):
        store = RedisSessionStore(mock_redis_client)
        mock_redis_client.data["storyteller:session:broken"] = b"{not json"

        with pytest.raises(PersistenceError, match="Corrupt snapshot"):
            store.load_by_id("broken")

    def test_redis_error_on_save(self, mock_redis_client):
        mock_redis_client.set.side_effect = RedisError("connection refused")
        store = RedisSessionStore(mock_redis_client)

        with pytest.raises(PersistenceError, match="connection refused"):
            store.save(_session())

    def test_redis_error_on_load(self, mock_redis_client):
        mock_redis_client.get.side_effect = RedisError("timeout")

        with pytest.raises(PersistenceError):
            RedisSessionStore(mock_redis_client).load_by_id("session-x")

    def test_delete(self, mock_redis_client):
        store = RedisSessionStore(mock_redis_client)
        session = _session()
        store.save(session)

        assert store.delete_by_id(session.id) is True
        assert store.load_by_id(session.id) is None
        assert store.delete_by_id(session.id) is False

    def test_list_all_newest_first(self, mock_redis_client):
        store = RedisSessionStore(mock_redis_client, key_prefix="test:")
        now = datetime.now(UTC)
        older = _session("Older", now - timedelta(hours=1))
        newer = _session("Newer", now)
        store.save(older)
        store.save(newer)

        assert [s.character.name for s in store.list_all()] == ["Newer", "Older"]

    def test_list_all_skips_index_without_snapshot(self, mock_redis_client):
        store = RedisSessionStore(mock_redis_client)
        session = _session()
        store.save(session)
        del mock_redis_client.data[f"storyteller:session:{session.id}"]

        assert store.list_all() == []


class TestInMemorySessionStore:
    def test_round_trip_is_a_copy(self):
        store = InMemorySessionStore()
        session = _session()
        store.save(session)

        session.rounds[0].chosen = "changed after save"
        loaded = store.load_by_id(session.id)

        assert loaded.rounds[0].chosen is None

    def test_delete_and_list(self):
        store = InMemorySessionStore()
        now = datetime.now(UTC)
        first = _session("First", now - timedelta(minutes=5))
        second = _session("Second", now)
        store.save(first)
        store.save(second)

        assert [s.character.name for s in store.list_all()] == ["Second", "First"]
        assert store.delete_by_id(first.id) is True
        assert store.load_by_id(first.id) is None
        assert store.delete_by_id(first.id) is False
