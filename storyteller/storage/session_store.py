# ABOUTME: Key-value persistence of full Session snapshots by id.
# ABOUTME: RedisSessionStore keeps JSON snapshots plus an index set; InMemorySessionStore mirrors it in-process.

from abc import ABC, abstractmethod

from loguru import logger
from pydantic import ValidationError
from redis import Redis, RedisError

from storyteller.models.game_state import Session
from storyteller.storage.exceptions import PersistenceError


class SessionStore(ABC):
    """Save/load full session snapshots; every save overwrites"""

    @abstractmethod
    def save(self, session: Session) -> None:
        ...

    @abstractmethod
    def load_by_id(self, session_id: str) -> Session | None:
        ...

    @abstractmethod
    def delete_by_id(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def list_all(self) -> list[Session]:
        """All stored sessions, most recently updated first"""


def _decode(session_id: str, raw: str | bytes) -> Session:
    try:
        return Session.model_validate_json(raw)
    except ValidationError as e:
        raise PersistenceError(f"Corrupt snapshot for session {session_id}: {e}") from e


def _newest_first(sessions: list[Session]) -> list[Session]:
    return sorted(sessions, key=lambda s: s.updated_at, reverse=True)


class RedisSessionStore(SessionStore):
    """
    Redis-backed session store.

    Layout:
    - <prefix><session_id>: JSON snapshot
    - <prefix>index: set of stored session ids
    """

    def __init__(self, redis_client: Redis, key_prefix: str = "storyteller:session:"):
        """
        Initialize session store.

        Args:
            redis_client: Redis connection for snapshot storage
            key_prefix: Namespace for snapshot keys
        """
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.index_key = f"{key_prefix}index"

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def save(self, session: Session) -> None:
        """
        Overwrite the snapshot for session.id.

        Raises:
            PersistenceError: If Redis rejects the write
        """
        try:
            self.redis.set(self._key(session.id), session.model_dump_json())
            self.redis.sadd(self.index_key, session.id)
        except RedisError as e:
            raise PersistenceError(f"Failed to save session {session.id}: {e}") from e

        logger.bind(session=session.id, rounds=len(session.rounds)).debug("Session snapshot saved")

    def load_by_id(self, session_id: str) -> Session | None:
        """
        Load a snapshot.

        Returns:
            Session, or None if no snapshot exists

        Raises:
            PersistenceError: On Redis errors or an unreadable snapshot
        """
        try:
            raw = self.redis.get(self._key(session_id))
        except RedisError as e:
            raise PersistenceError(f"Failed to load session {session_id}: {e}") from e

        if raw is None:
            return None
        return _decode(session_id, raw)

    def delete_by_id(self, session_id: str) -> bool:
        """
        Delete a snapshot.

        Returns:
            True if a snapshot was removed
        """
        try:
            removed = self.redis.delete(self._key(session_id))
            self.redis.srem(self.index_key, session_id)
        except RedisError as e:
            raise PersistenceError(f"Failed to delete session {session_id}: {e}") from e
        return bool(removed)

    def list_all(self) -> list[Session]:
        try:
            members = self.redis.smembers(self.index_key)
        except RedisError as e:
            raise PersistenceError(f"Failed to list sessions: {e}") from e

        sessions = []
        for member in members:
            session_id = member.decode() if isinstance(member, bytes) else member
            session = self.load_by_id(session_id)
            if session is None:
                logger.bind(session=session_id).warning("Index entry without snapshot")
                continue
            sessions.append(session)
        return _newest_first(sessions)


class InMemorySessionStore(SessionStore):
    """Process-local store holding serialized snapshots"""

    def __init__(self):
        self._snapshots: dict[str, str] = {}

    def save(self, session: Session) -> None:
        self._snapshots[session.id] = session.model_dump_json()

    def load_by_id(self, session_id: str) -> Session | None:
        raw = self._snapshots.get(session_id)
        if raw is None:
            return None
        return _decode(session_id, raw)

    def delete_by_id(self, session_id: str) -> bool:
        return self._snapshots.pop(session_id, None) is not None

    def list_all(self) -> list[Session]:
        return _newest_first([
            _decode(session_id, raw) for session_id, raw in self._snapshots.items()
        ])
