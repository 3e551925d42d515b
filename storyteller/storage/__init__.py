"""Session snapshot persistence"""

from .exceptions import PersistenceError
from .session_store import InMemorySessionStore, RedisSessionStore, SessionStore

__all__ = [
    "PersistenceError",
    "SessionStore",
    "RedisSessionStore",
    "InMemorySessionStore",
]
