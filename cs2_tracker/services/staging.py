"""
Staged-transaction store

A preview computes a diff and parks it under an opaque token until the user
confirms (or it expires). Payloads are stored as plain JSON-able dicts, the
same shape a server-side session would hold, and re-validated on the way out.

Keys are namespaced per user: a token only resolves for the user who staged it.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from cs2_tracker.core.config import settings

logger = logging.getLogger(__name__)

IMPORT_PREFIX = "inventory_import_"
TRANSACTION_PREFIX = "storage_transaction_"

T = TypeVar("T", bound=BaseModel)


class SessionStore(Protocol):
    def set(self, key: str, value: Any) -> None: ...

    def get(self, key: str) -> Any: ...

    def remove(self, key: str) -> None: ...


class InMemorySessionStore:
    """Process-local key/value store whose entries expire after `ttl_seconds`."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = (self._clock() + self.ttl_seconds, value)

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._data.items() if expires_at <= now]
            for key in expired:
                del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class StagedDiffStore:
    def __init__(self, session: SessionStore):
        self.session = session

    @staticmethod
    def _key(user_id: int, token: str) -> str:
        return f"{user_id}:{token}"

    def store(self, user_id: int, payload: BaseModel, prefix: str = IMPORT_PREFIX) -> str:
        token = prefix + secrets.token_hex(16)
        self.session.set(self._key(user_id, token), payload.model_dump(mode="json"))
        return token

    def retrieve(self, user_id: int, token: str, model: Type[T]) -> Optional[T]:
        if not token:
            return None
        raw = self.session.get(self._key(user_id, token))
        if raw is None:
            return None
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            logger.warning("Staged payload %s does not match %s: %s", token, model.__name__, e)
            return None

    def clear(self, user_id: int, token: str) -> None:
        self.session.remove(self._key(user_id, token))


session_store = InMemorySessionStore(settings.staged_diff_ttl_seconds)
staged_diffs = StagedDiffStore(session_store)


def get_staged_store() -> StagedDiffStore:
    return staged_diffs


async def purge_expired_staged_diffs() -> None:
    """Scheduler job: drop staged diffs whose session lifetime ran out."""
    purged = session_store.purge_expired()
    if purged:
        logger.info("purge_expired_staged_diffs: dropped %d staged diffs", purged)
