"""Per-session mutual exclusion (in-memory or Redis).

- SessionLockRegistry: one `asyncio.Lock` per key, suitable for a single process and unit tests.
- RedisSessionLocks: distributed lock (`redis.asyncio` Lock) when `REDIS_URL` is set, so that
  several workers serialize version creation and publication for the same session.

Lock key rule:
    content_version:{project_id}:{session_id}
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import structlog
from redis import asyncio as aioredis
from redis.exceptions import LockError, RedisError

from content_assistant.core.http_constants import HTTP_GATEWAY_TIMEOUT, HTTP_SERVICE_UNAVAILABLE
from content_assistant.domain.errors import SessionLockError

log = structlog.get_logger(__name__).bind(component="session_locks")


def make_lock_key(project_id: str, session_id: str) -> str:
    """Compose a stable lock key for a (project, session) pair."""
    return f"content_version:{project_id}:{session_id}"


class SessionLocks(Protocol):
    """Protocole des verrous par session."""

    def hold(self, key: str) -> AbstractAsyncContextManager[None]:
        """Contexte asynchrone tenant le verrou de `key`."""


class SessionLockRegistry:
    """Registre de verrous asyncio, un par clé.

    Une entrée ne vit que tant que le verrou est tenu ou attendu.
    """

    def __init__(self, timeout_s: float = 30.0) -> None:
        self._timeout_s = timeout_s
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
            return
        del self._users[key]
        del self._locks[key]

    @property
    def active_keys(self) -> int:
        """Nombre de clés dont le verrou est tenu ou attendu."""
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Acquiert le verrou de `key` (borné par le délai), le libère en sortie."""
        lock = self._checkout(key)
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._timeout_s)
            except TimeoutError as exc:
                raise SessionLockError(HTTP_GATEWAY_TIMEOUT, f"lock wait timed out: {key}") from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)


class RedisSessionLocks:
    """Verrous distribués basés sur Redis (bail = `timeout_s`)."""

    def __init__(
        self, url: str, timeout_s: float = 30.0, client: aioredis.Redis | None = None
    ) -> None:
        self._timeout_s = timeout_s
        self._redis = client or aioredis.from_url(url)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Acquiert le verrou Redis de `key`; une indisponibilité Redis lève `SessionLockError`."""
        lock = self._redis.lock(
            f"lock:{key}", timeout=self._timeout_s, blocking_timeout=self._timeout_s
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            log.warning("redis_lock_unavailable", key=key, error_type=type(exc).__name__)
            raise SessionLockError(
                HTTP_SERVICE_UNAVAILABLE, "session lock backend unavailable"
            ) from exc
        if not acquired:
            raise SessionLockError(HTTP_GATEWAY_TIMEOUT, f"lock wait timed out: {key}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                log.warning("redis_lock_expired_before_release", key=key)


def build_session_locks(
    redis_url: str | None, timeout_s: float
) -> SessionLockRegistry | RedisSessionLocks:
    """Choisit l'implémentation selon la configuration."""
    if redis_url:
        return RedisSessionLocks(redis_url, timeout_s=timeout_s)
    return SessionLockRegistry(timeout_s=timeout_s)
