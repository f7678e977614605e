"""
Durable request store: namespaced, versioned key-value persistence.

Layout:
  content/<request_id>        one ContentRequest record per request
  content_index/all           list of every known request id (advisory)
  content_status/<request_id> latest live status event

The store offers no multi-key transactions. Callers that must not lose a
concurrent update use ``compare_and_set`` against the version they read.
"""

from __future__ import annotations

import asyncio
import copy
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from contentforge.core.logging import get_logger
from contentforge.models.models import StateEntry

logger = get_logger(__name__)

CONTENT_NAMESPACE = "content"
INDEX_NAMESPACE = "content_index"
INDEX_KEY = "all"
STATUS_NAMESPACE = "content_status"

_APPEND_BACKOFF_BASE = 0.005
_APPEND_BACKOFF_CAP = 0.25


@dataclass(frozen=True)
class StoredValue:
    value: Any
    version: int


class StateStore(ABC):
    @abstractmethod
    async def get(self, namespace: str, key: str) -> StoredValue | None: ...

    @abstractmethod
    async def put(self, namespace: str, key: str, value: Any) -> StoredValue:
        """Unconditional write. Only for advisory data such as status events."""

    @abstractmethod
    async def compare_and_set(
        self, namespace: str, key: str, value: Any, expected_version: int | None
    ) -> StoredValue | None:
        """
        Write ``value`` only if the stored version still equals ``expected_version``.

        ``expected_version=None`` means "only if absent". Returns the new entry,
        or None when the precondition no longer holds.
        """

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════
# In-process backend (tests, single-process dev)
# ═══════════════════════════════════════════════════════════════
class MemoryStateStore(StateStore):
    """Dict-backed store. Methods never await, so each call is atomic on the event loop."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], StoredValue] = {}

    async def get(self, namespace: str, key: str) -> StoredValue | None:
        entry = self._entries.get((namespace, key))
        if entry is None:
            return None
        return StoredValue(copy.deepcopy(entry.value), entry.version)

    async def put(self, namespace: str, key: str, value: Any) -> StoredValue:
        current = self._entries.get((namespace, key))
        entry = StoredValue(copy.deepcopy(value), (current.version if current else 0) + 1)
        self._entries[(namespace, key)] = entry
        return entry

    async def compare_and_set(
        self, namespace: str, key: str, value: Any, expected_version: int | None
    ) -> StoredValue | None:
        current = self._entries.get((namespace, key))
        current_version = current.version if current else None
        if current_version != expected_version:
            return None
        entry = StoredValue(copy.deepcopy(value), (current_version or 0) + 1)
        self._entries[(namespace, key)] = entry
        return entry


# ═══════════════════════════════════════════════════════════════
# SQLAlchemy backend (aiosqlite in dev, asyncpg in production)
# ═══════════════════════════════════════════════════════════════
class SqlStateStore(StateStore):
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], engine: AsyncEngine | None = None
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    async def get(self, namespace: str, key: str) -> StoredValue | None:
        async with self._session_factory() as session:
            row = await session.get(StateEntry, (namespace, key))
            if row is None:
                return None
            return StoredValue(row.value, row.version)

    async def put(self, namespace: str, key: str, value: Any) -> StoredValue:
        async with self._session_factory() as session, session.begin():
            row = await session.get(StateEntry, (namespace, key), with_for_update=True)
            if row is None:
                row = StateEntry(namespace=namespace, key=key, value=value, version=1)
                session.add(row)
            else:
                row.value = value
                row.version += 1
                row.updated_at = datetime.now(UTC)
            version = row.version
        return StoredValue(value, version)

    async def compare_and_set(
        self, namespace: str, key: str, value: Any, expected_version: int | None
    ) -> StoredValue | None:
        try:
            async with self._session_factory() as session, session.begin():
                if expected_version is None:
                    session.add(StateEntry(namespace=namespace, key=key, value=value, version=1))
                    new_version = 1
                else:
                    result = await session.execute(
                        update(StateEntry)
                        .where(
                            StateEntry.namespace == namespace,
                            StateEntry.key == key,
                            StateEntry.version == expected_version,
                        )
                        .values(
                            value=value,
                            version=expected_version + 1,
                            updated_at=datetime.now(UTC),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        return None
                    new_version = expected_version + 1
        except IntegrityError:
            # Insert-if-absent lost against an existing key
            return None
        return StoredValue(value, new_version)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()


# ═══════════════════════════════════════════════════════════════
# Request index: advisory list of ids scanned by the expiry sweep
# ═══════════════════════════════════════════════════════════════
class RequestIndex:
    def __init__(self, store: StateStore, max_attempts: int = 5) -> None:
        self._store = store
        self._max_attempts = max_attempts

    async def ids(self) -> list[str]:
        entry = await self._store.get(INDEX_NAMESPACE, INDEX_KEY)
        return list(entry.value) if entry else []

    async def add(self, request_id: str) -> None:
        """
        Append an id, retrying until the write wins.

        Every lost compare-and-set means another writer committed, so the loop
        always makes progress; a short randomised backoff spreads out retries.
        """
        attempt = 0
        while True:
            entry = await self._store.get(INDEX_NAMESPACE, INDEX_KEY)
            ids = list(entry.value) if entry else []
            if request_id in ids:
                return
            ids.append(request_id)
            written = await self._store.compare_and_set(
                INDEX_NAMESPACE, INDEX_KEY, ids, entry.version if entry else None
            )
            if written is not None:
                return
            attempt += 1
            if attempt % 10 == 0:
                logger.info("index_append_contended", request_id=request_id, attempts=attempt)
            delay = min(_APPEND_BACKOFF_CAP, _APPEND_BACKOFF_BASE * 2 ** min(attempt, 8))
            await asyncio.sleep(random.uniform(0, delay))

    async def remove(self, request_ids: set[str]) -> int:
        """Drop ids from the index; rewrites only when something changes. Returns count removed."""
        if not request_ids:
            return 0
        for _ in range(self._max_attempts):
            entry = await self._store.get(INDEX_NAMESPACE, INDEX_KEY)
            if entry is None:
                return 0
            keep = [i for i in entry.value if i not in request_ids]
            removed = len(entry.value) - len(keep)
            if removed == 0:
                return 0
            written = await self._store.compare_and_set(INDEX_NAMESPACE, INDEX_KEY, keep, entry.version)
            if written is not None:
                return removed
        logger.warning("index_prune_contended", pending=len(request_ids))
        return 0
