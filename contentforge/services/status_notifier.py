"""
Live status side channel for dashboard progress display.

Strictly advisory: the authoritative status is the content record. A failed
push is logged and dropped, never raised into the state machine.
"""

from __future__ import annotations

from datetime import UTC, datetime

from contentforge.core.logging import get_logger
from contentforge.schemas.schemas import StatusEvent
from contentforge.services.state_store import STATUS_NAMESPACE, StateStore

logger = get_logger(__name__)


class StatusNotifier:
    def __init__(self, store: StateStore) -> None:
        self._store = store

    async def push(self, request_id: str, stage: str, message: str) -> None:
        event = StatusEvent(
            request_id=request_id, stage=stage, message=message, ts=datetime.now(UTC)
        )
        try:
            await self._store.put(STATUS_NAMESPACE, request_id, event.model_dump(mode="json"))
        except Exception as e:
            logger.warning("status_push_failed", request_id=request_id, stage=stage, error=str(e))

    async def latest(self, request_id: str) -> StatusEvent | None:
        entry = await self._store.get(STATUS_NAMESPACE, request_id)
        if entry is None:
            return None
        return StatusEvent.model_validate(entry.value)
