"""
Expiry sweep: periodic background correction of stale requests.

Each pass walks the request index, expires every request whose ``expires_at``
has elapsed and that has not reached publishing or a terminal state, and
prunes index entries that no longer need scanning. Non-transactional and
at-least-once: a skipped or failed pass only delays expiry, it never corrupts
state, because every write goes through the engine's precondition check.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from contentforge.agents.lifecycle import EXPIRABLE_STATES, TERMINAL_STATES, TransitionEngine
from contentforge.core.errors import InvalidTransitionError, NotFoundError
from contentforge.core.logging import get_logger
from contentforge.models.models import RequestStatus
from contentforge.schemas.schemas import ContentRequest
from contentforge.services.state_store import RequestIndex

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepReport:
    scanned: int
    expired: int
    pruned: int


class ExpirySweeper:
    def __init__(self, engine: TransitionEngine, index: RequestIndex) -> None:
        self._engine = engine
        self._index = index

    async def sweep(self) -> SweepReport:
        ids = await self._index.ids()
        if not ids:
            return SweepReport(scanned=0, expired=0, pruned=0)

        now = self._engine.now()
        drop: set[str] = set()
        expired = 0

        for request_id in ids:
            try:
                record = await self._engine.get(request_id)
            except NotFoundError:
                drop.add(request_id)
                continue

            if record.status in TERMINAL_STATES:
                drop.add(request_id)
                continue

            if record.status not in EXPIRABLE_STATES or not record.is_expired(now):
                continue

            if await self._expire(request_id):
                expired += 1
                drop.add(request_id)

        pruned = await self._index.remove(drop)
        if pruned:
            logger.info("expiry_index_pruned", before=len(ids), after=len(ids) - pruned)
        logger.info("expiry_sweep_complete", scanned=len(ids), expired=expired, pruned=pruned)
        return SweepReport(scanned=len(ids), expired=expired, pruned=pruned)

    async def _expire(self, request_id: str) -> bool:
        def _stamp(record: ContentRequest, now: datetime) -> ContentRequest:
            return record.model_copy(update={"expired_at": now})

        try:
            await self._engine.apply_transition(
                request_id, EXPIRABLE_STATES, RequestStatus.EXPIRED, _stamp
            )
        except (InvalidTransitionError, NotFoundError) as e:
            # Lost a race with a decision or publish; the next pass re-checks
            logger.info("expiry_skipped", request_id=request_id, reason=str(e))
            return False
        return True

    async def run_forever(self, interval_seconds: float) -> None:
        logger.info("expiry_sweeper_started", interval_seconds=interval_seconds)
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error("expiry_sweep_failed", error=str(e))
            await asyncio.sleep(interval_seconds)
