"""
Human approval gate: the two externally triggered lifecycle transitions.

1. ``request_notification``: generated → pending_approval, then email the
   user approve/reject links. A missing or failing mailer does not block the
   transition; the request can still be decided through the links.
2. ``record_decision``: pending_approval → approved | rejected, driven by the
   email link. Replays are safe: only a request that is still exactly
   pending_approval (and not past expires_at) can be decided, so a second
   click fails cleanly and changes nothing.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from urllib.parse import urlencode

from contentforge.agents.lifecycle import TransitionEngine
from contentforge.core.logging import get_logger
from contentforge.models.models import RequestStatus
from contentforge.schemas.schemas import ContentRequest, DecisionAction
from contentforge.services.email_service import EmailService

logger = get_logger(__name__)

DECISION_PATH = "/api/v1/approvals/decide"

_DECISION_TARGETS: dict[str, RequestStatus] = {
    "approve": RequestStatus.APPROVED,
    "reject": RequestStatus.REJECTED,
}


class ApprovalGate:
    def __init__(self, engine: TransitionEngine, mailer: EmailService, base_url: str) -> None:
        self._engine = engine
        self._mailer = mailer
        self._base_url = base_url.rstrip("/")

    def decision_url(self, request_id: str, action: DecisionAction) -> str:
        return f"{self._base_url}{DECISION_PATH}?{urlencode({'id': request_id, 'action': action})}"

    async def request_notification(self, request_id: str) -> ContentRequest:
        record = await self._engine.apply_transition(
            request_id,
            {RequestStatus.GENERATED},
            RequestStatus.PENDING_APPROVAL,
            message="Approval email sent. Waiting for a decision.",
            reject_if_expired=True,
        )

        if not self._mailer.is_configured:
            logger.warning(
                "approval_email_skipped",
                request_id=request_id,
                reason="SMTP not configured",
            )
            return record

        try:
            await asyncio.to_thread(
                self._mailer.send_approval_request,
                record,
                self.decision_url(request_id, "approve"),
                self.decision_url(request_id, "reject"),
            )
        except Exception as e:
            logger.error("approval_email_failed", request_id=request_id, error=str(e))
        return record

    async def record_decision(self, request_id: str, action: DecisionAction) -> ContentRequest:
        """
        Record a human decision.

        Raises NotFoundError (unknown id), GoneError (past expires_at, even if the
        sweep has not run yet) or InvalidTransitionError (already decided / expired).
        """

        def _stamp(record: ContentRequest, now: datetime) -> ContentRequest:
            return record.model_copy(update={"decided_at": now})

        record = await self._engine.apply_transition(
            request_id,
            {RequestStatus.PENDING_APPROVAL},
            _DECISION_TARGETS[action],
            _stamp,
            reject_if_expired=True,
        )
        logger.info("approval_decision", request_id=request_id, action=action)
        return record
