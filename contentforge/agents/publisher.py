"""
Publish driver: simulated publishing to Dev.to, X and LinkedIn.

``trigger_publish`` stores the caller's handles and moves approved → publishing;
``execute_publish`` derives one mock result per platform and commits all three
with the publishing → published transition in a single write. If anything
fails before that write, the record is left exactly as it was.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime

from contentforge.agents.lifecycle import TransitionEngine
from contentforge.core.errors import FatalError
from contentforge.core.logging import get_logger
from contentforge.models.models import RequestStatus
from contentforge.schemas.schemas import (
    ARTIFACT_FIELDS,
    ContentRequest,
    PlatformResult,
    PublishHandles,
)
from contentforge.services.email_service import EmailService

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class PlatformTarget:
    result_key: str
    handle_field: str
    name: str
    url_template: str


PLATFORMS: tuple[PlatformTarget, ...] = (
    PlatformTarget("blog", "devto", "Dev.to", "https://dev.to/{handle}/article-{request_id}"),
    PlatformTarget("tweet", "x", "X", "https://x.com/{handle}/status/{request_id}"),
    PlatformTarget("linkedin", "linkedin", "LinkedIn", "https://linkedin.com/in/{handle}"),
)


def normalize_handle(raw: str | None, default: str) -> str:
    """'  @some name ' → 'somename'; blank → default."""
    cleaned = _WHITESPACE.sub("", (raw or "").strip().removeprefix("@"))
    return cleaned or default


def build_results(
    record: ContentRequest, handles: PublishHandles | None, default_handle: str, now: datetime
) -> dict[str, PlatformResult]:
    handles = handles or PublishHandles()
    results: dict[str, PlatformResult] = {}
    for target in PLATFORMS:
        handle = normalize_handle(getattr(handles, target.handle_field), default_handle)
        results[target.result_key] = PlatformResult(
            platform=target.name,
            handle=handle,
            url=target.url_template.format(handle=handle, request_id=record.request_id),
            published=True,
            published_at=now,
        )
    return results


class PublishDriver:
    def __init__(
        self, engine: TransitionEngine, mailer: EmailService, default_handle: str
    ) -> None:
        self._engine = engine
        self._mailer = mailer
        self._default_handle = default_handle

    async def trigger_publish(
        self, request_id: str, handles: PublishHandles | None = None
    ) -> ContentRequest:
        def _store_handles(record: ContentRequest, now: datetime) -> ContentRequest:
            return record.model_copy(update={"handles": handles or PublishHandles()})

        return await self._engine.apply_transition(
            request_id,
            {RequestStatus.APPROVED},
            RequestStatus.PUBLISHING,
            _store_handles,
            reject_if_expired=True,
        )

    async def execute_publish(self, request_id: str) -> ContentRequest:
        def _publish(record: ContentRequest, now: datetime) -> ContentRequest:
            if not record.has_artifacts:
                missing = [name for name in ARTIFACT_FIELDS if not getattr(record, name)]
                raise FatalError(
                    f"Request {request_id} reached publishing without {', '.join(missing)}"
                )
            return record.model_copy(
                update={
                    "results": build_results(record, record.handles, self._default_handle, now),
                    "published_at": now,
                }
            )

        published = await self._engine.apply_transition(
            request_id,
            {RequestStatus.PUBLISHING},
            RequestStatus.PUBLISHED,
            _publish,
        )
        logger.info(
            "content_published",
            request_id=request_id,
            urls=[r.url for r in (published.results or {}).values()],
        )

        if self._mailer.is_configured:
            try:
                await asyncio.to_thread(self._mailer.send_publish_summary, published)
            except Exception as e:
                logger.error("publish_email_failed", request_id=request_id, error=str(e))
        else:
            logger.warning("publish_email_skipped", request_id=request_id, reason="SMTP not configured")

        return published
