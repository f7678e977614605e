"""
Request lifecycle state machine.

Every status change goes through ``TransitionEngine.apply_transition``:
read the record, check the expected source states and the edge table, apply
the mutator, then compare-and-set against the version that was read. There
is no lock; when two writers race on one request, the second finds its
precondition gone and fails with InvalidTransitionError instead of
overwriting.

    queued → transcribing → generating → generated → pending_approval
      → approved → publishing → published
      → rejected
    queued | transcribing | generating → error
    any non-terminal state except publishing → expired (sweep only)
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Collection
from datetime import UTC, datetime

from contentforge.core.errors import (
    FatalError,
    GoneError,
    InvalidTransitionError,
    NotFoundError,
)
from contentforge.core.logging import get_logger
from contentforge.models.models import RequestStatus
from contentforge.schemas.schemas import ContentRequest
from contentforge.services.state_store import CONTENT_NAMESPACE, RequestIndex, StateStore
from contentforge.services.status_notifier import StatusNotifier

logger = get_logger(__name__)

S = RequestStatus

TERMINAL_STATES: frozenset[RequestStatus] = frozenset(
    {S.PUBLISHED, S.REJECTED, S.EXPIRED, S.ERROR}
)
PIPELINE_STATES: frozenset[RequestStatus] = frozenset({S.QUEUED, S.TRANSCRIBING, S.GENERATING})

ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    S.QUEUED: frozenset({S.TRANSCRIBING, S.ERROR, S.EXPIRED}),
    S.TRANSCRIBING: frozenset({S.GENERATING, S.ERROR, S.EXPIRED}),
    S.GENERATING: frozenset({S.GENERATED, S.ERROR, S.EXPIRED}),
    S.GENERATED: frozenset({S.PENDING_APPROVAL, S.EXPIRED}),
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.REJECTED, S.EXPIRED}),
    S.APPROVED: frozenset({S.PUBLISHING, S.EXPIRED}),
    S.PUBLISHING: frozenset({S.PUBLISHED}),
    S.PUBLISHED: frozenset(),
    S.REJECTED: frozenset(),
    S.EXPIRED: frozenset(),
    S.ERROR: frozenset(),
}

# Once publishing starts it runs to published; the sweep leaves it alone
EXPIRABLE_STATES: frozenset[RequestStatus] = frozenset(
    s for s, targets in ALLOWED_TRANSITIONS.items() if S.EXPIRED in targets
)

STATUS_MESSAGES: dict[RequestStatus, str] = {
    S.QUEUED: "Request queued.",
    S.TRANSCRIBING: "Fetching transcript...",
    S.GENERATING: "Generating content...",
    S.GENERATED: "Content generated.",
    S.PENDING_APPROVAL: "Waiting for approval.",
    S.APPROVED: "Decision recorded: approved",
    S.REJECTED: "Decision recorded: rejected",
    S.PUBLISHING: "Publishing...",
    S.PUBLISHED: "Published successfully.",
    S.EXPIRED: "Request expired (24h). Please generate again.",
    S.ERROR: "Generation failed.",
}

# Fields that may go from None to a value once and then never change
WRITE_ONCE_FIELDS = (
    "request_id",
    "user_email",
    "source_url",
    "created_at",
    "transcript",
    "title",
    "author",
    "blog_post",
    "short_post",
    "professional_post",
    "handles",
    "results",
    "expires_at",
    "decided_at",
    "published_at",
    "expired_at",
    "error",
)

Mutator = Callable[[ContentRequest, datetime], ContentRequest]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def _check_write_once(before: ContentRequest, after: ContentRequest) -> None:
    for name in WRITE_ONCE_FIELDS:
        old = getattr(before, name)
        if old is not None and getattr(after, name) != old:
            raise FatalError(f"Field {name!r} of request {before.request_id} is write-once")


class TransitionEngine:
    def __init__(
        self,
        store: StateStore,
        notifier: StatusNotifier,
        index: RequestIndex,
        *,
        clock: Clock = utcnow,
        max_attempts: int = 3,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._index = index
        self._clock = clock
        self._max_attempts = max_attempts

    def now(self) -> datetime:
        return self._clock()

    async def get(self, request_id: str) -> ContentRequest:
        entry = await self._store.get(CONTENT_NAMESPACE, request_id)
        if entry is None:
            raise NotFoundError(f"Request {request_id} not found")
        return ContentRequest.model_validate(entry.value)

    async def create(self, source_url: str, user_email: str) -> ContentRequest:
        """Write a new ``queued`` record and register it in the request index."""
        record = ContentRequest(
            request_id=str(uuid.uuid4()),
            user_email=user_email,
            source_url=source_url,
            status=S.QUEUED,
            created_at=self._clock(),
        )
        written = await self._store.compare_and_set(
            CONTENT_NAMESPACE, record.request_id, record.model_dump(mode="json"), None
        )
        if written is None:
            raise InvalidTransitionError(
                f"Request {record.request_id} already exists", target=S.QUEUED.value
            )

        try:
            await self._index.add(record.request_id)
        except Exception as e:
            # An unindexed request would never be swept; close it out before surfacing the error
            logger.error("request_index_append_failed", request_id=record.request_id, error=str(e))
            await self.fail(record.request_id, f"Could not register request: {e}")
            raise

        logger.info("request_created", request_id=record.request_id, source_url=source_url)
        await self._notifier.push(record.request_id, S.QUEUED.value, STATUS_MESSAGES[S.QUEUED])
        return record

    async def apply_transition(
        self,
        request_id: str,
        expected: Collection[RequestStatus],
        next_status: RequestStatus,
        mutator: Mutator | None = None,
        *,
        message: str | None = None,
        reject_if_expired: bool = False,
    ) -> ContentRequest:
        """
        Move ``request_id`` to ``next_status`` if its current status is in ``expected``.

        Raises:
            NotFoundError: no record for the id.
            GoneError: ``reject_if_expired`` and ``expires_at`` has elapsed.
            InvalidTransitionError: current status not expected, the edge is not
                legal, or a concurrent writer changed the record first.
            FatalError: the mutator broke a write-once field.

        The stored record is untouched whenever an error is raised.
        """
        for _ in range(self._max_attempts):
            entry = await self._store.get(CONTENT_NAMESPACE, request_id)
            if entry is None:
                raise NotFoundError(f"Request {request_id} not found")

            current = ContentRequest.model_validate(entry.value)
            now = self._clock()

            if reject_if_expired and current.is_expired(now):
                raise GoneError(f"Request {request_id} expired at {current.expires_at.isoformat()}")

            if current.status not in expected or not can_transition(current.status, next_status):
                raise InvalidTransitionError(
                    f"Cannot move request {request_id} from {current.status.value} "
                    f"to {next_status.value}",
                    current=current.status.value,
                    target=next_status.value,
                )

            updated = mutator(current, now) if mutator else current
            updated = updated.model_copy(update={"status": next_status})
            _check_write_once(current, updated)

            written = await self._store.compare_and_set(
                CONTENT_NAMESPACE, request_id, updated.model_dump(mode="json"), entry.version
            )
            if written is None:
                logger.info(
                    "transition_write_conflict",
                    request_id=request_id,
                    target=next_status.value,
                    read_version=entry.version,
                )
                continue

            logger.info(
                "status_transition",
                request_id=request_id,
                source=current.status.value,
                target=next_status.value,
            )
            await self._notifier.push(
                request_id, next_status.value, message or STATUS_MESSAGES[next_status]
            )
            return updated

        raise InvalidTransitionError(
            f"Request {request_id} kept changing underneath the {next_status.value} transition",
            target=next_status.value,
        )

    async def fail(self, request_id: str, error: str) -> ContentRequest | None:
        """Commit ``error`` from any pipeline state; a no-op if the request has moved on."""

        def _record_error(record: ContentRequest, now: datetime) -> ContentRequest:
            return record.model_copy(update={"error": error[:2000]})

        try:
            return await self.apply_transition(
                request_id,
                PIPELINE_STATES,
                S.ERROR,
                _record_error,
                message=f"Generation failed: {error[:200]}",
            )
        except (NotFoundError, InvalidTransitionError) as e:
            logger.warning("record_failure_skipped", request_id=request_id, reason=str(e))
            return None
