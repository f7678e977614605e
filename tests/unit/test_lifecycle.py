"""Unit tests for the lifecycle state machine and its compare-and-set discipline."""

from __future__ import annotations

import asyncio

import pytest

from contentforge.agents.lifecycle import (
    ALLOWED_TRANSITIONS,
    EXPIRABLE_STATES,
    TERMINAL_STATES,
    can_transition,
)
from contentforge.core.errors import FatalError, InvalidTransitionError, NotFoundError
from contentforge.models.models import RequestStatus
from contentforge.services.state_store import CONTENT_NAMESPACE, INDEX_KEY, INDEX_NAMESPACE

SOURCE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
USER_EMAIL = "creator@example.com"


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(RequestStatus)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_STATES:
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_happy_path_edges_are_legal(self):
        path = [
            RequestStatus.QUEUED,
            RequestStatus.TRANSCRIBING,
            RequestStatus.GENERATING,
            RequestStatus.GENERATED,
            RequestStatus.PENDING_APPROVAL,
            RequestStatus.APPROVED,
            RequestStatus.PUBLISHING,
            RequestStatus.PUBLISHED,
        ]
        for current, target in zip(path, path[1:]):
            assert can_transition(current, target)

    def test_approval_cannot_be_skipped(self):
        assert not can_transition(RequestStatus.GENERATED, RequestStatus.APPROVED)
        assert not can_transition(RequestStatus.PENDING_APPROVAL, RequestStatus.PUBLISHING)

    def test_only_pipeline_states_can_error(self):
        sources = {s for s, targets in ALLOWED_TRANSITIONS.items() if RequestStatus.ERROR in targets}
        assert sources == {
            RequestStatus.QUEUED,
            RequestStatus.TRANSCRIBING,
            RequestStatus.GENERATING,
        }

    def test_publishing_cannot_expire(self):
        assert not can_transition(RequestStatus.PUBLISHING, RequestStatus.EXPIRED)
        assert RequestStatus.PUBLISHING not in EXPIRABLE_STATES
        assert EXPIRABLE_STATES.isdisjoint(TERMINAL_STATES)


class TestCreate:
    async def test_create_writes_queued_record(self, services, clock):
        record = await services.engine.create(SOURCE_URL, USER_EMAIL)

        stored = await services.engine.get(record.request_id)
        assert stored.status is RequestStatus.QUEUED
        assert stored.created_at == clock()
        assert stored.user_email == USER_EMAIL

    async def test_create_registers_id_in_index(self, services):
        record = await services.engine.create(SOURCE_URL, USER_EMAIL)
        assert record.request_id in await services.index.ids()

    async def test_create_pushes_status_event(self, services):
        record = await services.engine.create(SOURCE_URL, USER_EMAIL)
        event = await services.notifier.latest(record.request_id)
        assert event is not None
        assert event.stage == "queued"

    async def test_request_ids_are_unique(self, services):
        a = await services.engine.create(SOURCE_URL, USER_EMAIL)
        b = await services.engine.create(SOURCE_URL, USER_EMAIL)
        assert a.request_id != b.request_id

    async def test_index_failure_surfaces_and_closes_the_record(self, services, monkeypatch):
        attempted: list[str] = []

        async def _unavailable(request_id):
            attempted.append(request_id)
            raise ConnectionError("index unavailable")

        monkeypatch.setattr(services.index, "add", _unavailable)

        with pytest.raises(ConnectionError):
            await services.engine.create(SOURCE_URL, USER_EMAIL)

        record = await services.engine.get(attempted[0])
        assert record.status is RequestStatus.ERROR
        assert "index unavailable" in record.error


class TestApplyTransition:
    async def test_unknown_request_raises_not_found(self, services):
        with pytest.raises(NotFoundError):
            await services.engine.apply_transition(
                "missing", {RequestStatus.QUEUED}, RequestStatus.TRANSCRIBING
            )

    async def test_illegal_edge_leaves_record_untouched(self, services, store):
        record = await services.engine.create(SOURCE_URL, USER_EMAIL)
        before = await store.get(CONTENT_NAMESPACE, record.request_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await services.engine.apply_transition(
                record.request_id, {RequestStatus.QUEUED}, RequestStatus.PUBLISHED
            )

        after = await store.get(CONTENT_NAMESPACE, record.request_id)
        assert after == before
        assert exc_info.value.current == "queued"
        assert exc_info.value.target == "published"

    async def test_unexpected_source_state_is_rejected(self, services):
        record = await services.engine.create(SOURCE_URL, USER_EMAIL)
        with pytest.raises(InvalidTransitionError):
            await services.engine.apply_transition(
                record.request_id, {RequestStatus.GENERATING}, RequestStatus.GENERATED
            )

    async def test_write_once_violation_is_fatal(self, services, store):
        record = await services.engine.create(SOURCE_URL, USER_EMAIL)
        before = await store.get(CONTENT_NAMESPACE, record.request_id)

        def _rewrite_email(r, now):
            return r.model_copy(update={"user_email": "someone-else@example.com"})

        with pytest.raises(FatalError):
            await services.engine.apply_transition(
                record.request_id,
                {RequestStatus.QUEUED},
                RequestStatus.TRANSCRIBING,
                _rewrite_email,
            )
        assert await store.get(CONTENT_NAMESPACE, record.request_id) == before

    async def test_mutator_exception_leaves_record_untouched(self, services, store):
        record = await services.engine.create(SOURCE_URL, USER_EMAIL)
        before = await store.get(CONTENT_NAMESPACE, record.request_id)

        def _boom(r, now):
            raise RuntimeError("mutator failed")

        with pytest.raises(RuntimeError):
            await services.engine.apply_transition(
                record.request_id, {RequestStatus.QUEUED}, RequestStatus.TRANSCRIBING, _boom
            )
        assert await store.get(CONTENT_NAMESPACE, record.request_id) == before

    async def test_lost_race_raises_invalid_transition(self, services, store, pending):
        request_id = pending.request_id

        async def _reject_first():
            await services.approvals.record_decision(request_id, "reject")

        store.before_cas = _reject_first

        with pytest.raises(InvalidTransitionError):
            await services.approvals.record_decision(request_id, "approve")

        final = await services.engine.get(request_id)
        assert final.status is RequestStatus.REJECTED

    async def test_concurrent_writers_only_one_wins(self, services, store, pending):
        store.yield_between_calls = True

        results = await asyncio.gather(
            services.engine.apply_transition(
                pending.request_id, {RequestStatus.PENDING_APPROVAL}, RequestStatus.APPROVED
            ),
            services.engine.apply_transition(
                pending.request_id, {RequestStatus.PENDING_APPROVAL}, RequestStatus.REJECTED
            ),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, InvalidTransitionError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert store.conflicts == 1
        final = await services.engine.get(pending.request_id)
        assert final.status is winners[0].status


class TestFail:
    async def test_fail_from_pipeline_state_records_error(self, services):
        record = await services.engine.create(SOURCE_URL, USER_EMAIL)

        failed = await services.engine.fail(record.request_id, "transcript service down")

        assert failed is not None
        assert failed.status is RequestStatus.ERROR
        assert failed.error == "transcript service down"

    async def test_fail_after_generation_is_a_noop(self, services, generated):
        assert await services.engine.fail(generated.request_id, "late failure") is None
        record = await services.engine.get(generated.request_id)
        assert record.status is RequestStatus.GENERATED
        assert record.error is None

    async def test_fail_on_unknown_request_is_a_noop(self, services):
        assert await services.engine.fail("missing", "boom") is None


class TestRequestIndex:
    async def test_add_is_idempotent(self, services, store):
        await services.index.add("abc")
        await services.index.add("abc")
        entry = await store.get(INDEX_NAMESPACE, INDEX_KEY)
        assert entry.value == ["abc"]

    async def test_remove_returns_count(self, services):
        for request_id in ("a", "b", "c"):
            await services.index.add(request_id)
        assert await services.index.remove({"a", "c", "zzz"}) == 2
        assert await services.index.ids() == ["b"]
