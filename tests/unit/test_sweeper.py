"""Unit tests for the periodic expiry sweep."""

from __future__ import annotations

from datetime import timedelta

import pytest

from contentforge.core.errors import GoneError, InvalidTransitionError
from contentforge.models.models import RequestStatus

SOURCE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
USER_EMAIL = "creator@example.com"


class TestExpirySweep:
    async def test_empty_index(self, services):
        report = await services.sweeper.sweep()
        assert (report.scanned, report.expired, report.pruned) == (0, 0, 0)

    async def test_fresh_requests_are_kept(self, services, pending):
        report = await services.sweeper.sweep()

        assert report.expired == 0
        assert pending.request_id in await services.index.ids()
        record = await services.engine.get(pending.request_id)
        assert record.status is RequestStatus.PENDING_APPROVAL

    async def test_stale_pending_request_expires(self, services, clock, pending):
        clock.advance(timedelta(hours=25))

        report = await services.sweeper.sweep()

        record = await services.engine.get(pending.request_id)
        assert record.status is RequestStatus.EXPIRED
        assert record.expired_at == clock()
        assert report.expired == 1
        assert pending.request_id not in await services.index.ids()

    async def test_late_decision_after_sweep_fails(self, services, clock, pending):
        clock.advance(timedelta(hours=25))
        await services.sweeper.sweep()

        with pytest.raises((GoneError, InvalidTransitionError)):
            await services.approvals.record_decision(pending.request_id, "approve")

        record = await services.engine.get(pending.request_id)
        assert record.status is RequestStatus.EXPIRED
        assert record.decided_at is None

    async def test_published_request_is_never_expired(self, services, clock, pending):
        request_id = pending.request_id
        await services.approvals.record_decision(request_id, "approve")
        await services.publisher.trigger_publish(request_id)
        await services.publisher.execute_publish(request_id)
        clock.advance(timedelta(days=3))

        report = await services.sweeper.sweep()

        record = await services.engine.get(request_id)
        assert record.status is RequestStatus.PUBLISHED
        assert record.expired_at is None
        assert report.expired == 0
        assert request_id not in await services.index.ids()

    async def test_publishing_request_is_left_to_finish(self, services, clock, pending):
        request_id = pending.request_id
        await services.approvals.record_decision(request_id, "approve")
        await services.publisher.trigger_publish(request_id)
        clock.advance(timedelta(hours=25))

        report = await services.sweeper.sweep()

        record = await services.engine.get(request_id)
        assert record.status is RequestStatus.PUBLISHING
        assert record.expired_at is None
        assert report.expired == 0
        assert request_id in await services.index.ids()

        await services.publisher.execute_publish(request_id)
        report = await services.sweeper.sweep()

        assert (await services.engine.get(request_id)).status is RequestStatus.PUBLISHED
        assert report.pruned == 1
        assert request_id not in await services.index.ids()

    async def test_rejected_request_is_pruned_not_expired(self, services, clock, pending):
        await services.approvals.record_decision(pending.request_id, "reject")
        clock.advance(timedelta(days=2))

        report = await services.sweeper.sweep()

        record = await services.engine.get(pending.request_id)
        assert record.status is RequestStatus.REJECTED
        assert report.pruned == 1

    async def test_requests_without_expiry_are_left_alone(self, services, clock):
        created = await services.engine.create(SOURCE_URL, USER_EMAIL)
        clock.advance(timedelta(days=2))

        await services.sweeper.sweep()

        record = await services.engine.get(created.request_id)
        assert record.status is RequestStatus.QUEUED
        assert created.request_id in await services.index.ids()

    async def test_absent_ids_are_pruned(self, services):
        await services.index.add("ghost")

        report = await services.sweeper.sweep()

        assert report.pruned == 1
        assert await services.index.ids() == []

    async def test_sweep_is_repeatable(self, services, clock, pending):
        clock.advance(timedelta(hours=25))
        await services.sweeper.sweep()

        report = await services.sweeper.sweep()

        assert report.scanned == 0
        assert report.expired == 0
