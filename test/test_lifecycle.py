"""
Tests for call lifecycle transitions.
"""

from datetime import datetime, timedelta, timezone

import pytest

from calorie_coach.calls.lifecycle import CallLifecycle
from calorie_coach.calls.models import CallStatus
from calorie_coach.calls.repository import SqlAlchemyCallRecordStore
from calorie_coach.shared.exceptions import (
    CallLogNotFoundError,
    InvalidStatusTransitionError,
    RetryBudgetExhaustedError,
)

NOW = datetime(2026, 3, 14, 19, 0, tzinfo=timezone.utc)


def _naive(value: datetime | None) -> datetime | None:
    # SQLite hands datetimes back without tzinfo
    return value.replace(tzinfo=None) if value is not None else None


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def lifecycle(store: SqlAlchemyCallRecordStore, clock: FakeClock) -> CallLifecycle:
    return CallLifecycle(store, clock=clock)


class TestStart:
    """Tests for CallLifecycle.start."""

    @pytest.mark.asyncio
    async def test_start_scheduled_call(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
    ) -> None:
        call_log = await store.get_call_log("abc123")
        user = await store.get_user("u1")

        started = await lifecycle.start(call_log, user)

        assert started.status == CallStatus.IN_PROGRESS
        assert _naive(started.started_at) == _naive(NOW)
        assert started.ended_at is None

    @pytest.mark.asyncio
    async def test_start_is_noop_when_in_progress(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
        clock: FakeClock,
    ) -> None:
        user = await store.get_user("u1")
        first = await lifecycle.start(await store.get_call_log("abc123"), user)
        clock.advance(60)

        second = await lifecycle.start(first, user)

        assert second.status == CallStatus.IN_PROGRESS
        assert _naive(second.started_at) == _naive(NOW)

    @pytest.mark.asyncio
    async def test_retry_after_failure_keeps_first_start(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
        clock: FakeClock,
    ) -> None:
        user = await store.get_user("u1")
        await lifecycle.start(await store.get_call_log("abc123"), user)
        clock.advance(30)
        failed = await lifecycle.fail("abc123", "Agent hung up")
        assert failed is not None and failed.ended_at is not None
        clock.advance(300)

        retried = await lifecycle.start(failed, user)

        assert retried.status == CallStatus.IN_PROGRESS
        assert _naive(retried.started_at) == _naive(NOW)
        assert retried.ended_at is None
        assert retried.retries == 1

    @pytest.mark.asyncio
    async def test_start_with_exhausted_budget(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
    ) -> None:
        await store.update_call_log("def456", {"status": CallStatus.FAILED, "retries": 2})
        bob = await store.get_user("u2")

        with pytest.raises(RetryBudgetExhaustedError):
            await lifecycle.start(await store.get_call_log("def456"), bob)

    @pytest.mark.asyncio
    async def test_start_completed_call(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
    ) -> None:
        await store.update_call_log("abc123", {"status": CallStatus.COMPLETED})
        user = await store.get_user("u1")

        with pytest.raises(InvalidStatusTransitionError):
            await lifecycle.start(await store.get_call_log("abc123"), user)

    @pytest.mark.asyncio
    async def test_start_reloads_after_concurrent_change(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
    ) -> None:
        user = await store.get_user("u1")
        stale = await store.get_call_log("abc123")
        # Another request moved the call on; our copy still says scheduled
        await store.update_call_log("abc123", {"status": CallStatus.COMPLETED})
        stale.status = CallStatus.SCHEDULED

        with pytest.raises(InvalidStatusTransitionError):
            await lifecycle.start(stale, user)


class TestComplete:
    """Tests for CallLifecycle.complete."""

    @pytest.mark.asyncio
    async def test_complete_in_progress_call(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
    ) -> None:
        await lifecycle.start(await store.get_call_log("abc123"), await store.get_user("u1"))

        completed = await lifecycle.complete("abc123", "conv_1")

        assert completed.status == CallStatus.COMPLETED
        assert completed.transcript_id == "conv_1"
        assert _naive(completed.ended_at) == _naive(NOW)

    @pytest.mark.asyncio
    async def test_complete_is_idempotent(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
    ) -> None:
        await lifecycle.start(await store.get_call_log("abc123"), await store.get_user("u1"))
        await lifecycle.complete("abc123", "conv_1")

        again = await lifecycle.complete("abc123", "conv_2")

        assert again.status == CallStatus.COMPLETED
        assert again.transcript_id == "conv_1"

    @pytest.mark.asyncio
    async def test_late_transcript_completes_failed_call(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
    ) -> None:
        await lifecycle.start(await store.get_call_log("abc123"), await store.get_user("u1"))
        await lifecycle.fail("abc123", "Transcript forward failed")

        completed = await lifecycle.complete("abc123", "conv_1")

        assert completed.status == CallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_complete_scheduled_call_rejected(self, lifecycle: CallLifecycle) -> None:
        with pytest.raises(InvalidStatusTransitionError):
            await lifecycle.complete("abc123", "conv_1")

    @pytest.mark.asyncio
    async def test_complete_unknown_call(self, lifecycle: CallLifecycle) -> None:
        with pytest.raises(CallLogNotFoundError):
            await lifecycle.complete("missing", None)


class TestFail:
    """Tests for CallLifecycle.fail."""

    @pytest.mark.asyncio
    async def test_fail_records_error_and_counts_retry(self, lifecycle: CallLifecycle) -> None:
        failed = await lifecycle.fail("abc123", "Invalid PIN")

        assert failed is not None
        assert failed.status == CallStatus.FAILED
        assert failed.error_message == "Invalid PIN"
        assert failed.retries == 1
        assert _naive(failed.ended_at) == _naive(NOW)

    @pytest.mark.asyncio
    async def test_retries_clamped_to_owner_budget(self, lifecycle: CallLifecycle) -> None:
        for _ in range(5):
            failed = await lifecycle.fail("def456", "Invalid PIN")

        assert failed is not None
        assert failed.retries == 2

    @pytest.mark.asyncio
    async def test_fail_never_regresses_completed_call(
        self,
        lifecycle: CallLifecycle,
        store: SqlAlchemyCallRecordStore,
    ) -> None:
        await store.update_call_log("abc123", {"status": CallStatus.COMPLETED})

        result = await lifecycle.fail("abc123", "late error")

        assert result is not None
        assert result.status == CallStatus.COMPLETED
        assert result.error_message is None

    @pytest.mark.asyncio
    async def test_fail_unknown_call(self, lifecycle: CallLifecycle) -> None:
        assert await lifecycle.fail("missing", "boom") is None

    @pytest.mark.asyncio
    async def test_error_message_truncated(self, lifecycle: CallLifecycle) -> None:
        failed = await lifecycle.fail("abc123", "x" * 5000)

        assert failed is not None
        assert len(failed.error_message) == 1000
