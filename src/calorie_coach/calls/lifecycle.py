"""
Call lifecycle transitions.

    scheduled -> in_progress -> {completed, failed}

Each transition is written as a compare-and-set on the stored status, so two
webhook requests racing on the same call log (a Twilio retry, a resent agent
event) cannot interleave into an inconsistent record.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from calorie_coach.calls.models import ALLOWED_TRANSITIONS, CallLog, CallStatus, can_transition
from calorie_coach.calls.repository import CallRecordStore
from calorie_coach.shared.exceptions import (
    CallLogNotFoundError,
    InvalidStatusTransitionError,
    RetryBudgetExhaustedError,
)
from calorie_coach.shared.logging import get_logger
from calorie_coach.users.models import User

logger = get_logger(__name__)

_MAX_CAS_ATTEMPTS = 3
_ERROR_MESSAGE_LIMIT = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallLifecycle:
    """Explicit, atomic call log status transitions."""

    def __init__(
        self,
        store: CallRecordStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    async def start(self, call_log: CallLog, user: User) -> CallLog:
        """Mark a call as in progress at handoff time.

        ``started_at`` is set on the first handoff only; a retry after a
        failure clears ``ended_at`` again.

        Raises:
            RetryBudgetExhaustedError: The failed call has no retries left.
            InvalidStatusTransitionError: The call is already completed.
            CallLogNotFoundError: The call log vanished.
        """
        current: CallLog | None = call_log
        for _ in range(_MAX_CAS_ATTEMPTS):
            if current is None:
                raise CallLogNotFoundError(call_log.id)
            if current.status == CallStatus.IN_PROGRESS:
                return current
            self._ensure_transition(current, CallStatus.IN_PROGRESS)
            if current.retries_exhausted(user.max_retries):
                raise RetryBudgetExhaustedError(current.id, current.retries, user.max_retries)

            patch: dict[str, Any] = {"status": CallStatus.IN_PROGRESS, "ended_at": None}
            if current.started_at is None:
                patch["started_at"] = self._clock()

            updated = await self._store.update_call_log(
                current.id, patch, expected_status=current.status
            )
            if updated is not None:
                logger.info(
                    "Call log started",
                    extra={
                        "call_log_id": updated.id,
                        "previous_status": current.status.value,
                        "retries": updated.retries,
                    },
                )
                return updated
            current = await self._store.get_call_log(call_log.id)

        raise CallLogNotFoundError(call_log.id)

    async def complete(self, call_log_id: str, transcript_id: str | None) -> CallLog:
        """Mark a call as completed once its transcript was handed off.

        Completing an already completed call is a no-op.

        Raises:
            CallLogNotFoundError: Unknown call log.
            InvalidStatusTransitionError: The call never started.
        """
        for _ in range(_MAX_CAS_ATTEMPTS):
            current = await self._store.get_call_log(call_log_id)
            if current is None:
                raise CallLogNotFoundError(call_log_id)
            if current.status == CallStatus.COMPLETED:
                return current
            self._ensure_transition(current, CallStatus.COMPLETED)

            updated = await self._store.update_call_log(
                call_log_id,
                {
                    "status": CallStatus.COMPLETED,
                    "ended_at": self._clock(),
                    "transcript_id": transcript_id,
                },
                expected_status=current.status,
            )
            if updated is not None:
                logger.info(
                    "Call log completed",
                    extra={"call_log_id": call_log_id, "transcript_id": transcript_id},
                )
                return updated

        raise CallLogNotFoundError(call_log_id)

    async def fail(self, call_log_id: str, error_message: str) -> CallLog | None:
        """Mark a call as failed and count the attempt against its retries.

        ``retries`` is clamped to the owner's ``max_retries``. A completed call
        is left untouched.

        Returns:
            The updated call log, or None if it does not exist.
        """
        for _ in range(_MAX_CAS_ATTEMPTS):
            current = await self._store.get_call_log(call_log_id)
            if current is None:
                logger.warning(
                    "Cannot mark unknown call log as failed",
                    extra={"call_log_id": call_log_id, "error_message": error_message},
                )
                return None
            if current.status == CallStatus.COMPLETED:
                logger.info(
                    "Call log already completed; failure not recorded",
                    extra={"call_log_id": call_log_id, "error_message": error_message},
                )
                return current

            owner = await self._store.get_user(current.user_id)
            retries = current.retries + 1
            if owner is not None:
                retries = max(current.retries, min(retries, owner.max_retries))

            updated = await self._store.update_call_log(
                call_log_id,
                {
                    "status": CallStatus.FAILED,
                    "ended_at": self._clock(),
                    "error_message": error_message[:_ERROR_MESSAGE_LIMIT],
                    "retries": retries,
                },
                expected_status=current.status,
            )
            if updated is not None:
                logger.info(
                    "Call log failed",
                    extra={
                        "call_log_id": call_log_id,
                        "error_message": error_message,
                        "retries": updated.retries,
                    },
                )
                return updated

        logger.warning(
            "Call log changed concurrently; failure not recorded",
            extra={"call_log_id": call_log_id},
        )
        return None

    @staticmethod
    def _ensure_transition(call_log: CallLog, target: CallStatus) -> None:
        if not can_transition(call_log.status, target):
            raise InvalidStatusTransitionError(
                current_status=call_log.status,
                target_status=target,
                valid_transitions=set(ALLOWED_TRANSITIONS[call_log.status]),
            )
