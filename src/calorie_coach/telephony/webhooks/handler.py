"""
Call-flow webhook handlers.

Twilio hits two independent endpoints for one call: the inbound voice
webhook, then (for unrecognised numbers) the PIN submission. Nothing is kept
in process memory between them; continuity is the ``call_log_id`` query
parameter plus the call record store.

Both handlers are fail-closed: every path returns TwiML, and any doubt about
identity or correlation ends the call with a spoken message.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from calorie_coach.auth.pin import PinVerifier
from calorie_coach.calls.lifecycle import CallLifecycle
from calorie_coach.calls.models import CallLog, CallStatus
from calorie_coach.calls.repository import CallRecordStore
from calorie_coach.shared.exceptions import (
    CallRejectedError,
    InvalidStatusTransitionError,
    RetryBudgetExhaustedError,
)
from calorie_coach.shared.logging import get_logger
from calorie_coach.telephony import responses as prompts
from calorie_coach.telephony.responses import CallResponseBuilder
from calorie_coach.users.models import User, normalize_phone

logger = get_logger(__name__)


@dataclass(frozen=True)
class InboundCall:
    """Inbound voice webhook input."""

    caller: str
    call_sid: str
    call_log_id: str | None


@dataclass(frozen=True)
class PinSubmission:
    """Digits gathered after a PIN challenge."""

    caller: str
    call_sid: str
    call_log_id: str | None
    digits: str | None


def remote_party(form: Mapping[str, Any]) -> str:
    """Phone number of the person on the other end of the call.

    Calls placed by the scheduler are outbound from Twilio's point of view,
    so the user is ``To``; for calls the user dialled in, it is ``From``.
    """
    direction = str(form.get("Direction") or "").lower()
    key = "To" if direction.startswith("outbound") else "From"
    return normalize_phone(str(form.get(key) or ""))


class CallFlowHandler:
    """Shared admission and handoff steps of the call-flow webhooks."""

    def __init__(
        self,
        store: CallRecordStore,
        responses: CallResponseBuilder,
        lifecycle: CallLifecycle | None = None,
    ) -> None:
        """Initialize handler.

        Args:
            store: Call record store for this request.
            responses: TwiML builder.
            lifecycle: Call lifecycle; defaults to one over ``store``.
        """
        self._store = store
        self._responses = responses
        self._lifecycle = lifecycle or CallLifecycle(store)

    async def _admit(self, call_log_id: str | None) -> tuple[CallLog, User]:
        """Load the call log and its owner, or reject the call.

        Raises:
            CallRejectedError: No usable call log for this call.
        """
        if not call_log_id:
            raise CallRejectedError("missing call_log_id", prompts.CALL_NOT_RECOGNIZED)

        call_log = await self._store.get_call_log(call_log_id)
        if call_log is None:
            raise CallRejectedError("unknown call_log_id", prompts.CALL_NOT_RECOGNIZED)
        if call_log.status == CallStatus.COMPLETED:
            raise CallRejectedError("call already completed", prompts.CALL_ALREADY_COMPLETED)

        owner = await self._store.get_user(call_log.user_id)
        if owner is None:
            raise CallRejectedError("call log owner missing", prompts.CALL_NOT_RECOGNIZED)
        if PinVerifier.attempts_exhausted(call_log, owner):
            raise CallRejectedError("retry budget exhausted", prompts.RETRIES_EXHAUSTED)

        return call_log, owner

    async def _handoff(
        self,
        user: User,
        call_log: CallLog,
        call_sid: str,
        greeting: str | None = None,
    ) -> str:
        """Mark the call in progress, then bridge it to the agent."""
        try:
            await self._lifecycle.start(call_log, user)
        except RetryBudgetExhaustedError:
            return self._responses.terminate(prompts.RETRIES_EXHAUSTED)
        except InvalidStatusTransitionError:
            return self._responses.terminate(prompts.CALL_ALREADY_COMPLETED)

        logger.info(
            "Handing call off to agent",
            extra={"call_log_id": call_log.id, "user_id": user.id, "call_sid": call_sid},
        )
        return self._responses.handoff(user, call_log.id, call_sid, greeting=greeting)

    def _reject(self, exc: CallRejectedError, call_log_id: str | None, call_sid: str) -> str:
        logger.warning(
            "Call rejected",
            extra={"reason": exc.reason, "call_log_id": call_log_id, "call_sid": call_sid},
        )
        return self._responses.terminate(exc.spoken_message)

    async def _record_failure(self, call_log_id: str | None, error_message: str) -> None:
        """Best-effort failure write; never raises into the call flow."""
        if not call_log_id:
            return
        try:
            await self._lifecycle.fail(call_log_id, error_message)
        except Exception:
            logger.exception(
                "Failed to record call failure",
                extra={"call_log_id": call_log_id, "error_message": error_message},
            )


class InboundCallDispatcher(CallFlowHandler):
    """Entry point for a new call: caller-ID handoff or PIN challenge."""

    async def dispatch(self, call: InboundCall) -> str:
        """Return the TwiML for an inbound voice webhook."""
        try:
            call_log, _owner = await self._admit(call.call_log_id)

            user = await self._store.find_user_by_phone(call.caller)
            if user is None:
                logger.info(
                    "Unknown caller; requesting PIN",
                    extra={"call_log_id": call.call_log_id, "call_sid": call.call_sid},
                )
                return self._responses.pin_challenge(call_log.id)

            if user.id != call_log.user_id:
                logger.warning(
                    "Caller does not own call log",
                    extra={
                        "call_log_id": call.call_log_id,
                        "user_id": user.id,
                        "call_sid": call.call_sid,
                    },
                )
                await self._record_failure(call_log.id, "Caller does not own call log")
                return self._responses.apology()

            return await self._handoff(user, call_log, call.call_sid)

        except CallRejectedError as exc:
            return self._reject(exc, call.call_log_id, call.call_sid)
        except Exception:
            logger.exception(
                "Inbound call handling failed",
                extra={"call_log_id": call.call_log_id, "call_sid": call.call_sid},
            )
            await self._record_failure(call.call_log_id, "Inbound call handling error")
            return self._responses.apology()


class PinChallengeHandler(CallFlowHandler):
    """Entry point for the digits collected after a PIN challenge."""

    def __init__(
        self,
        store: CallRecordStore,
        responses: CallResponseBuilder,
        verifier: PinVerifier | None = None,
        lifecycle: CallLifecycle | None = None,
    ) -> None:
        super().__init__(store, responses, lifecycle)
        self._verifier = verifier or PinVerifier(store)

    async def handle(self, submission: PinSubmission) -> str:
        """Return the TwiML for a PIN submission. Single shot: no re-prompt."""
        try:
            call_log, owner = await self._admit(submission.call_log_id)

            # Challenged callers are by construction not registered under their
            # own number, so the PIN is checked against the call owner's number.
            user = await self._verifier.verify(owner.phone, submission.digits)
            if user is None or user.id != call_log.user_id:
                logger.info(
                    "PIN rejected",
                    extra={
                        "call_log_id": submission.call_log_id,
                        "call_sid": submission.call_sid,
                        "caller_is_owner": submission.caller == owner.phone,
                    },
                )
                await self._record_failure(call_log.id, "Invalid PIN")
                return self._responses.terminate(prompts.PIN_INVALID)

            return await self._handoff(
                user,
                call_log,
                submission.call_sid,
                greeting=prompts.PIN_VERIFIED,
            )

        except CallRejectedError as exc:
            return self._reject(exc, submission.call_log_id, submission.call_sid)
        except Exception:
            logger.exception(
                "PIN verification failed",
                extra={"call_log_id": submission.call_log_id, "call_sid": submission.call_sid},
            )
            await self._record_failure(submission.call_log_id, "PIN verification error")
            return self._responses.apology()
