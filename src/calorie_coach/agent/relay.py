"""
Transcript completion relay.

Validates the agent's completion event and forwards the transcript to the
workflow processor. The relay keeps no state of its own beyond the call log
transition; a resent event is forwarded again with an identical body so the
processor can deduplicate on ``call_log_id``.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any

import anyio

from calorie_coach.agent.events import AgentNotification, parse_agent_event
from calorie_coach.agent.workflow import TranscriptSubmission, WorkflowClient
from calorie_coach.calls.lifecycle import CallLifecycle
from calorie_coach.shared.exceptions import AppError, MalformedEventError, TranscriptForwardError
from calorie_coach.shared.logging import get_logger

logger = get_logger(__name__)


class RelayOutcome(str, Enum):
    """What the relay did with an event."""

    ACKNOWLEDGED = "acknowledged"
    FORWARDED = "forwarded"


class TranscriptCompletionRelay:
    """Relays completed conversations to the workflow processor."""

    def __init__(
        self,
        workflow: WorkflowClient,
        lifecycle: CallLifecycle,
        deadline_seconds: float,
    ) -> None:
        """Initialize relay.

        Args:
            workflow: Workflow processor client.
            lifecycle: Call lifecycle for the completed/failed transitions.
            deadline_seconds: Overall budget for the forward call.
        """
        self._workflow = workflow
        self._lifecycle = lifecycle
        self._deadline_seconds = deadline_seconds

    async def handle(self, payload: Mapping[str, Any]) -> RelayOutcome:
        """Process one agent webhook body.

        Raises:
            MalformedEventError: Completed event that fails validation; the call
                log is marked failed only when its ID was declared.
            TranscriptForwardError: The workflow processor did not accept it.
        """
        try:
            event = parse_agent_event(payload)
        except MalformedEventError as exc:
            logger.warning(
                "Malformed completion event",
                extra={"reason": exc.message, "call_log_id": exc.call_log_id},
            )
            await self._record_failure(exc.call_log_id, "Malformed completion event")
            raise

        if isinstance(event, AgentNotification):
            logger.info(
                "Agent event acknowledged",
                extra={"event_type": event.event_type, "conversation_id": event.conversation_id},
            )
            return RelayOutcome.ACKNOWLEDGED

        submission = TranscriptSubmission(
            transcript=event.transcript,
            call_log_id=event.metadata.call_log_id,
            user_id=event.metadata.user_id,
            conversation_id=event.conversation_id,
        )

        try:
            with anyio.fail_after(self._deadline_seconds):
                await self._workflow.submit(submission)
        except TimeoutError as e:
            await self._record_failure(submission.call_log_id, "Transcript forward failed")
            raise TranscriptForwardError("Workflow processor timed out") from e
        except TranscriptForwardError:
            await self._record_failure(submission.call_log_id, "Transcript forward failed")
            raise

        await self._record_completion(submission)
        return RelayOutcome.FORWARDED

    async def _record_completion(self, submission: TranscriptSubmission) -> None:
        # The transcript is already delivered; a bookkeeping problem here must
        # not turn into a 5xx that makes the agent resend it.
        try:
            await self._lifecycle.complete(submission.call_log_id, submission.conversation_id)
        except AppError as exc:
            logger.warning(
                "Call log not completed after forward",
                extra={"call_log_id": submission.call_log_id, "reason": exc.message},
            )
        except Exception:
            logger.exception(
                "Failed to record call completion",
                extra={"call_log_id": submission.call_log_id},
            )

    async def _record_failure(self, call_log_id: str | None, error_message: str) -> None:
        if not call_log_id:
            return
        try:
            await self._lifecycle.fail(call_log_id, error_message)
        except Exception:
            logger.exception(
                "Failed to record call failure",
                extra={"call_log_id": call_log_id, "error_message": error_message},
            )
