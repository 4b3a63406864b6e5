"""
Client for the external workflow processor that turns transcripts into
calorie entries.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from calorie_coach.agent.config import WorkflowConfig
from calorie_coach.shared.exceptions import TranscriptForwardError
from calorie_coach.shared.logging import get_logger
from calorie_coach.shared.middleware import inject_correlation_headers

logger = get_logger(__name__)

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"


@dataclass(frozen=True)
class TranscriptSubmission:
    """Payload handed to the workflow processor."""

    transcript: Any
    call_log_id: str
    user_id: str
    conversation_id: str | None

    def as_payload(self) -> dict[str, Any]:
        # Key order is part of the wire format: a resent event must produce
        # the same request body.
        return {
            "transcript": self.transcript,
            "call_log_id": self.call_log_id,
            "user_id": self.user_id,
            "conversation_id": self.conversation_id,
        }

    @property
    def idempotency_key(self) -> str:
        return f"{self.call_log_id}:{self.conversation_id or ''}"


class WorkflowClient:
    """Posts transcripts to the workflow processor's ingestion endpoint.

    One attempt per call; retrying is the agent's job.
    """

    def __init__(self, config: WorkflowConfig, http_client: httpx.AsyncClient) -> None:
        self._config = config
        self._http_client = http_client

    @property
    def url(self) -> str:
        return self._config.transcript_url

    async def submit(self, submission: TranscriptSubmission) -> None:
        """Forward a transcript.

        Raises:
            TranscriptForwardError: Transport error or non-2xx response.
        """
        headers = inject_correlation_headers(
            {IDEMPOTENCY_KEY_HEADER: submission.idempotency_key}
        )

        try:
            response = await self._http_client.post(
                self.url,
                json=submission.as_payload(),
                headers=headers,
                timeout=self._config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.error(
                "HTTP error forwarding transcript",
                extra={"call_log_id": submission.call_log_id, "error": str(e)},
            )
            raise TranscriptForwardError(f"HTTP error: {e!s}") from e

        if not response.is_success:
            logger.error(
                "Workflow processor rejected transcript",
                extra={
                    "call_log_id": submission.call_log_id,
                    "status_code": response.status_code,
                    "resp_text": response.text[:500],
                },
            )
            raise TranscriptForwardError(
                f"Workflow processor returned {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(
            "Transcript forwarded",
            extra={
                "call_log_id": submission.call_log_id,
                "conversation_id": submission.conversation_id,
                "status_code": response.status_code,
            },
        )
