"""
Custom exceptions for the application.
"""

from typing import Any


class AppError(Exception):
    """Base exception for application errors."""

    def __init__(self, message: str, code: str = "APP_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# Call lifecycle errors
class CallLogNotFoundError(AppError):
    """Call log not found."""

    def __init__(self, call_log_id: str) -> None:
        super().__init__(f"Call log not found: {call_log_id}", "CALL_LOG_NOT_FOUND")
        self.call_log_id = call_log_id


class InvalidStatusTransitionError(AppError):
    """Invalid call log status transition."""

    def __init__(
        self,
        current_status: Any,
        target_status: Any,
        valid_transitions: set[Any],
    ) -> None:
        valid_str = (
            ", ".join(sorted(s.value for s in valid_transitions)) if valid_transitions else "none"
        )
        super().__init__(
            f"Cannot transition from '{current_status.value}' to '{target_status.value}'. "
            f"Valid transitions: {valid_str}",
            "INVALID_STATUS_TRANSITION",
        )
        self.current_status = current_status
        self.target_status = target_status
        self.valid_transitions = valid_transitions


class RetryBudgetExhaustedError(AppError):
    """The owning user's retry budget for this call is used up."""

    def __init__(self, call_log_id: str, retries: int, max_retries: int) -> None:
        super().__init__(
            f"Call log {call_log_id} exhausted its retries ({retries}/{max_retries})",
            "RETRY_BUDGET_EXHAUSTED",
        )
        self.call_log_id = call_log_id
        self.retries = retries
        self.max_retries = max_retries


# Call flow errors
class CallRejectedError(AppError):
    """A call must be terminated with a spoken message."""

    def __init__(self, reason: str, spoken_message: str) -> None:
        super().__init__(reason, "CALL_REJECTED")
        self.reason = reason
        self.spoken_message = spoken_message


# Agent webhook errors
class MalformedEventError(AppError):
    """Agent event violates the webhook contract."""

    def __init__(
        self,
        message: str = "Missing metadata",
        call_log_id: str | None = None,
    ) -> None:
        super().__init__(message, "MALFORMED_EVENT")
        self.call_log_id = call_log_id


class TranscriptForwardError(AppError):
    """The workflow processor did not accept a transcript."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, "TRANSCRIPT_FORWARD_FAILED")
        self.status_code = status_code
