"""
Conversational agent webhook events.

Payloads are validated once, at the boundary, into one of two variants keyed
by ``event_type``:

- ``ConversationCompletedEvent``: the conversation finished; carries the
  transcript and the correlation metadata handed to the agent at handoff.
- ``AgentNotification``: any other event kind, acknowledged and ignored.
"""

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from calorie_coach.shared.exceptions import MalformedEventError

CONVERSATION_COMPLETED = "conversation.completed"

MISSING_METADATA = "Missing metadata"
INVALID_EVENT = "Invalid event payload"


class CorrelationMetadata(BaseModel):
    """Correlation context echoed back by the agent."""

    model_config = ConfigDict(extra="allow", frozen=True)

    call_log_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)

    @field_validator("call_log_id", "user_id", mode="before")
    @classmethod
    def numeric_id_as_str(cls, value: Any) -> Any:
        return _id_as_str(value)


class ConversationCompletedEvent(BaseModel):
    """A finished conversation with its transcript."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    event_type: Literal["conversation.completed"]
    conversation_id: str | None = Field(
        default=None,
        description="Agent session identifier",
    )
    transcript: Any = Field(
        default=None,
        description="Transcript as sent by the agent; forwarded untouched",
    )
    metadata: CorrelationMetadata

    @field_validator("conversation_id", mode="before")
    @classmethod
    def numeric_id_as_str(cls, value: Any) -> Any:
        return _id_as_str(value)


class AgentNotification(BaseModel):
    """Any event kind this service does not act on."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    event_type: str = ""
    conversation_id: str | None = None


AgentEvent = ConversationCompletedEvent | AgentNotification


def parse_agent_event(payload: Mapping[str, Any]) -> AgentEvent:
    """Validate a raw webhook body into a typed event.

    Raises:
        MalformedEventError: A completed event without usable correlation
            metadata ("Missing metadata", carrying the declared call log ID
            when there is one), or one whose other fields have the wrong
            shape ("Invalid event payload").
    """
    event_type = payload.get("event_type")
    if event_type != CONVERSATION_COMPLETED:
        return AgentNotification(
            event_type=event_type if isinstance(event_type, str) else "",
            conversation_id=_optional_str(payload.get("conversation_id")),
        )

    call_log_id = _declared_id(payload, "call_log_id")
    if call_log_id is None or _declared_id(payload, "user_id") is None:
        raise MalformedEventError(MISSING_METADATA, call_log_id=call_log_id)

    try:
        return ConversationCompletedEvent.model_validate(dict(payload))
    except PydanticValidationError as exc:
        raise MalformedEventError(INVALID_EVENT) from exc


def _id_as_str(value: Any) -> Any:
    # JSON integers are accepted as identifiers; bool is an int subclass.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _optional_str(value: Any) -> str | None:
    value = _id_as_str(value)
    return value if isinstance(value, str) else None


def _declared_id(payload: Mapping[str, Any], key: str) -> str | None:
    metadata = payload.get("metadata")
    if not isinstance(metadata, Mapping):
        return None
    value = _optional_str(metadata.get(key))
    return value or None
