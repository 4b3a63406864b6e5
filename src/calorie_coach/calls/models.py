"""
SQLAlchemy model for call logs and the call status state machine.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from calorie_coach.shared.database import Base


class CallStatus(str, Enum):
    """Lifecycle status of a call log."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Nothing ever moves back to SCHEDULED. FAILED -> IN_PROGRESS is a retry,
# FAILED -> COMPLETED a transcript that arrived after a failed relay attempt.
ALLOWED_TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.SCHEDULED: frozenset({CallStatus.IN_PROGRESS, CallStatus.FAILED}),
    CallStatus.IN_PROGRESS: frozenset(
        {CallStatus.IN_PROGRESS, CallStatus.COMPLETED, CallStatus.FAILED}
    ),
    CallStatus.FAILED: frozenset(
        {CallStatus.FAILED, CallStatus.IN_PROGRESS, CallStatus.COMPLETED}
    ),
    CallStatus.COMPLETED: frozenset({CallStatus.COMPLETED}),
}


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    """Return True if ``current -> target`` is a legal status change."""
    return target in ALLOWED_TRANSITIONS[current]


def _new_call_log_id() -> str:
    return str(uuid4())


class CallLog(Base):
    """One call attempt for a user."""

    __tablename__ = "call_logs"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=_new_call_log_id,
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    status: Mapped[CallStatus] = mapped_column(
        SQLEnum(
            CallStatus,
            name="call_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=CallStatus.SCHEDULED,
    )
    retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    transcript_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def retries_exhausted(self, max_retries: int) -> bool:
        """True once a failed call has used up the owner's retry budget."""
        return self.status == CallStatus.FAILED and self.retries >= max_retries

    def __repr__(self) -> str:
        return f"<CallLog(id={self.id}, user_id={self.user_id}, status={self.status})>"
