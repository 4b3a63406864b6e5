"""
SQLAlchemy model for users as seen by the call flow.

Users are created by signup/onboarding elsewhere; this service only reads them.
"""

import re
from datetime import datetime, time, timezone

from sqlalchemy import DateTime, Integer, String, Time, func
from sqlalchemy.orm import Mapped, mapped_column

from calorie_coach.shared.database import Base

_PHONE_NOISE = re.compile(r"[\s\-().]")


def normalize_phone(raw: str | None) -> str:
    """Normalize a phone number towards E.164 ("+15551234567").

    Strips whitespace and common punctuation; the leading ``+`` is kept.
    """
    if not raw:
        return ""
    return _PHONE_NOISE.sub("", raw.strip())


class User(Base):
    """User identity plus call configuration."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    phone: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        index=True,
    )
    pin: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
    )
    call_window_start: Mapped[time | None] = mapped_column(
        Time(),
        nullable=True,
    )
    call_window_end: Mapped[time | None] = mapped_column(
        Time(),
        nullable=True,
    )
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
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

    def __repr__(self) -> str:
        # pin deliberately left out
        return f"<User(id={self.id}, phone={self.phone})>"
