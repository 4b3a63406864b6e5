"""
Call record store: database access to users and call logs.

Every operation is keyed by phone number or call log id; writes commit before
returning so the next, independent webhook request observes them.
"""

import hmac
from collections.abc import Mapping
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from calorie_coach.calls.models import CallLog, CallStatus
from calorie_coach.users.models import User, normalize_phone

MUTABLE_CALL_LOG_FIELDS: frozenset[str] = frozenset(
    {"status", "started_at", "ended_at", "retries", "transcript_id", "error_message"}
)


class CallRecordStore(Protocol):
    """Protocol for call record store operations."""

    async def find_user_by_phone(self, phone: str) -> User | None:
        """Get the user owning a phone number."""
        ...

    async def find_user_by_phone_and_pin(self, phone: str, pin: str) -> User | None:
        """Get the user owning a phone number, only if the PIN matches."""
        ...

    async def get_user(self, user_id: str) -> User | None:
        """Get user by ID."""
        ...

    async def get_call_log(self, call_log_id: str) -> CallLog | None:
        """Get call log by ID."""
        ...

    async def update_call_log(
        self,
        call_log_id: str,
        patch: Mapping[str, Any],
        expected_status: CallStatus | None = None,
    ) -> CallLog | None:
        """Apply a patch to a call log."""
        ...


class SqlAlchemyCallRecordStore:
    """Call record store backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def find_user_by_phone(self, phone: str) -> User | None:
        """Get the user owning a phone number.

        Args:
            phone: Caller phone number, normalized before lookup.

        Returns:
            User if found, None otherwise.
        """
        normalized = normalize_phone(phone)
        if not normalized:
            return None
        stmt = select(User).where(User.phone == normalized)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_user_by_phone_and_pin(self, phone: str, pin: str) -> User | None:
        """Get the user owning ``phone`` if ``pin`` is that user's PIN.

        A PIN only authenticates the number that owns it. The comparison is
        constant-time.

        Args:
            phone: Caller phone number.
            pin: Submitted PIN digits.

        Returns:
            User if phone and PIN match, None otherwise.
        """
        if not pin:
            return None
        user = await self.find_user_by_phone(phone)
        if user is None or not user.pin:
            return None
        if not hmac.compare_digest(user.pin.encode("utf-8"), pin.encode("utf-8")):
            return None
        return user

    async def get_user(self, user_id: str) -> User | None:
        """Get user by ID."""
        stmt = select(User).where(User.id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_call_log(self, call_log_id: str) -> CallLog | None:
        """Get call log by ID.

        Args:
            call_log_id: Call log identifier.

        Returns:
            CallLog if found, None otherwise.
        """
        stmt = (
            select(CallLog)
            .where(CallLog.id == call_log_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_call_log(
        self,
        call_log_id: str,
        patch: Mapping[str, Any],
        expected_status: CallStatus | None = None,
    ) -> CallLog | None:
        """Apply a patch to a call log and commit.

        Args:
            call_log_id: Call log identifier.
            patch: Field values to set; only lifecycle fields are writable.
            expected_status: When given, only update if the stored status
                still equals it (compare-and-set).

        Returns:
            Updated CallLog, or None if the row is missing or the status
            changed underneath us.

        Raises:
            ValueError: If the patch touches a non-writable field.
        """
        unknown = set(patch) - MUTABLE_CALL_LOG_FIELDS
        if unknown:
            raise ValueError(f"Call log fields are not writable: {sorted(unknown)}")

        stmt = update(CallLog).where(CallLog.id == call_log_id)
        if expected_status is not None:
            stmt = stmt.where(CallLog.status == expected_status)
        stmt = stmt.values(**dict(patch)).execution_options(synchronize_session=False)

        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None

        await self._session.commit()
        return await self.get_call_log(call_log_id)
