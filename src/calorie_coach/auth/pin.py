"""
PIN verification for callers whose number is not recognised.
"""

from calorie_coach.calls.models import CallLog
from calorie_coach.calls.repository import CallRecordStore
from calorie_coach.shared.logging import get_logger
from calorie_coach.users.models import User

logger = get_logger(__name__)

# Digits gathered per call and stored per user; not configurable.
PIN_LENGTH = 6


class PinVerifier:
    """Validates a submitted PIN against the caller's stored PIN.

    The check is single-shot: one submission per call, and a caller whose
    call log has used up its retry budget is not challenged again.
    """

    def __init__(self, store: CallRecordStore) -> None:
        self._store = store

    def is_well_formed(self, digits: str | None) -> bool:
        """True if ``digits`` is exactly ``PIN_LENGTH`` ASCII digits."""
        return (
            digits is not None
            and len(digits) == PIN_LENGTH
            and digits.isascii()
            and digits.isdigit()
        )

    async def verify(self, phone: str, digits: str | None) -> User | None:
        """Return the user owning ``phone`` if ``digits`` is their PIN."""
        if not self.is_well_formed(digits):
            logger.info(
                "Rejected malformed PIN submission",
                extra={"digits_length": len(digits or "")},
            )
            return None
        return await self._store.find_user_by_phone_and_pin(phone, digits)  # type: ignore[arg-type]

    @staticmethod
    def attempts_exhausted(call_log: CallLog, owner: User) -> bool:
        """True once the owner's ``max_retries`` for this call are used up."""
        return call_log.retries_exhausted(owner.max_retries)
