"""
Telephony webhooks package.

Keep import side-effect free.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from calorie_coach.telephony.webhooks.handler import (  # noqa: F401
        InboundCallDispatcher,
        PinChallengeHandler,
    )
