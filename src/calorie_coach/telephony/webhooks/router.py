"""
FastAPI router for the Twilio call-flow webhooks.

Key constraints:
- Twilio must always receive parseable TwiML, quickly
- No state between the two requests of one call except query parameters and
  the call record store
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from calorie_coach.dependencies import (
    get_inbound_dispatcher,
    get_pin_challenge_handler,
    read_form,
    verify_twilio_signature,
)
from calorie_coach.shared.logging import get_logger
from calorie_coach.telephony.webhooks.handler import (
    InboundCall,
    InboundCallDispatcher,
    PinChallengeHandler,
    PinSubmission,
    remote_party,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/twilio",
    tags=["twilio"],
    dependencies=[Depends(verify_twilio_signature)],
)

TWIML_MEDIA_TYPE = "text/xml"

# Last resort if even the TwiML builder fails.
FALLBACK_TWIML = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    "<Response><Say>Sorry, we encountered an error. Please try again later.</Say>"
    "<Hangup /></Response>"
)


def _twiml(content: str) -> Response:
    return Response(content=content, media_type=TWIML_MEDIA_TYPE)


def _call_log_id(request: Request) -> str | None:
    return (request.query_params.get("call_log_id") or "").strip() or None


@router.post("/voice")
async def voice(
    request: Request,
    dispatcher: Annotated[InboundCallDispatcher, Depends(get_inbound_dispatcher)],
) -> Response:
    """Inbound call entry: caller-ID handoff or PIN challenge."""
    form = await read_form(request)
    call = InboundCall(
        caller=remote_party(form),
        call_sid=(form.get("CallSid") or "").strip(),
        call_log_id=_call_log_id(request),
    )

    logger.info(
        "VOICE webhook",
        extra={
            "call_sid": call.call_sid,
            "call_log_id": call.call_log_id,
            "direction": form.get("Direction", ""),
        },
    )

    try:
        return _twiml(await dispatcher.dispatch(call))
    except Exception:
        logger.exception("VOICE failed (returning fallback TwiML)", extra={"call_sid": call.call_sid})
        return _twiml(FALLBACK_TWIML)


@router.post("/verify-pin")
async def verify_pin(
    request: Request,
    handler: Annotated[PinChallengeHandler, Depends(get_pin_challenge_handler)],
) -> Response:
    """PIN submission after a challenge."""
    form = await read_form(request)
    submission = PinSubmission(
        caller=remote_party(form),
        call_sid=(form.get("CallSid") or "").strip(),
        call_log_id=_call_log_id(request),
        digits=(form.get("Digits") or "").strip() or None,
    )

    logger.info(
        "VERIFY-PIN webhook",
        extra={
            "call_sid": submission.call_sid,
            "call_log_id": submission.call_log_id,
            "digits_received": submission.digits is not None,
        },
    )

    try:
        return _twiml(await handler.handle(submission))
    except Exception:
        logger.exception(
            "VERIFY-PIN failed (returning fallback TwiML)",
            extra={"call_sid": submission.call_sid},
        )
        return _twiml(FALLBACK_TWIML)
