"""
FastAPI router for the conversational agent's completion webhook.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from calorie_coach.agent.relay import RelayOutcome, TranscriptCompletionRelay
from calorie_coach.dependencies import get_transcript_relay
from calorie_coach.shared.exceptions import MalformedEventError, TranscriptForwardError
from calorie_coach.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/elevenlabs", tags=["agent"])


@router.post("/webhook")
async def agent_webhook(
    request: Request,
    relay: Annotated[TranscriptCompletionRelay, Depends(get_transcript_relay)],
) -> JSONResponse:
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON"})

    if not isinstance(payload, dict):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON"})

    try:
        outcome = await relay.handle(payload)
    except MalformedEventError as exc:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": exc.message})
    except TranscriptForwardError:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "Failed to process transcript"},
        )
    except Exception:
        logger.exception("Agent webhook error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    if outcome is RelayOutcome.FORWARDED:
        return JSONResponse(content={"success": True})
    return JSONResponse(content={"received": True})
