"""
FastAPI dependencies wiring the application context into request handlers.
"""

from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from calorie_coach.agent.relay import TranscriptCompletionRelay
from calorie_coach.auth.pin import PinVerifier
from calorie_coach.calls.lifecycle import CallLifecycle
from calorie_coach.calls.repository import CallRecordStore, SqlAlchemyCallRecordStore
from calorie_coach.context import AppContext
from calorie_coach.shared.logging import get_logger
from calorie_coach.telephony.security import SIGNATURE_HEADER
from calorie_coach.telephony.webhooks.handler import InboundCallDispatcher, PinChallengeHandler

logger = get_logger(__name__)


def get_app_context(request: Request) -> AppContext:
    return request.app.state.context


AppContextDep = Annotated[AppContext, Depends(get_app_context)]


async def get_db_session(context: AppContextDep) -> AsyncGenerator[AsyncSession, None]:
    """Database session for one request."""
    async with context.database.session() as session:
        yield session


async def get_call_store(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CallRecordStore:
    return SqlAlchemyCallRecordStore(session)


CallStoreDep = Annotated[CallRecordStore, Depends(get_call_store)]


async def read_form(request: Request) -> dict[str, Any]:
    """Form fields of a Twilio webhook; an unreadable body yields {}."""
    try:
        return {k: v for k, v in (await request.form()).items() if isinstance(v, str)}
    except Exception:
        logger.warning("Unreadable webhook form body", extra={"path": request.url.path})
        return {}


async def verify_twilio_signature(request: Request, context: AppContextDep) -> None:
    """Reject Twilio webhooks with a bad signature when validation is on."""
    validator = context.signatures
    if not validator.enabled:
        return

    form = await read_form(request)
    url = validator.public_url(request)
    if not validator.is_valid(url, form, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Invalid Twilio signature", extra={"url": url})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")


def get_inbound_dispatcher(
    request: Request,
    context: AppContextDep,
    store: CallStoreDep,
) -> InboundCallDispatcher:
    return InboundCallDispatcher(
        store=store,
        responses=context.responses.for_request(str(request.base_url)),
    )


def get_pin_challenge_handler(
    request: Request,
    context: AppContextDep,
    store: CallStoreDep,
) -> PinChallengeHandler:
    return PinChallengeHandler(
        store=store,
        responses=context.responses.for_request(str(request.base_url)),
        verifier=PinVerifier(store),
    )


def get_transcript_relay(context: AppContextDep, store: CallStoreDep) -> TranscriptCompletionRelay:
    return TranscriptCompletionRelay(
        workflow=context.workflow,
        lifecycle=CallLifecycle(store),
        deadline_seconds=context.workflow_config.timeout_seconds,
    )
