"""
FastAPI application entry point.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from calorie_coach.agent.router import router as agent_router
from calorie_coach.config import get_settings
from calorie_coach.context import AppContext, build_app_context
from calorie_coach.shared.exceptions import AppError
from calorie_coach.shared.logging import get_logger, setup_logging
from calorie_coach.shared.middleware import CorrelationIdMiddleware
from calorie_coach.telephony.webhooks.router import router as twilio_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()

    context: AppContext | None = getattr(app.state, "context", None)
    if context is None:
        context = build_app_context()
        app.state.context = context

    logger.info("Application starting", extra={"env": context.settings.app_env})

    yield

    logger.info("Shutting down application")
    await context.aclose()
    logger.info("Application shutdown complete")


def create_app(context: AppContext | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        context: Pre-built application context; built at startup if omitted.
    """
    settings = context.settings if context is not None else get_settings()

    app = FastAPI(
        title="Calorie Coach Voice API",
        description="Phone authentication and agent handoff for meal logging calls",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    if context is not None:
        app.state.context = context

    # Routers map their own errors; this is the backstop for the rest
    @app.exception_handler(AppError)
    async def _app_error(_: Request, exc: AppError) -> JSONResponse:
        logger.error("Unhandled application error", extra={"code": exc.code, "error": exc.message})
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Request validation failed",
                "errors": errors,
            },
        )

    app.add_middleware(CorrelationIdMiddleware)

    # Include routers
    app.include_router(twilio_router)
    app.include_router(agent_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
