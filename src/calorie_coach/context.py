"""
Process-wide application context.

Built once at startup and handed to every request through FastAPI
dependencies. It owns the client handles (database engine, outbound HTTP
client); handlers never construct their own.
"""

from dataclasses import dataclass

import httpx

from calorie_coach.agent.config import (
    AgentConfig,
    WorkflowConfig,
    get_agent_config,
    get_workflow_config,
)
from calorie_coach.agent.workflow import WorkflowClient
from calorie_coach.config import Settings, get_settings
from calorie_coach.shared.database import DatabaseManager
from calorie_coach.shared.logging import get_logger
from calorie_coach.telephony.config import TelephonyConfig, get_telephony_config
from calorie_coach.telephony.responses import CallResponseBuilder
from calorie_coach.telephony.security import TwilioSignatureValidator

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Configuration and shared clients for one process."""

    settings: Settings
    telephony: TelephonyConfig
    agent: AgentConfig
    workflow_config: WorkflowConfig
    database: DatabaseManager
    http_client: httpx.AsyncClient
    workflow: WorkflowClient
    responses: CallResponseBuilder
    signatures: TwilioSignatureValidator

    async def aclose(self) -> None:
        await self.http_client.aclose()
        await self.database.close()


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


def build_app_context(
    settings: Settings | None = None,
    telephony: TelephonyConfig | None = None,
    agent: AgentConfig | None = None,
    workflow_config: WorkflowConfig | None = None,
    database: DatabaseManager | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AppContext:
    """Assemble the context; any piece can be injected (tests do)."""
    settings = settings or get_settings()
    telephony = telephony or get_telephony_config()
    agent = agent or get_agent_config()
    workflow_config = workflow_config or get_workflow_config()
    database = database or DatabaseManager(settings.database_url, echo=settings.debug)
    http_client = http_client or httpx.AsyncClient(
        timeout=httpx.Timeout(workflow_config.timeout_seconds)
    )

    logger.info(
        "Application context resolved",
        extra={
            "app_env": settings.app_env,
            "webhook_base_url": telephony.webhook_base_url,
            "validate_signatures": telephony.validate_signatures,
            "agent_id": _mask(agent.agent_id),
            "agent_stream_url": agent.stream_url,
            "workflow_url": workflow_config.transcript_url,
        },
    )

    return AppContext(
        settings=settings,
        telephony=telephony,
        agent=agent,
        workflow_config=workflow_config,
        database=database,
        http_client=http_client,
        workflow=WorkflowClient(workflow_config, http_client),
        responses=CallResponseBuilder(telephony, agent),
        signatures=TwilioSignatureValidator(telephony),
    )
