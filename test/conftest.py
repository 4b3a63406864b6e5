"""
Pytest configuration and fixtures.
"""
from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from calorie_coach.agent.config import AgentConfig, WorkflowConfig
from calorie_coach.agent.workflow import WorkflowClient
from calorie_coach.calls.models import CallLog, CallStatus
from calorie_coach.calls.repository import SqlAlchemyCallRecordStore
from calorie_coach.config import Settings
from calorie_coach.context import AppContext, build_app_context
from calorie_coach.main import create_app
from calorie_coach.shared.database import DatabaseManager
from calorie_coach.telephony.config import TelephonyConfig
from calorie_coach.telephony.responses import CallResponseBuilder
from calorie_coach.users.models import User

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ALICE_ID = "u1"
ALICE_PHONE = "+15551234567"
ALICE_PIN = "048213"

BOB_ID = "u2"
BOB_PHONE = "+15559876543"
BOB_PIN = "111111"

UNKNOWN_PHONE = "+15550000000"

FIXED_NOW = datetime(2026, 3, 14, 18, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(app_env="dev", debug=True, database_url=TEST_DATABASE_URL)


@pytest.fixture
def telephony_config() -> TelephonyConfig:
    return TelephonyConfig(
        twilio_auth_token="test-auth-token",
        validate_signatures=False,
        webhook_base_url="https://coach.example.com/",
        pin_timeout_seconds=10,
    )


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig(
        agent_id="agent-test-123",
        api_key="el-test-secret",
        stream_url="wss://agent.example.com/v1/convai/conversation",
    )


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig(
        webhook_url="https://n8n.example.com/webhook/",
        timeout_seconds=2.0,
    )


@pytest.fixture
def responses(
    telephony_config: TelephonyConfig,
    agent_config: AgentConfig,
) -> CallResponseBuilder:
    return CallResponseBuilder(telephony_config, agent_config)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[DatabaseManager, None]:
    """In-memory SQLite database shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    manager = DatabaseManager(database_url=TEST_DATABASE_URL, engine=engine)
    await manager.create_all()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def seeded(database: DatabaseManager) -> dict[str, Any]:
    """Two users and one scheduled call log each."""
    async with database.session() as session:
        session.add_all(
            [
                User(id=ALICE_ID, phone=ALICE_PHONE, pin=ALICE_PIN, max_retries=3),
                User(id=BOB_ID, phone=BOB_PHONE, pin=BOB_PIN, max_retries=2),
            ]
        )
        await session.flush()
        session.add_all(
            [
                CallLog(
                    id="abc123",
                    user_id=ALICE_ID,
                    scheduled_at=FIXED_NOW,
                    status=CallStatus.SCHEDULED,
                ),
                CallLog(
                    id="def456",
                    user_id=BOB_ID,
                    scheduled_at=FIXED_NOW,
                    status=CallStatus.SCHEDULED,
                ),
            ]
        )
        await session.commit()

    return {"alice": ALICE_ID, "bob": BOB_ID, "alice_call": "abc123", "bob_call": "def456"}


@pytest_asyncio.fixture
async def db_session(
    database: DatabaseManager,
    seeded: dict[str, Any],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with database.session() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> SqlAlchemyCallRecordStore:
    return SqlAlchemyCallRecordStore(db_session)


@pytest.fixture
def load_call_log(database: DatabaseManager) -> Callable[[str], Awaitable[CallLog | None]]:
    """Read a call log through a fresh session, as the next request would."""

    async def _load(call_log_id: str) -> CallLog | None:
        async with database.session() as session:
            return await SqlAlchemyCallRecordStore(session).get_call_log(call_log_id)

    return _load


@pytest.fixture
def set_call_log(database: DatabaseManager) -> Callable[..., Awaitable[None]]:
    """Force call log fields, bypassing the lifecycle."""

    async def _set(call_log_id: str, **fields: Any) -> None:
        async with database.session() as session:
            store = SqlAlchemyCallRecordStore(session)
            assert await store.update_call_log(call_log_id, fields) is not None

    return _set


# ---------------------------------------------------------------------------
# Workflow processor spy
# ---------------------------------------------------------------------------


class WorkflowSpy:
    """httpx.MockTransport handler recording what reached the processor."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})

    @property
    def payloads(self) -> list[Any]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def workflow_spy() -> WorkflowSpy:
    return WorkflowSpy()


@pytest_asyncio.fixture
async def http_client(workflow_spy: WorkflowSpy) -> AsyncGenerator[httpx.AsyncClient, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(workflow_spy))
    yield client
    await client.aclose()


@pytest.fixture
def workflow_client(
    workflow_config: WorkflowConfig,
    http_client: httpx.AsyncClient,
) -> WorkflowClient:
    return WorkflowClient(workflow_config, http_client)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
def app_context(
    test_settings: Settings,
    telephony_config: TelephonyConfig,
    agent_config: AgentConfig,
    workflow_config: WorkflowConfig,
    database: DatabaseManager,
    http_client: httpx.AsyncClient,
) -> AppContext:
    return build_app_context(
        settings=test_settings,
        telephony=telephony_config,
        agent=agent_config,
        workflow_config=workflow_config,
        database=database,
        http_client=http_client,
    )


@pytest_asyncio.fixture
async def async_client(
    app_context: AppContext,
    seeded: dict[str, Any],
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to an app wired to the in-memory store and the spy."""
    app = create_app(app_context)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as client:
        yield client
