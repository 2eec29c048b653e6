"""Shared fixtures: temp SQLite database, tenants, mocked gateway, engine."""

import pytest
import pytest_asyncio

from core.config import Settings
from core.database import Database
from services.actions import ActionRegistry
from services.actions.base import Tenant
from services.actions.gateway import BasicsClient
from services.automation.dispatcher import EventDispatcher
from services.automation.engine import AutomationEngine
from services.automation.executor import WorkflowExecutor
from services.automation.recorder import RunRecorder
from services.automation.triggers import TriggerRegistry
from services.job_queue import JobQueue

from workflows import GATEWAY_URL, FakeGateway


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'automations.db'}",
        basicos_api_url=GATEWAY_URL,
        action_timeout=5.0,
        job_retry_delay=0.01,
        run_timeout_seconds=10.0,
    )


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings)
    await db.startup()
    yield db
    await db.shutdown()


@pytest_asyncio.fixture
async def sales(database):
    return await database.create_sales("Ada", "Lovelace", "ada@example.com", basics_api_key="sk-ada")


@pytest_asyncio.fixture
async def other_sales(database):
    return await database.create_sales("Alan", "Turing", "alan@example.com", basics_api_key="sk-alan")


@pytest.fixture
def tenant(sales):
    return Tenant.from_sales(sales)


@pytest_asyncio.fixture
async def contact(database, sales):
    return await database.create_contact(sales.id, id=42, first_name="Grace", last_name="Hopper",
                                         email="grace@example.com", status="warm")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(gateway):
    return BasicsClient(GATEWAY_URL, timeout=5.0, transport=gateway.transport)


@pytest.fixture
def registry(settings, database, client):
    return ActionRegistry(settings, database, client=client)


@pytest.fixture
def executor(registry):
    return WorkflowExecutor(registry)


@pytest.fixture
def job_queue(settings, database):
    return JobQueue(timezone="UTC", max_attempts=settings.job_max_attempts,
                    retry_delay=settings.job_retry_delay, database=database)


@pytest_asyncio.fixture
async def engine(settings, database, job_queue, executor):
    recorder = RunRecorder(database, run_timeout=settings.run_timeout)
    triggers = TriggerRegistry(database, job_queue, timezone="UTC")
    dispatcher = EventDispatcher(database, job_queue)
    automation_engine = AutomationEngine(settings, database, job_queue, executor,
                                         recorder, triggers, dispatcher)
    yield automation_engine
    await automation_engine.stop()
    await job_queue.stop()
