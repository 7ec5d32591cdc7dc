"""Pytest configuration and shared fixtures for testing."""

from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from agentflow.configuration.config import Settings
from agentflow.domain.model.flow.task import Subtask, SubtaskStatus, Task
from agentflow.infrastructure.adapters.secondary.persistence.database import (
    create_engine,
    create_session_factory,
    initialize_database,
)
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import ChainCaller
from agentflow.infrastructure.agent.provider import FlowProvider
from agentflow.infrastructure.agent.tools.factory import RoleToolsExecutorFactory
from agentflow.tests.fakes import (
    FakeAgentLog,
    FakeMsgLog,
    FakePromptRenderer,
    FakeProviderClient,
    InMemoryFlowRepository,
)

TEST_FLOW_ID = 1

# --- Database Fixtures ---


@pytest.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_engine(Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:", _env_file=None))
    await initialize_database(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = create_session_factory(test_engine)
    async with async_session() as session:
        yield session
        await session.rollback()


# --- Engine Fixtures ---


@pytest.fixture
def config() -> ExecutionConfig:
    """Execution config without retry delays."""
    return ExecutionConfig(retry_delay_seconds=0)


@pytest.fixture
def repository() -> InMemoryFlowRepository:
    return InMemoryFlowRepository(flow_id=TEST_FLOW_ID)


@pytest.fixture
def client() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def prompter() -> FakePromptRenderer:
    return FakePromptRenderer()


@pytest.fixture
def agent_log() -> FakeAgentLog:
    return FakeAgentLog()


@pytest.fixture
def msg_log() -> FakeMsgLog:
    return FakeMsgLog()


@pytest.fixture
def caller(repository, client, config) -> ChainCaller:
    return ChainCaller(TEST_FLOW_ID, repository, client, config)


@pytest.fixture
def provider(repository, client, prompter, agent_log, msg_log, config) -> FlowProvider:
    """Flow provider wired to the in-memory collaborators."""
    return FlowProvider(
        TEST_FLOW_ID,
        repository,
        client,
        prompter,
        RoleToolsExecutorFactory(msg_log=msg_log),
        agent_log=agent_log,
        msg_log=msg_log,
        config=config,
        image="vxcontrol/kali-linux:latest",
    )


@pytest.fixture
def task(repository: InMemoryFlowRepository) -> Task:
    """A running task with one finished and two planned subtasks."""
    task = repository.add_task(input="find open ports on 10.0.0.5")
    repository.add_subtask(
        task.id, "Recon", status=SubtaskStatus.FINISHED, result="host is up"
    )
    repository.add_subtask(task.id, "Port scan")
    repository.add_subtask(task.id, "Report")
    return task


@pytest.fixture
def current_subtask(repository: InMemoryFlowRepository, task: Task) -> Subtask:
    """The first planned subtask of ``task``."""
    return repository.subtasks[2]
