"""
Shared pytest fixtures for all tests.

This module provides the in-memory database, registries with the Officers
plugin, and the engine with its collaborators.
"""

import os
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from workflow_engine.config import Settings
from workflow_engine.database import create_session_factory, create_tables
from workflow_engine.plugins.officers import Member, Office, OfficerDirectory, OfficersPlugin
from workflow_engine.registry import WorkflowRegistries, build_registries
from workflow_engine.services.engine import WorkflowEngine
from workflow_engine.services.notifications import LoggingNotifier
from workflow_engine.services.version_manager import VersionManager
from workflow_engine.services.visibility_evaluator import VisibilityEvaluator
from workflow_engine.tasks import InMemoryResumeQueue

from tests.factories import DEPUTY_OFFICE_ID, MARSHAL_OFFICE_ID, SENESCHAL_OFFICE_ID

# Ensure test environment
os.environ["ENVIRONMENT"] = "test"


# ============================================================================
# SETTINGS
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings without retry waits and with a small step budget."""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        WORKFLOW_MAX_EXECUTION_STEPS=25,
        WORKFLOW_SCANNER_ENABLED=False,
        RESUME_MAX_ATTEMPTS=2,
        RESUME_RETRY_MIN_SECONDS=0,
        RESUME_RETRY_MAX_SECONDS=0,
        APP_SETTINGS={"Officers.DefaultBranch": 5},
    )


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured like the application's."""
    return create_session_factory(async_engine)


# ============================================================================
# OFFICERS PLUGIN FIXTURES
# ============================================================================


@pytest.fixture
def directory() -> OfficerDirectory:
    """Directory with one warranted office, two unwarranted ones and a few members."""
    offices = [
        Office(
            id=SENESCHAL_OFFICE_ID,
            name="Seneschal",
            requires_warrant=True,
            only_one_per_branch=True,
            term_length_months=24,
            warrant_approver_ids=[20, 21],
        ),
        Office(id=DEPUTY_OFFICE_ID, name="Deputy Herald", requires_warrant=False),
        Office(id=MARSHAL_OFFICE_ID, name="Marshal", only_one_per_branch=True, term_length_months=12),
    ]
    members = [
        Member(id=1, sca_name="Aelfric of York", email_address="aelfric@example.org", warrantable=True),
        Member(id=2, sca_name="Brigid ni Cheallaigh", warrantable=False),
        Member(id=3, sca_name="Conrad von Ulm", email_address="conrad@example.org", warrantable=True),
        Member(
            id=20,
            sca_name="Duchess Elspeth",
            permissions=["Officers.Warrant", "Officers.Manage"],
            roles=["Kingdom Secretary"],
        ),
        Member(id=21, sca_name="Count Fergus", permissions=["Officers.Warrant"], roles=["Kingdom Secretary"]),
        Member(id=22, sca_name="Baroness Gwen", permissions=["Officers.Warrant"]),
        Member(id=30, sca_name="Reeve Hakon", roles=["Reeve"]),
    ]
    return OfficerDirectory(offices=offices, members=members)


@pytest.fixture
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


class FlakyPlugin:
    """Test plugin whose action fails a fixed number of times before succeeding."""

    name = "Testing"

    def __init__(self, failures: int = 1):
        self.failures = failures
        self.calls = 0

    def register(self, registries: WorkflowRegistries) -> None:
        registries.actions.add("Testing.Flaky", self.flaky, label="Flaky action", plugin=self.name)

    def flaky(self, context: dict[str, Any], params: dict[str, Any]) -> dict[str, Any]:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure {self.calls}")
        return {"calls": self.calls, "context_updates": {"variables": {"flaky_done": True}}}


@pytest.fixture
def flaky_plugin() -> FlakyPlugin:
    return FlakyPlugin(failures=1)


@pytest.fixture
def registries(
    directory: OfficerDirectory, notifier: LoggingNotifier, flaky_plugin: FlakyPlugin
) -> WorkflowRegistries:
    """Frozen registries with core vocabulary, the Officers plugin and the flaky test plugin."""
    return build_registries(OfficersPlugin(directory, notifier), flaky_plugin, notifier=notifier)


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def resume_queue() -> InMemoryResumeQueue:
    return InMemoryResumeQueue()


@pytest.fixture
def engine(
    session_factory: async_sessionmaker[AsyncSession],
    registries: WorkflowRegistries,
    settings: Settings,
    resume_queue: InMemoryResumeQueue,
    notifier: LoggingNotifier,
) -> WorkflowEngine:
    return WorkflowEngine(session_factory, registries, settings=settings, resume_queue=resume_queue, notifier=notifier)


@pytest.fixture
def versions(session_factory: async_sessionmaker[AsyncSession], registries: WorkflowRegistries) -> VersionManager:
    return VersionManager(session_factory, registries)


@pytest.fixture
def visibility(session_factory: async_sessionmaker[AsyncSession], registries: WorkflowRegistries) -> VisibilityEvaluator:
    return VisibilityEvaluator(session_factory, registries)

