"""Pytest configuration and shared fixtures."""

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from atlas.config import Settings
from atlas.core.models import ActorType, TaskStatus
from atlas.database.models import Agent, Base, OrchestratorConfig, Skill
from atlas.database.repository import TaskRepository
from atlas.database.session import _enable_sqlite_foreign_keys
from tests.fakes import ACCOUNT_ID


@pytest.fixture
def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Create a database session for testing."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        anthropic_api_key=None,
        planning_timeout_seconds=0.5,
        plan_cursor_max_retries=3,
        default_max_subtasks_per_parent=10,
    )


@pytest.fixture
def agent_factory(db_session):
    """Factory to create agents on the test account."""

    def _create_agent(alias: str, agent_type: str, **kwargs) -> Agent:
        defaults = {"account_id": ACCOUNT_ID, "is_active": True, "tools": []}
        defaults.update(kwargs)
        agent = Agent(alias=alias, agent_type=agent_type, **defaults)
        db_session.add(agent)
        db_session.flush()
        return agent

    return _create_agent


@pytest.fixture
def roster(agent_factory) -> dict[str, Agent]:
    """A staffed team keyed by alias."""
    return {
        "Quill": agent_factory("Quill", "content-writer"),
        "Pixel": agent_factory("Pixel", "image-generator"),
        "Scout": agent_factory("Scout", "researcher"),
        "Forge": agent_factory("Forge", "forge"),
        "Conductor": agent_factory("Conductor", "orchestrator"),
    }


@pytest.fixture
def task_factory(db_session):
    """Factory to create tasks through the repository."""
    tasks = TaskRepository(db_session)

    def _create_task(title: str = "Test Task", **kwargs):
        kwargs.setdefault("changed_by", "user-1")
        kwargs.setdefault("changed_by_type", ActorType.USER)
        kwargs.setdefault("status", TaskStatus.QUEUED)
        account_id = kwargs.pop("account_id", ACCOUNT_ID)
        return tasks.create(account_id, title, **kwargs)

    return _create_task


@pytest.fixture
def skill_factory(db_session):
    def _create_skill(slug: str, **kwargs) -> Skill:
        defaults = {"account_id": ACCOUNT_ID, "name": slug.replace("-", " ").title()}
        defaults.update(kwargs)
        skill = Skill(slug=slug, **defaults)
        db_session.add(skill)
        db_session.flush()
        return skill

    return _create_skill


@pytest.fixture
def orchestrator_config(db_session):
    """Factory to set per-account orchestrator limits."""

    def _configure(**kwargs) -> OrchestratorConfig:
        config = OrchestratorConfig(account_id=kwargs.pop("account_id", ACCOUNT_ID), **kwargs)
        db_session.add(config)
        db_session.flush()
        return config

    return _configure
