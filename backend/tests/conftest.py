"""pytest fixtures for Consum backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped async SQLite database built from SQLModel metadata
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- settings: Test settings with fake provider credentials
- make_blueprint: Helper that persists a pending blueprint with a stored request
"""

import os

# Skip production config validation before any consum module builds Settings
os.environ.setdefault("APP_ENV", "test")

import json
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consum.core.config import Settings
from consum.core.database import create_tables, setup_db_session
from consum.models.blueprint import Blueprint, BlueprintStatus
from consum.services.generation.prompts import build_generation_request
from consum.uow import create_uow_factory

VALID_BLUEPRINT = {
    "overview": {
        "summary": "Build a consistent morning focus routine.",
        "mistakes": ["Checking email first"],
        "guidance": ["Start small"],
    },
    "sections": [
        {
            "title": "Morning Protocol",
            "description": "First hour of the day.",
            "type": "daily_habits",
            "items": [
                {
                    "id": 1,
                    "title": "No phone for 30 minutes",
                    "description": "Keep the phone in another room after waking.",
                    "timeframe": "06:30-07:00",
                }
            ],
        }
    ],
}


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh file-backed SQLite database per test, tables created from metadata."""
    factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'consum_test.db'}")
    await create_tables(factory)
    yield factory
    await factory.kw["bind"].dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory on the test database."""
    return create_uow_factory(session_factory)


@pytest.fixture
def settings() -> Settings:
    """Settings with fake credentials for both providers and no forced failure."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url="sqlite+aiosqlite://",
        app_env="test",
        llm_provider="gemini",
        google_ai_api_key="test-google-key",
        openai_api_key="test-openai-key",
        llm_force_failure="off",
        retry_batch_size=10,
        orphan_stale_after_seconds=600,
    )


@pytest.fixture
def valid_blueprint_json() -> str:
    return json.dumps(VALID_BLUEPRINT)


@pytest.fixture
def generation_request():
    return build_generation_request("Focus", "Transcript about morning routines.")


@pytest.fixture
def make_blueprint(uow_factory, generation_request):
    """Persist a blueprint and return its id.

    Example:
        blueprint_id = await make_blueprint()
        blueprint_id = await make_blueprint(status=BlueprintStatus.FAILED)
    """

    async def _make(
        status: BlueprintStatus = BlueprintStatus.PENDING,
        with_request: bool = True,
        **fields,
    ):
        async with await uow_factory() as uow:
            blueprint = await uow.blueprints.add(
                Blueprint(
                    user_id=fields.pop("user_id", "user-1"),
                    goal=fields.pop("goal", "Focus"),
                    content_source=fields.pop(
                        "content_source", "Transcript about morning routines."
                    ),
                    content_type=fields.pop("content_type", "text"),
                    status=status,
                    request_data=generation_request.to_json() if with_request else None,
                    **fields,
                )
            )
            return blueprint.id

    return _make
