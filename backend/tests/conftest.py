"""
Shared fixtures: a file-backed SQLite database per test and AsyncMock collaborators.
"""

import pytest
from unittest.mock import AsyncMock

from adsteward.config import Settings
from adsteward.database import Database
from adsteward.services import store
from adsteward.services.action_manager import ActionManager
from adsteward.services.context_resolver import ContextResolver
from adsteward.services.conversation_manager import ConversationManager
from adsteward.services.learnings_log import LearningsLog
from adsteward.services.orchestrator import Orchestrator


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        learnings_log_path=str(tmp_path / "knowledge" / "learnings.md"),
        telegram_admin_chat_id="100",
        search_query_min_cost=100.0,
        search_query_min_clicks=3,
        search_query_limit=20,
    )


@pytest.fixture
async def database(settings):
    db = Database(settings.database_url)
    await db.init_db()
    yield db
    await db.dispose()


@pytest.fixture
def platform():
    return AsyncMock()


@pytest.fixture
def ai():
    return AsyncMock()


@pytest.fixture
def transport():
    mock = AsyncMock()
    mock.send_message.return_value = 1
    mock.send_action_confirmation.return_value = 42
    return mock


@pytest.fixture
def learnings(settings):
    return LearningsLog(settings.learnings_log_path)


@pytest.fixture
def resolver(database, settings):
    return ContextResolver(database, settings)


@pytest.fixture
def conversations(database, ai, learnings, settings):
    return ConversationManager(database, ai, learnings, settings)


@pytest.fixture
def actions(database, platform, settings):
    return ActionManager(database, platform, settings)


@pytest.fixture
def orchestrator(database, platform, ai, transport, resolver, conversations, actions, learnings, settings):
    return Orchestrator(database, platform, ai, transport, resolver, conversations, actions, learnings, settings)


@pytest.fixture
def seed_campaign(database):
    async def _seed(yandex_id: str, name: str, status: str = "active"):
        async with database.session() as db:
            return await store.upsert_campaign(db, yandex_id, name, status)
    return _seed
