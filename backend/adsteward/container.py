"""
Explicit wiring of adapters and services. One Container per process, stored on app.state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from adsteward.config import Settings, get_settings
from adsteward.database import Database
from adsteward.direct_client import DirectClient
from adsteward.services.action_manager import ActionManager
from adsteward.services.ai_service import create_ai_service
from adsteward.services.context_resolver import ContextResolver
from adsteward.services.conversation_manager import ConversationManager
from adsteward.services.job_dispatcher import JobDispatcher
from adsteward.services.learnings_log import LearningsLog
from adsteward.services.orchestrator import Orchestrator
from adsteward.telegram_client import TelegramClient

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    database: Database
    platform: DirectClient
    ai: object
    transport: TelegramClient
    learnings: LearningsLog
    resolver: ContextResolver
    conversations: ConversationManager
    actions: ActionManager
    orchestrator: Orchestrator
    dispatcher: JobDispatcher

    async def aclose(self):
        await self.dispatcher.stop()
        await self.platform.aclose()
        await self.transport.aclose()
        await self.database.dispose()


def build_container(settings: Optional[Settings] = None, database: Optional[Database] = None) -> Container:
    settings = settings or get_settings()
    database = database or Database(settings.database_url)

    platform = DirectClient(
        token=settings.yandex_token,
        client_login=settings.yandex_client_login or None,
        base_url=settings.yandex_api_url,
        sandbox=settings.yandex_sandbox,
    )
    ai = create_ai_service(settings.ai_model, settings=settings)
    transport = TelegramClient(settings.telegram_bot_token, base_url=settings.telegram_api_url)
    learnings = LearningsLog(settings.learnings_log_path)

    resolver = ContextResolver(database, settings)
    conversations = ConversationManager(database, ai, learnings, settings)
    actions = ActionManager(database, platform, settings)
    orchestrator = Orchestrator(
        database, platform, ai, transport, resolver, conversations, actions, learnings, settings
    )
    dispatcher = JobDispatcher(orchestrator, transport, settings)
    logger.info(f"Container built (model={settings.ai_model}, sandbox={settings.yandex_sandbox})")

    return Container(
        settings=settings,
        database=database,
        platform=platform,
        ai=ai,
        transport=transport,
        learnings=learnings,
        resolver=resolver,
        conversations=conversations,
        actions=actions,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
    )


def get_container(request: Request) -> Container:
    """FastAPI dependency: the container built in the app lifespan."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return container
