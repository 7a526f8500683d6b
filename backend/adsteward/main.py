"""
AdSteward — FastAPI Backend
Chat assistant core for Yandex Direct: scheduled reports, approvals, proposals.
All data persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI

from adsteward.auth import require_auth
from adsteward.config import get_settings
from adsteward.container import build_container
from adsteward.routers import actions, campaigns, chat, cron, proposals

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


async def check_db_connection(app: FastAPI) -> bool:
    container = getattr(app.state, "container", None)
    if container is None:
        return False
    return await container.database.check_connection()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting AdSteward...")
    container = None
    try:
        container = build_container(settings)
        await container.database.init_db()
        app.state.container = container
        container.dispatcher.start()
        logger.info("Database initialized, all tables ready, workers running.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")
    if container is not None:
        await container.aclose()


app = FastAPI(
    title="AdSteward",
    description="Yandex Direct assistant: reports, approvals and campaign proposals",
    version="1.0.0",
    lifespan=lifespan,
)

# ── Register Routers ──────────────────────────────────────────────────
_auth = [Depends(require_auth)]
app.include_router(chat.router, prefix="/api/chat", tags=["Chat"], dependencies=_auth)
app.include_router(actions.router, prefix="/api/actions", tags=["Approval Queue"], dependencies=_auth)
app.include_router(proposals.router, prefix="/api/proposals", tags=["Proposals"], dependencies=_auth)
app.include_router(campaigns.router, prefix="/api/campaigns", tags=["Campaigns"], dependencies=_auth)
app.include_router(cron.router, prefix="/api")  # No API key; uses CRON_SECRET


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection(app)
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "AdSteward",
        "database": "connected" if db_ok else "disconnected",
    }
