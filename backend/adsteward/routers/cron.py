"""
Cron / Scheduled Jobs — endpoints for an external scheduler.

Each endpoint verifies CRON_SECRET and enqueues a job (reports, sync) or runs the
best-effort evening check in the background. Nothing here blocks on the LLM.

    POST /api/cron/daily-report      Header: X-Cron-Secret: <CRON_SECRET>
"""

import asyncio
import logging
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from adsteward.auth import require_cron_secret
from adsteward.container import Container, get_container
from adsteward.schemas import ReportJob, SyncJob

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


class SyncRequest(BaseModel):
    mode: Literal["full", "recent"] = "recent"
    chat_id: Optional[int] = None


def _admin_chat(container: Container) -> int:
    chat_id = container.settings.telegram_admin_chat_id
    if not chat_id:
        raise HTTPException(500, "TELEGRAM_ADMIN_CHAT_ID not configured")
    return int(chat_id)


@router.post("/daily-report")
async def cron_daily_report(
    _: None = Depends(require_cron_secret),
    container: Container = Depends(get_container),
):
    queue = await container.dispatcher.enqueue(ReportJob(chat_id=_admin_chat(container), report_type="daily"))
    logger.info("Cron: daily report enqueued")
    return {"status": "queued", "queue": queue}


@router.post("/weekly-report")
async def cron_weekly_report(
    _: None = Depends(require_cron_secret),
    container: Container = Depends(get_container),
):
    queue = await container.dispatcher.enqueue(ReportJob(chat_id=_admin_chat(container), report_type="weekly"))
    logger.info("Cron: weekly report enqueued")
    return {"status": "queued", "queue": queue}


@router.post("/evening-analysis")
async def cron_evening_analysis(
    _: None = Depends(require_cron_secret),
    container: Container = Depends(get_container),
):
    asyncio.create_task(container.orchestrator.run_evening_analysis())
    return {"status": "started"}


@router.post("/sync")
async def cron_sync(
    body: Optional[SyncRequest] = None,
    _: None = Depends(require_cron_secret),
    container: Container = Depends(get_container),
):
    body = body or SyncRequest()
    queue = await container.dispatcher.enqueue(SyncJob(mode=body.mode, chat_id=body.chat_id))
    logger.info(f"Cron: {body.mode} sync enqueued")
    return {"status": "queued", "queue": queue, "mode": body.mode}
