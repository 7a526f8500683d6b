"""
Campaigns Router — read-only view of synced campaigns (chat campaign pickers use it).
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from adsteward.container import Container, get_container

router = APIRouter()


@router.get("")
async def list_campaigns(
    status: Optional[str] = Query(None),
    container: Container = Depends(get_container),
):
    campaigns = await container.orchestrator.list_campaigns(status=status)
    return {
        "campaigns": [
            {
                "id": str(c.id),
                "yandex_id": c.yandex_id,
                "name": c.name,
                "status": c.status,
                "settings": c.settings,
            }
            for c in campaigns
        ],
    }
