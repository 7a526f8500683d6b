"""
Actions Router — the approval queue for platform mutations.
Approve executes immediately against Yandex Direct; reject only closes the action.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from adsteward.container import Container, get_container
from adsteward.errors import DomainError
from adsteward.models import ActionStatus, PendingAction
from adsteward.utils import parse_uuid, to_http_error

router = APIRouter()


def _serialize(a: PendingAction) -> dict:
    return {
        "id": str(a.id),
        "campaign_id": str(a.campaign_id),
        "action_type": a.action_type,
        "params": a.params,
        "reasoning": a.reasoning,
        "status": a.status,
        "result": a.result,
        "error_message": a.error_message,
        "created_at": a.created_at.isoformat() if a.created_at else None,
        "decided_at": a.decided_at.isoformat() if a.decided_at else None,
        "executed_at": a.executed_at.isoformat() if a.executed_at else None,
    }


@router.get("")
async def list_actions(
    status: Optional[str] = Query(None),
    campaign_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    container: Container = Depends(get_container),
):
    if status and status not in {s.value for s in ActionStatus}:
        raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")
    actions = await container.actions.list_actions(
        status=status,
        campaign_id=parse_uuid(campaign_id, "campaign_id") if campaign_id else None,
        limit=limit,
    )
    return {"actions": [_serialize(a) for a in actions], "total": len(actions)}


@router.post("/{action_id}/approve")
async def approve_action(action_id: str, container: Container = Depends(get_container)):
    try:
        outcome = await container.orchestrator.execute_action(parse_uuid(action_id, "action_id"))
    except DomainError as e:
        raise to_http_error(e)
    return outcome.model_dump(mode="json")


@router.post("/{action_id}/reject")
async def reject_action(action_id: str, container: Container = Depends(get_container)):
    try:
        outcome = await container.orchestrator.reject_action(parse_uuid(action_id, "action_id"))
    except DomainError as e:
        raise to_http_error(e)
    return outcome.model_dump(mode="json")
