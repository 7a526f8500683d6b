"""
Proposals Router — list, approve (creates the campaign in Yandex Direct) and reject.
"""

from fastapi import APIRouter, Depends

from adsteward.container import Container, get_container
from adsteward.errors import DomainError
from adsteward.utils import parse_uuid, to_http_error

router = APIRouter()


@router.get("")
async def list_active_proposals(container: Container = Depends(get_container)):
    proposals = await container.orchestrator.list_active_proposals()
    return {
        "proposals": [
            {
                "id": str(p.id),
                "title": p.title,
                "status": p.status,
                "plan": p.plan,
                "created_at": p.created_at.isoformat() if p.created_at else None,
            }
            for p in proposals
        ],
    }


@router.post("/{proposal_id}/approve")
async def approve_proposal(proposal_id: str, container: Container = Depends(get_container)):
    try:
        return await container.orchestrator.approve_proposal(parse_uuid(proposal_id, "proposal_id"))
    except DomainError as e:
        raise to_http_error(e)


@router.post("/{proposal_id}/reject")
async def reject_proposal(proposal_id: str, container: Container = Depends(get_container)):
    try:
        return await container.orchestrator.reject_proposal(parse_uuid(proposal_id, "proposal_id"))
    except DomainError as e:
        raise to_http_error(e)
