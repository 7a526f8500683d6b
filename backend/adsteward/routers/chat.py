"""
Chat façade — what the Telegram bridge (or any chat frontend) calls.

Questions and proposal requests are queued; the worker replies in the chat.
Focus changes run inline because the caller needs the new session state.
"""

import logging
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from adsteward.container import Container, get_container
from adsteward.errors import DomainError
from adsteward.schemas import CreateProposalJob, UserQuestionJob
from adsteward.utils import parse_uuid, to_http_error

logger = logging.getLogger(__name__)

router = APIRouter()


class QuestionRequest(BaseModel):
    chat_id: int
    user_id: str
    question: str = Field(min_length=1)


class ProposalRequest(BaseModel):
    chat_id: int
    user_id: str
    description: str = Field(min_length=1)


class FocusRequest(BaseModel):
    user_id: str
    target: Literal["campaign", "proposal", "clear"]
    id: Optional[str] = None


@router.post("/questions", status_code=202)
async def ask_question(body: QuestionRequest, container: Container = Depends(get_container)):
    queue = await container.dispatcher.enqueue(
        UserQuestionJob(chat_id=body.chat_id, user_id=body.user_id, question=body.question)
    )
    return {"status": "queued", "queue": queue}


@router.post("/proposals", status_code=202)
async def request_proposal(body: ProposalRequest, container: Container = Depends(get_container)):
    queue = await container.dispatcher.enqueue(
        CreateProposalJob(chat_id=body.chat_id, user_id=body.user_id, description=body.description)
    )
    return {"status": "queued", "queue": queue}


@router.post("/focus")
async def set_focus(body: FocusRequest, container: Container = Depends(get_container)):
    orchestrator = container.orchestrator
    if body.target != "clear" and not body.id:
        raise HTTPException(status_code=400, detail=f"'id' is required to focus on a {body.target}")
    try:
        if body.target == "campaign":
            session = await orchestrator.set_current_campaign(body.user_id, parse_uuid(body.id, "id"))
        elif body.target == "proposal":
            session = await orchestrator.set_current_proposal(body.user_id, parse_uuid(body.id, "id"))
        else:
            session = await orchestrator.clear_current_context(body.user_id)
    except DomainError as e:
        raise to_http_error(e)

    return {
        "user_id": session.user_id,
        "campaign_id": str(session.current_campaign_id) if session.current_campaign_id else None,
        "proposal_id": str(session.current_proposal_id) if session.current_proposal_id else None,
        "conversation_id": str(session.current_conversation_id) if session.current_conversation_id else None,
    }
