"""
Context Resolver — turns a classification hint into a concrete campaign/proposal,
or into a disambiguation menu. Best-effort: "not found" is an empty result, never an error.
"""

import logging
from typing import Optional

from adsteward.config import Settings, get_settings
from adsteward.database import Database
from adsteward.models import Campaign, Proposal
from adsteward.schemas import CampaignRef, Classification, ProposalRef, ResolvedContext
from adsteward.services import store

logger = logging.getLogger(__name__)

MATCH_LIMIT = 5


def _campaign_ref(c: Campaign) -> CampaignRef:
    return CampaignRef(id=c.id, yandex_id=c.yandex_id, name=c.name)


def _proposal_ref(p: Proposal) -> ProposalRef:
    return ProposalRef(id=p.id, title=p.title, status=p.status)


class ContextResolver:

    def __init__(self, database: Database, settings: Optional[Settings] = None):
        self.database = database
        self.settings = settings or get_settings()

    async def resolve(self, classification: Classification, user_id: str) -> ResolvedContext:
        resolved = ResolvedContext(confidence=classification.confidence)

        async with self.database.session() as db:
            if classification.campaign_hint:
                matches = await store.find_campaigns_by_hint(db, classification.campaign_hint, MATCH_LIMIT)
                if len(matches) == 1:
                    resolved.campaign_id = matches[0].id
                    resolved.campaign_yandex_id = matches[0].yandex_id
                    resolved.campaign_name = matches[0].name
                elif len(matches) > 1:
                    resolved.needs_clarification = True
                    resolved.suggested_campaigns = [_campaign_ref(c) for c in matches]

            if classification.proposal_hint and resolved.campaign_id is None:
                matches = await store.find_proposals_by_hint(db, classification.proposal_hint, MATCH_LIMIT)
                if len(matches) == 1:
                    resolved.proposal_id = matches[0].id
                    resolved.proposal_title = matches[0].title
                elif len(matches) > 1:
                    resolved.needs_clarification = True
                    resolved.suggested_proposals = [_proposal_ref(p) for p in matches]

            if (
                not resolved.is_bound
                and not resolved.needs_clarification
                and classification.confidence < self.settings.clarification_confidence_threshold
            ):
                active = await store.list_campaigns(db, status="active", limit=self.settings.clarification_menu_size)
                if active:
                    resolved.needs_clarification = True
                    resolved.fallback_menu = True
                    resolved.suggested_campaigns = [_campaign_ref(c) for c in active]

        logger.info(
            f"Resolved context for user {user_id}: campaign={resolved.campaign_id} "
            f"proposal={resolved.proposal_id} clarify={resolved.needs_clarification}"
        )
        return resolved
