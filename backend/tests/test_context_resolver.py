"""
Tests for context resolution: hint → campaign/proposal binding or a clarification menu.
"""

import pytest

from adsteward.models import Proposal
from adsteward.schemas import Classification


@pytest.mark.anyio
async def test_single_match_binds_campaign(resolver, seed_campaign):
    summer = await seed_campaign("101", "Summer Sale")
    await seed_campaign("102", "Winter Boots")

    resolved = await resolver.resolve(Classification(campaign_hint="Summer", confidence=0.9), "u1")

    assert resolved.campaign_id == summer.id
    assert resolved.campaign_name == "Summer Sale"
    assert resolved.needs_clarification is False


@pytest.mark.anyio
async def test_ambiguous_hint_asks_for_clarification(resolver, seed_campaign):
    await seed_campaign("101", "Sale Moscow")
    await seed_campaign("102", "Sale Kazan")

    resolved = await resolver.resolve(Classification(campaign_hint="sale", confidence=0.9), "u1")

    assert resolved.campaign_id is None
    assert resolved.needs_clarification is True
    assert resolved.fallback_menu is False
    assert {c.yandex_id for c in resolved.suggested_campaigns} == {"101", "102"}


@pytest.mark.anyio
async def test_unknown_hint_with_confidence_returns_empty_context(resolver, seed_campaign):
    await seed_campaign("101", "Summer Sale")

    resolved = await resolver.resolve(Classification(campaign_hint="Autumn", confidence=0.9), "u1")

    assert resolved.is_bound is False
    assert resolved.needs_clarification is False


@pytest.mark.anyio
async def test_low_confidence_offers_active_campaigns(resolver, seed_campaign):
    await seed_campaign("101", "Summer Sale")
    await seed_campaign("102", "Archive", status="suspended")

    resolved = await resolver.resolve(Classification(confidence=0.2), "u1")

    assert resolved.needs_clarification is True
    assert resolved.fallback_menu is True
    assert [c.yandex_id for c in resolved.suggested_campaigns] == ["101"]


@pytest.mark.anyio
async def test_proposal_hint_binds_proposal(resolver, database):
    async with database.session() as db:
        proposal = Proposal(title="Spring launch", status="draft", plan={})
        db.add(proposal)
        await db.flush()

    resolved = await resolver.resolve(Classification(proposal_hint="spring", confidence=0.8), "u1")

    assert resolved.proposal_id == proposal.id
    assert resolved.proposal_title == "Spring launch"


@pytest.mark.anyio
async def test_bound_campaign_takes_precedence_over_proposal_hint(resolver, database, seed_campaign):
    summer = await seed_campaign("101", "Summer Sale")
    async with database.session() as db:
        db.add(Proposal(title="Spring launch", status="draft", plan={}))

    resolved = await resolver.resolve(
        Classification(campaign_hint="Summer", proposal_hint="spring", confidence=0.9), "u1",
    )

    assert resolved.campaign_id == summer.id
    assert resolved.proposal_id is None
    assert resolved.needs_clarification is False
