"""
Tests for persistence helpers: idempotent upserts, derived metrics, focus exclusivity.
"""

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from adsteward.models import DailyStat, Proposal, UserSession
from adsteward.services import store


@pytest.mark.anyio
async def test_daily_stat_upsert_is_idempotent(database, seed_campaign):
    campaign = await seed_campaign("101", "Summer Sale")
    for _ in range(2):
        async with database.session() as db:
            await store.upsert_daily_stat(
                db, campaign.id, date(2026, 10, 1),
                impressions=1000, clicks=50, cost=500.0, conversions=5, revenue=2000.0,
            )

    async with database.session() as db:
        assert await store.count_rows(db, DailyStat) == 1
        rows = await store.get_stats_between(db, date(2026, 10, 1), date(2026, 10, 1), campaign.id)
    assert rows[0].clicks == 50
    assert rows[0].cost == 500.0


@pytest.mark.anyio
async def test_daily_stat_derives_missing_ratios(database, seed_campaign):
    campaign = await seed_campaign("101", "Summer Sale")
    async with database.session() as db:
        stat = await store.upsert_daily_stat(
            db, campaign.id, date(2026, 10, 1),
            impressions=200, clicks=5, cost=300.0, conversions=3, revenue=600.0,
        )
    assert stat.ctr == pytest.approx(2.5)
    assert stat.cpa == pytest.approx(100.0)
    assert stat.roi == pytest.approx(100.0)


@pytest.mark.anyio
async def test_spend_without_revenue_is_full_loss(database, seed_campaign):
    campaign = await seed_campaign("101", "Summer Sale")
    async with database.session() as db:
        stat = await store.upsert_daily_stat(
            db, campaign.id, date(2026, 10, 1),
            impressions=500, clicks=20, cost=200.0, conversions=0, revenue=0.0,
        )
    assert stat.roi == pytest.approx(-100.0)


@pytest.mark.anyio
async def test_zero_conversions_leave_cpa_empty(database, seed_campaign):
    campaign = await seed_campaign("101", "Summer Sale")
    async with database.session() as db:
        stat = await store.upsert_daily_stat(db, campaign.id, date(2026, 10, 1), impressions=0, clicks=0, cost=10.0)
    assert stat.ctr == 0.0
    assert stat.cpa is None


@pytest.mark.anyio
async def test_campaign_upsert_merges_settings(database):
    async with database.session() as db:
        await store.upsert_campaign(db, "7", "Brand", "active", settings={"daily_budget": 500})
    async with database.session() as db:
        campaign = await store.upsert_campaign(db, "7", "Brand 2", settings={"bid_modifiers": []})

    assert campaign.name == "Brand 2"
    assert campaign.status == "active"
    assert campaign.settings == {"daily_budget": 500, "bid_modifiers": []}


@pytest.mark.anyio
async def test_find_campaigns_by_hint_matches_name_or_external_id(database, seed_campaign):
    await seed_campaign("101", "Summer Sale")
    await seed_campaign("102", "Winter Boots")

    async with database.session() as db:
        by_name = await store.find_campaigns_by_hint(db, "summer")
        by_id = await store.find_campaigns_by_hint(db, "102")
        none = await store.find_campaigns_by_hint(db, "autumn")

    assert [c.yandex_id for c in by_name] == ["101"]
    assert [c.name for c in by_id] == ["Winter Boots"]
    assert none == []


@pytest.mark.anyio
async def test_apply_focus_rejects_campaign_and_proposal(database, seed_campaign):
    campaign = await seed_campaign("101", "Summer Sale")
    async with database.session() as db:
        session = await store.get_or_create_session(db, "u1")
        with pytest.raises(ValueError):
            store.apply_focus(session, campaign.id, campaign.id)


@pytest.mark.anyio
async def test_session_check_constraint_blocks_double_focus(database, seed_campaign):
    """The table itself refuses a session pointing at both kinds of focus."""
    campaign = await seed_campaign("101", "Summer Sale")
    with pytest.raises(IntegrityError):
        async with database.session() as db:
            proposal = Proposal(title="New launch", plan={})
            db.add(proposal)
            await db.flush()
            db.add(UserSession(user_id="u1", current_campaign_id=campaign.id, current_proposal_id=proposal.id))


@pytest.mark.anyio
async def test_facts_by_source_and_search(database):
    async with database.session() as db:
        await store.add_fact(db, "Target CPA is 800 RUB", "initial_context/goals.md")
        await store.add_fact(db, "Mobile traffic converts poorly", "conversation/abc", confidence=0.8)

    async with database.session() as db:
        goals = await store.facts_by_source(db, "initial_context/%goals%")
        found = await store.search_facts(db, "mobile")
    assert [f.fact for f in goals] == ["Target CPA is 800 RUB"]
    assert found[0].source == "conversation/abc"
