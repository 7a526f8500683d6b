"""
Tests for the orchestration use cases: sync, reports, questions, proposals.
Platform, LLM and chat transport are AsyncMock fakes; persistence is real (SQLite).
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from adsteward.errors import UpstreamError, ValidationFailure
from adsteward.models import ActivityLog, Campaign, DailyStat, Keyword, PendingAction, Proposal, SearchQuery
from adsteward.schemas import (
    AddNegativeKeywordsParams, AnalysisResult, Answer, Classification, ClarificationRequest,
    ProposalPlan, Recommendation,
)
from adsteward.services import store
from adsteward.services.orchestrator import map_strategy
from adsteward.utils import days_ago, today


def _stat_rows(campaigns: dict[str, str], days: int) -> list[dict]:
    end = today()
    rows = []
    for offset in range(days):
        day = end - timedelta(days=offset)
        for yandex_id, name in campaigns.items():
            rows.append({
                "date": day.isoformat(),
                "campaign_id": yandex_id,
                "campaign_name": name,
                "impressions": 1000,
                "clicks": 40,
                "cost": 2000.0,
                "conversions": 4,
                "revenue": 8000.0,
            })
    return rows


async def _rows(database, model) -> list:
    async with database.session() as db:
        return list((await db.execute(select(model))).scalars().all())


# ── Sync ──────────────────────────────────────────────────────────────

@pytest.fixture
def yandex_account(platform):
    platform.get_campaigns.return_value = [
        {"Id": 101, "Name": "Summer Sale", "State": "ON", "Status": "ACCEPTED", "Type": "TEXT_CAMPAIGN",
         "DailyBudget": {"Amount": 1_500_000_000}},
        {"Id": 102, "Name": "Winter Boots", "State": "SUSPENDED", "Status": "ACCEPTED", "Type": "TEXT_CAMPAIGN"},
    ]
    platform.get_stats.return_value = _stat_rows({"101": "Summer Sale", "102": "Winter Boots"}, 7)
    platform.get_bid_modifiers.return_value = [{"Id": 9, "MobileAdjustment": {"BidModifier": 80}}]
    platform.get_keywords.return_value = [{"Id": 1, "Keyword": "buy boots", "Bid": 5_000_000, "State": "ON"}]
    return platform


@pytest.mark.anyio
async def test_recent_sync_stores_campaigns_stats_and_keywords(orchestrator, yandex_account, database):
    summary = await orchestrator.sync_yandex_data("recent")

    assert summary.campaigns == 2
    assert summary.stats == 14
    assert summary.auxiliary_failures == []
    yandex_account.get_stats.assert_awaited_once_with(days_ago(6), today())

    campaigns = {c.yandex_id: c for c in await _rows(database, Campaign)}
    assert campaigns["101"].status == "active"
    assert campaigns["102"].status == "suspended"
    assert campaigns["101"].settings["daily_budget"] == 1500.0
    assert campaigns["101"].settings["bid_modifiers"][0]["Id"] == 9
    assert len(await _rows(database, DailyStat)) == 14
    keywords = await _rows(database, Keyword)
    assert len(keywords) == 2
    assert keywords[0].bid == 5.0
    assert [a.action for a in await _rows(database, ActivityLog)] == ["data_synced"]


@pytest.mark.anyio
async def test_resync_does_not_duplicate_stats(orchestrator, yandex_account, database):
    await orchestrator.sync_yandex_data("recent")
    await orchestrator.sync_yandex_data("recent")

    assert len(await _rows(database, DailyStat)) == 14
    assert len(await _rows(database, Campaign)) == 2


@pytest.mark.anyio
async def test_full_sync_covers_ninety_days(orchestrator, yandex_account):
    summary = await orchestrator.sync_yandex_data("full")

    assert summary.date_from == days_ago(89)
    assert summary.date_to == today()


@pytest.mark.anyio
async def test_auxiliary_failure_is_recorded_not_raised(orchestrator, yandex_account):
    async def keywords(campaign_id):
        if campaign_id == "102":
            raise UpstreamError("yandex_direct", "rate limited")
        return []
    yandex_account.get_keywords.side_effect = keywords

    summary = await orchestrator.sync_yandex_data("recent")

    assert summary.stats == 14
    assert summary.auxiliary_failures == ["102"]


@pytest.mark.anyio
async def test_unknown_sync_mode_is_rejected(orchestrator):
    with pytest.raises(ValidationFailure):
        await orchestrator.sync_yandex_data("everything")


# ── Reports ───────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_daily_report_creates_actions_and_delivers_cards(orchestrator, platform, ai, transport, database):
    yesterday = days_ago(1)
    platform.get_stats.return_value = [{
        "date": yesterday.isoformat(), "campaign_id": "101", "campaign_name": "Summer Sale",
        "impressions": 5000, "clicks": 100, "cost": 6000.0, "conversions": 3, "revenue": 9000.0,
    }]
    platform.get_search_queries.return_value = [
        {"query": "summer dress free", "date": yesterday.isoformat(), "impressions": 300, "clicks": 1, "cost": 150.0},
        {"query": "summer dress", "date": yesterday.isoformat(), "impressions": 100, "clicks": 1, "cost": 10.0},
        {"query": "dress sale", "date": yesterday.isoformat(), "impressions": 80, "clicks": 4, "cost": 5.0},
    ]
    ai.analyze.return_value = AnalysisResult(
        text="CPA rose on Summer Sale.",
        insights=["Free-seekers waste budget"],
        recommendations=[
            Recommendation(
                title="Cut waste", description="Block free-seekers", priority="high",
                campaign_ids=["101"], action=AddNegativeKeywordsParams(keywords=["free"]),
            ),
            Recommendation(title="Refresh ads", description="CTR is slipping"),
        ],
    )

    result = await orchestrator.generate_daily_report()

    platform.get_stats.assert_awaited_once_with(yesterday, yesterday)
    data, _, task = ai.analyze.await_args.args
    assert task == "daily_report"
    assert [q["query"] for q in data[0]["search_queries"]] == ["summer dress free", "dress sale"]
    assert len(await _rows(database, SearchQuery)) == 2

    assert len(result.action_ids) == 1
    assert "Refresh ads" in result.text
    assert "Cut waste" not in result.text

    transport.send_message.assert_awaited_once()
    assert transport.send_message.await_args.args[0] == "100"
    transport.send_action_confirmation.assert_awaited_once()
    actions = await _rows(database, PendingAction)
    assert actions[0].status == "pending"
    assert actions[0].chat_message_id == "42"


@pytest.mark.anyio
async def test_daily_report_survives_search_query_failure(orchestrator, platform, ai):
    platform.get_stats.return_value = [{
        "date": days_ago(1).isoformat(), "campaign_id": "101", "campaign_name": "Summer Sale",
        "impressions": 10, "clicks": 1, "cost": 5.0, "conversions": 0, "revenue": 0,
    }]
    platform.get_search_queries.side_effect = UpstreamError("yandex_direct", "report not ready")
    ai.analyze.return_value = AnalysisResult(text="Quiet day.")

    result = await orchestrator.generate_daily_report(notify=False)

    assert result.action_ids == []
    assert ai.analyze.await_args.args[0][0]["search_queries"] == []


@pytest.mark.anyio
async def test_weekly_report_appends_learnings(orchestrator, platform, ai, learnings):
    platform.get_stats.return_value = []
    ai.analyze.return_value = AnalysisResult(text="Stable week.", insights=["Weekends convert better"], summary="Stable.")

    await orchestrator.generate_weekly_report(notify=False)

    platform.get_stats.assert_awaited_once_with(days_ago(7), days_ago(1))
    assert "Weekends convert better" in learnings.read()


@pytest.mark.anyio
async def test_evening_analysis_swallows_failures(orchestrator, platform, transport):
    platform.get_stats.side_effect = UpstreamError("yandex_direct", "down")

    assert await orchestrator.run_evening_analysis() is None
    transport.send_message.assert_not_called()


# ── Questions ─────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_ambiguous_question_returns_clarification(orchestrator, ai, seed_campaign):
    await seed_campaign("101", "Sale Moscow")
    await seed_campaign("102", "Sale Kazan")
    ai.classify.return_value = Classification(campaign_hint="sale", confidence=0.9)

    result = await orchestrator.handle_user_question("How is the sale doing?", "u1")

    assert isinstance(result, ClarificationRequest)
    assert len(result.campaigns) == 2
    ai.answer_question.assert_not_called()


@pytest.mark.anyio
async def test_question_binds_focus_and_records_both_messages(orchestrator, ai, conversations, seed_campaign):
    moscow = await seed_campaign("101", "Sale Moscow")
    await seed_campaign("102", "Sale Kazan")
    ai.classify.return_value = Classification(campaign_hint="Moscow", confidence=0.9)
    ai.answer_question.return_value = "CPA is 500 RUB."

    result = await orchestrator.handle_user_question("What is CPA in Moscow?", "u1")

    assert isinstance(result, Answer)
    assert result.campaign_id == moscow.id
    session = await conversations.get_session("u1")
    assert session.current_campaign_id == moscow.id
    assert session.current_conversation_id == result.conversation_id
    messages = await conversations.get_messages(result.conversation_id)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "What is CPA in Moscow?"),
        ("assistant", "CPA is 500 RUB."),
    ]
    _, _, context = ai.answer_question.await_args.args
    assert context["campaign"]["name"] == "Sale Moscow"


@pytest.mark.anyio
async def test_vague_follow_up_stays_in_current_focus(orchestrator, ai, seed_campaign):
    moscow = await seed_campaign("101", "Sale Moscow")
    await orchestrator.set_current_campaign("u1", moscow.id)
    ai.classify.return_value = Classification(confidence=0.1)
    ai.answer_question.return_value = "Yes, lower it."

    result = await orchestrator.handle_user_question("should we lower it?", "u1")

    assert isinstance(result, Answer)
    assert result.campaign_id == moscow.id


@pytest.mark.anyio
async def test_vague_question_without_focus_offers_menu(orchestrator, ai, seed_campaign):
    await seed_campaign("101", "Sale Moscow")
    ai.classify.return_value = Classification(confidence=0.1)

    result = await orchestrator.handle_user_question("how is it going?", "u1")

    assert isinstance(result, ClarificationRequest)
    assert [c.yandex_id for c in result.campaigns] == ["101"]


# ── Proposals ─────────────────────────────────────────────────────────

def _plan(strategy: str = "maximize clicks") -> ProposalPlan:
    return ProposalPlan(
        title="Boots launch",
        campaign_name="Boots Moscow",
        strategy=strategy,
        daily_budget=1000,
        keywords=["buy boots", "winter boots"],
    )


@pytest.mark.anyio
async def test_generate_proposal_persists_draft_and_focuses(orchestrator, ai, conversations, database):
    ai.generate_proposal.return_value = _plan()

    draft = await orchestrator.generate_campaign_proposal("Launch a boots campaign in Moscow", "u1")

    proposals = await _rows(database, Proposal)
    assert proposals[0].id == draft.proposal_id
    assert proposals[0].status == "draft"
    assert proposals[0].conversation_id == draft.conversation_id
    session = await conversations.get_session("u1")
    assert session.current_proposal_id == draft.proposal_id
    assert session.current_conversation_id == draft.conversation_id
    messages = await conversations.get_messages(draft.conversation_id)
    assert [m.role for m in messages] == ["user", "assistant"]


@pytest.mark.anyio
async def test_approve_proposal_creates_campaign(orchestrator, ai, platform, database):
    ai.generate_proposal.return_value = _plan()
    draft = await orchestrator.generate_campaign_proposal("Launch boots", "u1")
    platform.create_campaign.return_value = {"campaign_id": "555", "ad_group_id": "77", "name": "Boots Moscow"}

    result = await orchestrator.approve_proposal(draft.proposal_id)

    assert result["status"] == "implemented"
    assert result["strategy"] == "WB_MAXIMUM_CLICKS"
    plan_arg, strategy_arg = platform.create_campaign.await_args.args
    assert plan_arg.campaign_name == "Boots Moscow"
    assert strategy_arg == "WB_MAXIMUM_CLICKS"
    async with database.session() as db:
        campaign = await store.get_campaign_by_yandex_id(db, "555")
        proposal = await db.get(Proposal, draft.proposal_id)
    assert proposal.campaign_id == campaign.id
    assert proposal.implemented_at is not None


@pytest.mark.anyio
async def test_failed_campaign_creation_keeps_proposal_draft(orchestrator, ai, platform, database):
    ai.generate_proposal.return_value = _plan()
    draft = await orchestrator.generate_campaign_proposal("Launch boots", "u1")
    platform.create_campaign.side_effect = UpstreamError("yandex_direct", "invalid region")

    with pytest.raises(UpstreamError):
        await orchestrator.approve_proposal(draft.proposal_id)

    async with database.session() as db:
        proposal = await db.get(Proposal, draft.proposal_id)
    assert proposal.status == "draft"


@pytest.mark.anyio
async def test_unrecognized_strategy_fails_before_platform_call(orchestrator, ai, platform, database):
    ai.generate_proposal.return_value = _plan(strategy="aggressive growth hacking")
    draft = await orchestrator.generate_campaign_proposal("Launch boots", "u1")

    with pytest.raises(ValidationFailure):
        await orchestrator.approve_proposal(draft.proposal_id)

    platform.create_campaign.assert_not_called()
    async with database.session() as db:
        proposal = await db.get(Proposal, draft.proposal_id)
    assert proposal.status == "draft"


@pytest.mark.anyio
async def test_rejected_proposal_cannot_be_approved(orchestrator, ai, platform):
    ai.generate_proposal.return_value = _plan()
    draft = await orchestrator.generate_campaign_proposal("Launch boots", "u1")

    await orchestrator.reject_proposal(draft.proposal_id)
    with pytest.raises(ValidationFailure):
        await orchestrator.approve_proposal(draft.proposal_id)
    platform.create_campaign.assert_not_called()


@pytest.mark.parametrize("text,expected", [
    ("", "WB_MAXIMUM_CLICKS"),
    ("Pay for conversion", "PAY_FOR_CONVERSION"),
    ("maximize conversions", "WB_MAXIMUM_CONVERSION_RATE"),
    ("average CPA 800", "AVERAGE_CPA"),
    ("AVERAGE_CPC", "AVERAGE_CPC"),
    ("manual bidding", "HIGHEST_POSITION"),
])
def test_map_strategy(text, expected):
    assert map_strategy(text) == expected


def test_map_strategy_rejects_unknown_text():
    with pytest.raises(ValidationFailure):
        map_strategy("whatever works")
