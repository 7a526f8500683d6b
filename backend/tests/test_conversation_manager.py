"""
Tests for conversation threads, archiving with summaries, focus switching and context assembly.
"""

import asyncio
import uuid

import pytest
from sqlalchemy import select

from adsteward.errors import NotFoundError, UpstreamError
from adsteward.models import Conversation, KnowledgeFact, Proposal, UserSession
from adsteward.schemas import ConversationSummary


@pytest.mark.anyio
async def test_get_or_create_returns_same_active_conversation(conversations, seed_campaign):
    campaign = await seed_campaign("101", "Summer Sale")

    first = await conversations.get_or_create_conversation("campaign_analysis", campaign.id)
    second = await conversations.get_or_create_conversation("campaign_analysis", campaign.id)

    assert first.id == second.id


@pytest.mark.anyio
async def test_messages_are_sequenced_in_order(conversations):
    conversation = await conversations.get_or_create_conversation("general")
    await conversations.add_message(conversation.id, "user", "How are we doing?")
    await conversations.add_message(conversation.id, "assistant", "Fine.")
    await conversations.add_message(conversation.id, "user", "And CPA?")

    messages = await conversations.get_messages(conversation.id)
    assert [m.sequence for m in messages] == [1, 2, 3]
    assert [m.content for m in await conversations.get_messages(conversation.id, limit=2)] == ["Fine.", "And CPA?"]


@pytest.mark.anyio
async def test_add_message_to_missing_conversation_raises(conversations):
    with pytest.raises(NotFoundError):
        await conversations.add_message(uuid.uuid4(), "user", "hello")


@pytest.mark.anyio
async def test_switch_with_one_message_skips_summary(conversations, ai, seed_campaign):
    a = await seed_campaign("101", "Summer Sale")
    b = await seed_campaign("102", "Winter Boots")

    session = await conversations.switch_focus("u1", campaign_id=a.id)
    await conversations.add_message(session.current_conversation_id, "user", "hi")
    await conversations.switch_focus("u1", campaign_id=b.id)

    assert ai.summarize_conversation.call_count == 0
    previous = await conversations.get_conversation(session.current_conversation_id)
    assert previous.status == "active"


@pytest.mark.anyio
async def test_switch_archives_with_summary_facts_and_learnings(conversations, ai, database, learnings, seed_campaign):
    a = await seed_campaign("101", "Summer Sale")
    b = await seed_campaign("102", "Winter Boots")
    ai.summarize_conversation.return_value = ConversationSummary(
        topic="Summer CPA",
        summary="Discussed rising CPA on Summer Sale.",
        decisions=["Lower mobile bids"],
        key_facts=["Mobile CPA is twice desktop"],
    )

    session = await conversations.switch_focus("u1", campaign_id=a.id)
    await conversations.add_message(session.current_conversation_id, "user", "Why is CPA up?")
    await conversations.add_message(session.current_conversation_id, "assistant", "Mobile traffic.")
    new_session = await conversations.switch_focus("u1", campaign_id=b.id)

    archived = await conversations.get_conversation(session.current_conversation_id)
    assert archived.status == "archived"
    assert archived.summary == "Discussed rising CPA on Summer Sale."
    assert archived.archived_at is not None
    assert new_session.current_campaign_id == b.id
    assert new_session.current_conversation_id != archived.id

    async with database.session() as db:
        facts = (await db.execute(select(KnowledgeFact))).scalars().all()
    assert [(f.fact, f.source, f.campaign_id) for f in facts] == [
        ("Mobile CPA is twice desktop", f"conversation/{archived.id}", a.id)
    ]
    assert facts[0].confidence == pytest.approx(0.8)

    journal = learnings.read()
    assert "Summer CPA" in journal
    assert "Decision: Lower mobile bids" in journal


@pytest.mark.anyio
async def test_summary_failure_keeps_conversation_active(conversations, ai, seed_campaign):
    a = await seed_campaign("101", "Summer Sale")
    b = await seed_campaign("102", "Winter Boots")
    ai.summarize_conversation.side_effect = UpstreamError("llm", "timeout")

    session = await conversations.switch_focus("u1", campaign_id=a.id)
    await conversations.add_message(session.current_conversation_id, "user", "q")
    await conversations.add_message(session.current_conversation_id, "assistant", "a")
    new_session = await conversations.switch_focus("u1", campaign_id=b.id)

    previous = await conversations.get_conversation(session.current_conversation_id)
    assert previous.status == "active"
    assert new_session.current_campaign_id == b.id


@pytest.mark.anyio
async def test_focus_pointers_are_mutually_exclusive(conversations, database, seed_campaign):
    campaign = await seed_campaign("101", "Summer Sale")
    async with database.session() as db:
        proposal = Proposal(title="Spring launch", plan={})
        db.add(proposal)
        await db.flush()

    session = await conversations.switch_focus("u1", campaign_id=campaign.id)
    assert session.current_campaign_id == campaign.id
    assert session.current_proposal_id is None

    session = await conversations.switch_focus("u1", proposal_id=proposal.id)
    assert session.current_campaign_id is None
    assert session.current_proposal_id == proposal.id

    session = await conversations.switch_focus("u1")
    assert session.current_campaign_id is None
    assert session.current_proposal_id is None

    async with database.session() as db:
        general = (await db.execute(
            select(Conversation).where(Conversation.id == session.current_conversation_id)
        )).scalar_one()
    assert general.type == "general"


@pytest.mark.anyio
async def test_switch_to_unknown_campaign_raises(conversations):
    with pytest.raises(NotFoundError):
        await conversations.switch_focus("u1", campaign_id=uuid.uuid4())


@pytest.mark.anyio
async def test_build_context_includes_goals_campaign_and_tail(conversations, seed_campaign, settings):
    campaign = await seed_campaign("101", "Summer Sale")
    await conversations.add_knowledge("Keep CPA under 800 RUB", "initial_context/goals.md")

    session = await conversations.switch_focus("u1", campaign_id=campaign.id)
    for i in range(settings.conversation_tail_size + 2):
        await conversations.add_message(session.current_conversation_id, "user", f"message {i}")

    context = await conversations.build_context("u1")

    assert context["goals"] == "Keep CPA under 800 RUB"
    assert context["campaign"]["name"] == "Summer Sale"
    assert "proposal" not in context
    assert len(context["conversation"]) == settings.conversation_tail_size
    assert context["conversation"][-1]["content"] == f"message {settings.conversation_tail_size + 1}"


@pytest.mark.anyio
async def test_concurrent_appends_get_distinct_sequences(conversations):
    conversation = await conversations.get_or_create_conversation("general")

    await asyncio.gather(*(conversations.add_message(conversation.id, "user", f"msg {i}") for i in range(4)))

    messages = await conversations.get_messages(conversation.id)
    assert [m.sequence for m in messages] == [1, 2, 3, 4]
    assert conversations._locks == {}


@pytest.mark.anyio
async def test_concurrent_first_contact_creates_one_session(conversations, database):
    sessions = await asyncio.gather(conversations.get_session("newuser"), conversations.get_session("newuser"))

    assert sessions[0].id == sessions[1].id
    async with database.session() as db:
        rows = (await db.execute(select(UserSession).where(UserSession.user_id == "newuser"))).scalars().all()
    assert len(rows) == 1


@pytest.mark.anyio
async def test_clear_focus_after_one_message_skips_summary(orchestrator, conversations, ai, seed_campaign):
    campaign = await seed_campaign("101", "Summer Sale")
    session = await orchestrator.set_current_campaign("u1", campaign.id)
    await conversations.add_message(session.current_conversation_id, "user", "hi")

    cleared = await orchestrator.clear_current_context("u1")

    assert ai.summarize_conversation.call_count == 0
    assert cleared.current_campaign_id is None
    assert cleared.current_proposal_id is None
    general = await conversations.get_conversation(cleared.current_conversation_id)
    assert general.type == "general"
    assert general.campaign_id is None
    previous = await conversations.get_conversation(session.current_conversation_id)
    assert previous.status == "active"
