"""
Conversation Manager — one active conversation per focus key, append-only messages,
archiving with LLM summaries on every focus switch, and LLM context assembly.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional
from sqlalchemy import select, func, desc
from sqlalchemy.orm import selectinload

from adsteward.config import Settings, get_settings
from adsteward.database import Database
from adsteward.errors import NotFoundError
from adsteward.models import (
    Campaign, Conversation, ConversationStatus, ConversationType, Message, MessageRole,
    Proposal, UserSession, focus_key,
)
from adsteward.schemas import ConversationSummary, ResolvedContext
from adsteward.services import store
from adsteward.services.learnings_log import LearningsLog
from adsteward.utils import utcnow

logger = logging.getLogger(__name__)

MIN_MESSAGES_TO_SUMMARIZE = 2
SUMMARY_FACT_CONFIDENCE = 0.8

BEST_PRACTICES = [
    "Add negative keywords regularly from search query reports",
    "Watch CTR and refresh ad copy when it drops",
    "Review search queries weekly",
    "Change bids gradually, no more than 20-30% at a time",
]


def _message_dict(m: Message) -> dict:
    return {
        "role": m.role,
        "content": m.content,
        "metadata": m.metadata_ or {},
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


class ConversationManager:

    def __init__(self, database: Database, ai, learnings: LearningsLog, settings: Optional[Settings] = None):
        self.database = database
        self.ai = ai
        self.learnings = learnings
        self.settings = settings or get_settings()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, key: str):
        """Per-key lock; dropped from the map once no task holds or awaits it."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    # ── Conversations ─────────────────────────────────────────────────

    @staticmethod
    async def _find_active(db, key: str) -> Optional[Conversation]:
        result = await db.execute(
            select(Conversation)
            .options(selectinload(Conversation.messages))
            .where(Conversation.focus_key == key, Conversation.status == ConversationStatus.ACTIVE.value)
        )
        return result.scalar_one_or_none()

    async def get_or_create_conversation(
        self,
        conversation_type: str,
        campaign_id: Optional[uuid.UUID] = None,
        proposal_id: Optional[uuid.UUID] = None,
    ) -> Conversation:
        """
        Return the active conversation for (type, campaign, proposal), creating it if absent.
        Same-process callers serialize on a per-key lock; cross-process races hit the
        partial unique index and the loser re-reads the winner's row.
        """
        conversation_type = ConversationType(conversation_type).value
        key = focus_key(conversation_type, campaign_id, proposal_id)

        async def work(db):
            existing = await self._find_active(db, key)
            if existing:
                return existing
            conversation = Conversation(
                type=conversation_type,
                campaign_id=campaign_id,
                proposal_id=proposal_id,
                focus_key=key,
                status=ConversationStatus.ACTIVE.value,
                messages=[],
            )
            db.add(conversation)
            await db.flush()
            logger.info(f"Created {conversation_type} conversation {conversation.id}")
            return conversation

        async with self._locked(key):
            return await store.run_with_conflict_retry(self.database, work)

    async def get_conversation(self, conversation_id: uuid.UUID) -> Conversation:
        async with self.database.session() as db:
            result = await db.execute(
                select(Conversation)
                .options(selectinload(Conversation.messages))
                .where(Conversation.id == conversation_id)
            )
            conversation = result.scalar_one_or_none()
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    async def add_message(
        self,
        conversation_id: uuid.UUID,
        role: str,
        content: str,
        metadata: Optional[dict] = None,
    ) -> Message:
        """Append with the next sequence number; (conversation, sequence) is unique."""
        role = MessageRole(role).value

        async def work(db):
            conversation = await db.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFoundError("Conversation", conversation_id)
            last = await db.execute(
                select(func.max(Message.sequence)).where(Message.conversation_id == conversation_id)
            )
            message = Message(
                conversation_id=conversation_id,
                sequence=(last.scalar() or 0) + 1,
                role=role,
                content=content,
                metadata_=metadata or {},
            )
            db.add(message)
            conversation.updated_at = utcnow()
            await db.flush()
            return message

        async with self._locked(f"messages:{conversation_id}"):
            return await store.run_with_conflict_retry(self.database, work, attempts=3)

    async def get_messages(self, conversation_id: uuid.UUID, limit: Optional[int] = None) -> list[Message]:
        async with self.database.session() as db:
            q = select(Message).where(Message.conversation_id == conversation_id).order_by(desc(Message.sequence))
            if limit:
                q = q.limit(limit)
            result = await db.execute(q)
            return list(reversed(result.scalars().all()))

    async def finalize_conversation(self, conversation_id: uuid.UUID, summary: str) -> None:
        async with self.database.session() as db:
            await self._finalize(db, conversation_id, summary)

    @staticmethod
    async def _finalize(db, conversation_id: uuid.UUID, summary: str) -> Conversation:
        conversation = await db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        conversation.status = ConversationStatus.ARCHIVED.value
        conversation.summary = summary
        conversation.archived_at = utcnow()
        await db.flush()
        return conversation

    # ── Sessions & focus ──────────────────────────────────────────────

    async def _update_session(self, user_id: str, change=None) -> UserSession:
        """Load-or-create the user's session and apply change to it in one retried transaction."""
        async def work(db):
            session = await store.get_or_create_session(db, user_id)
            if change is not None:
                change(session)
                await db.flush()
            return session

        return await store.run_with_conflict_retry(self.database, work)

    async def get_session(self, user_id: str) -> UserSession:
        return await self._update_session(user_id)

    async def archive_current_conversation(self, user_id: str) -> Optional[ConversationSummary]:
        """
        Summarize and archive the session's current conversation.
        Fewer than two messages: left untouched, no LLM call.
        Summarization failure: logged, conversation stays active, focus switch proceeds.
        """
        session = await self.get_session(user_id)
        if not session.current_conversation_id:
            return None

        conversation = await self.get_conversation(session.current_conversation_id)
        if conversation.status != ConversationStatus.ACTIVE.value:
            return None
        if len(conversation.messages) < MIN_MESSAGES_TO_SUMMARIZE:
            logger.info(f"Conversation {conversation.id} has {len(conversation.messages)} message(s); not summarized")
            return None

        try:
            summary = await self.ai.summarize_conversation([_message_dict(m) for m in conversation.messages])
        except Exception as e:
            logger.error(f"Summarization of conversation {conversation.id} failed: {e}")
            return None

        source = f"conversation/{conversation.id}"
        async with self.database.session() as db:
            await self._finalize(db, conversation.id, summary.summary or summary.topic)
            for fact in summary.key_facts:
                await store.add_fact(db, fact, source, conversation.campaign_id, SUMMARY_FACT_CONFIDENCE)

        try:
            await self.learnings.append(
                summary.topic or f"{conversation.type} conversation",
                summary.summary,
                bullets=[f"Decision: {d}" for d in summary.decisions] + summary.key_facts,
                source=source,
            )
        except OSError as e:
            logger.error(f"Could not write learnings entry for conversation {conversation.id}: {e}")

        logger.info(f"Archived conversation {conversation.id} with {len(summary.key_facts)} fact(s)")
        return summary

    async def switch_focus(
        self,
        user_id: str,
        campaign_id: Optional[uuid.UUID] = None,
        proposal_id: Optional[uuid.UUID] = None,
    ) -> UserSession:
        """Archive the previous focus, then point the session at the new focus and its conversation."""
        async with self.database.session() as db:
            if campaign_id and await db.get(Campaign, campaign_id) is None:
                raise NotFoundError("Campaign", campaign_id)
            if proposal_id and await db.get(Proposal, proposal_id) is None:
                raise NotFoundError("Proposal", proposal_id)

        await self.archive_current_conversation(user_id)

        if campaign_id:
            conversation_type = ConversationType.CAMPAIGN_ANALYSIS.value
        elif proposal_id:
            conversation_type = ConversationType.PROPOSAL.value
        else:
            conversation_type = ConversationType.GENERAL.value
        conversation = await self.get_or_create_conversation(conversation_type, campaign_id, proposal_id)

        def focus(session):
            store.apply_focus(session, campaign_id, proposal_id)
            session.current_conversation_id = conversation.id

        session = await self._update_session(user_id, focus)
        logger.info(f"User {user_id} focus -> campaign={campaign_id} proposal={proposal_id}")
        return session

    async def set_current_conversation(self, user_id: str, conversation_id: uuid.UUID) -> None:
        def point(session):
            session.current_conversation_id = conversation_id
            session.updated_at = utcnow()

        await self._update_session(user_id, point)

    # ── Knowledge ─────────────────────────────────────────────────────

    async def add_knowledge(self, fact: str, source: str, campaign_id: Optional[uuid.UUID] = None,
                            confidence: float = 1.0) -> None:
        async with self.database.session() as db:
            await store.add_fact(db, fact, source, campaign_id, confidence)

    async def search_knowledge(self, query: str, limit: int = 10) -> list[dict]:
        async with self.database.session() as db:
            facts = await store.search_facts(db, query, limit)
            return [{"fact": f.fact, "source": f.source, "confidence": f.confidence} for f in facts]

    # ── Context assembly ──────────────────────────────────────────────

    async def global_context(self, db) -> dict:
        goals = await store.facts_by_source(db, "initial_context/%goals%")
        facts = await store.top_facts(db, self.settings.knowledge_context_limit)
        return {
            "goals": goals[0].fact if goals else self.settings.default_goals,
            "knowledge": [{"fact": f.fact, "source": f.source, "confidence": f.confidence} for f in facts],
            "best_practices": BEST_PRACTICES,
        }

    async def _campaign_context(self, db, campaign_id: uuid.UUID) -> Optional[dict]:
        campaign = await db.get(Campaign, campaign_id)
        if campaign is None:
            return None
        activity = await store.recent_activity(db, campaign_id, limit=10)
        recs = await db.execute(
            select(Message.content)
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(Conversation.campaign_id == campaign_id, Message.role == MessageRole.ASSISTANT.value)
            .order_by(desc(Message.created_at))
            .limit(5)
        )
        facts = await store.campaign_facts(db, campaign_id)
        return {
            "id": str(campaign.id),
            "yandex_id": campaign.yandex_id,
            "name": campaign.name,
            "status": campaign.status,
            "history": [f"{a.created_at:%Y-%m-%d} {a.description}" for a in activity],
            "previous_recommendations": [c[:500] for c in recs.scalars().all()],
            "facts": [f.fact for f in facts],
        }

    @staticmethod
    async def _proposal_context(db, proposal_id: uuid.UUID) -> Optional[dict]:
        proposal = await db.get(Proposal, proposal_id)
        if proposal is None:
            return None
        return {
            "id": str(proposal.id),
            "title": proposal.title,
            "status": proposal.status,
            "plan": proposal.plan,
            "reasoning": proposal.reasoning,
        }

    async def build_context(self, user_id: str, resolved: Optional[ResolvedContext] = None,
                            conversation_id: Optional[uuid.UUID] = None) -> dict:
        """Global knowledge + focused campaign/proposal + tail of the given (or current) conversation."""
        session = await self.get_session(user_id)
        async with self.database.session() as db:
            context = await self.global_context(db)

            campaign_id = resolved.campaign_id if resolved and resolved.is_bound else session.current_campaign_id
            proposal_id = resolved.proposal_id if resolved and resolved.is_bound else session.current_proposal_id
            if campaign_id:
                context["campaign"] = await self._campaign_context(db, campaign_id)
            if proposal_id:
                context["proposal"] = await self._proposal_context(db, proposal_id)

            conversation = []
            conversation_id = conversation_id or session.current_conversation_id
            if conversation_id:
                result = await db.execute(
                    select(Message)
                    .where(Message.conversation_id == conversation_id)
                    .order_by(desc(Message.sequence))
                    .limit(self.settings.conversation_tail_size)
                )
                conversation = [_message_dict(m) for m in reversed(result.scalars().all())]
            context["conversation"] = conversation
        return context
