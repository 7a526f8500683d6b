"""
AdSteward — Database Models
Campaign data synced from Yandex Direct, conversational state, approval queue and knowledge.
"""

import uuid
import enum
from datetime import date, datetime, timezone
from typing import Optional
from sqlalchemy import (
    String, Text, Float, Integer, BigInteger, Date, DateTime,
    JSON, ForeignKey, Index, UniqueConstraint, CheckConstraint, Uuid, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from adsteward.database import Base


def _utcnow() -> datetime:
    """Naive UTC now, matching DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class ConversationType(str, enum.Enum):
    CAMPAIGN_ANALYSIS = "campaign_analysis"
    PROPOSAL = "proposal"
    GENERAL = "general"


class ConversationStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ProposalStatus(str, enum.Enum):
    DRAFT = "draft"
    DISCUSSING = "discussing"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"


class ActionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


TERMINAL_ACTION_STATUSES = {
    ActionStatus.EXECUTED.value,
    ActionStatus.FAILED.value,
    ActionStatus.REJECTED.value,
}


def focus_key(conversation_type: str, campaign_id=None, proposal_id=None) -> str:
    """Identity of a conversation thread: one active conversation per key."""
    return f"{conversation_type}:{campaign_id or '-'}:{proposal_id or '-'}"


# ══════════════════════════════════════════════════════════════════════
#  CAMPAIGN DATA: synced from Yandex Direct
# ══════════════════════════════════════════════════════════════════════

class Campaign(Base):
    """Yandex Direct campaign, upserted by external id on every sync."""
    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    yandex_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="active")
    settings: Mapped[dict] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    daily_stats: Mapped[list["DailyStat"]] = relationship(back_populates="campaign", cascade="all, delete-orphan")
    keywords: Mapped[list["Keyword"]] = relationship(back_populates="campaign", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_campaigns_status", "status"),
        Index("ix_campaigns_name", "name"),
    )


class DailyStat(Base):
    """Per-campaign daily aggregate. Upserted idempotently on (campaign, date)."""
    __tablename__ = "daily_stats"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    stat_date: Mapped[date] = mapped_column(Date, nullable=False)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    conversions: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    ctr: Mapped[float] = mapped_column(Float, nullable=True)
    cpa: Mapped[float] = mapped_column(Float, nullable=True)
    roi: Mapped[float] = mapped_column(Float, nullable=True)
    raw_json: Mapped[dict] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    campaign: Mapped["Campaign"] = relationship(back_populates="daily_stats")

    __table_args__ = (
        UniqueConstraint("campaign_id", "stat_date", name="uq_daily_stats_campaign_date"),
        Index("ix_daily_stats_stat_date", "stat_date"),
    )


class Keyword(Base):
    __tablename__ = "keywords"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    yandex_id: Mapped[str] = mapped_column(String(64), nullable=True)
    keyword: Mapped[str] = mapped_column(String(1024), nullable=False)
    bid: Mapped[float] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=True)
    stats: Mapped[dict] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    campaign: Mapped["Campaign"] = relationship(back_populates="keywords")

    __table_args__ = (
        UniqueConstraint("campaign_id", "keyword", name="uq_keywords_campaign_keyword"),
    )


class SearchQuery(Base):
    """Actual user search queries that triggered ads."""
    __tablename__ = "search_queries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    query: Mapped[str] = mapped_column(String(1024), nullable=False)
    query_date: Mapped[date] = mapped_column(Date, nullable=False)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    conversions: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("campaign_id", "query", "query_date", name="uq_search_queries_campaign_query_date"),
        Index("ix_search_queries_query_date", "query_date"),
    )


# ══════════════════════════════════════════════════════════════════════
#  CONVERSATIONS
# ══════════════════════════════════════════════════════════════════════

class Conversation(Base):
    """
    A chat thread bound to a focus key. At most one ACTIVE conversation per key:
    enforced by lookup-before-create plus the partial unique index below.
    """
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    campaign_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    proposal_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("proposals.id", ondelete="SET NULL", use_alter=True), nullable=True)
    focus_key: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ConversationStatus.ACTIVE.value)
    summary: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
    archived_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.sequence",
    )

    __table_args__ = (
        Index(
            "uq_conversations_active_focus", "focus_key",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_conversations_campaign_id", "campaign_id"),
        Index("ix_conversations_proposal_id", "proposal_id"),
    )


class Message(Base):
    """Append-only message within a conversation."""
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")

    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_messages_conversation_sequence"),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  PROPOSALS: new-campaign plans awaiting approval
# ══════════════════════════════════════════════════════════════════════

class Proposal(Base):
    __tablename__ = "proposals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ProposalStatus.DRAFT.value)
    plan: Mapped[dict] = mapped_column(JSON, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=True)
    request: Mapped[str] = mapped_column(Text, nullable=True)
    conversation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    campaign_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
    implemented_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_proposals_status", "status"),
    )


# ══════════════════════════════════════════════════════════════════════
#  PENDING ACTIONS: approval queue before pushing to Yandex Direct
# ══════════════════════════════════════════════════════════════════════

class PendingAction(Base):
    """
    One proposed platform mutation. Nothing is pushed to Yandex Direct until
    explicitly approved, and never after 24h (lazy expiry on execute).
    """
    __tablename__ = "pending_actions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    params: Mapped[dict] = mapped_column(JSON, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=ActionStatus.PENDING.value)
    chat_message_id: Mapped[str] = mapped_column(String(64), nullable=True)
    result: Mapped[dict] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    decided_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_pending_actions_status", "status"),
        Index("ix_pending_actions_campaign_id", "campaign_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  KNOWLEDGE & SESSIONS
# ══════════════════════════════════════════════════════════════════════

class KnowledgeFact(Base):
    """Provenance-tagged assertion used to ground future LLM context."""
    __tablename__ = "knowledge_base"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    fact: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
    campaign_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_knowledge_base_source", "source"),
        Index("ix_knowledge_base_campaign_id", "campaign_id"),
    )


class UserSession(Base):
    """One per chat identity. Focus is a campaign XOR a proposal."""
    __tablename__ = "user_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    current_campaign_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    current_proposal_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("proposals.id", ondelete="SET NULL"), nullable=True)
    current_conversation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    settings: Mapped[dict] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "current_campaign_id IS NULL OR current_proposal_id IS NULL",
            name="ck_user_sessions_single_focus",
        ),
    )


# ══════════════════════════════════════════════════════════════════════
#  ACTIVITY LOG
# ══════════════════════════════════════════════════════════════════════

class ActivityLog(Base):
    """Logs all platform mutations and notable events for audit trail."""
    __tablename__ = "activity_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # actions, proposals, sync, reports
    description: Mapped[str] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=True)  # pending_action, proposal, campaign
    entity_id: Mapped[str] = mapped_column(String(255), nullable=True)
    campaign_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="success")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_activity_log_category", "category"),
        Index("ix_activity_log_action", "action"),
        Index("ix_activity_log_created_at", "created_at"),
        Index("ix_activity_log_entity", "entity_type", "entity_id"),
        Index("ix_activity_log_campaign_id", "campaign_id"),
    )
