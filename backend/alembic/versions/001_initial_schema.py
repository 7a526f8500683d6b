"""Initial schema: campaigns, stats, conversations, proposals, actions, knowledge, sessions, audit.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
JSON = postgresql.JSON(astext_type=sa.Text())


def _timestamps(*names: str) -> list[sa.Column]:
    return [sa.Column(n, sa.DateTime(), nullable=True, server_default=sa.text("now()")) for n in names]


def upgrade() -> None:
    conn = op.get_bind()
    if "campaigns" in sa.inspect(conn).get_table_names():
        return

    op.create_table(
        "campaigns",
        sa.Column("id", UUID, nullable=False),
        sa.Column("yandex_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("status", sa.String(50), nullable=True, server_default="active"),
        sa.Column("settings", JSON, nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("yandex_id"),
    )
    op.create_index("ix_campaigns_status", "campaigns", ["status"])
    op.create_index("ix_campaigns_name", "campaigns", ["name"])

    op.create_table(
        "daily_stats",
        sa.Column("id", UUID, nullable=False),
        sa.Column("campaign_id", UUID, nullable=False),
        sa.Column("stat_date", sa.Date(), nullable=False),
        sa.Column("impressions", sa.BigInteger(), nullable=True, server_default="0"),
        sa.Column("clicks", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("cost", sa.Float(), nullable=True, server_default="0"),
        sa.Column("conversions", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("revenue", sa.Float(), nullable=True, server_default="0"),
        sa.Column("ctr", sa.Float(), nullable=True),
        sa.Column("cpa", sa.Float(), nullable=True),
        sa.Column("roi", sa.Float(), nullable=True),
        sa.Column("raw_json", JSON, nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id", "stat_date", name="uq_daily_stats_campaign_date"),
    )
    op.create_index("ix_daily_stats_stat_date", "daily_stats", ["stat_date"])

    op.create_table(
        "keywords",
        sa.Column("id", UUID, nullable=False),
        sa.Column("campaign_id", UUID, nullable=False),
        sa.Column("yandex_id", sa.String(64), nullable=True),
        sa.Column("keyword", sa.String(1024), nullable=False),
        sa.Column("bid", sa.Float(), nullable=True),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("stats", JSON, nullable=True),
        *_timestamps("updated_at"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id", "keyword", name="uq_keywords_campaign_keyword"),
    )

    op.create_table(
        "search_queries",
        sa.Column("id", UUID, nullable=False),
        sa.Column("campaign_id", UUID, nullable=False),
        sa.Column("query", sa.String(1024), nullable=False),
        sa.Column("query_date", sa.Date(), nullable=False),
        sa.Column("impressions", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("clicks", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("cost", sa.Float(), nullable=True, server_default="0"),
        sa.Column("conversions", sa.Integer(), nullable=True, server_default="0"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id", "query", "query_date", name="uq_search_queries_campaign_query_date"),
    )
    op.create_index("ix_search_queries_query_date", "search_queries", ["query_date"])

    # conversations <-> proposals reference each other; the proposal FK is added after both exist
    op.create_table(
        "conversations",
        sa.Column("id", UUID, nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("campaign_id", UUID, nullable=True),
        sa.Column("proposal_id", UUID, nullable=True),
        sa.Column("focus_key", sa.String(120), nullable=False),
        sa.Column("status", sa.String(20), nullable=True, server_default="active"),
        sa.Column("summary", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_conversations_active_focus", "conversations", ["focus_key"],
        unique=True, postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index("ix_conversations_campaign_id", "conversations", ["campaign_id"])
    op.create_index("ix_conversations_proposal_id", "conversations", ["proposal_id"])

    op.create_table(
        "messages",
        sa.Column("id", UUID, nullable=False),
        sa.Column("conversation_id", UUID, nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", JSON, nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("conversation_id", "sequence", name="uq_messages_conversation_sequence"),
    )
    op.create_index("ix_messages_conversation_created", "messages", ["conversation_id", "created_at"])

    op.create_table(
        "proposals",
        sa.Column("id", UUID, nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("status", sa.String(20), nullable=True, server_default="draft"),
        sa.Column("plan", JSON, nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("request", sa.Text(), nullable=True),
        sa.Column("conversation_id", UUID, nullable=True),
        sa.Column("campaign_id", UUID, nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.Column("implemented_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_proposals_status", "proposals", ["status"])
    op.create_foreign_key(
        "fk_conversations_proposal_id", "conversations", "proposals",
        ["proposal_id"], ["id"], ondelete="SET NULL",
    )

    op.create_table(
        "pending_actions",
        sa.Column("id", UUID, nullable=False),
        sa.Column("campaign_id", UUID, nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("params", JSON, nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="pending"),
        sa.Column("chat_message_id", sa.String(64), nullable=True),
        sa.Column("result", JSON, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps("created_at"),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
        sa.Column("executed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pending_actions_status", "pending_actions", ["status"])
    op.create_index("ix_pending_actions_campaign_id", "pending_actions", ["campaign_id"])

    op.create_table(
        "knowledge_base",
        sa.Column("id", UUID, nullable=False),
        sa.Column("fact", sa.Text(), nullable=False),
        sa.Column("source", sa.String(255), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True, server_default="1"),
        sa.Column("campaign_id", UUID, nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_knowledge_base_source", "knowledge_base", ["source"])
    op.create_index("ix_knowledge_base_campaign_id", "knowledge_base", ["campaign_id"])

    op.create_table(
        "user_sessions",
        sa.Column("id", UUID, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("current_campaign_id", UUID, nullable=True),
        sa.Column("current_proposal_id", UUID, nullable=True),
        sa.Column("current_conversation_id", UUID, nullable=True),
        sa.Column("settings", JSON, nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["current_campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["current_proposal_id"], ["proposals.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["current_conversation_id"], ["conversations.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
        sa.CheckConstraint(
            "current_campaign_id IS NULL OR current_proposal_id IS NULL",
            name="ck_user_sessions_single_focus",
        ),
    )

    op.create_table(
        "activity_log",
        sa.Column("id", UUID, nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("details", JSON, nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("campaign_id", UUID, nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="success"),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_log_category", "activity_log", ["category"])
    op.create_index("ix_activity_log_action", "activity_log", ["action"])
    op.create_index("ix_activity_log_created_at", "activity_log", ["created_at"])
    op.create_index("ix_activity_log_entity", "activity_log", ["entity_type", "entity_id"])
    op.create_index("ix_activity_log_campaign_id", "activity_log", ["campaign_id"])


def downgrade() -> None:
    op.drop_table("activity_log")
    op.drop_table("user_sessions")
    op.drop_table("knowledge_base")
    op.drop_table("pending_actions")
    op.drop_constraint("fk_conversations_proposal_id", "conversations", type_="foreignkey")
    op.drop_table("proposals")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("search_queries")
    op.drop_table("keywords")
    op.drop_table("daily_stats")
    op.drop_table("campaigns")
