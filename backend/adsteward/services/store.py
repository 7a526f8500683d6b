"""
Knowledge & Session Store — persistence helpers over the SQLAlchemy models.

Every function takes an open AsyncSession and flushes; the caller owns the
transaction (Database.session()). Upserts are select-then-update/insert keyed on
the natural unique keys; run_with_conflict_retry re-runs a unit of work once when a
concurrent writer wins the insert race.
"""

import logging
import uuid
from datetime import date
from typing import Awaitable, Callable, Optional, TypeVar
from sqlalchemy import select, func, or_, and_, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from adsteward.database import Database
from adsteward.models import (
    ActivityLog, Campaign, DailyStat, Keyword, KnowledgeFact, Proposal, ProposalStatus,
    SearchQuery, UserSession,
)
from adsteward.utils import safe_ratio, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_conflict_retry(database: Database, work: Callable[[AsyncSession], Awaitable[T]],
                                  attempts: int = 2) -> T:
    """Run work in its own transaction; on a unique-key collision retry in a fresh one."""
    for attempt in range(1, attempts + 1):
        try:
            async with database.session() as db:
                return await work(db)
        except IntegrityError as e:
            if attempt == attempts:
                raise
            logger.info(f"Unique-key conflict, retrying unit of work ({attempt}/{attempts}): {e.orig}")


# ══════════════════════════════════════════════════════════════════════
#  CAMPAIGNS & STATS
# ══════════════════════════════════════════════════════════════════════

async def get_campaign(db: AsyncSession, campaign_id: uuid.UUID) -> Optional[Campaign]:
    return await db.get(Campaign, campaign_id)


async def get_campaign_by_yandex_id(db: AsyncSession, yandex_id: str) -> Optional[Campaign]:
    result = await db.execute(select(Campaign).where(Campaign.yandex_id == str(yandex_id)))
    return result.scalar_one_or_none()


async def list_campaigns(db: AsyncSession, status: Optional[str] = None, limit: Optional[int] = None) -> list[Campaign]:
    q = select(Campaign).order_by(Campaign.name)
    if status:
        q = q.where(Campaign.status == status)
    if limit:
        q = q.limit(limit)
    result = await db.execute(q)
    return list(result.scalars().all())


async def upsert_campaign(
    db: AsyncSession,
    yandex_id: str,
    name: str,
    status: Optional[str] = None,
    settings: Optional[dict] = None,
) -> Campaign:
    """Insert or refresh a campaign by its Yandex id. Settings are merged, not replaced."""
    campaign = await get_campaign_by_yandex_id(db, yandex_id)
    if campaign:
        campaign.name = name or campaign.name
        if status:
            campaign.status = status
        if settings:
            campaign.settings = {**(campaign.settings or {}), **settings}
        campaign.updated_at = utcnow()
    else:
        campaign = Campaign(
            yandex_id=str(yandex_id),
            name=name or str(yandex_id),
            status=status or "active",
            settings=settings or {},
        )
        db.add(campaign)
    await db.flush()
    return campaign


def derive_metrics(impressions: int, clicks: int, cost: float, conversions: int, revenue: float,
                   ctr: Optional[float] = None, cpa: Optional[float] = None,
                   roi: Optional[float] = None) -> tuple[float, Optional[float], Optional[float]]:
    """Fill ctr/cpa/roi from raw counters where the source did not supply them."""
    if ctr is None:
        ctr = safe_ratio(clicks, impressions, 100) or 0.0
    if cpa is None:
        cpa = safe_ratio(cost, conversions)
    if roi is None:
        roi = safe_ratio(revenue - cost, cost, 100)
    return ctr, cpa, roi


async def upsert_daily_stat(
    db: AsyncSession,
    campaign_id: uuid.UUID,
    stat_date: date,
    impressions: int = 0,
    clicks: int = 0,
    cost: float = 0.0,
    conversions: int = 0,
    revenue: float = 0.0,
    ctr: Optional[float] = None,
    cpa: Optional[float] = None,
    roi: Optional[float] = None,
    raw: Optional[dict] = None,
) -> DailyStat:
    """
    Upsert one (campaign, date) row. Re-running with identical input leaves
    exactly one row with the same values.
    """
    ctr, cpa, roi = derive_metrics(impressions, clicks, cost, conversions, revenue, ctr, cpa, roi)
    result = await db.execute(
        select(DailyStat).where(and_(DailyStat.campaign_id == campaign_id, DailyStat.stat_date == stat_date))
    )
    stat = result.scalar_one_or_none()
    if stat is None:
        stat = DailyStat(campaign_id=campaign_id, stat_date=stat_date)
        db.add(stat)
    stat.impressions = impressions
    stat.clicks = clicks
    stat.cost = cost
    stat.conversions = conversions
    stat.revenue = revenue
    stat.ctr = ctr
    stat.cpa = cpa
    stat.roi = roi
    stat.raw_json = raw
    stat.updated_at = utcnow()
    await db.flush()
    return stat


async def get_stats_between(
    db: AsyncSession,
    date_from: date,
    date_to: date,
    campaign_id: Optional[uuid.UUID] = None,
) -> list[DailyStat]:
    q = select(DailyStat).where(and_(DailyStat.stat_date >= date_from, DailyStat.stat_date <= date_to))
    if campaign_id:
        q = q.where(DailyStat.campaign_id == campaign_id)
    result = await db.execute(q.order_by(DailyStat.stat_date))
    return list(result.scalars().all())


async def count_rows(db: AsyncSession, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar() or 0


async def upsert_keyword(db: AsyncSession, campaign_id: uuid.UUID, keyword: str, yandex_id: Optional[str] = None,
                         bid: Optional[float] = None, status: Optional[str] = None) -> Keyword:
    result = await db.execute(
        select(Keyword).where(and_(Keyword.campaign_id == campaign_id, Keyword.keyword == keyword))
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = Keyword(campaign_id=campaign_id, keyword=keyword)
        db.add(row)
    row.yandex_id = yandex_id or row.yandex_id
    row.bid = bid if bid is not None else row.bid
    row.status = status or row.status
    row.updated_at = utcnow()
    await db.flush()
    return row


async def upsert_search_query(db: AsyncSession, campaign_id: uuid.UUID, query: str, query_date: date,
                              impressions: int, clicks: int, cost: float, conversions: int = 0) -> SearchQuery:
    result = await db.execute(select(SearchQuery).where(and_(
        SearchQuery.campaign_id == campaign_id,
        SearchQuery.query == query,
        SearchQuery.query_date == query_date,
    )))
    row = result.scalar_one_or_none()
    if row is None:
        row = SearchQuery(campaign_id=campaign_id, query=query, query_date=query_date)
        db.add(row)
    row.impressions = impressions
    row.clicks = clicks
    row.cost = cost
    row.conversions = conversions
    await db.flush()
    return row


# ══════════════════════════════════════════════════════════════════════
#  LOOKUPS FOR CONTEXT RESOLUTION
# ══════════════════════════════════════════════════════════════════════

async def find_campaigns_by_hint(db: AsyncSession, hint: str, limit: int = 5) -> list[Campaign]:
    """Case-insensitive substring match on name, or exact external-id match."""
    hint = hint.strip()
    result = await db.execute(
        select(Campaign)
        .where(or_(Campaign.name.ilike(f"%{hint}%"), Campaign.yandex_id == hint))
        .order_by(Campaign.name)
        .limit(limit)
    )
    return list(result.scalars().all())


async def find_proposals_by_hint(db: AsyncSession, hint: str, limit: int = 5) -> list[Proposal]:
    result = await db.execute(
        select(Proposal)
        .where(and_(
            Proposal.title.ilike(f"%{hint.strip()}%"),
            Proposal.status != ProposalStatus.REJECTED.value,
        ))
        .order_by(desc(Proposal.created_at))
        .limit(limit)
    )
    return list(result.scalars().all())


# ══════════════════════════════════════════════════════════════════════
#  SESSIONS
# ══════════════════════════════════════════════════════════════════════

async def get_or_create_session(db: AsyncSession, user_id: str) -> UserSession:
    result = await db.execute(select(UserSession).where(UserSession.user_id == str(user_id)))
    session = result.scalar_one_or_none()
    if session is None:
        session = UserSession(user_id=str(user_id), settings={})
        db.add(session)
        await db.flush()
    return session


def apply_focus(session: UserSession, campaign_id: Optional[uuid.UUID] = None,
                proposal_id: Optional[uuid.UUID] = None) -> None:
    """Point the session at a campaign or a proposal (never both); None/None clears focus."""
    if campaign_id and proposal_id:
        raise ValueError("A session focuses on a campaign or a proposal, not both")
    session.current_campaign_id = campaign_id
    session.current_proposal_id = proposal_id
    session.updated_at = utcnow()


# ══════════════════════════════════════════════════════════════════════
#  KNOWLEDGE
# ══════════════════════════════════════════════════════════════════════

async def add_fact(db: AsyncSession, fact: str, source: str, campaign_id: Optional[uuid.UUID] = None,
                   confidence: float = 1.0) -> KnowledgeFact:
    row = KnowledgeFact(fact=fact, source=source, campaign_id=campaign_id, confidence=confidence)
    db.add(row)
    await db.flush()
    return row


async def top_facts(db: AsyncSession, limit: int = 50) -> list[KnowledgeFact]:
    result = await db.execute(
        select(KnowledgeFact).order_by(desc(KnowledgeFact.confidence), desc(KnowledgeFact.created_at)).limit(limit)
    )
    return list(result.scalars().all())


async def facts_by_source(db: AsyncSession, pattern: str) -> list[KnowledgeFact]:
    result = await db.execute(
        select(KnowledgeFact).where(KnowledgeFact.source.like(pattern)).order_by(desc(KnowledgeFact.confidence))
    )
    return list(result.scalars().all())


async def campaign_facts(db: AsyncSession, campaign_id: uuid.UUID, limit: int = 20) -> list[KnowledgeFact]:
    result = await db.execute(
        select(KnowledgeFact)
        .where(KnowledgeFact.campaign_id == campaign_id)
        .order_by(desc(KnowledgeFact.created_at))
        .limit(limit)
    )
    return list(result.scalars().all())


async def search_facts(db: AsyncSession, query: str, limit: int = 10) -> list[KnowledgeFact]:
    result = await db.execute(
        select(KnowledgeFact)
        .where(KnowledgeFact.fact.ilike(f"%{query.strip()}%"))
        .order_by(desc(KnowledgeFact.confidence))
        .limit(limit)
    )
    return list(result.scalars().all())


# ══════════════════════════════════════════════════════════════════════
#  ACTIVITY LOG
# ══════════════════════════════════════════════════════════════════════

async def recent_activity(db: AsyncSession, campaign_id: Optional[uuid.UUID] = None, limit: int = 10) -> list[ActivityLog]:
    q = select(ActivityLog).order_by(desc(ActivityLog.created_at)).limit(limit)
    if campaign_id:
        q = q.where(ActivityLog.campaign_id == campaign_id)
    result = await db.execute(q)
    return list(result.scalars().all())
