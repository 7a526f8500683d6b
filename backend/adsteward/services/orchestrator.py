"""
Orchestrator — the single façade used by chat handlers, HTTP routes and job workers.

Each use case sequences: fetch from Yandex Direct → persist → analyze with the LLM →
propose (pending actions / proposals) → notify. Background paths (evening check,
auxiliary sync, enrichment) log and continue; user-triggered paths propagate.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date
from typing import Optional, Union
from sqlalchemy import select, update

from adsteward.config import Settings, get_settings
from adsteward.database import Database
from adsteward.errors import NotFoundError, ValidationFailure
from adsteward.models import (
    ActivityLog, Campaign, Conversation, ConversationStatus, ConversationType, Message,
    MessageRole, Proposal, ProposalStatus, focus_key,
)
from adsteward.schemas import (
    Answer, AnalysisResult, ClarificationRequest, ProposalDraft, Recommendation, ReportResult,
    SyncSummary, ActionOutcome, parse_proposal_plan,
)
from adsteward.services import store
from adsteward.services.action_manager import ActionManager, describe_action
from adsteward.services.context_resolver import ContextResolver
from adsteward.services.conversation_manager import ConversationManager
from adsteward.services.learnings_log import LearningsLog
from adsteward.utils import days_ago, parse_date, percent_change, safe_ratio, today, utcnow, format_money

logger = logging.getLogger(__name__)

FULL_SYNC_DAYS = 90
RECENT_SYNC_DAYS = 7

# Free-text strategy → Yandex Direct BiddingStrategyType. First matching substring wins.
STRATEGY_TABLE: tuple[tuple[str, str], ...] = (
    ("pay for conversion", "PAY_FOR_CONVERSION"),
    ("conversion", "WB_MAXIMUM_CONVERSION_RATE"),
    ("cpa", "AVERAGE_CPA"),
    ("cpc", "AVERAGE_CPC"),
    ("click", "WB_MAXIMUM_CLICKS"),
    ("manual", "HIGHEST_POSITION"),
    ("highest", "HIGHEST_POSITION"),
)
DEFAULT_STRATEGY = "WB_MAXIMUM_CLICKS"
KNOWN_STRATEGIES = {enum for _, enum in STRATEGY_TABLE}

YANDEX_STATES = {
    "ON": "active",
    "SUSPENDED": "suspended",
    "OFF": "off",
    "ENDED": "ended",
    "ARCHIVED": "archived",
    "CONVERTED": "archived",
}


def map_strategy(text: Optional[str]) -> str:
    """
    Map a strategy description to a platform enum. Empty text gets DEFAULT_STRATEGY;
    text that matches nothing raises ValidationFailure.
    """
    normalized = (text or "").strip()
    if not normalized:
        return DEFAULT_STRATEGY
    if normalized.upper() in KNOWN_STRATEGIES:
        return normalized.upper()
    lowered = normalized.lower()
    for needle, enum in STRATEGY_TABLE:
        if needle in lowered:
            return enum
    raise ValidationFailure(f"Unrecognized bidding strategy: {normalized!r}")


def _campaign_status(raw: dict) -> str:
    state = (raw.get("State") or "").upper()
    return YANDEX_STATES.get(state, state.lower() or "active")


def _totals(rows: list) -> dict:
    """Sum counters over stat rows (dicts or DailyStat) and derive ratios."""
    def get(r, k):
        return (r.get(k) if isinstance(r, dict) else getattr(r, k, 0)) or 0

    impressions = sum(int(get(r, "impressions")) for r in rows)
    clicks = sum(int(get(r, "clicks")) for r in rows)
    cost = round(sum(float(get(r, "cost")) for r in rows), 2)
    conversions = sum(int(get(r, "conversions")) for r in rows)
    revenue = round(sum(float(get(r, "revenue")) for r in rows), 2)
    return {
        "impressions": impressions,
        "clicks": clicks,
        "cost": cost,
        "conversions": conversions,
        "revenue": revenue,
        "ctr": safe_ratio(clicks, impressions, 100) or 0.0,
        "cpa": safe_ratio(cost, conversions),
    }


class Orchestrator:

    def __init__(
        self,
        database: Database,
        platform,
        ai,
        transport,
        resolver: ContextResolver,
        conversations: ConversationManager,
        actions: ActionManager,
        learnings: LearningsLog,
        settings: Optional[Settings] = None,
    ):
        self.database = database
        self.platform = platform
        self.ai = ai
        self.transport = transport
        self.resolver = resolver
        self.conversations = conversations
        self.actions = actions
        self.learnings = learnings
        self.settings = settings or get_settings()

    # ══════════════════════════════════════════════════════════════════
    #  REPORTS
    # ══════════════════════════════════════════════════════════════════

    async def generate_daily_report(self, notify: bool = True, chat_id=None) -> ReportResult:
        logger.info("Generating daily report...")
        yesterday = days_ago(1)
        stats = await self.platform.get_stats(yesterday, yesterday)
        await self._save_stats(stats)

        previous = days_ago(2)
        data = await self._prepare_campaign_data(stats, previous, previous, enrich_from=yesterday, enrich_to=yesterday)
        analysis = await self.ai.analyze(data, await self._report_context(), "daily_report")
        action_ids = await self._create_actions(analysis.recommendations, data)

        text = self._format_report("📊 Daily report", yesterday, yesterday, analysis, stats, len(action_ids))
        result = ReportResult(text=text, recommendations=analysis.recommendations, action_ids=action_ids)
        if notify:
            await self.deliver_report(chat_id, result)
        logger.info(f"Daily report generated: {len(analysis.recommendations)} recommendations, {len(action_ids)} actions")
        return result

    async def generate_weekly_report(self, notify: bool = True, chat_id=None) -> ReportResult:
        logger.info("Generating weekly report...")
        week_from, week_to = days_ago(7), days_ago(1)
        stats = await self.platform.get_stats(week_from, week_to)
        await self._save_stats(stats)

        data = await self._prepare_campaign_data(stats, days_ago(14), days_ago(8), enrich_from=week_from, enrich_to=week_to)
        analysis = await self.ai.analyze(data, await self._report_context(), "weekly_report")
        action_ids = await self._create_actions(analysis.recommendations, data)

        text = self._format_report("📈 Weekly report", week_from, week_to, analysis, stats, len(action_ids))
        try:
            await self.learnings.append(
                f"Weekly review {week_from.isoformat()} – {week_to.isoformat()}",
                analysis.summary or analysis.text,
                bullets=analysis.insights,
                source="weekly_report",
            )
        except OSError as e:
            logger.error(f"Could not write weekly learnings entry: {e}")

        result = ReportResult(text=text, recommendations=analysis.recommendations, action_ids=action_ids)
        if notify:
            await self.deliver_report(chat_id, result)
        return result

    async def run_evening_analysis(self, chat_id=None) -> Optional[str]:
        """Best-effort check of today's spend; never raises."""
        logger.info("Running evening analysis...")
        try:
            current = today()
            stats = await self.platform.get_stats(current, current)
            data = await self._prepare_campaign_data(stats, None, None)
            analysis = await self.ai.analyze(data, await self._report_context(), "evening_check")
            if not analysis.recommendations:
                logger.info("Evening analysis: nothing to report")
                return None
            message = f"🌙 Evening check\n\n{analysis.text}"
            target = chat_id or self.settings.telegram_admin_chat_id
            if target:
                await self.transport.send_message(target, message)
            return message
        except Exception:
            logger.exception("Evening analysis failed")
            return None

    async def deliver_report(self, chat_id, result: ReportResult) -> None:
        """Send report text, then one approval card per pending action."""
        target = chat_id or self.settings.telegram_admin_chat_id
        if not target:
            logger.warning("No chat configured for report delivery; skipping")
            return
        await self.transport.send_message(target, result.text)
        for action_id in result.action_ids:
            action = await self.actions.get_action(action_id)
            async with self.database.session() as db:
                campaign = await store.get_campaign(db, action.campaign_id)
            message_id = await self.transport.send_action_confirmation(
                target, str(action.id), describe_action(action, campaign.name if campaign else None)
            )
            await self.actions.attach_message(action.id, message_id)

    async def _report_context(self) -> dict:
        async with self.database.session() as db:
            return await self.conversations.global_context(db)

    async def _save_stats(self, stats: list[dict]) -> int:
        saved = 0
        for row in stats:
            async def work(db, row=row):
                campaign = await store.upsert_campaign(db, row["campaign_id"], row.get("campaign_name") or "")
                await store.upsert_daily_stat(
                    db,
                    campaign.id,
                    parse_date(row["date"]),
                    impressions=int(row.get("impressions") or 0),
                    clicks=int(row.get("clicks") or 0),
                    cost=float(row.get("cost") or 0),
                    conversions=int(row.get("conversions") or 0),
                    revenue=float(row.get("revenue") or 0),
                    ctr=row.get("ctr"),
                    cpa=row.get("cpa"),
                    roi=row.get("roi"),
                    raw=row,
                )
            await store.run_with_conflict_retry(self.database, work)
            saved += 1
        return saved

    async def _prepare_campaign_data(
        self,
        current_stats: list[dict],
        prev_from: Optional[date],
        prev_to: Optional[date],
        enrich_from: Optional[date] = None,
        enrich_to: Optional[date] = None,
    ) -> list[dict]:
        """Per-campaign current rows, previous-period totals with changes, settings and top search queries."""
        grouped: dict[str, list[dict]] = defaultdict(list)
        for row in current_stats:
            grouped[str(row["campaign_id"])].append(row)

        data = []
        for yandex_id, rows in grouped.items():
            async with self.database.session() as db:
                campaign = await store.get_campaign_by_yandex_id(db, yandex_id)
                previous_rows = []
                if campaign and prev_from and prev_to:
                    previous_rows = await store.get_stats_between(db, prev_from, prev_to, campaign.id)

            current = _totals(rows)
            entry = {
                "campaign_id": yandex_id,
                "campaign_name": rows[0].get("campaign_name") or (campaign.name if campaign else "Unknown"),
                "settings": (campaign.settings if campaign else None) or {},
                "stats": [
                    {
                        "date": str(r.get("date")),
                        "impressions": r.get("impressions", 0),
                        "clicks": r.get("clicks", 0),
                        "cost": r.get("cost", 0),
                        "conversions": r.get("conversions", 0),
                        "ctr": safe_ratio(r.get("clicks", 0), r.get("impressions", 0), 100) or 0.0,
                        "cpa": safe_ratio(r.get("cost", 0), r.get("conversions", 0)),
                    }
                    for r in rows
                ],
                "totals": current,
            }
            if previous_rows:
                previous = _totals(previous_rows)
                entry["previous_period"] = previous
                entry["changes"] = {
                    k: percent_change(current[k] or 0, previous[k] or 0)
                    for k in ("impressions", "clicks", "cost", "conversions", "ctr")
                }
            if campaign and enrich_from and enrich_to:
                entry["search_queries"] = await self._top_search_queries(campaign, enrich_from, enrich_to)
            data.append(entry)
        return data

    async def _top_search_queries(self, campaign: Campaign, date_from: date, date_to: date) -> list[dict]:
        """Queries above the cost or click threshold, most expensive first, capped for prompt size."""
        try:
            rows = await self.platform.get_search_queries(campaign.yandex_id, date_from, date_to)
        except Exception as e:
            logger.warning(f"Search queries for campaign {campaign.yandex_id} unavailable: {e}")
            return []

        significant = [
            r for r in rows
            if float(r.get("cost") or 0) >= self.settings.search_query_min_cost
            or int(r.get("clicks") or 0) >= self.settings.search_query_min_clicks
        ]
        significant.sort(key=lambda r: float(r.get("cost") or 0), reverse=True)
        significant = significant[: self.settings.search_query_limit]

        async with self.database.session() as db:
            for r in significant:
                await store.upsert_search_query(
                    db, campaign.id, r["query"], parse_date(r["date"]),
                    int(r.get("impressions") or 0), int(r.get("clicks") or 0),
                    float(r.get("cost") or 0), int(r.get("conversions") or 0),
                )
        return [
            {k: r.get(k) for k in ("query", "impressions", "clicks", "cost", "conversions")}
            for r in significant
        ]

    async def _resolve_targets(self, recommendation: Recommendation, data: list[dict]) -> list[Campaign]:
        refs = recommendation.campaign_ids
        if not refs:
            if len(data) != 1:
                logger.warning(f"Recommendation '{recommendation.title}' has an action but no target campaign; skipped")
                return []
            refs = [data[0]["campaign_id"]]

        targets = []
        async with self.database.session() as db:
            for ref in refs:
                campaign = await store.get_campaign_by_yandex_id(db, ref)
                if campaign is None:
                    matches = await store.find_campaigns_by_hint(db, ref, limit=2)
                    campaign = matches[0] if len(matches) == 1 else None
                if campaign is None:
                    logger.warning(f"Action target '{ref}' did not resolve to a single campaign; skipped")
                    continue
                if campaign.id not in {t.id for t in targets}:
                    targets.append(campaign)
        return targets

    async def _create_actions(self, recommendations: list[Recommendation], data: list[dict]) -> list[uuid.UUID]:
        action_ids = []
        for rec in recommendations:
            if rec.action is None:
                continue
            for campaign in await self._resolve_targets(rec, data):
                try:
                    action = await self.actions.create_action(
                        campaign.id,
                        rec.action.type,
                        rec.action.model_dump(mode="json"),
                        reasoning=f"{rec.title}. {rec.description}".strip(),
                    )
                except ValidationFailure as e:
                    logger.warning(f"Skipping invalid action from '{rec.title}': {e}")
                    continue
                action_ids.append(action.id)
        return action_ids

    @staticmethod
    def _format_report(title: str, date_from: date, date_to: date, analysis: AnalysisResult,
                       stats: list[dict], action_count: int) -> str:
        """Report text. Recommendations carrying an action are sent as approval cards instead."""
        period = date_from.isoformat() if date_from == date_to else f"{date_from.isoformat()} – {date_to.isoformat()}"
        totals = _totals(stats)
        lines = [
            f"{title} ({period})",
            "",
            f"Impressions: {totals['impressions']:,} · Clicks: {totals['clicks']:,} · CTR: {totals['ctr']:.2f}%",
            f"Cost: {format_money(totals['cost'])} · Conversions: {totals['conversions']} · CPA: {format_money(totals['cpa'])}",
        ]
        if analysis.text:
            lines += ["", analysis.text.strip()]
        if analysis.insights:
            lines += ["", "Insights:"] + [f"• {i}" for i in analysis.insights]
        advice = [r for r in analysis.recommendations if r.action is None]
        if advice:
            lines += ["", "Recommendations:"]
            lines += [f"• [{r.priority}] {r.title}" + (f" — {r.description}" if r.description else "") for r in advice]
        if action_count:
            lines += ["", f"{action_count} action(s) awaiting your approval below."]
        return "\n".join(lines)

    # ══════════════════════════════════════════════════════════════════
    #  SYNC
    # ══════════════════════════════════════════════════════════════════

    async def sync_yandex_data(self, mode: str = "recent") -> SyncSummary:
        """Resync every campaign (any status) and its stats; bid modifiers and keywords best-effort."""
        if mode not in ("full", "recent"):
            raise ValidationFailure(f"Unknown sync mode '{mode}'")
        days = FULL_SYNC_DAYS if mode == "full" else RECENT_SYNC_DAYS
        date_to = today()
        date_from = days_ago(days - 1, date_to)
        logger.info(f"Syncing Yandex data ({mode}): {date_from}..{date_to}")

        raw_campaigns = await self.platform.get_campaigns()
        campaigns: list[Campaign] = []
        async with self.database.session() as db:
            for raw in raw_campaigns:
                daily_budget = (raw.get("DailyBudget") or {}).get("Amount")
                campaign = await store.upsert_campaign(
                    db,
                    str(raw["Id"]),
                    raw.get("Name") or "",
                    _campaign_status(raw),
                    settings={
                        "type": raw.get("Type"),
                        "state": raw.get("State"),
                        "status": raw.get("Status"),
                        "daily_budget": daily_budget / 1_000_000 if daily_budget else None,
                    },
                )
                campaigns.append(campaign)
        logger.info(f"Synced {len(campaigns)} campaigns")

        stats = await self.platform.get_stats(date_from, date_to)
        saved = await self._save_stats(stats)
        logger.info(f"Synced {saved} stat records")

        summary = SyncSummary(mode=mode, date_from=date_from, date_to=date_to, campaigns=len(campaigns), stats=saved)
        for campaign in campaigns:
            try:
                modifiers = await self.platform.get_bid_modifiers(campaign.yandex_id)
                keywords = await self.platform.get_keywords(campaign.yandex_id)
                async with self.database.session() as db:
                    await store.upsert_campaign(db, campaign.yandex_id, campaign.name, settings={"bid_modifiers": modifiers})
                    for kw in keywords:
                        if not kw.get("Keyword"):
                            continue
                        bid = kw.get("Bid")
                        await store.upsert_keyword(
                            db, campaign.id, kw["Keyword"], str(kw.get("Id") or ""),
                            bid / 1_000_000 if bid else None, kw.get("State"),
                        )
                        summary.keywords += 1
            except Exception as e:
                logger.warning(f"Auxiliary sync failed for campaign {campaign.yandex_id}: {e}")
                summary.auxiliary_failures.append(campaign.yandex_id)

        async with self.database.session() as db:
            db.add(ActivityLog(
                action="data_synced",
                category="sync",
                description=f"Synced {summary.campaigns} campaigns and {summary.stats} stat rows ({mode})",
                details=summary.model_dump(mode="json"),
                status="partial" if summary.auxiliary_failures else "success",
            ))
        return summary

    # ══════════════════════════════════════════════════════════════════
    #  QUESTIONS
    # ══════════════════════════════════════════════════════════════════

    async def handle_user_question(self, question: str, user_id: str) -> Union[Answer, ClarificationRequest]:
        logger.info(f"Handling question from user {user_id}")
        classification = await self.ai.classify(question)
        resolved = await self.resolver.resolve(classification, user_id)
        session = await self.conversations.get_session(user_id)
        has_focus = bool(session.current_campaign_id or session.current_proposal_id)

        if resolved.needs_clarification and not (resolved.fallback_menu and has_focus):
            return self._clarification(resolved)

        if resolved.campaign_id and resolved.campaign_id != session.current_campaign_id:
            session = await self.set_current_campaign(user_id, resolved.campaign_id)
        elif resolved.proposal_id and resolved.proposal_id != session.current_proposal_id:
            session = await self.set_current_proposal(user_id, resolved.proposal_id)

        campaign_id, proposal_id = session.current_campaign_id, session.current_proposal_id
        if campaign_id:
            conversation_type = ConversationType.CAMPAIGN_ANALYSIS.value
        elif proposal_id:
            conversation_type = ConversationType.PROPOSAL.value
        else:
            conversation_type = ConversationType.GENERAL.value

        conversation = await self.conversations.get_or_create_conversation(conversation_type, campaign_id, proposal_id)
        context = await self.conversations.build_context(user_id, resolved, conversation_id=conversation.id)
        data = await self._question_data(campaign_id)

        await self.conversations.add_message(
            conversation.id, MessageRole.USER.value, question,
            {"classification": classification.model_dump()},
        )
        answer = await self.ai.answer_question(question, data, context)
        await self.conversations.add_message(conversation.id, MessageRole.ASSISTANT.value, answer)
        await self.conversations.set_current_conversation(user_id, conversation.id)

        if proposal_id:
            await self._mark_discussing(proposal_id)
        return Answer(text=answer, conversation_id=conversation.id, campaign_id=campaign_id, proposal_id=proposal_id)

    @staticmethod
    def _clarification(resolved) -> ClarificationRequest:
        if resolved.suggested_proposals and not resolved.suggested_campaigns:
            text = "Which proposal do you mean?"
        elif resolved.fallback_menu:
            text = "Which campaign is this about? Pick one or ask about the whole account."
        else:
            text = "Several campaigns match. Which one do you mean?"
        lines = [text]
        lines += [f"• {c.name} (id {c.yandex_id})" for c in resolved.suggested_campaigns]
        lines += [f"• {p.title} ({p.status})" for p in resolved.suggested_proposals]
        return ClarificationRequest(
            text="\n".join(lines),
            campaigns=resolved.suggested_campaigns,
            proposals=resolved.suggested_proposals,
        )

    async def _question_data(self, campaign_id: Optional[uuid.UUID]) -> list[dict]:
        """Last 7 days of stored stats for the focused campaign, or every active campaign."""
        date_from, date_to = days_ago(7), today()
        async with self.database.session() as db:
            if campaign_id:
                campaign = await store.get_campaign(db, campaign_id)
                campaigns = [campaign] if campaign else []
            else:
                campaigns = await store.list_campaigns(db, status="active")
            data = []
            for c in campaigns:
                rows = await store.get_stats_between(db, date_from, date_to, c.id)
                data.append({
                    "campaign_id": c.yandex_id,
                    "campaign_name": c.name,
                    "stats": [
                        {
                            "date": s.stat_date.isoformat(),
                            "impressions": s.impressions,
                            "clicks": s.clicks,
                            "cost": s.cost,
                            "conversions": s.conversions,
                            "ctr": s.ctr,
                            "cpa": s.cpa,
                        }
                        for s in rows
                    ],
                })
        return data

    async def _mark_discussing(self, proposal_id: uuid.UUID) -> None:
        async with self.database.session() as db:
            proposal = await db.get(Proposal, proposal_id)
            if proposal and proposal.status == ProposalStatus.DRAFT.value:
                proposal.status = ProposalStatus.DISCUSSING.value

    # ══════════════════════════════════════════════════════════════════
    #  PROPOSALS
    # ══════════════════════════════════════════════════════════════════

    async def generate_campaign_proposal(self, request: str, user_id: str) -> ProposalDraft:
        """Draft a plan, persist Proposal + its conversation atomically, then focus the user on it."""
        logger.info(f"Generating campaign proposal for user {user_id}")
        context = await self.conversations.build_context(user_id)
        plan = await self.ai.generate_proposal(request, context)
        text = self._format_plan(plan)

        async with self.database.session() as db:
            proposal = Proposal(
                title=plan.title,
                status=ProposalStatus.DRAFT.value,
                plan=plan.model_dump(mode="json"),
                reasoning=plan.reasoning,
                request=request,
                created_by=str(user_id),
            )
            db.add(proposal)
            await db.flush()

            conversation = Conversation(
                type=ConversationType.PROPOSAL.value,
                proposal_id=proposal.id,
                focus_key=focus_key(ConversationType.PROPOSAL.value, None, proposal.id),
                status=ConversationStatus.ACTIVE.value,
            )
            db.add(conversation)
            await db.flush()
            proposal.conversation_id = conversation.id

            db.add(Message(conversation_id=conversation.id, sequence=1, role=MessageRole.USER.value, content=request))
            db.add(Message(
                conversation_id=conversation.id, sequence=2, role=MessageRole.ASSISTANT.value, content=text,
                metadata_={"proposal_id": str(proposal.id)},
            ))
            db.add(ActivityLog(
                action="proposal_created",
                category="proposals",
                description=f"Drafted proposal '{plan.title}'",
                entity_type="proposal",
                entity_id=str(proposal.id),
                details={"request": request, "strategy": plan.strategy, "daily_budget": plan.daily_budget},
            ))

        await self.set_current_proposal(user_id, proposal.id)
        return ProposalDraft(proposal_id=proposal.id, conversation_id=conversation.id, title=plan.title, text=text)

    @staticmethod
    def _format_plan(plan) -> str:
        lines = [
            f"📝 Proposal: {plan.title}",
            "",
            f"Campaign: {plan.campaign_name}",
            f"Strategy: {plan.strategy or 'default'}",
            f"Daily budget: {format_money(plan.daily_budget)}",
            f"Keywords ({len(plan.keywords)}): " + ", ".join(plan.keywords[:10]) + ("…" if len(plan.keywords) > 10 else ""),
        ]
        if plan.negative_keywords:
            lines.append("Negative keywords: " + ", ".join(plan.negative_keywords[:10]))
        if plan.summary:
            lines += ["", plan.summary]
        if plan.reasoning:
            lines += ["", plan.reasoning]
        return "\n".join(lines)

    async def approve_proposal(self, proposal_id: uuid.UUID) -> dict:
        """
        draft/discussing → approved (claimed) → platform campaign created → implemented.
        Any failure before the local write restores the prior status.
        """
        async with self.database.session() as db:
            proposal = await db.get(Proposal, proposal_id)
            if proposal is None:
                raise NotFoundError("Proposal", proposal_id)
            prior_status = proposal.status
            if prior_status not in (ProposalStatus.DRAFT.value, ProposalStatus.DISCUSSING.value):
                raise ValidationFailure(f"Proposal is {prior_status}; only draft or discussing proposals can be approved")
            plan = parse_proposal_plan(proposal.plan)
            strategy = map_strategy(plan.strategy)
            claimed = await db.execute(
                update(Proposal)
                .where(Proposal.id == proposal_id, Proposal.status == prior_status)
                .values(status=ProposalStatus.APPROVED.value)
            )
            if claimed.rowcount != 1:
                raise ValidationFailure("Proposal is already being approved")

        try:
            created = await self.platform.create_campaign(plan, strategy)
        except Exception:
            logger.exception(f"Campaign creation for proposal {proposal_id} failed")
            async with self.database.session() as db:
                proposal = await db.get(Proposal, proposal_id)
                proposal.status = prior_status
            raise

        async with self.database.session() as db:
            campaign = await store.upsert_campaign(
                db, created["campaign_id"], created.get("name") or plan.campaign_name, "active",
                settings={"strategy": strategy, "daily_budget": plan.daily_budget, "proposal_id": str(proposal_id)},
            )
            proposal = await db.get(Proposal, proposal_id)
            proposal.status = ProposalStatus.IMPLEMENTED.value
            proposal.campaign_id = campaign.id
            proposal.implemented_at = utcnow()
            db.add(ActivityLog(
                action="proposal_implemented",
                category="proposals",
                description=f"Created campaign '{campaign.name}' ({campaign.yandex_id}) from proposal '{proposal.title}'",
                entity_type="proposal",
                entity_id=str(proposal_id),
                campaign_id=campaign.id,
                details={"strategy": strategy, "platform_result": created},
            ))

        logger.info(f"Proposal {proposal_id} implemented as campaign {created['campaign_id']}")
        return {
            "proposal_id": str(proposal_id),
            "status": ProposalStatus.IMPLEMENTED.value,
            "campaign_id": str(campaign.id),
            "yandex_id": campaign.yandex_id,
            "strategy": strategy,
        }

    async def reject_proposal(self, proposal_id: uuid.UUID) -> dict:
        async with self.database.session() as db:
            proposal = await db.get(Proposal, proposal_id)
            if proposal is None:
                raise NotFoundError("Proposal", proposal_id)
            if proposal.status not in (ProposalStatus.DRAFT.value, ProposalStatus.DISCUSSING.value):
                raise ValidationFailure(f"Proposal is already {proposal.status}")
            proposal.status = ProposalStatus.REJECTED.value
            db.add(ActivityLog(
                action="proposal_rejected",
                category="proposals",
                description=f"Rejected proposal '{proposal.title}'",
                entity_type="proposal",
                entity_id=str(proposal_id),
            ))
        return {"proposal_id": str(proposal_id), "status": ProposalStatus.REJECTED.value}

    async def list_active_proposals(self) -> list[Proposal]:
        async with self.database.session() as db:
            result = await db.execute(
                select(Proposal)
                .where(Proposal.status.in_([ProposalStatus.DRAFT.value, ProposalStatus.DISCUSSING.value]))
                .order_by(Proposal.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_campaigns(self, status: Optional[str] = None) -> list[Campaign]:
        async with self.database.session() as db:
            return await store.list_campaigns(db, status=status)

    # ══════════════════════════════════════════════════════════════════
    #  ACTIONS & FOCUS
    # ══════════════════════════════════════════════════════════════════

    async def execute_action(self, action_id: uuid.UUID) -> ActionOutcome:
        return await self.actions.execute_action(action_id)

    async def reject_action(self, action_id: uuid.UUID) -> ActionOutcome:
        return await self.actions.reject_action(action_id)

    async def set_current_campaign(self, user_id: str, campaign_id: uuid.UUID):
        return await self.conversations.switch_focus(user_id, campaign_id=campaign_id)

    async def set_current_proposal(self, user_id: str, proposal_id: uuid.UUID):
        return await self.conversations.switch_focus(user_id, proposal_id=proposal_id)

    async def clear_current_context(self, user_id: str):
        return await self.conversations.switch_focus(user_id)
