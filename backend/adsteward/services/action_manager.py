"""
Action Manager — approval state machine for platform-mutating actions.

    pending ──approve──> approved ──ok──> executed
       │                     └──error──> failed
       └──reject / expired──> rejected

Nothing reaches Yandex Direct until a human approves, and never once the action
is older than action_expiry_hours. Transitions are conditional UPDATEs so that two
concurrent approvals execute the platform call at most once.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional
from sqlalchemy import select, update, desc

from adsteward.config import Settings, get_settings
from adsteward.database import Database
from adsteward.errors import ActionExpiredError, NotFoundError, ValidationFailure
from adsteward.models import (
    ActionStatus, ActivityLog, Campaign, PendingAction, TERMINAL_ACTION_STATUSES,
)
from adsteward.schemas import ActionOutcome, parse_action_params
from adsteward.utils import utcnow

logger = logging.getLogger(__name__)

# action type -> DirectClient method; every method takes the Yandex campaign id first
PLATFORM_CALLS: dict[str, str] = {
    "update_bid": "update_bid",
    "add_negative_keywords": "add_negative_keywords",
    "suspend_campaign": "suspend_campaign",
    "resume_campaign": "resume_campaign",
    "update_budget": "update_budget",
    "update_ad": "update_ad",
    "update_schedule": "update_schedule",
    "update_bid_modifiers": "update_bid_modifiers",
}

ACTION_LABELS = {
    "update_bid": "Change bid",
    "add_negative_keywords": "Add negative keywords",
    "suspend_campaign": "Suspend campaign",
    "resume_campaign": "Resume campaign",
    "update_budget": "Change daily budget",
    "update_ad": "Update ad",
    "update_schedule": "Update schedule",
    "update_bid_modifiers": "Update bid modifiers",
}


def describe_action(action: PendingAction, campaign_name: Optional[str] = None) -> str:
    """Human-readable approval card text."""
    params = {k: v for k, v in (action.params or {}).items() if k != "type"}
    lines = [f"🔧 {ACTION_LABELS.get(action.action_type, action.action_type)}"]
    if campaign_name:
        lines.append(f"Campaign: {campaign_name}")
    if params:
        lines.append("Params: " + ", ".join(f"{k}={v}" for k, v in params.items()))
    if action.reasoning:
        lines.append(f"\n{action.reasoning}")
    return "\n".join(lines)


class ActionManager:

    def __init__(self, database: Database, platform, settings: Optional[Settings] = None):
        self.database = database
        self.platform = platform
        self.settings = settings or get_settings()

    async def create_action(
        self,
        campaign_id: uuid.UUID,
        action_type: str,
        params: Optional[dict],
        reasoning: str = "",
    ) -> PendingAction:
        if action_type not in PLATFORM_CALLS:
            raise ValidationFailure(f"Unknown action type '{action_type}'")
        validated = parse_action_params(action_type, params)

        async with self.database.session() as db:
            if await db.get(Campaign, campaign_id) is None:
                raise NotFoundError("Campaign", campaign_id)
            action = PendingAction(
                campaign_id=campaign_id,
                action_type=action_type,
                params=validated.model_dump(mode="json"),
                reasoning=reasoning,
                status=ActionStatus.PENDING.value,
            )
            db.add(action)
            await db.flush()
        logger.info(f"Created pending action {action.id} ({action_type}) for campaign {campaign_id}")
        return action

    async def attach_message(self, action_id: uuid.UUID, message_id) -> None:
        async with self.database.session() as db:
            action = await db.get(PendingAction, action_id)
            if action is None:
                raise NotFoundError("PendingAction", action_id)
            action.chat_message_id = str(message_id) if message_id is not None else None

    async def get_action(self, action_id: uuid.UUID) -> PendingAction:
        async with self.database.session() as db:
            action = await db.get(PendingAction, action_id)
        if action is None:
            raise NotFoundError("PendingAction", action_id)
        return action

    async def list_actions(self, status: Optional[str] = None, campaign_id: Optional[uuid.UUID] = None,
                           limit: int = 100) -> list[PendingAction]:
        async with self.database.session() as db:
            q = select(PendingAction).order_by(desc(PendingAction.created_at)).limit(limit)
            if status:
                q = q.where(PendingAction.status == status)
            if campaign_id:
                q = q.where(PendingAction.campaign_id == campaign_id)
            result = await db.execute(q)
            return list(result.scalars().all())

    async def _transition(self, action_id: uuid.UUID, from_status: str, **values) -> bool:
        """Conditional UPDATE; True only for the caller that moved the row."""
        async with self.database.session() as db:
            result = await db.execute(
                update(PendingAction)
                .where(PendingAction.id == action_id, PendingAction.status == from_status)
                .values(**values)
            )
            return result.rowcount == 1

    @staticmethod
    def _noop(action: PendingAction) -> ActionOutcome:
        return ActionOutcome(
            action_id=action.id,
            status=action.status,
            executed=False,
            message=f"Action is already {action.status}",
            result=action.result,
        )

    async def execute_action(self, action_id: uuid.UUID) -> ActionOutcome:
        """
        Approve and execute. Raises NotFoundError, ActionExpiredError, or the platform
        error (after marking the action failed). Terminal or in-flight actions are
        reported as-is without calling the platform.
        """
        action = await self.get_action(action_id)
        if action.status in TERMINAL_ACTION_STATUSES or action.status == ActionStatus.APPROVED.value:
            return self._noop(action)

        now = utcnow()
        age = now - action.created_at
        if age > timedelta(hours=self.settings.action_expiry_hours):
            age_hours = age.total_seconds() / 3600
            moved = await self._transition(
                action.id, ActionStatus.PENDING.value,
                status=ActionStatus.REJECTED.value,
                decided_at=now,
                error_message=f"Expired after {age_hours:.1f}h without approval",
            )
            if not moved:
                return self._noop(await self.get_action(action.id))
            logger.info(f"Action {action.id} expired ({age_hours:.1f}h) and was rejected")
            raise ActionExpiredError(str(action.id), age_hours)

        claimed = await self._transition(
            action.id, ActionStatus.PENDING.value,
            status=ActionStatus.APPROVED.value,
            decided_at=now,
        )
        if not claimed:
            return self._noop(await self.get_action(action.id))

        try:
            result = await self._dispatch(action)
        except Exception as e:
            logger.error(f"Action {action.id} ({action.action_type}) failed: {e}")
            async with self.database.session() as db:
                await db.execute(
                    update(PendingAction)
                    .where(PendingAction.id == action.id)
                    .values(status=ActionStatus.FAILED.value, error_message=str(e)[:2000], executed_at=utcnow())
                )
            raise

        async with self.database.session() as db:
            await db.execute(
                update(PendingAction)
                .where(PendingAction.id == action.id)
                .values(status=ActionStatus.EXECUTED.value, result=result, executed_at=utcnow())
            )
            db.add(ActivityLog(
                action="action_executed",
                category="actions",
                description=f"Executed {action.action_type} on campaign {action.campaign_id}",
                entity_type="pending_action",
                entity_id=str(action.id),
                campaign_id=action.campaign_id,
                details={
                    "type": action.action_type,
                    "params": action.params,
                    "reasoning": action.reasoning,
                    "result": result,
                    "dry_run": self.settings.dry_run_actions,
                },
            ))

        logger.info(f"Action {action.id} ({action.action_type}) executed")
        return ActionOutcome(
            action_id=action.id,
            status=ActionStatus.EXECUTED.value,
            executed=True,
            message="Action executed",
            result=result,
        )

    async def _dispatch(self, action: PendingAction) -> dict:
        params = parse_action_params(action.action_type, action.params)
        async with self.database.session() as db:
            campaign = await db.get(Campaign, action.campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", action.campaign_id)

        kwargs = params.model_dump(exclude={"type"})
        if self.settings.dry_run_actions:
            logger.info(f"[dry-run] {action.action_type} campaign={campaign.yandex_id} params={kwargs}")
            return {"dry_run": True, "params": kwargs}

        call = getattr(self.platform, PLATFORM_CALLS[action.action_type])
        return await call(campaign.yandex_id, **kwargs) or {}

    async def reject_action(self, action_id: uuid.UUID) -> ActionOutcome:
        """pending -> rejected. Terminal and in-flight actions keep their status."""
        action = await self.get_action(action_id)
        moved = await self._transition(
            action.id, ActionStatus.PENDING.value,
            status=ActionStatus.REJECTED.value,
            decided_at=utcnow(),
        )
        if not moved:
            return self._noop(await self.get_action(action.id))

        async with self.database.session() as db:
            db.add(ActivityLog(
                action="action_rejected",
                category="actions",
                description=f"Rejected {action.action_type} on campaign {action.campaign_id}",
                entity_type="pending_action",
                entity_id=str(action.id),
                campaign_id=action.campaign_id,
                details={"type": action.action_type, "params": action.params},
            ))
        logger.info(f"Action {action.id} rejected")
        return ActionOutcome(action_id=action.id, status=ActionStatus.REJECTED.value, message="Action rejected")
