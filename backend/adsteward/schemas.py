"""
Typed payloads that flow through the pipeline: LLM results, resolved context,
tagged action parameters, proposal plans and job payloads.
"""

import uuid
from datetime import date
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from adsteward.errors import ValidationFailure


# ── LLM results ───────────────────────────────────────────────────────

class Classification(BaseModel):
    campaign_hint: Optional[str] = None
    proposal_hint: Optional[str] = None
    confidence: float = 0.0
    intent: Optional[str] = None


class ConversationSummary(BaseModel):
    topic: str = ""
    summary: str = ""
    decisions: list[str] = Field(default_factory=list)
    key_facts: list[str] = Field(default_factory=list)


# ── Context resolution ────────────────────────────────────────────────

class CampaignRef(BaseModel):
    id: uuid.UUID
    yandex_id: str
    name: str


class ProposalRef(BaseModel):
    id: uuid.UUID
    title: str
    status: str


class ResolvedContext(BaseModel):
    campaign_id: Optional[uuid.UUID] = None
    campaign_yandex_id: Optional[str] = None
    campaign_name: Optional[str] = None
    proposal_id: Optional[uuid.UUID] = None
    proposal_title: Optional[str] = None
    confidence: float = 0.0
    needs_clarification: bool = False
    # Menu came from the low-confidence fallback, not from ambiguous matches
    fallback_menu: bool = False
    suggested_campaigns: list[CampaignRef] = Field(default_factory=list)
    suggested_proposals: list[ProposalRef] = Field(default_factory=list)

    @property
    def is_bound(self) -> bool:
        return self.campaign_id is not None or self.proposal_id is not None


class ClarificationRequest(BaseModel):
    kind: Literal["clarification"] = "clarification"
    text: str
    campaigns: list[CampaignRef] = Field(default_factory=list)
    proposals: list[ProposalRef] = Field(default_factory=list)


class Answer(BaseModel):
    kind: Literal["answer"] = "answer"
    text: str
    conversation_id: uuid.UUID
    campaign_id: Optional[uuid.UUID] = None
    proposal_id: Optional[uuid.UUID] = None


QuestionResult = Union[Answer, ClarificationRequest]


# ── Action parameters (one variant per platform mutation) ─────────────

class UpdateBidParams(BaseModel):
    type: Literal["update_bid"] = "update_bid"
    bid: float = Field(gt=0)
    keyword_id: Optional[int] = None
    ad_group_id: Optional[int] = None


class AddNegativeKeywordsParams(BaseModel):
    type: Literal["add_negative_keywords"] = "add_negative_keywords"
    keywords: list[str] = Field(min_length=1)


class SuspendCampaignParams(BaseModel):
    type: Literal["suspend_campaign"] = "suspend_campaign"


class ResumeCampaignParams(BaseModel):
    type: Literal["resume_campaign"] = "resume_campaign"


class UpdateBudgetParams(BaseModel):
    type: Literal["update_budget"] = "update_budget"
    daily_budget: float = Field(gt=0)


class UpdateAdParams(BaseModel):
    type: Literal["update_ad"] = "update_ad"
    ad_id: int
    title: Optional[str] = None
    title2: Optional[str] = None
    text: Optional[str] = None
    href: Optional[str] = None

    @model_validator(mode="after")
    def _something_to_change(self) -> "UpdateAdParams":
        if not any((self.title, self.title2, self.text, self.href)):
            raise ValueError("update_ad needs at least one of title, title2, text, href")
        return self


class UpdateScheduleParams(BaseModel):
    """Yandex TimeTargeting schedule rows, e.g. "1A0B0C0D0E0F0G0H0I100J100..."."""
    type: Literal["update_schedule"] = "update_schedule"
    schedule: list[str] = Field(min_length=1)
    consider_working_weekends: bool = True


class BidModifierAdjustment(BaseModel):
    kind: Literal["mobile", "desktop", "demographics", "regional"]
    bid_modifier: int = Field(ge=0, le=1300)
    region_id: Optional[int] = None
    age: Optional[str] = None
    gender: Optional[str] = None


class UpdateBidModifiersParams(BaseModel):
    type: Literal["update_bid_modifiers"] = "update_bid_modifiers"
    modifiers: list[BidModifierAdjustment] = Field(min_length=1)


ActionParams = Annotated[
    Union[
        UpdateBidParams,
        AddNegativeKeywordsParams,
        SuspendCampaignParams,
        ResumeCampaignParams,
        UpdateBudgetParams,
        UpdateAdParams,
        UpdateScheduleParams,
        UpdateBidModifiersParams,
    ],
    Field(discriminator="type"),
]

_action_params_adapter = TypeAdapter(ActionParams)


def parse_action_params(action_type: str, params: Optional[dict]) -> ActionParams:
    """Validate raw params into the variant for action_type, or raise ValidationFailure."""
    data = dict(params or {})
    data.pop("type", None)
    data["type"] = action_type
    try:
        return _action_params_adapter.validate_python(data)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid params for action '{action_type}': {e}") from e


class Recommendation(BaseModel):
    title: str
    description: str = ""
    priority: Literal["high", "medium", "low"] = "medium"
    # Yandex campaign ids or names the action targets; empty = all analysed campaigns
    campaign_ids: list[str] = Field(default_factory=list)
    action: Optional[ActionParams] = None


class AnalysisResult(BaseModel):
    text: str = ""
    insights: list[str] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    summary: Optional[str] = None


# ── Proposal plans ────────────────────────────────────────────────────

class AdDraft(BaseModel):
    title: str = Field(min_length=1, max_length=56)
    title2: Optional[str] = Field(default=None, max_length=30)
    text: str = Field(min_length=1, max_length=81)
    href: str


class ProposalPlan(BaseModel):
    title: str = Field(min_length=1)
    campaign_name: str = Field(min_length=1)
    campaign_type: Literal["TEXT_CAMPAIGN"] = "TEXT_CAMPAIGN"
    strategy: str = ""
    daily_budget: float = Field(gt=0)
    start_date: Optional[date] = None
    regions: list[int] = Field(default_factory=list)
    keywords: list[str] = Field(min_length=1)
    negative_keywords: list[str] = Field(default_factory=list)
    ads: list[AdDraft] = Field(default_factory=list)
    reasoning: str = ""
    summary: str = ""


def parse_proposal_plan(data: Optional[dict]) -> ProposalPlan:
    try:
        return ProposalPlan.model_validate(data or {})
    except ValidationError as e:
        raise ValidationFailure(f"Malformed proposal plan: {e}") from e


# ── Operation results ─────────────────────────────────────────────────

class ReportResult(BaseModel):
    text: str
    recommendations: list[Recommendation] = Field(default_factory=list)
    action_ids: list[uuid.UUID] = Field(default_factory=list)


class ActionOutcome(BaseModel):
    action_id: uuid.UUID
    status: str
    executed: bool = False
    message: str = ""
    result: Optional[dict] = None


class SyncSummary(BaseModel):
    mode: str
    date_from: date
    date_to: date
    campaigns: int = 0
    stats: int = 0
    keywords: int = 0
    auxiliary_failures: list[str] = Field(default_factory=list)


class ProposalDraft(BaseModel):
    proposal_id: uuid.UUID
    conversation_id: uuid.UUID
    title: str
    text: str


# ── Job payloads ──────────────────────────────────────────────────────

class ReportJob(BaseModel):
    kind: Literal["report"] = "report"
    chat_id: int
    report_type: Literal["daily", "weekly"] = "daily"


class UserQuestionJob(BaseModel):
    kind: Literal["user_question"] = "user_question"
    chat_id: int
    user_id: str
    question: str = Field(min_length=1)


class CreateProposalJob(BaseModel):
    kind: Literal["create_proposal"] = "create_proposal"
    chat_id: int
    user_id: str
    description: str = Field(min_length=1)


class SyncJob(BaseModel):
    kind: Literal["sync"] = "sync"
    chat_id: Optional[int] = None
    mode: Literal["full", "recent"] = "recent"


JobPayload = Annotated[
    Union[ReportJob, UserQuestionJob, CreateProposalJob, SyncJob],
    Field(discriminator="kind"),
]

job_payload_adapter = TypeAdapter(JobPayload)
