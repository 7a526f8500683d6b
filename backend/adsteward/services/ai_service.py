"""
AI Service — Multi-provider LLM (OpenAI-compatible, Anthropic Claude) for analysis,
question answering, classification, campaign proposals and conversation summaries.
"""

import json
import logging
from typing import Optional
from openai import AsyncOpenAI
from anthropic import AsyncAnthropic
from pydantic import ValidationError

from adsteward.config import Settings, get_settings
from adsteward.errors import UpstreamError, ValidationFailure
from adsteward.schemas import (
    AnalysisResult, Classification, ConversationSummary, ProposalPlan, Recommendation,
    parse_proposal_plan,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert Yandex Direct strategist managing search advertising campaigns.

Key metrics you understand:
- CTR (Click-Through Rate) = Clicks / Impressions × 100
- CPC (Cost Per Click) = Cost / Clicks
- CPA (Cost Per Acquisition) = Cost / Conversions
- ROI = (Revenue − Cost) / Cost × 100

CRITICAL RULES:
- You have REAL campaign data provided as context. Always reference actual numbers.
- Never invent campaigns, ids or metrics that are not in the data.
- Be specific: exact bids, budgets and keywords, current → proposed values.
- Flag risks and prioritize by impact (high/medium/low).
- Keep answers short enough for a chat message."""

ACTION_SCHEMA = """Each recommendation may carry ONE structured "action" the user can approve.
Allowed action shapes (use exactly these "type" values and fields):
  {"type": "update_bid", "bid": 12.5, "keyword_id": 123}            (keyword_id or ad_group_id optional)
  {"type": "add_negative_keywords", "keywords": ["free", "download"]}
  {"type": "suspend_campaign"}
  {"type": "resume_campaign"}
  {"type": "update_budget", "daily_budget": 1500}
  {"type": "update_ad", "ad_id": 456, "title": "...", "text": "...", "href": "..."}
  {"type": "update_schedule", "schedule": ["1A0B0C0...", "2A0B0C0..."]}
  {"type": "update_bid_modifiers", "modifiers": [{"kind": "mobile", "bid_modifier": 80}]}
Put the Yandex campaign ids the action applies to in "campaign_ids".
Omit "action" for advice that needs no platform change."""

TASK_PROMPTS = {
    "daily_report": "Analyze yesterday's performance against the previous day.",
    "weekly_report": "Analyze the trailing week against the previous week and identify durable trends.",
    "evening_check": "Quick check of today's spend so far. Only recommend something if it is urgent.",
}


def _parse_model_id(model_id: Optional[str], default_model: str) -> tuple[str, str]:
    """Parse 'provider:model' into (provider, model). Fallback to OpenAI config."""
    if model_id and ":" in model_id:
        p, m = model_id.split(":", 1)
        return (p.strip().lower(), m.strip())
    return ("openai", model_id or default_model)


def _loads(content: str):
    """json.loads tolerant of ```json fences around the payload."""
    text = (content or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    return json.loads(text)


class AIService:
    """Multi-provider LLM service (OpenAI or any OpenAI-compatible gateway, Anthropic Claude)."""

    def __init__(
        self,
        model_id: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.provider, self.model = _parse_model_id(model_id or settings.ai_model, settings.openai_model)
        self._openai_client: Optional[AsyncOpenAI] = None
        self._anthropic_client: Optional[AsyncAnthropic] = None

        openai_key = openai_api_key or settings.openai_api_key
        anthropic_key = anthropic_api_key or settings.anthropic_api_key

        if self.provider in ("openai", "openrouter"):
            if not openai_key:
                raise ValueError("OPENAI_API_KEY not configured. Set OPENAI_API_KEY env.")
            self._openai_client = AsyncOpenAI(api_key=openai_key, base_url=settings.openai_base_url or None)
        elif self.provider == "anthropic":
            if not anthropic_key:
                raise ValueError("ANTHROPIC_API_KEY not configured. Set ANTHROPIC_API_KEY env.")
            self._anthropic_client = AsyncAnthropic(api_key=anthropic_key)
        else:
            raise ValueError(f"Unknown AI provider: {self.provider}")

    async def _completion(
        self,
        messages: list[dict],
        temperature: float = 0.3,
        max_tokens: int = 4000,
        json_response: bool = False,
    ) -> str:
        """Call the appropriate provider's completion API."""
        try:
            if self._openai_client is not None:
                kwargs = dict(
                    model=self.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                if json_response:
                    kwargs["response_format"] = {"type": "json_object"}
                response = await self._openai_client.chat.completions.create(**kwargs)
                return response.choices[0].message.content or ""

            # Anthropic: system prompt travels separately
            system = ""
            anthropic_messages = []
            for m in messages:
                role = m.get("role", "user")
                content = m.get("content", "")
                if role == "system":
                    system += content + "\n\n" if content else ""
                else:
                    anthropic_messages.append({"role": "user" if role == "user" else "assistant", "content": content})

            response = await self._anthropic_client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system.strip() if system else None,
                messages=anthropic_messages,
            )
            if response.content and response.content[0].type == "text":
                return response.content[0].text
            return ""
        except Exception as e:
            logger.error(f"LLM completion failed ({self.provider}:{self.model}): {e}")
            raise UpstreamError("llm", str(e)) from e

    # ── Analysis ──────────────────────────────────────────────────────

    async def analyze(self, data: list[dict], context: dict, task: str) -> AnalysisResult:
        """Analyze campaign data for a report task. Returns text, insights and recommendations."""
        prompt = f"""{TASK_PROMPTS.get(task, "Analyze the campaign data.")}

**Campaign Data:**
```json
{json.dumps(data, indent=2, default=str, ensure_ascii=False)[:12000]}
```

{ACTION_SCHEMA}

Respond ONLY with valid JSON:
{{
    "text": "Report body for the chat message (markdown)",
    "summary": "One sentence summary",
    "insights": ["observation with numbers"],
    "recommendations": [
        {{
            "title": "Short title",
            "description": "What and why, with numbers",
            "priority": "high|medium|low",
            "campaign_ids": ["yandex campaign id"],
            "action": {{"type": "..."}}
        }}
    ]
}}"""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "system", "content": self._build_context_message(context)},
            {"role": "user", "content": prompt},
        ]
        content = await self._completion(messages, temperature=0.2, json_response=True)
        try:
            raw = _loads(content)
        except json.JSONDecodeError:
            return AnalysisResult(text=content)
        return AnalysisResult(
            text=raw.get("text") or "",
            summary=raw.get("summary"),
            insights=[str(i) for i in raw.get("insights") or []],
            recommendations=[r for r in (self._parse_recommendation(x) for x in raw.get("recommendations") or []) if r],
        )

    @staticmethod
    def _parse_recommendation(raw) -> Optional[Recommendation]:
        """Validate one recommendation; an invalid action is dropped, the advice is kept."""
        if not isinstance(raw, dict) or not raw.get("title"):
            return None
        raw = dict(raw)
        raw["campaign_ids"] = [str(c) for c in raw.get("campaign_ids") or []]
        if raw.get("priority") not in ("high", "medium", "low"):
            raw["priority"] = "medium"
        try:
            return Recommendation.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Dropping invalid action on recommendation '{raw.get('title')}': {e.error_count()} errors")
            raw.pop("action", None)
            try:
                return Recommendation.model_validate(raw)
            except ValidationError:
                return None

    async def classify(self, text: str) -> Classification:
        """Detect which campaign or proposal a free-text message is about."""
        prompt = f"""Classify this user message from an advertising chat.

Message: "{text}"

Respond ONLY with valid JSON:
{{
    "campaign_hint": "campaign name or id mentioned, or null",
    "proposal_hint": "proposal / new campaign title mentioned, or null",
    "intent": "question|command|proposal_followup|other",
    "confidence": 0.0-1.0
}}"""
        content = await self._completion(
            [{"role": "user", "content": prompt}],
            temperature=0.0,
            max_tokens=300,
            json_response=True,
        )
        try:
            raw = _loads(content)
            return Classification.model_validate(raw)
        except (json.JSONDecodeError, ValidationError):
            logger.warning("Classification response was not valid JSON; treating as unscoped")
            return Classification(confidence=0.0)

    async def answer_question(self, question: str, data: list[dict], context: dict) -> str:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "system", "content": self._build_context_message(context)},
        ]
        for msg in context.get("conversation", [])[-20:]:
            messages.append({"role": msg.get("role", "user"), "content": msg.get("content", "")})
        messages.append({
            "role": "user",
            "content": f"{question}\n\n**Campaign Data:**\n```json\n"
                       f"{json.dumps(data, indent=2, default=str, ensure_ascii=False)[:8000]}\n```",
        })
        return await self._completion(messages, temperature=0.3, max_tokens=2000)

    async def generate_proposal(self, request: str, context: dict) -> ProposalPlan:
        """Draft a new-campaign plan. Raises ValidationFailure if the plan is malformed."""
        prompt = f"""Design a new Yandex Direct search campaign for this request:

"{request}"

Respond ONLY with valid JSON:
{{
    "title": "Short proposal title",
    "campaign_name": "Campaign name",
    "campaign_type": "TEXT_CAMPAIGN",
    "strategy": "e.g. maximum clicks | maximum conversions | average CPA | average CPC | manual",
    "daily_budget": 1000,
    "start_date": "YYYY-MM-DD or null",
    "regions": [225],
    "keywords": ["keyword phrase"],
    "negative_keywords": ["excluded word"],
    "ads": [{{"title": "max 56 chars", "title2": "max 30 chars", "text": "max 81 chars", "href": "https://..."}}],
    "reasoning": "Why this structure",
    "summary": "Two sentence pitch for the chat"
}}"""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "system", "content": self._build_context_message(context)},
            {"role": "user", "content": prompt},
        ]
        content = await self._completion(messages, temperature=0.4, json_response=True)
        try:
            raw = _loads(content)
        except json.JSONDecodeError as e:
            raise ValidationFailure("Proposal response was not valid JSON") from e
        return parse_proposal_plan(raw)

    async def summarize_conversation(self, messages: list[dict]) -> ConversationSummary:
        transcript = "\n".join(f"{m.get('role')}: {m.get('content')}" for m in messages)
        prompt = f"""Summarize this conversation for long-term memory.

{transcript[:12000]}

Respond ONLY with valid JSON:
{{
    "topic": "Short topic",
    "summary": "2-4 sentence summary",
    "decisions": ["decision made"],
    "key_facts": ["durable fact worth remembering about the account or campaigns"]
}}"""
        content = await self._completion(
            [{"role": "user", "content": prompt}],
            temperature=0.2,
            max_tokens=1000,
            json_response=True,
        )
        try:
            return ConversationSummary.model_validate(_loads(content))
        except (json.JSONDecodeError, ValidationError):
            return ConversationSummary(summary=content)

    def _build_context_message(self, context: Optional[dict]) -> str:
        """Render goals, knowledge and focus context as a compact system message."""
        context = context or {}
        parts = ["# Account Context"]

        if context.get("goals"):
            parts.append(f"\n## Goals\n{context['goals']}")

        facts = context.get("knowledge") or []
        if facts:
            parts.append(f"\n## Known Facts ({len(facts)})")
            for f in facts:
                parts.append(f"  - {f.get('fact')} (source: {f.get('source')}, confidence: {f.get('confidence')})")

        practices = context.get("best_practices") or []
        if practices:
            parts.append("\n## Best Practices")
            parts.extend(f"  - {p}" for p in practices)

        campaign = context.get("campaign")
        if campaign:
            parts.append(f"\n## Focused Campaign: {campaign.get('name')} (id {campaign.get('yandex_id')})")
            if campaign.get("history"):
                parts.append("History:")
                parts.extend(f"  - {h}" for h in campaign["history"])
            if campaign.get("previous_recommendations"):
                parts.append("Previous recommendations:")
                parts.extend(f"  - {r}" for r in campaign["previous_recommendations"])
            if campaign.get("facts"):
                parts.append("Campaign facts:")
                parts.extend(f"  - {f}" for f in campaign["facts"])

        proposal = context.get("proposal")
        if proposal:
            parts.append(f"\n## Focused Proposal: {proposal.get('title')} ({proposal.get('status')})")
            parts.append(json.dumps(proposal.get("plan") or {}, default=str, ensure_ascii=False)[:3000])
            if proposal.get("reasoning"):
                parts.append(f"Reasoning: {proposal['reasoning']}")

        return "\n".join(parts)


def create_ai_service(
    model_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> AIService:
    """Factory function to create an AI service instance. Keys from env (Settings)."""
    return AIService(model_id=model_id, settings=settings)
