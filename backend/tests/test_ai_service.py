"""
Tests for LLM response parsing. The provider call is patched out.
"""

import pytest
from unittest.mock import AsyncMock, patch

from adsteward.errors import ValidationFailure
from adsteward.services.ai_service import AIService, _parse_model_id


@pytest.fixture
def ai_service(settings):
    return AIService(model_id="openai:gpt-4o-mini", openai_api_key="sk-test", settings=settings)


def test_parse_model_id():
    assert _parse_model_id("anthropic:claude-sonnet", "gpt-4o") == ("anthropic", "claude-sonnet")
    assert _parse_model_id(None, "gpt-4o") == ("openai", "gpt-4o")


def test_unknown_provider_is_rejected(settings):
    with pytest.raises(ValueError, match="Unknown AI provider"):
        AIService(model_id="bard:x", settings=settings)


@pytest.mark.anyio
async def test_analyze_drops_invalid_action_but_keeps_advice(ai_service):
    content = """```json
    {"text": "Spend is up", "recommendations": [
        {"title": "Cut budget", "priority": "urgent", "campaign_ids": [101],
         "action": {"type": "update_budget", "daily_budget": -10}},
        {"title": "Exclude freebies", "action": {"type": "add_negative_keywords", "keywords": ["free"]}},
        {"description": "no title"}
    ]}
    ```"""
    with patch.object(ai_service, "_completion", AsyncMock(return_value=content)):
        result = await ai_service.analyze([], {}, "daily_report")

    assert result.text == "Spend is up"
    assert [r.title for r in result.recommendations] == ["Cut budget", "Exclude freebies"]
    cut, exclude = result.recommendations
    assert cut.action is None
    assert cut.priority == "medium"
    assert cut.campaign_ids == ["101"]
    assert exclude.action.keywords == ["free"]


@pytest.mark.anyio
async def test_analyze_falls_back_to_raw_text(ai_service):
    with patch.object(ai_service, "_completion", AsyncMock(return_value="All quiet today.")):
        result = await ai_service.analyze([], {}, "evening_check")

    assert result.text == "All quiet today."
    assert result.recommendations == []


@pytest.mark.anyio
async def test_classify_garbage_is_unscoped(ai_service):
    with patch.object(ai_service, "_completion", AsyncMock(return_value="not json")):
        classification = await ai_service.classify("hello")

    assert classification.confidence == 0.0
    assert classification.campaign_hint is None


@pytest.mark.anyio
async def test_malformed_proposal_raises_validation_failure(ai_service):
    with patch.object(ai_service, "_completion", AsyncMock(return_value="{oops")):
        with pytest.raises(ValidationFailure):
            await ai_service.generate_proposal("boots", {})


def test_context_message_includes_focus(ai_service):
    message = ai_service._build_context_message({
        "goals": "CPA under 500",
        "campaign": {"name": "Summer Sale", "yandex_id": "101", "facts": ["Brand terms convert best"]},
    })

    assert "CPA under 500" in message
    assert "Focused Campaign: Summer Sale (id 101)" in message
    assert "Brand terms convert best" in message
