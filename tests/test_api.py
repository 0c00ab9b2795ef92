"""Tests for the async API entry points"""

import json

import pytest

from picturebook import api
from picturebook.api import pipeline as api_pipeline
from picturebook.errors import ConfigurationError
from picturebook.llm import GeminiClient, OllamaClient
from picturebook.orchestrator import PictureBookPipeline

from conftest import FakeImageProvider, FakeLLM, no_sleep, plan_json

SETTINGS = {"target_age": 6, "desired_page_count": 5}


@pytest.fixture
def fakes(monkeypatch):
    """Route build_pipeline to fake gateways over the configured storage"""
    state = {"llm": FakeLLM([plan_json(), json.dumps({"issues": [], "pagesNeedingRegeneration": []})]),
             "images": FakeImageProvider()}

    def build(config=None):
        return PictureBookPipeline(
            api_pipeline._create_storage(config or {}),
            state["llm"],
            state["images"],
            config=config,
            sleep=no_sleep,
        )

    monkeypatch.setattr(api_pipeline, "build_pipeline", build)
    return state


@pytest.mark.asyncio
async def test_step_by_step_flow(fakes, local_config):
    created = await api.create_story("Luna found a fallen star.", SETTINGS, local_config)
    story_id = created["story"]["id"]

    plan = await api.plan_story(story_id, config=local_config)
    assert plan["page_count"] == 5
    assert plan["title"] == "Luna and the Lost Star"
    assert all(c["id"] for c in plan["characters"])

    luna = next(c for c in plan["characters"] if c["name"] == "Luna")
    character = await api.generate_character(story_id, luna["id"], local_config)
    assert character["success"] is True
    assert character["references"] == 3

    fetched = await api.get_story(story_id, local_config)
    page_id = fetched["pages"][0]["id"]
    page = await api.render_page(story_id, page_id, local_config)
    assert page["success"] is True
    assert page["page_number"] == 1
    assert page["image"]

    rest = await api.render_pages(story_id, local_config)
    assert rest["rendered"] == [2, 3, 4, 5]

    analysis = await api.analyze_consistency(story_id, local_config)
    assert analysis == {"issues": [], "pages_needing_regeneration": []}

    report = await api.regenerate_pages(story_id, analysis, local_config)
    assert report == {"regenerated": [], "failed": [], "skipped": []}

    captions = await api.update_captions(
        story_id, [{"pageNumber": 2, "caption": "Pip squeaks."}, {"caption": "no page number"}], local_config
    )
    assert captions == {"success": True, "updated": 1}

    fetched = await api.get_story(story_id, local_config)
    assert fetched["story"]["workflow_state"] == "complete"
    assert [p["page_number"] for p in fetched["pages"]] == [1, 2, 3, 4, 5]
    assert fetched["pages"][1]["caption"] == "Pip squeaks."


@pytest.mark.asyncio
async def test_run_pipeline_returns_summary(fakes, local_config):
    result = await api.run_pipeline("Luna found a fallen star.", SETTINGS, local_config)

    assert result["workflow_state"] == "complete"
    assert result["title"] == "Luna and the Lost Star"
    assert len(result["plan"]["pages"]) == 5
    assert result["pages"]["total"] == 5
    assert result["consistency"]["issues"] == []


@pytest.mark.asyncio
async def test_errors_are_returned_as_payloads(fakes, local_config):
    empty = await api.create_story("   ", SETTINGS, local_config)
    assert empty["kind"] == "invalid_input"
    assert empty["retryable"] is False

    invalid = await api.create_story("Text", {"target_age": 40}, local_config)
    assert invalid["kind"] == "invalid_input"
    assert invalid["details"]["errors"]

    bad_photo = await api.create_story("Text", {"target_age": 6, "hero_photo": "%%%"}, local_config)
    assert bad_photo["kind"] == "invalid_input"

    missing = await api.get_story("no-such-story", local_config)
    assert missing["kind"] == "not_found"

    missing_plan = await api.plan_story("no-such-story", config=local_config)
    assert missing_plan["kind"] == "not_found"


@pytest.mark.asyncio
async def test_analysis_failure_returns_empty_shape(fakes, local_config):
    analysis = await api.analyze_consistency("no-such-story", local_config)
    assert analysis == {"issues": [], "pages_needing_regeneration": []}


@pytest.mark.asyncio
async def test_character_review_default_from_config(fakes, local_config):
    local_config["pipeline"]["character_review"] = True

    result = await api.run_pipeline("Luna found a fallen star.", SETTINGS, local_config)

    assert result["workflow_state"] == "character_review"
    assert "pages" not in result


@pytest.mark.asyncio
async def test_missing_api_key_is_configuration_error(monkeypatch, local_config):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    local_config["llm"] = {"provider": "gemini"}

    result = await api.create_story("Luna found a fallen star.", SETTINGS, local_config)

    assert result["kind"] == "configuration"


def test_gateway_selection():
    llm, vision = api_pipeline._create_llm({"llm": {"provider": "gemini", "api_key": "k"}})
    assert isinstance(llm, GeminiClient) and vision is None
    assert api_pipeline._create_image_provider({}, llm) is llm

    text, vision = api_pipeline._create_llm({"llm": {"provider": "ollama", "vision_model": "llava"}})
    assert isinstance(text, OllamaClient) and vision.model == "llava"

    with pytest.raises(ConfigurationError):
        api_pipeline._create_llm({"llm": {"provider": "openai"}})
    with pytest.raises(ConfigurationError):
        api_pipeline._create_storage({"storage": {"provider": "ftp"}})
