"""End-to-end pipeline tests with fake gateways"""

import json

import pytest

from picturebook.errors import MalformedResponseError
from picturebook.models import BookSettings, CharacterStatus, PageStatus, StoryStatus, WorkflowState
from picturebook.orchestrator import PictureBookPipeline

from conftest import FakeImageProvider, FakeLLM, HERO_PHOTO, no_image, no_sleep, plan_json

CLEAN = json.dumps({"issues": [], "pagesNeedingRegeneration": []})


def make_pipeline(repository, llm, images, **config):
    return PictureBookPipeline(repository, llm, images, config=config, sleep=no_sleep)


@pytest.mark.asyncio
async def test_full_run_completes_story(repository, settings):
    flagged = json.dumps({
        "issues": [{"pageNumber": 2, "type": "character_appearance",
                    "description": "Luna's coat is green", "fixPrompt": "Luna wears a yellow raincoat"}],
        "pagesNeedingRegeneration": [2],
    })
    llm = FakeLLM([plan_json(page_count=5), flagged])
    images = FakeImageProvider()
    pipeline = make_pipeline(repository, llm, images)

    summary = await pipeline.run("Luna found a fallen star.", settings)

    story = await repository.get_story(summary["story_id"])
    pages = await repository.list_pages(story.id)
    characters = await repository.list_characters(story.id)
    assert story.workflow_state == WorkflowState.COMPLETE
    assert story.status == StoryStatus.COMPLETE
    assert story.title == "Luna and the Lost Star"
    assert all(p.image for p in pages)
    assert all(c.status == CharacterStatus.COMPLETED for c in characters)
    assert summary["characters"]["completed"] == 2
    assert summary["pages"]["rendered"] == [1, 2, 3, 4, 5]
    assert summary["regeneration"].regenerated == [2]

    # 3 + 2 references, 5 pages, 1 regeneration; one plan call and one analysis
    assert len(images.calls) == 11
    assert len(llm.calls) == 2
    assert "Luna wears a yellow raincoat" in images.calls[-1]["prompt"]


@pytest.mark.asyncio
async def test_plan_failure_marks_story_error(repository, settings):
    pipeline = make_pipeline(repository, FakeLLM(["no json here"]), FakeImageProvider())
    story = await pipeline.create_story("Luna found a fallen star.", settings)

    with pytest.raises(MalformedResponseError):
        await pipeline.plan(story.id)

    saved = await repository.get_story(story.id)
    assert saved.workflow_state == WorkflowState.ERROR
    assert saved.current_step.startswith("Planning failed")
    assert await repository.list_pages(story.id) == []
    assert await repository.list_characters(story.id) == []


@pytest.mark.asyncio
async def test_character_review_pauses_then_resumes(repository):
    review = BookSettings(target_age=6, desired_page_count=5, character_review=True)
    images = FakeImageProvider()
    pipeline = make_pipeline(repository, FakeLLM([plan_json(), CLEAN]), images)

    summary = await pipeline.run("Luna found a fallen star.", review)

    story_id = summary["story_id"]
    assert (await repository.get_story(story_id)).workflow_state == WorkflowState.CHARACTER_REVIEW
    assert "pages" not in summary
    assert len(images.calls) == 5

    resumed = await pipeline.resume(story_id)

    assert resumed["pages"]["rendered"] == [1, 2, 3, 4, 5]
    assert (await repository.get_story(story_id)).workflow_state == WorkflowState.COMPLETE


@pytest.mark.asyncio
async def test_failed_pages_leave_story_resumable(repository, settings):
    broken = {"on": True}
    images = FakeImageProvider(
        fail_when=lambda prompt: no_image(prompt) if broken["on"] and "scene 3" in prompt else None
    )
    pipeline = make_pipeline(repository, FakeLLM([plan_json(), CLEAN]), images)

    summary = await pipeline.run("Luna found a fallen star.", settings, check_consistency=False)

    story_id = summary["story_id"]
    story = await repository.get_story(story_id)
    assert summary["pages"]["failed"] == [3]
    assert story.workflow_state == WorkflowState.PAGES_GENERATING
    page_3 = next(p for p in await repository.list_pages(story_id) if p.page_number == 3)
    assert page_3.status == PageStatus.ERROR

    broken["on"] = False
    calls_before = len(images.calls)
    resumed = await pipeline.resume(story_id, check_consistency=False)

    assert resumed["pages"]["rendered"] == [3]
    assert len(images.calls) == calls_before + 1
    assert (await repository.get_story(story_id)).workflow_state == WorkflowState.COMPLETE


@pytest.mark.asyncio
async def test_page_rerender_after_complete_keeps_state(repository, settings):
    images = FakeImageProvider()
    pipeline = make_pipeline(repository, FakeLLM([plan_json(), CLEAN]), images)
    summary = await pipeline.run("Luna found a fallen star.", settings, check_consistency=False)
    story_id = summary["story_id"]
    page = (await repository.list_pages(story_id))[0]

    result = await pipeline.render_page(story_id, page.id, fix_instruction="Brighter sky")

    assert result.success
    assert result.image != page.image
    assert (await repository.get_story(story_id)).workflow_state == WorkflowState.COMPLETE


@pytest.mark.asyncio
async def test_character_consistency_off_skips_references(repository):
    plain = BookSettings(target_age=6, desired_page_count=5, character_consistency=False)
    images = FakeImageProvider()
    pipeline = make_pipeline(repository, FakeLLM([plan_json(), CLEAN]), images)

    summary = await pipeline.run("Luna found a fallen star.", plain)

    assert "characters" not in summary
    assert len(images.calls) == 5
    assert all(call["reference_images"] == [] for call in images.calls)


@pytest.mark.asyncio
async def test_update_captions_counts_known_pages(repository, settings):
    pipeline = make_pipeline(repository, FakeLLM([plan_json()]), FakeImageProvider())
    story = await pipeline.create_story("Luna found a fallen star.", settings)
    await pipeline.plan(story.id)

    updated = await pipeline.update_captions(story.id, {1: "A brand new opening.", 9: "No such page"})

    pages = await repository.list_pages(story.id)
    assert updated == 1
    assert pages[0].caption == "A brand new opening."


@pytest.mark.asyncio
async def test_replan_from_review(repository, settings):
    pipeline = make_pipeline(repository, FakeLLM([plan_json(title="First"), plan_json(title="Second")]), FakeImageProvider())
    story = await pipeline.create_story("Luna found a fallen star.", settings)

    await pipeline.plan(story.id)
    await pipeline.plan(story.id)

    saved = await repository.get_story(story.id)
    assert saved.workflow_state == WorkflowState.PLAN_REVIEW
    assert saved.title == "First"
    assert len(await repository.list_pages(story.id)) == 5
    assert len(await repository.list_characters(story.id)) == 2


@pytest.mark.asyncio
async def test_settings_given_at_plan_time_are_stored(repository, settings):
    """A hero photo supplied only with the plan call reaches the later stages"""
    images = FakeImageProvider()
    pipeline = make_pipeline(repository, FakeLLM([plan_json()]), images)
    story = await pipeline.create_story("Luna found a fallen star.", settings)
    hero_settings = BookSettings(target_age=6, desired_page_count=5, hero_photo=HERO_PHOTO)

    await pipeline.plan(story.id, source_text="Luna met a star.", settings=hero_settings)

    stored = await repository.get_story(story.id)
    assert stored.settings.has_hero_photo
    assert stored.source_text == "Luna met a star."

    hero = next(c for c in await repository.list_characters(story.id) if c.is_hero)
    result = await pipeline.generate_character(story.id, hero.id)
    assert result.is_hero and images.calls == []

    page = (await repository.list_pages(story.id))[0]
    await pipeline.render_page(story.id, page.id)
    assert images.calls[0]["reference_images"][0].image == b"hero-photo"


@pytest.mark.asyncio
async def test_close_closes_each_provider_once(repository):
    llm = FakeLLM([CLEAN])
    images = FakeImageProvider()
    pipeline = make_pipeline(repository, llm, images)

    await pipeline.close()

    assert llm.closed and images.closed


def test_config_overrides_retry_and_concurrency(repository):
    pipeline = PictureBookPipeline(
        repository,
        FakeLLM([CLEAN]),
        FakeImageProvider(),
        config={"retry": {"page_render": {"max_retries": 5}}, "pipeline": {"page_concurrency": 6}},
    )

    assert pipeline.page_renderer.retry_policy.max_retries == 5
    assert pipeline.page_concurrency == 6
    assert pipeline.regeneration.page_concurrency == 6
