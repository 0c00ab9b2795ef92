"""Tests for selective page regeneration"""

import pytest

from picturebook.models import ConsistencyAnalysis, ConsistencyIssue, Page
from picturebook.orchestrator import RegenerationController, RegenerationCycle
from picturebook.stages import PageRenderStage

from conftest import FakeImageProvider, no_image, no_sleep


async def rendered_story(repository, story_factory, images, count=5):
    story = await story_factory()
    pages = [Page(story_id=story.id, page_number=n, caption=f"Caption {n}", prompt=f"Scene {n}") for n in range(1, count + 1)]
    await repository.save_pages(pages)
    renderer = PageRenderStage(repository, images, sleep=no_sleep)
    for page in pages:
        await renderer.render(story.id, page.id)
    return story, renderer


@pytest.mark.asyncio
async def test_only_flagged_pages_change(repository, story_factory):
    images = FakeImageProvider()
    story, renderer = await rendered_story(repository, story_factory, images)
    before = {p.page_number: p.image for p in await repository.list_pages(story.id)}
    analysis = ConsistencyAnalysis(
        issues=[ConsistencyIssue(page_number=4, fix_instruction="Give Pip his blue scarf")],
        pages_needing_regeneration=[2, 4],
    )

    report = await RegenerationController(renderer, repository).regenerate(story.id, analysis)

    after = {p.page_number: p.image for p in await repository.list_pages(story.id)}
    assert sorted(report.regenerated) == [2, 4]
    assert report.failed == [] and report.skipped == []
    for n in (1, 3, 5):
        assert after[n] == before[n]
    for n in (2, 4):
        assert after[n] != before[n]

    fix_prompts = [c["prompt"] for c in images.calls[5:]]
    assert any("Give Pip his blue scarf" in p for p in fix_prompts)
    assert len(images.calls) == 7


@pytest.mark.asyncio
async def test_cycle_limits_attempts_per_page(repository, story_factory):
    images = FakeImageProvider()
    story, renderer = await rendered_story(repository, story_factory, images, count=3)
    controller = RegenerationController(renderer, repository)
    cycle = RegenerationCycle(max_attempts_per_page=1)
    analysis = ConsistencyAnalysis(pages_needing_regeneration=[1, 1, 7])

    first = await controller.regenerate(story.id, analysis, cycle)
    second = await controller.regenerate(story.id, analysis, cycle)

    assert first.regenerated == [1]
    assert first.skipped == [7]
    assert second.regenerated == []
    assert second.skipped == [1, 7]
    assert len(images.calls) == 4


@pytest.mark.asyncio
async def test_failed_regeneration_keeps_image(repository, story_factory):
    story, renderer = await rendered_story(repository, story_factory, FakeImageProvider(), count=2)
    before = {p.page_number: p.image for p in await repository.list_pages(story.id)}
    failing = PageRenderStage(repository, FakeImageProvider(fail_when=no_image), sleep=no_sleep)

    report = await RegenerationController(failing, repository).regenerate(
        story.id, ConsistencyAnalysis(pages_needing_regeneration=[2])
    )

    after = {p.page_number: p.image for p in await repository.list_pages(story.id)}
    assert report.failed == [2]
    assert after == before


@pytest.mark.asyncio
async def test_empty_analysis_does_nothing(repository, story_factory):
    images = FakeImageProvider()
    story, renderer = await rendered_story(repository, story_factory, images, count=2)

    report = await RegenerationController(renderer, repository).regenerate(story.id, ConsistencyAnalysis())

    assert report.regenerated == [] and report.failed == [] and report.skipped == []
    assert len(images.calls) == 2
