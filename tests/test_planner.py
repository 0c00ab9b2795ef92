"""Tests for the plan stage"""

import json

import pytest

from picturebook.errors import MalformedResponseError
from picturebook.models import BookSettings, CharacterRole, PageDraft, UNTITLED_STORY
from picturebook.stages import PlannerStage
from picturebook.stages.planner import default_role, fallback_arc_summary, summarize_caption

from conftest import FakeLLM, HERO_PHOTO, no_sleep, plan_json


def make_planner(repository, responses, **kwargs):
    llm = FakeLLM(responses)
    return PlannerStage(repository, llm, sleep=no_sleep, **kwargs), llm


@pytest.mark.asyncio
async def test_plan_persists_pages_and_characters(repository, story_factory, settings):
    """A valid plan saves exactly desired_page_count pages numbered 1..N"""
    story = await story_factory()
    planner, _ = make_planner(repository, [plan_json(page_count=5)])

    result = await planner.execute(story.id, story.source_text, settings)

    pages = await repository.list_pages(story.id)
    assert result.page_count == 5
    assert [p.page_number for p in pages] == [1, 2, 3, 4, 5]
    assert pages[0].camera_angle == "wide shot"

    characters = await repository.list_characters(story.id)
    assert {c.name for c in characters} == {"Luna", "Pip"}
    assert {c.id for c in characters} == {c.id for c in result.characters}
    assert not any(c.is_hero for c in characters)

    saved = await repository.get_story(story.id)
    assert saved.title == "Luna and the Lost Star"
    assert saved.theme == "Friendship helps us find our way"
    assert saved.arc_summary == ["Luna finds a star", "Luna brings it home"]
    assert saved.style_guide is not None


@pytest.mark.asyncio
async def test_plan_accepts_unordered_page_numbers(repository, story_factory, settings):
    story = await story_factory()
    data = json.loads(plan_json(page_count=5))
    data["pages"].reverse()
    planner, _ = make_planner(repository, [json.dumps(data)])

    result = await planner.execute(story.id, story.source_text, settings)

    assert [d.page_number for d in result.pages] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
@pytest.mark.parametrize("mutate", [
    lambda d: d["pages"].pop(),
    lambda d: d["pages"][2].update(pageNumber=7),
    lambda d: d["pages"][1].update(pageNumber=1),
    lambda d: d["pages"][0].pop("caption"),
    lambda d: d["pages"][0].update(pageNumber=0),
    lambda d: d.pop("pages"),
])
async def test_invalid_page_list_saves_nothing(repository, story_factory, settings, mutate):
    """Wrong count, gaps, duplicates or missing fields: nothing is written"""
    story = await story_factory()
    data = json.loads(plan_json(page_count=5))
    mutate(data)
    planner, _ = make_planner(repository, [json.dumps(data)])

    with pytest.raises(MalformedResponseError):
        await planner.execute(story.id, story.source_text, settings)

    assert await repository.list_pages(story.id) == []
    assert await repository.list_characters(story.id) == []
    assert (await repository.get_story(story.id)).title == UNTITLED_STORY


@pytest.mark.asyncio
async def test_unparseable_output_fails_without_asking_again(repository, story_factory, settings):
    story = await story_factory()
    planner, llm = make_planner(repository, ["not json at all", plan_json()])

    with pytest.raises(MalformedResponseError):
        await planner.execute(story.id, story.source_text, settings)

    assert len(llm.calls) == 1
    assert await repository.list_pages(story.id) == []


@pytest.mark.asyncio
async def test_truncated_output_is_not_repaired(repository, story_factory, settings):
    story = await story_factory()
    truncated = plan_json()[:-40]
    planner, llm = make_planner(repository, [truncated, plan_json()])

    with pytest.raises(MalformedResponseError):
        await planner.execute(story.id, story.source_text, settings)

    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_trailing_commas_are_tolerated(repository, story_factory, settings):
    story = await story_factory()
    response = plan_json().replace('"role": "supporting"}', '"role": "supporting",}')
    planner, _ = make_planner(repository, [response])

    result = await planner.execute(story.id, story.source_text, settings)

    assert len(result.characters) == 2


@pytest.mark.asyncio
async def test_fenced_json_is_accepted(repository, story_factory, settings):
    story = await story_factory()
    planner, _ = make_planner(repository, ["Here is the plan:\n```json\n" + plan_json() + "\n```"])

    result = await planner.execute(story.id, story.source_text, settings)

    assert result.page_count == 5


@pytest.mark.asyncio
async def test_hero_is_first_main_character(repository, story_factory):
    """With a hero photo exactly one character, the first main one, is the hero"""
    hero_settings = BookSettings(target_age=6, desired_page_count=5, hero_photo=HERO_PHOTO)
    story = await story_factory(settings=hero_settings)
    characters = [
        {"name": "Owl", "visualDescription": "old owl", "role": "supporting"},
        {"name": "Mia", "visualDescription": "girl with a bob cut", "role": "main"},
        {"name": "Theo", "visualDescription": "boy with glasses", "role": "main"},
    ]
    planner, _ = make_planner(repository, [plan_json(characters=characters)])

    result = await planner.execute(story.id, story.source_text, hero_settings)

    heroes = [c.name for c in result.characters if c.is_hero]
    assert heroes == ["Mia"]


@pytest.mark.asyncio
async def test_no_hero_without_photo(repository, story_factory, settings):
    story = await story_factory()
    planner, _ = make_planner(repository, [plan_json()])

    result = await planner.execute(story.id, story.source_text, settings)

    assert not any(c.is_hero for c in result.characters)


@pytest.mark.asyncio
async def test_missing_roles_follow_plan_order(repository, story_factory, settings):
    story = await story_factory()
    characters = [{"name": f"C{i}", "visualDescription": "x"} for i in range(6)]
    characters.append({"visualDescription": "nameless"})
    planner, _ = make_planner(repository, [plan_json(characters=characters)])

    result = await planner.execute(story.id, story.source_text, settings)

    assert [c.role for c in result.characters] == [
        CharacterRole.MAIN, CharacterRole.MAIN,
        CharacterRole.SUPPORTING, CharacterRole.SUPPORTING, CharacterRole.SUPPORTING,
        CharacterRole.BACKGROUND,
    ]


@pytest.mark.asyncio
async def test_arc_summary_fallback_from_captions(repository, story_factory, settings):
    story = await story_factory()
    planner, _ = make_planner(repository, [plan_json(arc=[])])

    result = await planner.execute(story.id, story.source_text, settings)

    assert result.arc_summary == [
        f"Luna walks through the meadow on page {n}." for n in range(1, 5)
    ]


@pytest.mark.asyncio
async def test_existing_title_is_kept(repository, story_factory, settings):
    story = await story_factory(title="My Own Title")
    planner, _ = make_planner(repository, [plan_json()])

    result = await planner.execute(story.id, story.source_text, settings)

    assert result.title == "My Own Title"
    assert (await repository.get_story(story.id)).title == "My Own Title"


@pytest.mark.asyncio
async def test_long_source_is_truncated(repository, story_factory, settings):
    source = "a" * 120 + "TAIL-MARKER"
    story = await story_factory(source_text=source)
    planner, llm = make_planner(repository, [plan_json()], max_source_chars=100)

    await planner.execute(story.id, source, settings)

    prompt = llm.calls[0]["messages"][1].content
    assert "a" * 100 in prompt
    assert "a" * 101 not in prompt
    assert "TAIL-MARKER" not in prompt


@pytest.mark.asyncio
async def test_content_warning_for_young_readers(repository, story_factory):
    young = BookSettings(target_age=4, desired_page_count=5)
    story = await story_factory(source_text="A monster hid under the bed.", settings=young)
    planner, _ = make_planner(repository, [plan_json()])

    result = await planner.execute(story.id, story.source_text, young)

    assert result.content_warning is not None
    assert "monster" in result.content_warning


def test_default_role_positions():
    assert default_role(0) == CharacterRole.MAIN
    assert default_role(2) == CharacterRole.SUPPORTING
    assert default_role(5) == CharacterRole.BACKGROUND


def test_summarize_caption_caps_words():
    long_caption = " ".join(f"word{i}" for i in range(30)) + ". Second sentence."
    summary = summarize_caption(long_caption)

    assert summary.endswith("...")
    assert len(summary[:-3].split()) == 20
    assert summarize_caption("Short one! And more.") == "Short one!"


def test_fallback_arc_uses_at_most_four_pages():
    drafts = [PageDraft(page_number=n, caption=f"Page {n}.", prompt="p") for n in range(1, 3)]
    assert fallback_arc_summary(drafts) == ["Page 1.", "Page 2."]
