"""Tests for prompt building and the content advisory"""

from picturebook.models import BookSettings, Character, CharacterRole, Page, create_style_guide
from picturebook.stages.prompts import (
    build_consistency_prompt,
    build_page_prompt,
    build_plan_prompt,
    caption_length,
    finalize_image_prompt,
    SAFETY_CLAUSE,
    WATERMARK_CLAUSE,
)
from picturebook.stages.safety import age_band, content_warning, review_content


def test_plan_prompt_states_exact_page_count():
    settings = BookSettings(target_age=7, desired_page_count=12, freeform_notes="Set it in winter")

    _, user_prompt = build_plan_prompt("Once upon a time.", settings, settings.effective_intensity)

    assert "exactly 12 pages, numbered 1 to 12" in user_prompt
    assert "Once upon a time." in user_prompt
    assert "Set it in winter" in user_prompt
    assert '"storyArcSummary"' in user_prompt


def test_caption_length_grows_with_age():
    young = caption_length(4)
    older = caption_length(11)
    assert young[1] < older[1]


def test_page_prompt_sections():
    page = Page(story_id="s", page_number=3, caption="Luna waves.", prompt="Luna at the gate", camera_angle="close-up")
    luna = Character(story_id="s", name="Luna", visual_description="red curls")

    prompt = build_page_prompt(page, create_style_guide("cartoon"), [luna], fix_instruction="- Red curls", hero_name="Luna")

    assert prompt.startswith("Luna at the gate")
    assert "CAMERA: close-up" in prompt
    assert "- Luna: red curls" in prompt
    assert "HERO: Luna" in prompt
    assert prompt.endswith("CONSISTENCY FIX (this page is being regenerated):\n- Red curls")


def test_finalize_appends_clauses_once():
    final = finalize_image_prompt("A meadow")
    assert final == f"A meadow\n\n{SAFETY_CLAUSE}\n\n{WATERMARK_CLAUSE}"


def test_consistency_prompt_marks_hero():
    hero = Character(story_id="s", name="Mia", visual_description="bob cut", role=CharacterRole.MAIN, is_hero=True)

    prompt = build_consistency_prompt([hero], 8, has_hero_photo=True)

    assert "8-page picture book" in prompt
    assert "Mia (main) [HERO - based on uploaded photo]" in prompt
    assert "A real photo was uploaded for Mia" in prompt


def test_age_bands():
    assert age_band(3) == "3-5"
    assert age_band(8) == "6-8"
    assert age_band(15) == "9-12"


def test_review_flags_intensity_and_words():
    safety = review_content("The war was long.", target_age=7, intensity=9)

    assert not safety.is_appropriate
    assert len(safety.concerns) == 2
    assert "war" in content_warning(safety)


def test_clean_text_has_no_warning():
    safety = review_content("A story about friendship and family.", target_age=4, intensity=1)

    assert safety.is_appropriate
    assert content_warning(safety) is None
