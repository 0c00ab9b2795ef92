"""Plan stage: source text and settings to pages, characters and style guide"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Dict, Any, List, Optional

from .base import BaseStage
from .prompts import PLAN_SYSTEM_PROMPT, build_plan_prompt
from .safety import content_warning, review_content
from picturebook.errors import MalformedResponseError
from picturebook.llm.retry import PLAN_RETRY
from picturebook.models import (
    BookSettings,
    Character,
    CharacterRole,
    DEFAULT_CAMERA_ANGLE,
    Page,
    PageDraft,
    PlanResult,
    UNTITLED_STORY,
    create_style_guide,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_SOURCE_CHARS = 8000
ARC_FALLBACK_PAGES = 4
ARC_FALLBACK_WORDS = 20


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present, non-empty value among camelCase/snake_case spellings"""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return default


def default_role(index: int) -> CharacterRole:
    """Role for a character the model left unlabelled, by plan position"""
    if index < 2:
        return CharacterRole.MAIN
    if index < 5:
        return CharacterRole.SUPPORTING
    return CharacterRole.BACKGROUND


def summarize_caption(caption: str) -> str:
    """First sentence of a caption, capped at 20 words"""
    match = re.match(r"^[^.!?]*[.!?]", caption.strip())
    sentence = (match.group(0) if match else caption).strip()
    words = sentence.split()
    if len(words) > ARC_FALLBACK_WORDS:
        return " ".join(words[:ARC_FALLBACK_WORDS]) + "..."
    return sentence


def fallback_arc_summary(pages: List[PageDraft]) -> List[str]:
    """Arc summary synthesized from the opening captions"""
    count = min(ARC_FALLBACK_PAGES, len(pages))
    return [summarize_caption(p.caption) for p in pages[:count] if p.caption.strip()]


class PlannerStage(BaseStage):
    """Stage responsible for turning source text into a reviewed-ready plan"""

    def __init__(self, *args, max_source_chars: int = DEFAULT_MAX_SOURCE_CHARS, **kwargs):
        kwargs.setdefault("retry_policy", PLAN_RETRY)
        super().__init__("Plan", *args, **kwargs)
        self.max_source_chars = max_source_chars

        prompt_path = Path(__file__).parent.parent.parent / "config" / "prompts" / "planner.txt"
        if prompt_path.exists():
            with open(prompt_path, "r", encoding="utf-8") as f:
                self.system_prompt = f.read()
        else:
            self.system_prompt = PLAN_SYSTEM_PROMPT

    def truncate_source(self, source_text: str) -> str:
        """Keep the first max_source_chars characters; the rest is discarded"""
        return source_text[:self.max_source_chars]

    async def execute(self, story_id: str, source_text: str, settings: BookSettings) -> PlanResult:
        """
        Plan a story and persist its theme, characters and pages.

        Nothing is written unless the model output is complete and valid.

        Args:
            story_id: Existing story id
            source_text: Raw story text
            settings: Book settings

        Returns:
            PlanResult with saved character ids and page drafts
        """
        story = await self.repository.get_story(story_id)
        text = self.truncate_source(source_text)
        intensity = settings.effective_intensity

        if len(source_text) > len(text):
            logger.info(
                f"[Plan] Source truncated from {len(source_text)} to {len(text)} characters"
            )

        _, user_prompt = build_plan_prompt(text, settings, intensity)
        plan_data = await self.generate_structured_output(
            system_prompt=self.system_prompt,
            user_prompt=user_prompt,
            temperature=0.8
        )

        drafts = self._parse_pages(plan_data, settings.desired_page_count)
        characters = self._parse_characters(plan_data, story_id, settings.has_hero_photo)

        theme = str(_pick(plan_data, "theme", default=""))
        arc_summary = [
            str(beat).strip()
            for beat in (_pick(plan_data, "storyArcSummary", "story_arc_summary", "arc_summary") or [])
            if str(beat).strip()
        ]
        if not arc_summary:
            logger.info("[Plan] No arc summary returned, using caption fallback")
            arc_summary = fallback_arc_summary(drafts)

        planned_title = str(_pick(plan_data, "title", default="")).strip()
        title = planned_title if story.title == UNTITLED_STORY and planned_title else story.title

        style_guide = create_style_guide(
            settings.aesthetic_style,
            target_age=settings.target_age,
            quality_tier=settings.quality_tier
        )
        warning = content_warning(review_content(text, settings.target_age, intensity))

        pages = [Page.from_draft(story_id, draft) for draft in drafts]
        previous_pages, previous_characters = await asyncio.gather(
            self.repository.list_pages(story_id),
            self.repository.list_characters(story_id),
        )
        await asyncio.gather(
            self.repository.update_story(
                story_id,
                title=title,
                theme=theme,
                arc_summary=arc_summary,
                style_guide=style_guide,
            ),
            self.repository.save_characters(characters),
            self.repository.save_pages(pages),
        )

        # Re-plan: the new plan replaces the previous one only once it is saved
        if previous_pages or previous_characters:
            logger.info(f"[Plan] Replacing previous plan of story {story_id}")
            await self.repository.delete_pages(previous_pages)
            await self.repository.delete_characters(previous_characters)

        hero = next((c.name for c in characters if c.is_hero), None)
        logger.info(
            f"[Plan] Story {story_id}: {len(pages)} pages, {len(characters)} characters, hero={hero}"
        )

        return PlanResult(
            story_id=story_id,
            title=title,
            theme=theme,
            arc_summary=arc_summary,
            pages=drafts,
            characters=characters,
            style_guide=style_guide,
            content_warning=warning,
        )

    def _parse_pages(self, plan_data: Dict[str, Any], expected: int) -> List[PageDraft]:
        """Validate the page list: exactly `expected` pages numbered 1..expected"""
        raw_pages = plan_data.get("pages")
        if not isinstance(raw_pages, list):
            raise MalformedResponseError("Plan response has no page list")
        if len(raw_pages) != expected:
            raise MalformedResponseError(
                f"Plan returned {len(raw_pages)} pages, expected {expected}",
                details={"expected": expected, "received": len(raw_pages)}
            )

        drafts = []
        for index, raw in enumerate(raw_pages):
            if not isinstance(raw, dict):
                raise MalformedResponseError(f"Page entry {index + 1} is not an object")

            caption = _pick(raw, "caption", "text")
            prompt = _pick(raw, "prompt", "imagePrompt", "image_prompt")
            if not caption or not prompt:
                raise MalformedResponseError(f"Page entry {index + 1} is missing caption or prompt")

            try:
                page_number = int(_pick(raw, "pageNumber", "page_number", default=index + 1))
            except (TypeError, ValueError):
                raise MalformedResponseError(f"Page entry {index + 1} has an invalid page number")

            if page_number < 1:
                raise MalformedResponseError(f"Page entry {index + 1} has page number {page_number}")

            drafts.append(PageDraft(
                page_number=page_number,
                caption=str(caption),
                prompt=str(prompt),
                camera_angle=str(_pick(raw, "cameraAngle", "camera_angle", default=DEFAULT_CAMERA_ANGLE)),
            ))

        drafts.sort(key=lambda d: d.page_number)
        numbers = [d.page_number for d in drafts]
        if numbers != list(range(1, expected + 1)):
            raise MalformedResponseError(
                "Plan page numbers are not contiguous from 1",
                details={"page_numbers": numbers}
            )
        return drafts

    def _parse_characters(
        self,
        plan_data: Dict[str, Any],
        story_id: str,
        has_hero_photo: bool
    ) -> List[Character]:
        """Build character records; the first main character becomes the hero when a photo exists"""
        raw_characters = plan_data.get("characters") or []
        if not isinstance(raw_characters, list):
            raise MalformedResponseError("Plan characters is not a list")

        characters = []
        hero_assigned = False
        for index, raw in enumerate(raw_characters):
            if not isinstance(raw, dict) or not raw.get("name"):
                logger.warning(f"[Plan] Skipping character entry {index + 1} without a name")
                continue

            role = self._parse_role(raw.get("role"), len(characters))
            is_hero = has_hero_photo and role == CharacterRole.MAIN and not hero_assigned
            hero_assigned = hero_assigned or is_hero

            visual = _pick(raw, "visualDescription", "visual_description", "description", default="")
            characters.append(Character(
                story_id=story_id,
                name=str(raw["name"]),
                visual_description=str(visual),
                display_description=str(_pick(raw, "displayDescription", "display_description", default="")),
                approximate_age=str(_pick(raw, "approximateAge", "approximate_age", default="")),
                role=role,
                is_hero=is_hero,
            ))

        return characters

    def _parse_role(self, value: Optional[Any], index: int) -> CharacterRole:
        try:
            return CharacterRole(str(value).strip().lower())
        except ValueError:
            return default_role(index)
