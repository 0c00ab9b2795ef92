"""Consistency analysis stage: cross-page visual drift detection"""

import asyncio
import logging
from typing import Dict, Any, List, Optional, Tuple

from pydantic import BaseModel

from .base import BaseStage
from .prompts import CONSISTENCY_SYSTEM_PROMPT, build_consistency_prompt, build_quick_check_prompt
from picturebook.llm import ContentPart
from picturebook.llm.retry import CONSISTENCY_RETRY
from picturebook.models import (
    Character,
    ConsistencyAnalysis,
    ConsistencyIssue,
    DEFAULT_FIX_INSTRUCTION,
    IssueKind,
    Page,
)

logger = logging.getLogger(__name__)


class PageCheckResult(BaseModel):
    """Quick check of one character on one page"""
    page_number: int
    character: str
    matches: bool = True
    issues: str = ""
    checked: bool = False


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def sanitize_analysis(
    data: Dict[str, Any],
    page_count: int,
    imaged_pages: List[int]
) -> ConsistencyAnalysis:
    """
    Normalise raw analysis JSON.

    Issues and regeneration candidates are kept only for pages in
    [1, page_count] that currently have an image; candidates are
    deduplicated in first-seen order.
    """
    valid_pages = {n for n in imaged_pages if 0 < n <= page_count}

    issues = []
    for raw in data.get("issues") or []:
        if not isinstance(raw, dict):
            continue
        page_number = _as_int(raw.get("pageNumber", raw.get("page_number")))
        if page_number not in valid_pages:
            continue

        try:
            kind = IssueKind(str(raw.get("type", raw.get("kind", ""))).strip().lower())
        except ValueError:
            kind = IssueKind.CHARACTER_APPEARANCE

        issues.append(ConsistencyIssue(
            page_number=page_number,
            kind=kind,
            description=str(raw.get("description") or ""),
            character=raw.get("characterInvolved") or raw.get("character") or None,
            fix_instruction=str(
                raw.get("fixPrompt") or raw.get("fix_instruction") or DEFAULT_FIX_INSTRUCTION
            ),
        ))

    candidates: List[int] = []
    raw_candidates = data.get("pagesNeedingRegeneration", data.get("pages_needing_regeneration")) or []
    for value in raw_candidates:
        page_number = _as_int(value)
        if page_number in valid_pages and page_number not in candidates:
            candidates.append(page_number)

    return ConsistencyAnalysis(issues=issues, pages_needing_regeneration=candidates)


class ConsistencyStage(BaseStage):
    """Best-effort analysis of rendered pages against character references"""

    def __init__(self, repository, llm_provider, **kwargs):
        kwargs.setdefault("retry_policy", CONSISTENCY_RETRY)
        super().__init__("Consistency", repository, llm_provider=llm_provider, **kwargs)

    async def analyze(self, story_id: str) -> ConsistencyAnalysis:
        """
        Analyze every imaged page of a story in one multimodal request.

        Never raises: network, parse and storage failures all yield an
        empty analysis.
        """
        try:
            return await self._analyze(story_id)
        except Exception as e:
            logger.warning(f"[Consistency] Analysis failed for story {story_id}: {e}", exc_info=True)
            return ConsistencyAnalysis()

    async def _analyze(self, story_id: str) -> ConsistencyAnalysis:
        story, pages, characters = await asyncio.gather(
            self.repository.get_story(story_id),
            self.repository.list_pages(story_id),
            self.repository.list_characters(story_id),
        )

        page_images = await self._load_page_images(pages)
        if not page_images:
            logger.info(f"[Consistency] Story {story_id} has no rendered pages, skipping")
            return ConsistencyAnalysis()

        instruction = build_consistency_prompt(
            characters,
            len(page_images),
            style_guide=story.style_guide,
            has_hero_photo=story.settings.has_hero_photo,
        )
        parts = await self._reference_parts(story.settings.hero_photo, characters)
        for page, data in page_images:
            parts.append(ContentPart.from_text(f"[PAGE {page.page_number}]"))
            parts.append(ContentPart.from_image(data))

        response = await self.generate_with_llm(
            system_prompt=CONSISTENCY_SYSTEM_PROMPT,
            user_prompt=instruction,
            temperature=0.2,
            parts=parts,
        )
        data = self.parse_json(response)
        if not isinstance(data, dict):
            logger.warning("[Consistency] Response JSON is not an object")
            return ConsistencyAnalysis()

        analysis = sanitize_analysis(data, len(pages), [p.page_number for p, _ in page_images])
        logger.info(
            f"[Consistency] Story {story_id}: {len(analysis.issues)} issues, "
            f"pages to regenerate {analysis.pages_needing_regeneration}"
        )
        return analysis

    async def _load_page_images(self, pages: List[Page]) -> List[Tuple[Page, bytes]]:
        """Imaged pages with their bytes, ascending by page number"""
        imaged = sorted((p for p in pages if p.image), key=lambda p: p.page_number)
        blobs = await asyncio.gather(*(self.repository.load_image(p.image) for p in imaged))
        return [(page, data) for page, data in zip(imaged, blobs) if data]

    async def _reference_parts(
        self,
        hero_photo: Optional[str],
        characters: List[Character]
    ) -> List[ContentPart]:
        """Hero photo first, then each character's references"""
        parts: List[ContentPart] = []
        hero = next((c for c in characters if c.is_hero), None)

        if hero_photo:
            hero_name = hero.name if hero else "Hero"
            parts.append(ContentPart.from_text(f"[HERO PHOTO REFERENCE: {hero_name}]"))
            parts.append(ContentPart.from_base64(hero_photo))

        for character in characters:
            keys = character.reference_images or ([character.reference_image] if character.reference_image else [])
            if not keys:
                continue
            blobs = await asyncio.gather(*(self.repository.load_image(k) for k in keys))
            marker = " [HERO]" if character.is_hero else ""
            for data in blobs:
                if data:
                    parts.append(ContentPart.from_text(f"[CHARACTER REFERENCE: {character.name}]{marker}"))
                    parts.append(ContentPart.from_image(data))

        return parts

    async def check_page(self, story_id: str, page_id: str, character_id: str) -> PageCheckResult:
        """Quick check that one character on one page matches its description; fails open"""
        page = await self.repository.get_page(story_id, page_id)
        character = await self.repository.get_character(story_id, character_id)
        result = PageCheckResult(page_number=page.page_number, character=character.name)

        try:
            data = await self.repository.load_image(page.image)
            if not data:
                return result

            response = await self.generate_with_llm(
                system_prompt=CONSISTENCY_SYSTEM_PROMPT,
                user_prompt=build_quick_check_prompt(
                    character.name, character.visual_description, page.page_number
                ),
                temperature=0.2,
                parts=[ContentPart.from_image(data)],
            )
            parsed = self.parse_json(response)
        except Exception as e:
            logger.warning(f"[Consistency] Quick check of page {page.page_number} failed: {e}")
            return result

        if isinstance(parsed, dict):
            result.matches = bool(parsed.get("matches", True))
            result.issues = str(parsed.get("issues") or "")
            result.checked = True
        return result
