"""Character reference stage: reference portraits per character"""

import asyncio
import logging
import re
from typing import Dict, Any, List, Optional

from pydantic import BaseModel

from .base import BaseStage
from .prompts import build_reference_prompt, WATERMARK_CLAUSE
from picturebook.llm import ImageProvider
from picturebook.llm.retry import CHARACTER_REFERENCE_RETRY
from picturebook.models import Character, CharacterStatus

logger = logging.getLogger(__name__)


class CharacterReferenceResult(BaseModel):
    """Outcome of reference generation for one character"""
    character_id: str
    name: str
    success: bool
    references: int = 0
    is_hero: bool = False
    error: Optional[str] = None


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "character"


class CharacterReferenceStage(BaseStage):
    """Generates 1-3 reference images per character; the hero uses the uploaded photo"""

    def __init__(self, repository, image_provider: ImageProvider, **kwargs):
        kwargs.setdefault("retry_policy", CHARACTER_REFERENCE_RETRY)
        super().__init__("Characters", repository, **kwargs)
        self.image_provider = image_provider

    async def generate(self, story_id: str, character_id: str) -> CharacterReferenceResult:
        """
        Generate reference images for one character.

        Angle failures are logged and skipped. The character ends `completed`
        with the first success as primary reference, or `error` when no angle
        produced an image.

        Args:
            story_id: Owning story
            character_id: Character to generate

        Returns:
            CharacterReferenceResult
        """
        story = await self.repository.get_story(story_id)
        character = await self.repository.get_character(story_id, character_id)

        await self.repository.update_character(character_id, status=CharacterStatus.GENERATING)

        if character.is_hero:
            # The uploaded photo is the reference
            await self.repository.update_character(character_id, status=CharacterStatus.COMPLETED)
            logger.info(f"[Characters] {character.name} is the hero, using uploaded photo")
            return CharacterReferenceResult(
                character_id=character_id,
                name=character.name,
                success=True,
                is_hero=True,
            )

        angles = character.reference_angles()
        logger.info(f"[Characters] Generating {len(angles)} references for {character.name} ({character.role.value})")

        references: List[str] = []
        for angle in angles:
            key = await self._generate_angle(story_id, character, story.settings, angle)
            if key:
                references.append(key)

        if not references:
            await self.repository.update_character(
                character_id,
                status=CharacterStatus.ERROR,
                reference_image=None,
                reference_images=[],
            )
            logger.warning(f"[Characters] No references produced for {character.name}")
            return CharacterReferenceResult(
                character_id=character_id,
                name=character.name,
                success=False,
                error="No images generated",
            )

        await self.repository.update_character(
            character_id,
            status=CharacterStatus.COMPLETED,
            reference_image=references[0],
            reference_images=references,
        )
        for stale in set(character.reference_images) - set(references):
            await self.repository.discard_image(stale)

        return CharacterReferenceResult(
            character_id=character_id,
            name=character.name,
            success=True,
            references=len(references),
        )

    async def _generate_angle(self, story_id: str, character: Character, settings, angle: str) -> Optional[str]:
        """One angle through the retry executor; None when it fails"""
        prompt = f"{build_reference_prompt(character, settings, angle)}\n- {WATERMARK_CLAUSE}"
        try:
            image = await self.call_upstream(
                lambda: self.image_provider.generate_image(prompt, aspect_ratio="1:1"),
                label=f"{character.name} {angle}",
            )
            return await self.repository.store_image(
                story_id,
                "characters",
                f"{_slug(character.name)}-{_slug(angle)[:24]}",
                image.data,
                image.mime_type,
            )
        except Exception as e:
            logger.warning(f"[Characters] Failed to generate {angle} for {character.name}: {e}")
            return None

    async def generate_all(self, story_id: str) -> Dict[str, Any]:
        """
        Generate references for every character of a story concurrently.

        One character's failure never blocks another.

        Returns:
            {"completed": n, "failed": n, "total": n, "results": [...]}
        """
        characters = await self.repository.list_characters(story_id)
        outcomes = await asyncio.gather(
            *(self.generate(story_id, c.id) for c in characters),
            return_exceptions=True,
        )

        results = []
        for character, outcome in zip(characters, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[Characters] {character.name} failed: {outcome}", exc_info=outcome)
                outcome = CharacterReferenceResult(
                    character_id=character.id,
                    name=character.name,
                    success=False,
                    error=str(outcome),
                )
            results.append(outcome)

        completed = sum(1 for r in results if r.success)
        logger.info(f"[Characters] Story {story_id}: {completed}/{len(results)} characters completed")
        return {
            "completed": completed,
            "failed": len(results) - completed,
            "total": len(results),
            "results": [r.model_dump() for r in results],
        }
