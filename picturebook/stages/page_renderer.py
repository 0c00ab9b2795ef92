"""Page rendering stage: one illustration per page"""

import asyncio
import logging
from typing import Dict, Any, List, Optional

from pydantic import BaseModel

from .base import BaseStage
from .prompts import build_page_prompt, finalize_image_prompt
from picturebook.errors import error_payload
from picturebook.llm import ContentPart, ImageProvider
from picturebook.llm.retry import PAGE_RENDER_RETRY
from picturebook.models import Character, Page, PageStatus, QualityTier, Story, create_style_guide

logger = logging.getLogger(__name__)

IMAGE_SIZE_BY_TIER = {
    QualityTier.STANDARD_FLASH: None,
    QualityTier.PREMIUM_2K: "2K",
    QualityTier.PREMIUM_4K: "4K",
}


class PageRenderResult(BaseModel):
    """Outcome of one page render"""
    page_id: str
    page_number: int
    success: bool
    image: Optional[str] = None
    error: Optional[Dict[str, Any]] = None


def relevant_characters(page: Page, characters: List[Character]) -> List[Character]:
    """Characters named in the caption or prompt; all of them when none is named"""
    text = f"{page.caption}\n{page.prompt}".lower()
    named = [c for c in characters if c.name and c.name.lower() in text]
    return named or list(characters)


class PageRenderStage(BaseStage):
    """Renders page illustrations conditioned on style guide and character references"""

    def __init__(self, repository, image_provider: ImageProvider, **kwargs):
        kwargs.setdefault("retry_policy", PAGE_RENDER_RETRY)
        super().__init__("Pages", repository, **kwargs)
        self.image_provider = image_provider

    async def render(
        self,
        story_id: str,
        page_id: str,
        fix_instruction: Optional[str] = None
    ) -> PageRenderResult:
        """
        Render (or re-render) one page.

        The new image replaces the page's current one only after the model
        returned image bytes; a failed render keeps the previous image.

        Args:
            story_id: Owning story
            page_id: Page to render
            fix_instruction: Consistency fix appended on regeneration

        Returns:
            PageRenderResult
        """
        story, page, characters = await asyncio.gather(
            self.repository.get_story(story_id),
            self.repository.get_page(story_id, page_id),
            self.repository.list_characters(story_id),
        )

        prompt, references = await self._build_request(story, page, characters, fix_instruction)
        previous_image = page.image

        await self.repository.update_page(
            page_id,
            status=PageStatus.GENERATING,
            render_attempts=page.render_attempts + 1,
        )

        try:
            image = await self.call_upstream(
                lambda: self.image_provider.generate_image(
                    prompt,
                    reference_images=references,
                    aspect_ratio=story.settings.aspect_ratio.value,
                    image_size=IMAGE_SIZE_BY_TIER.get(story.settings.quality_tier),
                ),
                label=f"page {page.page_number}",
            )
            key = await self.repository.store_image(
                story_id, "pages", f"page-{page.page_number}", image.data, image.mime_type
            )
        except Exception as e:
            # Keep whatever image the page already had
            status = PageStatus.COMPLETED if previous_image else PageStatus.ERROR
            await self.repository.update_page(page_id, status=status)
            logger.warning(f"[Pages] Page {page.page_number} of story {story_id} failed: {e}")
            return PageRenderResult(
                page_id=page_id,
                page_number=page.page_number,
                success=False,
                image=previous_image,
                error=error_payload(e),
            )

        await self.repository.update_page(page_id, image=key, status=PageStatus.COMPLETED)
        if previous_image and previous_image != key:
            await self.repository.discard_image(previous_image)

        logger.info(
            f"[Pages] Rendered page {page.page_number} of story {story_id}"
            f"{' with consistency fix' if fix_instruction else ''}"
        )
        return PageRenderResult(
            page_id=page_id,
            page_number=page.page_number,
            success=True,
            image=key,
        )

    async def _build_request(
        self,
        story: Story,
        page: Page,
        characters: List[Character],
        fix_instruction: Optional[str]
    ):
        """Final prompt plus reference images (hero photo first)"""
        relevant = relevant_characters(page, characters)
        style_guide = story.style_guide or create_style_guide(
            story.settings.aesthetic_style,
            target_age=story.settings.target_age,
            quality_tier=story.settings.quality_tier,
        )

        references: List[ContentPart] = []
        hero = next((c for c in relevant if c.is_hero), None)
        hero_name = None
        if hero and story.settings.has_hero_photo:
            references.append(ContentPart.from_base64(story.settings.hero_photo))
            hero_name = hero.name

        referenced = [c for c in relevant if c.reference_image]
        images = await asyncio.gather(
            *(self.repository.load_image(c.reference_image) for c in referenced)
        )
        for character, data in zip(referenced, images):
            if data:
                references.append(ContentPart.from_image(data))
            else:
                logger.warning(f"[Pages] Reference image for {character.name} is missing from storage")

        if story.settings.character_consistency is False:
            references = references[:1] if hero_name else []

        prompt = build_page_prompt(page, style_guide, relevant, fix_instruction, hero_name)
        return finalize_image_prompt(prompt), references
