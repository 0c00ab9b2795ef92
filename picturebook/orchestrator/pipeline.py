"""Picture book pipeline: stages wired to the workflow tracker"""

import asyncio
import logging
from typing import Dict, Any, Optional, Callable, Awaitable

from picturebook.errors import PictureBookError
from picturebook.llm import ImageProvider, LLMProvider, RetryPolicy
from picturebook.llm.retry import (
    CHARACTER_REFERENCE_RETRY,
    CONSISTENCY_RETRY,
    PAGE_RENDER_RETRY,
    PLAN_RETRY,
)
from picturebook.memory import StoryRepository
from picturebook.models import (
    BookSettings,
    ConsistencyAnalysis,
    PlanResult,
    Story,
    WorkflowState,
)
from picturebook.stages import (
    CharacterReferenceStage,
    ConsistencyStage,
    PageRenderResult,
    PageRenderStage,
    PageCheckResult,
    PlannerStage,
)
from .regeneration import RegenerationController, RegenerationReport
from .workflow import WorkflowTracker

logger = logging.getLogger(__name__)


class PictureBookPipeline:
    """Runs the plan, character, page and consistency stages for one story at a time"""

    def __init__(
        self,
        repository: StoryRepository,
        llm_provider: LLMProvider,
        image_provider: ImageProvider,
        vision_provider: Optional[LLMProvider] = None,
        config: Optional[Dict[str, Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize pipeline

        Args:
            repository: Story persistence
            llm_provider: Text model for planning
            image_provider: Image model for references and pages
            vision_provider: Vision model for consistency (defaults to llm_provider)
            config: App config (retry, pipeline sections)
            sleep: Backoff sleep shared by all stages, injectable for tests
        """
        config = config or {}
        pipeline_config = config.get("pipeline", {}) or {}

        self.repository = repository
        self.llm_provider = llm_provider
        self.image_provider = image_provider
        self.vision_provider = vision_provider or llm_provider
        self.page_concurrency = max(1, int(pipeline_config.get("page_concurrency", 3)))

        self.workflow = WorkflowTracker(repository)
        self.planner = PlannerStage(
            repository,
            llm_provider,
            max_source_chars=int(pipeline_config.get("max_source_chars", 8000)),
            retry_policy=RetryPolicy.from_config(config, "plan", PLAN_RETRY),
            sleep=sleep,
        )
        self.character_refs = CharacterReferenceStage(
            repository,
            image_provider,
            retry_policy=RetryPolicy.from_config(config, "character_reference", CHARACTER_REFERENCE_RETRY),
            sleep=sleep,
        )
        self.page_renderer = PageRenderStage(
            repository,
            image_provider,
            retry_policy=RetryPolicy.from_config(config, "page_render", PAGE_RENDER_RETRY),
            sleep=sleep,
        )
        self.consistency = ConsistencyStage(
            repository,
            self.vision_provider,
            retry_policy=RetryPolicy.from_config(config, "consistency", CONSISTENCY_RETRY),
            sleep=sleep,
        )
        self.regeneration = RegenerationController(
            self.page_renderer,
            repository,
            max_regenerations_per_page=int(pipeline_config.get("max_regenerations_per_page", 1)),
            page_concurrency=self.page_concurrency,
        )

    async def close(self):
        """Close every distinct provider once"""
        providers = {id(p): p for p in (self.llm_provider, self.vision_provider, self.image_provider)}
        for provider in providers.values():
            await provider.close()

    async def create_story(self, source_text: str, settings: BookSettings, title: Optional[str] = None) -> Story:
        story = Story(source_text=source_text, settings=settings)
        if title:
            story.title = title
        await self.repository.create_story(story)
        logger.info(f"[Pipeline] Created story {story.id}")
        return story

    async def plan(
        self,
        story_id: str,
        source_text: Optional[str] = None,
        settings: Optional[BookSettings] = None
    ) -> PlanResult:
        """
        Plan a story and stop at the plan review checkpoint.

        Source text or settings passed here replace the stored ones, so the
        later stages see the same hero photo and style the plan was made
        with. A failure marks the story `error` and is re-raised; nothing
        from the failed plan is saved.
        """
        story = await self.repository.get_story(story_id)

        overrides: Dict[str, Any] = {}
        if source_text is not None:
            overrides["source_text"] = source_text
        if settings is not None:
            overrides["settings"] = settings
        if overrides:
            await self.repository.update_story(story_id, **overrides)
            logger.info(f"[Pipeline] Stored {', '.join(sorted(overrides))} for story {story_id}")

        source_text = source_text if source_text is not None else story.source_text
        settings = settings or story.settings

        await self.workflow.transition(story_id, WorkflowState.PLAN_PENDING)
        try:
            result = await self.planner.execute(story_id, source_text, settings)
        except Exception as e:
            await self.workflow.fail(story_id, f"Planning failed: {_describe(e)}")
            raise

        await self.workflow.transition(
            story_id,
            WorkflowState.PLAN_REVIEW,
            f"Plan ready: {result.page_count} pages, {len(result.characters)} characters",
        )
        return result

    async def generate_character(self, story_id: str, character_id: str):
        """Reference generation for one character (per-entity call)"""
        await self.workflow.enter(story_id, WorkflowState.CHARACTERS_GENERATING)
        return await self.character_refs.generate(story_id, character_id)

    async def generate_characters(self, story_id: str) -> Dict[str, Any]:
        """Fan out over all characters, then stop at character review if the story opted in"""
        await self.workflow.enter(story_id, WorkflowState.CHARACTERS_GENERATING)
        summary = await self.character_refs.generate_all(story_id)

        story = await self.repository.get_story(story_id)
        step = f"Characters: {summary['completed']}/{summary['total']} completed"
        if story.settings.character_review:
            await self.workflow.transition(story_id, WorkflowState.CHARACTER_REVIEW, step)
        else:
            await self.workflow.update_step(story_id, step)
        return summary

    async def render_page(
        self,
        story_id: str,
        page_id: str,
        fix_instruction: Optional[str] = None,
        finalize: bool = True
    ) -> PageRenderResult:
        """
        Render one page (per-entity call).

        With `finalize`, the story moves to `complete` once every page has
        an image. A completed story can still re-render pages.
        """
        if await self.workflow.current(story_id) != WorkflowState.COMPLETE:
            await self.workflow.enter(story_id, WorkflowState.PAGES_GENERATING)

        result = await self.page_renderer.render(story_id, page_id, fix_instruction)
        if finalize and result.success:
            await self._complete_if_rendered(story_id)
        return result

    async def render_pages(self, story_id: str, only_missing: bool = False) -> Dict[str, Any]:
        """Render pages concurrently, bounded by page_concurrency"""
        await self.workflow.enter(story_id, WorkflowState.PAGES_GENERATING)
        pages = await self.repository.list_pages(story_id)
        if only_missing:
            pages = [p for p in pages if not p.image]
        semaphore = asyncio.Semaphore(self.page_concurrency)

        async def _render(page_id: str) -> PageRenderResult:
            async with semaphore:
                return await self.page_renderer.render(story_id, page_id)

        outcomes = await asyncio.gather(*(_render(p.id) for p in pages), return_exceptions=True)

        rendered = []
        failed = []
        for page, outcome in zip(pages, outcomes):
            if isinstance(outcome, PageRenderResult) and outcome.success:
                rendered.append(page.page_number)
            else:
                if isinstance(outcome, BaseException):
                    logger.error(f"[Pipeline] Page {page.page_number} raised: {outcome}", exc_info=outcome)
                failed.append(page.page_number)

        await self.workflow.update_step(story_id, f"Illustrated {len(rendered)}/{len(pages)} pages")
        return {"rendered": rendered, "failed": failed, "total": len(pages)}

    async def analyze_consistency(self, story_id: str) -> ConsistencyAnalysis:
        return await self.consistency.analyze(story_id)

    async def check_page(self, story_id: str, page_id: str, character_id: str) -> PageCheckResult:
        return await self.consistency.check_page(story_id, page_id, character_id)

    async def regenerate(self, story_id: str, analysis: ConsistencyAnalysis) -> RegenerationReport:
        """One regeneration cycle for one analysis; never re-runs the analysis"""
        await self.repository.get_story(story_id)
        return await self.regeneration.regenerate(story_id, analysis)

    async def update_captions(self, story_id: str, captions: Dict[int, str]) -> int:
        """Edit page captions by page number; returns how many were updated"""
        pages = {p.page_number: p for p in await self.repository.list_pages(story_id)}
        updated = 0
        for page_number, caption in captions.items():
            page = pages.get(int(page_number))
            if page is None:
                logger.warning(f"[Pipeline] Story {story_id} has no page {page_number}, caption skipped")
                continue
            try:
                await self.repository.update_page(page.id, caption=caption)
                updated += 1
            except PictureBookError as e:
                logger.warning(f"[Pipeline] Caption update for page {page_number} failed: {e}")
        return updated

    async def finalize(self, story_id: str) -> WorkflowState:
        """Mark the story complete"""
        return await self.workflow.transition(story_id, WorkflowState.COMPLETE)

    async def _complete_if_rendered(self, story_id: str) -> None:
        pages = await self.repository.list_pages(story_id)
        if pages and all(p.image for p in pages):
            if await self.workflow.current(story_id) == WorkflowState.PAGES_GENERATING:
                await self.finalize(story_id)

    async def run(
        self,
        source_text: str,
        settings: BookSettings,
        check_consistency: bool = True,
        title: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Full run: plan, characters, pages, one consistency pass and one
        regeneration cycle.

        Stops at the character review checkpoint when the settings ask for it.
        """
        story = await self.create_story(source_text, settings, title)
        plan = await self.plan(story.id)
        summary: Dict[str, Any] = {"story_id": story.id, "plan": plan}

        try:
            if settings.character_consistency and plan.characters:
                summary["characters"] = await self.generate_characters(story.id)
                if settings.character_review:
                    logger.info(f"[Pipeline] Story {story.id} paused for character review")
                    return summary

            summary["pages"] = await self.render_pages(story.id)

            if check_consistency:
                analysis = await self.analyze_consistency(story.id)
                summary["consistency"] = analysis
                summary["regeneration"] = await self.regenerate(story.id, analysis)

            if await self._all_pages_rendered(story.id):
                await self.finalize(story.id)
            else:
                # Left in pages_generating so the missing pages can be resumed
                await self.workflow.update_step(
                    story.id,
                    f"{len(summary['pages']['failed'])} pages could not be illustrated",
                )
        except Exception as e:
            await self.workflow.fail(story.id, f"Generation failed: {_describe(e)}")
            raise

        return summary

    async def resume(self, story_id: str, check_consistency: bool = True) -> Dict[str, Any]:
        """Continue a story paused at character review or with pages still missing"""
        summary: Dict[str, Any] = {"story_id": story_id}
        summary["pages"] = await self.render_pages(story_id, only_missing=True)
        if check_consistency:
            analysis = await self.analyze_consistency(story_id)
            summary["consistency"] = analysis
            summary["regeneration"] = await self.regenerate(story_id, analysis)
        if await self._all_pages_rendered(story_id):
            await self.finalize(story_id)
        return summary

    async def _all_pages_rendered(self, story_id: str) -> bool:
        pages = await self.repository.list_pages(story_id)
        return bool(pages) and all(p.image for p in pages)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, PictureBookError):
        return exc.message
    return str(exc) or exc.__class__.__name__
