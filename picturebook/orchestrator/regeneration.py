"""Selective re-rendering of pages flagged by a consistency pass"""

import asyncio
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from picturebook.memory import StoryRepository
from picturebook.models import ConsistencyAnalysis
from picturebook.stages import PageRenderStage

logger = logging.getLogger(__name__)


class RegenerationCycle:
    """Per-page attempt counter for one consistency-triggered cycle"""

    def __init__(self, max_attempts_per_page: int = 1):
        self.max_attempts_per_page = max_attempts_per_page
        self.attempts: Dict[int, int] = {}

    def can_attempt(self, page_number: int) -> bool:
        return self.attempts.get(page_number, 0) < self.max_attempts_per_page

    def record(self, page_number: int) -> None:
        self.attempts[page_number] = self.attempts.get(page_number, 0) + 1


class RegenerationReport(BaseModel):
    """Page numbers grouped by regeneration outcome"""
    regenerated: List[int] = Field(default_factory=list)
    failed: List[int] = Field(default_factory=list)
    skipped: List[int] = Field(default_factory=list)


class RegenerationController:
    """Re-renders flagged pages once each with their fix instructions"""

    def __init__(
        self,
        page_renderer: PageRenderStage,
        repository: StoryRepository,
        max_regenerations_per_page: int = 1,
        page_concurrency: int = 3
    ):
        self.page_renderer = page_renderer
        self.repository = repository
        self.max_regenerations_per_page = max_regenerations_per_page
        self.page_concurrency = max(1, page_concurrency)

    async def regenerate(
        self,
        story_id: str,
        analysis: ConsistencyAnalysis,
        cycle: Optional[RegenerationCycle] = None
    ) -> RegenerationReport:
        """
        Re-render each page in `analysis.pages_needing_regeneration`.

        Never starts another consistency pass. Pages that are unknown or have
        used up their attempts in `cycle` are reported as skipped.
        """
        cycle = cycle or RegenerationCycle(self.max_regenerations_per_page)
        report = RegenerationReport()
        if not analysis.pages_needing_regeneration:
            return report

        pages = {p.page_number: p for p in await self.repository.list_pages(story_id)}
        semaphore = asyncio.Semaphore(self.page_concurrency)

        async def _regenerate(page_number: int) -> bool:
            async with semaphore:
                result = await self.page_renderer.render(
                    story_id,
                    pages[page_number].id,
                    fix_instruction=analysis.fix_instruction_for(page_number),
                )
                return result.success

        targets = []
        for page_number in dict.fromkeys(analysis.pages_needing_regeneration):
            if page_number not in pages or not cycle.can_attempt(page_number):
                report.skipped.append(page_number)
                continue
            cycle.record(page_number)
            targets.append(page_number)

        outcomes = await asyncio.gather(*(_regenerate(n) for n in targets), return_exceptions=True)
        for page_number, outcome in zip(targets, outcomes):
            if outcome is True:
                report.regenerated.append(page_number)
            else:
                if isinstance(outcome, BaseException):
                    logger.error(f"[Regeneration] Page {page_number} raised: {outcome}", exc_info=outcome)
                report.failed.append(page_number)

        logger.info(
            f"[Regeneration] Story {story_id}: regenerated {report.regenerated}, "
            f"failed {report.failed}, skipped {report.skipped}"
        )
        return report
