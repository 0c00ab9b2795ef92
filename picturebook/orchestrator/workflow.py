"""Workflow state tracking for a story's pipeline phase"""

import asyncio
import logging
from typing import Dict, Optional, Set

from picturebook.errors import InvalidTransitionError
from picturebook.memory import StoryRepository
from picturebook.models import StoryStatus, WorkflowState

logger = logging.getLogger(__name__)

TERMINAL_STATES = {WorkflowState.COMPLETE, WorkflowState.ERROR}

# Forward edges; ERROR is reachable from every non-terminal state
ALLOWED_TRANSITIONS: Dict[WorkflowState, Set[WorkflowState]] = {
    WorkflowState.IDLE: {WorkflowState.PLAN_PENDING},
    WorkflowState.PLAN_PENDING: {WorkflowState.PLAN_REVIEW},
    WorkflowState.PLAN_REVIEW: {
        WorkflowState.PLAN_PENDING,
        WorkflowState.CHARACTERS_GENERATING,
        WorkflowState.PAGES_GENERATING,
    },
    WorkflowState.CHARACTERS_GENERATING: {
        WorkflowState.CHARACTERS_GENERATING,
        WorkflowState.CHARACTER_REVIEW,
        WorkflowState.PAGES_GENERATING,
    },
    WorkflowState.CHARACTER_REVIEW: {
        WorkflowState.CHARACTERS_GENERATING,
        WorkflowState.PAGES_GENERATING,
    },
    WorkflowState.PAGES_GENERATING: {
        WorkflowState.PAGES_GENERATING,
        WorkflowState.COMPLETE,
    },
    WorkflowState.COMPLETE: set(),
    WorkflowState.ERROR: set(),
}

STATUS_BY_STATE = {
    WorkflowState.IDLE: StoryStatus.PLANNING,
    WorkflowState.PLAN_PENDING: StoryStatus.PLANNING,
    WorkflowState.PLAN_REVIEW: StoryStatus.PLANNED,
    WorkflowState.CHARACTERS_GENERATING: StoryStatus.GENERATING,
    WorkflowState.CHARACTER_REVIEW: StoryStatus.GENERATING,
    WorkflowState.PAGES_GENERATING: StoryStatus.GENERATING,
    WorkflowState.COMPLETE: StoryStatus.COMPLETE,
    WorkflowState.ERROR: StoryStatus.ERROR,
}

DEFAULT_STEPS = {
    WorkflowState.IDLE: "Initializing story...",
    WorkflowState.PLAN_PENDING: "Planning story structure...",
    WorkflowState.PLAN_REVIEW: "Plan ready for review",
    WorkflowState.CHARACTERS_GENERATING: "Generating character references...",
    WorkflowState.CHARACTER_REVIEW: "Characters ready for review",
    WorkflowState.PAGES_GENERATING: "Illustrating pages...",
    WorkflowState.COMPLETE: "Story complete",
    WorkflowState.ERROR: "Generation failed",
}


def can_transition(current: WorkflowState, target: WorkflowState) -> bool:
    if target == WorkflowState.ERROR:
        return current not in TERMINAL_STATES
    return target in ALLOWED_TRANSITIONS[current]


class WorkflowTracker:
    """Validates and persists workflow transitions on the story record"""

    def __init__(self, repository: StoryRepository):
        self.repository = repository
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, story_id: str) -> asyncio.Lock:
        return self._locks.setdefault(story_id, asyncio.Lock())

    async def current(self, story_id: str) -> WorkflowState:
        story = await self.repository.get_story(story_id)
        return story.workflow_state

    async def transition(
        self,
        story_id: str,
        target: WorkflowState,
        step: Optional[str] = None
    ) -> WorkflowState:
        """
        Move a story to `target`, persisting state, status and current step.

        Raises:
            InvalidTransitionError: target not reachable from the current state
        """
        async with self._lock(story_id):
            current = await self.current(story_id)
            if not can_transition(current, target):
                raise InvalidTransitionError(
                    f"Cannot move story {story_id} from {current.value} to {target.value}",
                    details={"from": current.value, "to": target.value}
                )

            await self.repository.update_story(
                story_id,
                workflow_state=target,
                status=STATUS_BY_STATE[target],
                current_step=step or DEFAULT_STEPS[target],
            )

        if current != target:
            logger.info(f"[Workflow] Story {story_id}: {current.value} -> {target.value}")
        return target

    async def enter(self, story_id: str, target: WorkflowState, step: Optional[str] = None) -> WorkflowState:
        """Transition unless the story is already in `target`"""
        current = await self.current(story_id)
        if current == target:
            if step:
                await self.update_step(story_id, step)
            return current
        return await self.transition(story_id, target, step)

    async def update_step(self, story_id: str, step: str) -> None:
        """Update the human-readable progress string without changing state"""
        await self.repository.update_story(story_id, current_step=step)

    async def fail(self, story_id: str, message: str) -> None:
        """Mark a story as failed; a story already in a terminal state is left alone"""
        async with self._lock(story_id):
            current = await self.current(story_id)
            if current in TERMINAL_STATES:
                logger.warning(f"[Workflow] Story {story_id} already {current.value}, not marking error: {message}")
                return

            await self.repository.update_story(
                story_id,
                workflow_state=WorkflowState.ERROR,
                status=StoryStatus.ERROR,
                current_step=message,
            )
        logger.error(f"[Workflow] Story {story_id} failed: {message}")
