"""Pydantic schemas for picture book data structures"""

from .settings import BookSettings, QualityTier, AspectRatio, max_intensity_for_age
from .style import StyleGuide, create_style_guide
from .story import Story, StoryStatus, WorkflowState, UNTITLED_STORY
from .character import (
    Character,
    CharacterRole,
    CharacterStatus,
    REFERENCE_ANGLES,
)
from .page import Page, PageDraft, PageStatus, DEFAULT_CAMERA_ANGLE
from .consistency import (
    ConsistencyIssue,
    ConsistencyAnalysis,
    IssueKind,
    DEFAULT_FIX_INSTRUCTION,
)
from .plan import PlanResult, PlannedCharacter

__all__ = [
    # Settings
    "BookSettings",
    "QualityTier",
    "AspectRatio",
    "max_intensity_for_age",
    # Style
    "StyleGuide",
    "create_style_guide",
    # Story
    "Story",
    "StoryStatus",
    "WorkflowState",
    "UNTITLED_STORY",
    # Character
    "Character",
    "CharacterRole",
    "CharacterStatus",
    "REFERENCE_ANGLES",
    # Page
    "Page",
    "PageDraft",
    "PageStatus",
    "DEFAULT_CAMERA_ANGLE",
    # Consistency
    "ConsistencyIssue",
    "ConsistencyAnalysis",
    "IssueKind",
    "DEFAULT_FIX_INSTRUCTION",
    # Plan
    "PlanResult",
    "PlannedCharacter",
]
