"""Plan stage output models"""

from typing import List, Optional
from pydantic import BaseModel, Field

from .character import Character
from .page import PageDraft
from .style import StyleGuide


class PlannedCharacter(BaseModel):
    """Character as returned by the planning model"""
    name: str
    visual_description: str
    display_description: str = ""
    approximate_age: str = ""
    role: Optional[str] = None


class PlanResult(BaseModel):
    """Everything the plan stage hands back to the caller for review"""
    story_id: str
    title: str
    theme: str = ""
    arc_summary: List[str] = Field(default_factory=list)
    pages: List[PageDraft] = Field(default_factory=list)
    characters: List[Character] = Field(default_factory=list)
    style_guide: StyleGuide
    content_warning: Optional[str] = None

    @property
    def page_count(self) -> int:
        return len(self.pages)
