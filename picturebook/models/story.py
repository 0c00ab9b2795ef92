"""Story record models"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
import uuid
from pydantic import BaseModel, Field

from .settings import BookSettings
from .style import StyleGuide


UNTITLED_STORY = "Untitled Story"


class StoryStatus(str, Enum):
    """Coarse story status"""
    PLANNING = "planning"
    PLANNED = "planned"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


class WorkflowState(str, Enum):
    """Pipeline phase of a story"""
    IDLE = "idle"
    PLAN_PENDING = "plan_pending"
    PLAN_REVIEW = "plan_review"
    CHARACTERS_GENERATING = "characters_generating"
    CHARACTER_REVIEW = "character_review"
    PAGES_GENERATING = "pages_generating"
    COMPLETE = "complete"
    ERROR = "error"


class Story(BaseModel):
    """A submitted story and its pipeline state"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = Field(default=UNTITLED_STORY)
    source_text: str = Field(..., description="Original source text")
    settings: BookSettings

    status: StoryStatus = Field(default=StoryStatus.PLANNING)
    workflow_state: WorkflowState = Field(default=WorkflowState.IDLE)
    current_step: str = Field(default="Initializing story...")

    theme: Optional[str] = None
    arc_summary: List[str] = Field(default_factory=list)
    style_guide: Optional[StyleGuide] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
