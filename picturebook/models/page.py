"""Page models"""

from enum import Enum
from typing import Optional
import uuid
from pydantic import BaseModel, Field


DEFAULT_CAMERA_ANGLE = "medium shot"


class PageStatus(str, Enum):
    """Render status of a page"""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


class PageDraft(BaseModel):
    """Planned page text before persistence"""
    page_number: int = Field(..., ge=1)
    caption: str = Field(..., description="Story text read aloud")
    prompt: str = Field(..., description="Image generation prompt")
    camera_angle: str = Field(default=DEFAULT_CAMERA_ANGLE)


class Page(BaseModel):
    """A persisted story page"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    story_id: str
    page_number: int = Field(..., ge=1)
    caption: str
    prompt: str
    camera_angle: str = Field(default=DEFAULT_CAMERA_ANGLE)
    image: Optional[str] = Field(default=None, description="Object store key of the current image")
    status: PageStatus = Field(default=PageStatus.PENDING)
    render_attempts: int = Field(default=0)

    @classmethod
    def from_draft(cls, story_id: str, draft: PageDraft) -> "Page":
        return cls(
            story_id=story_id,
            page_number=draft.page_number,
            caption=draft.caption,
            prompt=draft.prompt,
            camera_angle=draft.camera_angle or DEFAULT_CAMERA_ANGLE,
        )
