"""Character models"""

from enum import Enum
from typing import List, Optional
import uuid
from pydantic import BaseModel, Field


class CharacterRole(str, Enum):
    """Importance of a character to the story"""
    MAIN = "main"
    SUPPORTING = "supporting"
    BACKGROUND = "background"


class CharacterStatus(str, Enum):
    """Reference generation status"""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


# Reference angles in generation order; main characters get all three
REFERENCE_ANGLES = [
    "front-facing portrait",
    "side profile",
    "expression sheet (happy, neutral, surprised)",
]

REFERENCE_COUNT_BY_ROLE = {
    CharacterRole.MAIN: 3,
    CharacterRole.SUPPORTING: 2,
    CharacterRole.BACKGROUND: 1,
}


class Character(BaseModel):
    """A story character and its reference images"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    story_id: str = Field(..., description="Owning story")
    name: str = Field(..., description="Character name")
    visual_description: str = Field(..., description="Physical description used for image conditioning")
    display_description: str = Field(default="", description="Story role shown to readers")
    approximate_age: str = Field(default="")
    role: CharacterRole = Field(default=CharacterRole.SUPPORTING)
    is_hero: bool = Field(default=False, description="Bound to the uploaded hero photo")
    status: CharacterStatus = Field(default=CharacterStatus.PENDING)

    # Object store keys
    reference_image: Optional[str] = Field(default=None, description="Primary reference")
    reference_images: List[str] = Field(default_factory=list)

    def reference_angles(self) -> List[str]:
        """Angles to generate for this character's role"""
        return REFERENCE_ANGLES[:REFERENCE_COUNT_BY_ROLE[self.role]]
