"""Book settings supplied when a story is submitted"""

import base64
import binascii
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class QualityTier(str, Enum):
    """Image quality tiers"""
    STANDARD_FLASH = "standard-flash"
    PREMIUM_2K = "premium-2k"
    PREMIUM_4K = "premium-4k"


class AspectRatio(str, Enum):
    """Supported page aspect ratios"""
    SQUARE = "1:1"
    PORTRAIT_2_3 = "2:3"
    LANDSCAPE_3_2 = "3:2"
    PORTRAIT_3_4 = "3:4"
    LANDSCAPE_4_3 = "4:3"
    PORTRAIT_4_5 = "4:5"
    LANDSCAPE_5_4 = "5:4"
    PORTRAIT_9_16 = "9:16"
    WIDESCREEN = "16:9"
    ULTRAWIDE = "21:9"


def max_intensity_for_age(target_age: int) -> int:
    """Intensity ceiling for an age band"""
    if target_age <= 5:
        return 5
    if target_age <= 8:
        return 7
    return 10


class BookSettings(BaseModel):
    """User settings for picture book generation"""
    target_age: int = Field(..., ge=3, le=18, description="Reader age in years")
    intensity: int = Field(default=3, ge=0, le=10, description="0=very gentle, 10=adventurous")
    aesthetic_style: str = Field(default="whimsical watercolor", min_length=1)
    freeform_notes: str = Field(default="", description="Additional creative direction")
    desired_page_count: int = Field(default=10, ge=5, le=30)
    quality_tier: QualityTier = Field(default=QualityTier.STANDARD_FLASH)
    aspect_ratio: AspectRatio = Field(default=AspectRatio.SQUARE)

    # Optional flags
    character_consistency: bool = Field(default=True)
    character_review: bool = Field(default=False, description="Pause for character review before pages")
    enable_search_grounding: bool = Field(default=False)

    hero_photo: Optional[str] = Field(default=None, description="Base64 (or data URL) photo of the hero")

    @field_validator("hero_photo")
    @classmethod
    def check_hero_photo(cls, value: Optional[str]) -> Optional[str]:
        """Reject a photo that is not decodable base64"""
        if not value:
            return None
        payload = value.split(",", 1)[1] if value.startswith("data:") and "," in value else value
        try:
            decoded = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"hero_photo is not valid base64: {e}") from e
        if not decoded:
            raise ValueError("hero_photo is empty")
        return value

    @property
    def effective_intensity(self) -> int:
        """Intensity capped by the reader's age band"""
        return min(self.intensity, max_intensity_for_age(self.target_age))

    @property
    def has_hero_photo(self) -> bool:
        return bool(self.hero_photo)
