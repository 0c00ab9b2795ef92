"""Style guide held constant across all pages of one story"""

from typing import List, Optional
from pydantic import BaseModel, Field

from .settings import QualityTier


DEFAULT_DO_NOTS = [
    "dark shadows",
    "scary elements",
    "violent imagery",
    "overwhelming details that obscure the main subject",
    "adult themes",
    "photorealistic people (use stylized illustrations)",
    "any text, captions, titles, or typography within the image",
    "speech bubbles or word balloons",
    "signs with readable text (use symbolic imagery instead)",
]


class StyleGuide(BaseModel):
    """Art direction for a story"""
    art_style: str = Field(..., description="Rendering technique")
    color_palette: str = Field(..., description="Palette guidance")
    lighting: str = Field(..., description="Lighting guidance")
    composition: str = Field(..., description="Composition rules")
    do_nots: List[str] = Field(default_factory=list, description="Elements to avoid")
    lighting_atmosphere: Optional[str] = None
    visual_density: Optional[str] = None
    camera_movement_style: Optional[str] = None
    resolution_quality: Optional[str] = None

    def to_prompt(self) -> str:
        """Render the guide as a prompt block"""
        lines = [
            f"Art Style: {self.art_style}",
            f"Color Palette: {self.color_palette}",
            f"Lighting: {self.lighting}",
            f"Composition: {self.composition}",
        ]
        if self.lighting_atmosphere:
            lines.append(f"Atmosphere: {self.lighting_atmosphere}")
        if self.visual_density:
            lines.append(f"Visual Density: {self.visual_density}")
        if self.camera_movement_style:
            lines.append(f"Camera Style: {self.camera_movement_style}")
        if self.resolution_quality:
            lines.append(f"Quality: {self.resolution_quality}")
        if self.do_nots:
            lines.append(f"Avoid: {', '.join(self.do_nots)}")
        return "\n".join(lines)


def _art_style(style: str) -> str:
    if "watercolor" in style:
        return "watercolor illustration"
    if "cartoon" in style:
        return "cartoon style"
    if "digital" in style:
        return "digital art"
    if "sketch" in style:
        return "sketch illustration"
    return "children's book illustration style"


def _color_palette(style: str) -> str:
    if "warm" in style:
        return "warm, inviting colors"
    if "pastel" in style:
        return "soft pastel tones"
    if "bright" in style:
        return "bright, cheerful colors"
    if "muted" in style:
        return "muted, gentle tones"
    return "child-friendly color palette"


def _lighting(style: str) -> str:
    if "soft" in style:
        return "soft, diffused lighting"
    if "golden" in style:
        return "warm golden hour lighting"
    if "bright" in style:
        return "bright, even lighting"
    return "gentle, natural lighting"


def _lighting_atmosphere(style: str) -> str:
    if "golden hour" in style or "sunset" in style:
        return "Warm golden hour lighting with long shadows, amber and orange tones"
    if "morning" in style or "dawn" in style:
        return "Fresh morning light, soft and cool, hopeful atmosphere"
    if "magical" in style or "fantasy" in style:
        return "Ethereal, magical lighting with subtle glows and sparkles"
    return "Natural, balanced lighting with clear visibility, warm and inviting atmosphere"


def _visual_density(target_age: Optional[int]) -> str:
    if target_age is None:
        return "Age-appropriate visual complexity with clear focal points"
    if target_age <= 5:
        return "Simple, bold visual elements with large shapes and minimal background complexity"
    if target_age <= 8:
        return "Moderate detail with engaging but not overwhelming backgrounds"
    if target_age <= 12:
        return "Rich, layered compositions that reward closer inspection"
    return "Advanced visual complexity suitable for teen and young adult readers"


def _resolution_quality(quality_tier: QualityTier) -> str:
    if quality_tier == QualityTier.PREMIUM_4K:
        return "Ultra-high resolution 4K quality suitable for professional print"
    if quality_tier == QualityTier.PREMIUM_2K:
        return "High resolution 2K quality suitable for digital and standard print"
    return "Standard 1K quality suitable for digital viewing"


def create_style_guide(
    aesthetic_style: str,
    target_age: Optional[int] = None,
    quality_tier: QualityTier = QualityTier.STANDARD_FLASH
) -> StyleGuide:
    """Derive a style guide from the free-text aesthetic style"""
    style = aesthetic_style.lower()
    dynamic = "dynamic" in style or "cinematic" in style

    return StyleGuide(
        art_style=_art_style(style),
        color_palette=_color_palette(style),
        lighting=_lighting(style),
        composition="child-friendly perspective, clear focal points, intricate backgrounds with rich details",
        do_nots=list(DEFAULT_DO_NOTS),
        lighting_atmosphere=_lighting_atmosphere(style),
        visual_density=_visual_density(target_age),
        camera_movement_style=(
            "dynamic camera with varied angles and perspectives" if dynamic
            else "stable, clear framing with consistent perspective"
        ),
        resolution_quality=_resolution_quality(quality_tier),
    )
