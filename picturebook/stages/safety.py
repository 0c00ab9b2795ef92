"""Age-band content advisory for planned stories"""

from typing import List, Optional
from pydantic import BaseModel, Field


AGE_BAND_CONSTRAINTS = {
    "3-5": {
        "max_intensity": 3,
        "banned_words": ["scary", "death", "violence", "nightmare", "monster"],
        "preferred_themes": ["friendship", "family", "learning", "playing"],
    },
    "6-8": {
        "max_intensity": 6,
        "banned_words": ["death", "violence", "war", "murder"],
        "preferred_themes": ["adventure", "problem-solving", "teamwork", "discovery"],
    },
    "9-12": {
        "max_intensity": 8,
        "banned_words": ["explicit violence", "inappropriate content"],
        "preferred_themes": ["coming of age", "moral lessons", "challenges", "growth"],
    },
}


class ContentSafety(BaseModel):
    """Advisory result; never blocks generation"""
    is_appropriate: bool
    age_rating: str
    concerns: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


def age_band(target_age: int) -> str:
    if target_age <= 5:
        return "3-5"
    if target_age <= 8:
        return "6-8"
    return "9-12"


def review_content(text: str, target_age: int, intensity: int) -> ContentSafety:
    """Flag banned words and excessive intensity for the reader's age band"""
    band = age_band(target_age)
    constraints = AGE_BAND_CONSTRAINTS[band]
    text_lower = text.lower()
    concerns = []
    suggestions = []

    found = [word for word in constraints["banned_words"] if word in text_lower]
    if found:
        concerns.append(f"Contains age-inappropriate content: {', '.join(found)}")
        suggestions.append("Consider removing or softening these elements")

    if intensity > constraints["max_intensity"]:
        concerns.append(f"Intensity level {intensity} may be too high for ages {band}")
        suggestions.append(f"Consider reducing intensity to {constraints['max_intensity']} or lower")

    if not any(theme in text_lower for theme in constraints["preferred_themes"]):
        suggestions.append(
            f"Consider incorporating themes like: {', '.join(constraints['preferred_themes'])}"
        )

    return ContentSafety(
        is_appropriate=not concerns,
        age_rating=band,
        concerns=concerns,
        suggestions=suggestions,
    )


def content_warning(safety: ContentSafety) -> Optional[str]:
    if not safety.concerns:
        return None
    return (
        f"Content Advisory for Ages {safety.age_rating}: {'; '.join(safety.concerns)}. "
        "Please review and consider adjustments for age-appropriateness."
    )
