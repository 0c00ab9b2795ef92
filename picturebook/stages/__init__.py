"""Pipeline stage implementations for picture book generation"""

from .base import BaseStage
from .planner import PlannerStage
from .character_refs import CharacterReferenceStage, CharacterReferenceResult
from .page_renderer import PageRenderStage, PageRenderResult, relevant_characters
from .consistency import ConsistencyStage, PageCheckResult, sanitize_analysis

__all__ = [
    "BaseStage",
    "PlannerStage",
    "CharacterReferenceStage",
    "CharacterReferenceResult",
    "PageRenderStage",
    "PageRenderResult",
    "relevant_characters",
    "ConsistencyStage",
    "PageCheckResult",
    "sanitize_analysis",
]
