"""Consistency analysis models"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


DEFAULT_FIX_INSTRUCTION = "Ensure visual consistency with character references"


class IssueKind(str, Enum):
    """Kinds of cross-page drift"""
    CHARACTER_APPEARANCE = "character_appearance"
    TIMELINE_LOGIC = "timeline_logic"
    STYLE_DRIFT = "style_drift"
    OBJECT_CONTINUITY = "object_continuity"


class ConsistencyIssue(BaseModel):
    """One detected inconsistency"""
    page_number: int
    kind: IssueKind = Field(default=IssueKind.CHARACTER_APPEARANCE)
    description: str = Field(default="")
    character: Optional[str] = Field(default=None, description="Character involved, if any")
    fix_instruction: str = Field(default=DEFAULT_FIX_INSTRUCTION)


class ConsistencyAnalysis(BaseModel):
    """Result of one consistency pass"""
    issues: List[ConsistencyIssue] = Field(default_factory=list)
    pages_needing_regeneration: List[int] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.issues and not self.pages_needing_regeneration

    def fix_instruction_for(self, page_number: int) -> str:
        """Concatenate fix instructions for one page"""
        fixes = [
            issue.fix_instruction
            for issue in self.issues
            if issue.page_number == page_number and issue.fix_instruction
        ]
        if not fixes:
            return DEFAULT_FIX_INSTRUCTION
        return "\n".join(f"- {fix}" for fix in fixes)
