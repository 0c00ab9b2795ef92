"""Orchestration of the picture book generation pipeline"""

from .pipeline import PictureBookPipeline
from .regeneration import RegenerationController, RegenerationCycle, RegenerationReport
from .workflow import WorkflowTracker, ALLOWED_TRANSITIONS, can_transition

__all__ = [
    "PictureBookPipeline",
    "RegenerationController",
    "RegenerationCycle",
    "RegenerationReport",
    "WorkflowTracker",
    "ALLOWED_TRANSITIONS",
    "can_transition",
]
