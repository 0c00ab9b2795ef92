"""Memory and storage interfaces"""

from .structured_state import StructuredState, DynamoDBState
from .object_store import ObjectStore, S3ObjectStore
from .local_storage import LocalFileState, LocalObjectStore
from .repository import StoryRepository

__all__ = [
    "StructuredState",
    "DynamoDBState",
    "LocalFileState",
    "ObjectStore",
    "S3ObjectStore",
    "LocalObjectStore",
    "StoryRepository",
]
