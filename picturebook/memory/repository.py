"""Story, character and page persistence on top of the storage backends"""

import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List

from pydantic import BaseModel

from picturebook.errors import NotFoundError
from picturebook.models import Character, Page, Story
from .structured_state import StructuredState
from .object_store import ObjectStore

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


def _jsonable(value: Any) -> Any:
    """Convert models and enums inside an update dict to plain JSON values"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class StoryRepository:
    """
    Typed access to the three record kinds of a picture book.

    Writes to one record are serialised through a per-record lock; writes to
    different records may run concurrently.
    """

    STORIES_TABLE = "stories"
    CHARACTERS_TABLE = "characters"
    PAGES_TABLE = "pages"

    def __init__(self, structured_state: StructuredState, object_store: ObjectStore):
        """
        Initialize repository

        Args:
            structured_state: Record storage (local files or DynamoDB)
            object_store: Image storage (local files or S3)
        """
        self.structured_state = structured_state
        self.object_store = object_store
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, record_id: str) -> asyncio.Lock:
        return self._locks.setdefault(record_id, asyncio.Lock())

    async def _write(self, table_name: str, model: BaseModel) -> bool:
        record = model.model_dump(mode="json")
        async with self._lock(record["id"]):
            return await self.structured_state.write(table_name, record)

    async def _update(self, table_name: str, record_id: str, updates: Dict[str, Any]) -> None:
        payload = _jsonable(updates)
        payload["updated_at"] = datetime.utcnow().isoformat()
        async with self._lock(record_id):
            found = await self.structured_state.update(table_name, {"id": record_id}, payload)
        if not found:
            raise NotFoundError(f"{table_name[:-1].capitalize()} {record_id} not found")

    # Stories

    async def create_story(self, story: Story) -> Story:
        await self._write(self.STORIES_TABLE, story)
        return story

    async def get_story(self, story_id: str) -> Story:
        """Load a story or raise NotFoundError"""
        data = await self.structured_state.read(self.STORIES_TABLE, {"id": story_id})
        if not data:
            raise NotFoundError(f"Story {story_id} not found")
        return Story(**data)

    async def update_story(self, story_id: str, **updates) -> None:
        await self._update(self.STORIES_TABLE, story_id, updates)

    # Characters

    async def save_characters(self, characters: List[Character]) -> None:
        """Persist characters concurrently (independent records)"""
        await asyncio.gather(*(self._write(self.CHARACTERS_TABLE, c) for c in characters))

    async def list_characters(self, story_id: str) -> List[Character]:
        items = await self.structured_state.query(self.CHARACTERS_TABLE, {"story_id": story_id})
        return [Character(**item) for item in items]

    async def get_character(self, story_id: str, character_id: str) -> Character:
        data = await self.structured_state.read(self.CHARACTERS_TABLE, {"id": character_id})
        if not data or data.get("story_id") != story_id:
            raise NotFoundError(f"Character {character_id} not found in story {story_id}")
        return Character(**data)

    async def update_character(self, character_id: str, **updates) -> None:
        await self._update(self.CHARACTERS_TABLE, character_id, updates)

    async def delete_characters(self, characters: List[Character]) -> None:
        """Remove character records and their reference images"""
        for character in characters:
            async with self._lock(character.id):
                await self.structured_state.delete(self.CHARACTERS_TABLE, {"id": character.id})
            for key in set(character.reference_images) | {character.reference_image}:
                await self.discard_image(key)

    # Pages

    async def save_pages(self, pages: List[Page]) -> None:
        """Persist pages concurrently (independent records)"""
        await asyncio.gather(*(self._write(self.PAGES_TABLE, p) for p in pages))

    async def list_pages(self, story_id: str) -> List[Page]:
        """All pages of a story in page-number order"""
        items = await self.structured_state.query(self.PAGES_TABLE, {"story_id": story_id})
        return sorted((Page(**item) for item in items), key=lambda p: p.page_number)

    async def get_page(self, story_id: str, page_id: str) -> Page:
        data = await self.structured_state.read(self.PAGES_TABLE, {"id": page_id})
        if not data or data.get("story_id") != story_id:
            raise NotFoundError(f"Page {page_id} not found in story {story_id}")
        return Page(**data)

    async def update_page(self, page_id: str, **updates) -> None:
        await self._update(self.PAGES_TABLE, page_id, updates)

    async def delete_pages(self, pages: List[Page]) -> None:
        """Remove page records and their images"""
        for page in pages:
            async with self._lock(page.id):
                await self.structured_state.delete(self.PAGES_TABLE, {"id": page.id})
            await self.discard_image(page.image)

    # Images

    def image_key(self, story_id: str, kind: str, name: str, mime_type: str = "image/png") -> str:
        """Unique object key; every render gets a fresh key"""
        extension = MIME_EXTENSIONS.get(mime_type, "bin")
        return f"stories/{story_id}/{kind}/{name}-{uuid.uuid4().hex[:12]}.{extension}"

    async def store_image(
        self,
        story_id: str,
        kind: str,
        name: str,
        data: bytes,
        mime_type: str = "image/png"
    ) -> str:
        """Upload image bytes and return the object key"""
        key = self.image_key(story_id, kind, name, mime_type)
        await self.object_store.upload(
            key,
            data,
            content_type=mime_type,
            metadata={"story_id": story_id, "kind": kind},
        )
        return key

    async def load_image(self, key: Optional[str]) -> Optional[bytes]:
        if not key:
            return None
        return await self.object_store.download(key)

    async def discard_image(self, key: Optional[str]) -> None:
        """Remove a superseded image; failures only leave an orphan object"""
        if not key:
            return
        try:
            await self.object_store.delete(key)
        except Exception as e:
            logger.warning(f"[Repository] Could not delete superseded image {key}: {e}")
