"""Provider-agnostic model gateway interfaces"""

from abc import ABC, abstractmethod
import base64
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


class ContentPart(BaseModel):
    """One block of a multimodal message: either text or an image"""
    text: Optional[str] = None
    image: Optional[bytes] = None
    mime_type: str = "image/png"

    @classmethod
    def from_text(cls, text: str) -> "ContentPart":
        return cls(text=text)

    @classmethod
    def from_image(cls, data: bytes, mime_type: str = "image/png") -> "ContentPart":
        return cls(image=data, mime_type=mime_type)

    @classmethod
    def from_base64(cls, value: str, mime_type: str = "image/jpeg") -> "ContentPart":
        """Decode a base64 string or a data URL such as an uploaded photo"""
        if value.startswith("data:") and "," in value:
            header, value = value.split(",", 1)
            mime_type = header[5:].split(";", 1)[0] or mime_type
        return cls(image=base64.b64decode(value), mime_type=mime_type)

    @property
    def is_image(self) -> bool:
        return self.image is not None

    def image_b64(self) -> str:
        return base64.b64encode(self.image or b"").decode("ascii")


class LLMMessage(BaseModel):
    """LLM message"""
    role: str  # system, user, assistant
    content: str = ""
    parts: List[ContentPart] = Field(default_factory=list)

    def all_parts(self) -> List[ContentPart]:
        """Content followed by any extra parts, in order"""
        parts = [ContentPart.from_text(self.content)] if self.content else []
        return parts + list(self.parts)


class LLMResponse(BaseModel):
    """LLM response"""
    content: str
    model: str
    usage: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class GeneratedImage(BaseModel):
    """Image returned by an image model"""
    data: bytes
    mime_type: str = "image/png"
    model: str
    prompt: str = ""
    warnings: List[str] = Field(default_factory=list)


class LLMProvider(ABC):
    """Abstract base class for text and vision providers"""

    @abstractmethod
    async def generate(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """Generate a response from the LLM"""
        pass

    @abstractmethod
    def get_model_name(self) -> str:
        """Get the model name being used"""
        pass

    async def close(self):
        """Release any network resources"""
        pass


class ImageProvider(ABC):
    """Abstract base class for image generation providers"""

    @abstractmethod
    async def generate_image(
        self,
        prompt: str,
        reference_images: Optional[List[ContentPart]] = None,
        aspect_ratio: Optional[str] = None,
        image_size: Optional[str] = None,
    ) -> GeneratedImage:
        """Generate one image; raises NoImageGeneratedError when none is returned"""
        pass

    async def close(self):
        """Release any network resources"""
        pass
