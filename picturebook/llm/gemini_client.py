"""Gemini gateway for text, vision and image generation"""

import logging
import os
from typing import List, Optional, Dict, Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from picturebook.errors import (
    ConfigurationError,
    NoImageGeneratedError,
    TransientUpstreamError,
)
from .provider import (
    ContentPart,
    GeneratedImage,
    ImageProvider,
    LLMMessage,
    LLMProvider,
    LLMResponse,
)

logger = logging.getLogger(__name__)

# Upstream HTTP codes that signal rate limiting or overload
TRANSIENT_STATUS_CODES = {429, 503, 529}

SAFETY_SETTINGS = [
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    ),
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    ),
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    ),
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    ),
]


def _to_genai_parts(parts: List[ContentPart]) -> List[types.Part]:
    converted = []
    for part in parts:
        if part.is_image:
            converted.append(types.Part.from_bytes(data=part.image, mime_type=part.mime_type))
        elif part.text:
            converted.append(types.Part.from_text(text=part.text))
    return converted


def _translate_api_error(exc: genai_errors.APIError) -> Exception:
    """Map SDK errors onto the pipeline taxonomy"""
    code = getattr(exc, "code", None)
    if code in TRANSIENT_STATUS_CODES:
        return TransientUpstreamError(f"Gemini API busy ({code}): {exc}", status=code)
    return RuntimeError(f"Gemini API error ({code}): {exc}")


class GeminiClient(LLMProvider, ImageProvider):
    """Gemini client implementation backed by google-genai"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        text_model: str = "gemini-2.5-flash",
        image_model: str = "gemini-2.5-flash-image",
        client: Optional[genai.Client] = None
    ):
        """
        Initialize Gemini client

        Args:
            api_key: API key, falls back to GEMINI_API_KEY
            text_model: Model used for planning and vision analysis
            image_model: Model used for portraits and page art
            client: Optional pre-built genai.Client, mainly for tests
        """
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not self.api_key and client is None:
            raise ConfigurationError("GEMINI_API_KEY is not configured")

        self.text_model = text_model
        self.image_model = image_model
        self._client = client or genai.Client(api_key=self.api_key)

    def get_model_name(self) -> str:
        """Get the model name being used"""
        return self.text_model

    async def generate(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """Generate a text response, optionally conditioned on images"""
        system_prompt = "\n".join(m.content for m in messages if m.role == "system")
        contents = []
        for msg in messages:
            if msg.role == "system":
                continue
            role = "model" if msg.role == "assistant" else "user"
            contents.append(types.Content(role=role, parts=_to_genai_parts(msg.all_parts())))

        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system_prompt or None,
            safety_settings=SAFETY_SETTINGS,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=kwargs.get("model", self.text_model),
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            raise _translate_api_error(e) from e

        usage = getattr(response, "usage_metadata", None)
        return LLMResponse(
            content=response.text or "",
            model=kwargs.get("model", self.text_model),
            usage=usage.model_dump() if usage is not None else None,
        )

    async def generate_image(
        self,
        prompt: str,
        reference_images: Optional[List[ContentPart]] = None,
        aspect_ratio: Optional[str] = None,
        image_size: Optional[str] = None,
    ) -> GeneratedImage:
        """Generate one image from a prompt and optional reference images"""
        parts = _to_genai_parts([ContentPart.from_text(prompt)] + list(reference_images or []))

        image_config: Dict[str, Any] = {}
        if aspect_ratio:
            image_config["aspect_ratio"] = aspect_ratio
        if image_size:
            image_config["image_size"] = image_size

        config = types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
            candidate_count=1,
            safety_settings=SAFETY_SETTINGS,
            image_config=types.ImageConfig(**image_config) if image_config else None,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=self.image_model,
                contents=[types.Content(role="user", parts=parts)],
                config=config,
            )
        except genai_errors.APIError as e:
            raise _translate_api_error(e) from e

        candidates = getattr(response, "candidates", None) or []
        content = getattr(candidates[0], "content", None) if candidates else None
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data and (inline.mime_type or "").startswith("image/"):
                return GeneratedImage(
                    data=inline.data,
                    mime_type=inline.mime_type,
                    model=self.image_model,
                    prompt=prompt,
                    warnings=self._safety_warnings(response),
                )

        logger.warning(f"[Gemini] {self.image_model} returned no image data")
        raise NoImageGeneratedError("No image generated in response")

    def _safety_warnings(self, response: Any) -> List[str]:
        warnings = []
        feedback = getattr(response, "prompt_feedback", None)
        for rating in getattr(feedback, "safety_ratings", None) or []:
            probability = str(getattr(rating, "probability", ""))
            if probability and "NEGLIGIBLE" not in probability:
                warnings.append(f"Safety concern: {rating.category}")
        return warnings
