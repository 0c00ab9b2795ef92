"""Model gateway interfaces and implementations"""

from .provider import (
    ContentPart,
    GeneratedImage,
    ImageProvider,
    LLMMessage,
    LLMProvider,
    LLMResponse,
)
from .ollama_client import OllamaClient
from .gemini_client import GeminiClient
from .retry import RetryPolicy, is_retryable, with_retry, call_with_policy

__all__ = [
    "ContentPart",
    "GeneratedImage",
    "ImageProvider",
    "LLMMessage",
    "LLMProvider",
    "LLMResponse",
    "OllamaClient",
    "GeminiClient",
    "RetryPolicy",
    "is_retryable",
    "with_retry",
    "call_with_policy",
]
