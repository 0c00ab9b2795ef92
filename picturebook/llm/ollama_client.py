"""Ollama LLM client implementation"""

import aiohttp
from typing import List, Optional, Dict, Any

from picturebook.errors import TransientUpstreamError
from .provider import LLMProvider, LLMMessage, LLMResponse


class OllamaClient(LLMProvider):
    """Ollama client for local text and vision models"""

    def __init__(
        self,
        model: str = "llama3.2-vision",
        base_url: str = "http://localhost:11434",
        timeout: int = 300
    ):
        """
        Initialize Ollama client

        Args:
            model: Model name (a vision model is required for consistency checks)
            base_url: Ollama API base URL
            timeout: Request timeout in seconds
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        """Close the session"""
        if self._session and not self._session.closed:
            await self._session.close()

    def _convert_messages(self, messages: List[LLMMessage]) -> List[Dict[str, Any]]:
        """Convert LLMMessages to Ollama chat format"""
        system_content = "\n".join(m.content for m in messages if m.role == "system")
        conversation = []

        for msg in messages:
            if msg.role == "system":
                continue
            # Ollama takes images as a flat base64 list per message; text labels stay inline
            text_blocks = [p.text for p in msg.all_parts() if p.text]
            images = [p.image_b64() for p in msg.all_parts() if p.is_image]
            entry: Dict[str, Any] = {"role": msg.role, "content": "\n\n".join(text_blocks)}
            if images:
                entry["images"] = images
            conversation.append(entry)

        if system_content:
            if conversation and conversation[0]["role"] == "user":
                conversation[0]["content"] = system_content + "\n\n" + conversation[0]["content"]
            else:
                conversation.insert(0, {"role": "user", "content": system_content})

        return conversation

    async def generate(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """Generate a response from Ollama"""
        session = await self._get_session()

        payload = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "stream": False,
            "options": {
                "temperature": temperature,
            }
        }

        if max_tokens:
            payload["options"]["num_predict"] = max_tokens

        if "options" in kwargs:
            payload["options"].update(kwargs["options"])

        try:
            async with session.post(
                f"{self.base_url}/api/chat",
                json=payload
            ) as response:
                if response.status in (429, 503):
                    raise TransientUpstreamError(
                        f"Ollama server busy ({response.status})",
                        status=response.status
                    )
                response.raise_for_status()
                data = await response.json()

                return LLMResponse(
                    content=data.get("message", {}).get("content", ""),
                    model=self.model,
                    usage={
                        "prompt_tokens": data.get("prompt_eval_count", 0),
                        "completion_tokens": data.get("eval_count", 0),
                        "total_tokens": data.get("prompt_eval_count", 0) + data.get("eval_count", 0),
                    },
                    metadata={
                        "done": data.get("done", True),
                        "total_duration": data.get("total_duration", 0),
                    }
                )
        except TransientUpstreamError:
            raise
        except aiohttp.ClientError as e:
            raise RuntimeError(f"Ollama API error: {str(e)}") from e

    def get_model_name(self) -> str:
        """Get the model name being used"""
        return self.model
