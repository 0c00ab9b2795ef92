"""Base stage class with shared storage access and LLM interaction"""

import asyncio
import json
import logging
import re
from typing import Dict, Any, Optional, List, Callable, Awaitable

from picturebook.errors import MalformedResponseError
from picturebook.llm import ContentPart, LLMProvider, LLMMessage, RetryPolicy, call_with_policy
from picturebook.memory import StoryRepository

logger = logging.getLogger(__name__)

JSON_ONLY_INSTRUCTION = (
    "\n\nIMPORTANT: Respond with valid JSON only. Do not include any text before or after the JSON. "
    "Do not include any markdown formatting or code blocks. Return pure JSON."
)


class BaseStage:
    """Base class for pipeline stages with repository access and model calls"""

    def __init__(
        self,
        name: str,
        repository: StoryRepository,
        llm_provider: Optional[LLMProvider] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize base stage

        Args:
            name: Stage name used in log lines
            repository: Story/character/page persistence
            llm_provider: Text or vision model, if the stage needs one
            retry_policy: Retry budget for upstream calls
            sleep: Backoff sleep, injectable for tests
        """
        self.name = name
        self.repository = repository
        self.llm_provider = llm_provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    async def call_upstream(self, operation: Callable[[], Awaitable[Any]], label: str) -> Any:
        """Run one upstream call through the retry executor"""
        return await call_with_policy(
            operation,
            self.retry_policy,
            label=f"{self.name}: {label}",
            sleep=self.sleep,
        )

    async def generate_with_llm(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        parts: Optional[List[ContentPart]] = None
    ) -> str:
        """
        Generate response using LLM

        Args:
            system_prompt: System instruction prompt
            user_prompt: User query/request
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            parts: Extra text/image blocks appended after the user prompt

        Returns:
            Generated text response
        """
        if self.llm_provider is None:
            raise RuntimeError(f"{self.name} has no LLM provider configured")

        messages = [
            LLMMessage(role="system", content=system_prompt),
            LLMMessage(role="user", content=user_prompt, parts=list(parts or []))
        ]

        response = await self.call_upstream(
            lambda: self.llm_provider.generate(
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            ),
            label="generate",
        )

        return response.content

    def _extract_json(self, text: str) -> str:
        """
        Pull the first balanced JSON object or array out of model output.

        Code fences and surrounding prose are dropped and trailing commas
        are removed. Unbalanced (truncated) output is returned as-is so
        that parsing fails.
        """
        text = text.strip()

        if text.startswith("```json"):
            text = text[7:]
        elif text.startswith("```"):
            text = text[3:]

        if text.endswith("```"):
            text = text[:-3]

        text = text.strip()

        json_start = next((i for i, char in enumerate(text) if char in '{['), -1)
        if json_start == -1:
            return text

        start_char = text[json_start]
        end_char = '}' if start_char == '{' else ']'

        depth = 0
        in_string = False
        escape_next = False
        json_end = -1

        for i in range(json_start, len(text)):
            char = text[i]

            if escape_next:
                escape_next = False
                continue

            if char == '\\' and in_string:
                escape_next = True
                continue

            if char == '"':
                in_string = not in_string
                continue

            if in_string:
                continue

            if char == start_char:
                depth += 1
            elif char == end_char:
                depth -= 1
                if depth == 0:
                    json_end = i + 1
                    break

        if json_end == -1:
            return text[json_start:]

        # Trailing commas before } or ]
        return re.sub(r',(\s*[}\]])', r'\1', text[json_start:json_end])

    def parse_json(self, text: str) -> Any:
        """Parse model output as JSON or raise MalformedResponseError"""
        cleaned = self._extract_json(text or "")
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"Failed to parse JSON response: {str(e)}",
                details={"response": cleaned[:500]}
            ) from e

    async def generate_structured_output(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        parts: Optional[List[ContentPart]] = None
    ) -> Dict[str, Any]:
        """
        Generate structured output (JSON) from LLM

        Unparseable output is not re-requested: it raises
        MalformedResponseError straight away.

        Returns:
            Parsed JSON object
        """
        response = await self.generate_with_llm(
            system_prompt=system_prompt,
            user_prompt=user_prompt + JSON_ONLY_INSTRUCTION,
            temperature=temperature,
            max_tokens=max_tokens,
            parts=parts
        )

        try:
            data = self.parse_json(response)
        except MalformedResponseError:
            logger.warning(f"[{self.name}] Model returned unparseable JSON")
            raise

        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Expected a JSON object, got {type(data).__name__}"
            )
        return data
