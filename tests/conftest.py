"""Shared fixtures: fake model gateways over local storage"""

import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from picturebook.errors import NoImageGeneratedError
from picturebook.llm import (
    ContentPart,
    GeneratedImage,
    ImageProvider,
    LLMMessage,
    LLMProvider,
    LLMResponse,
)
from picturebook.memory import LocalFileState, LocalObjectStore, StoryRepository
from picturebook.models import BookSettings, Story

HERO_PHOTO = "data:image/jpeg;base64,aGVyby1waG90bw=="  # b"hero-photo"


Scripted = Union[str, BaseException, Callable[[List[LLMMessage]], str]]


class FakeLLM(LLMProvider):
    """Returns scripted responses in order; the last one repeats"""

    def __init__(self, responses: Optional[List[Scripted]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def generate(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "temperature": temperature})
        if not self.responses:
            raise AssertionError("FakeLLM has no scripted response")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(messages)
        return LLMResponse(content=response, model="fake-text")

    def get_model_name(self) -> str:
        return "fake-text"

    async def close(self):
        self.closed = True


class FakeImageProvider(ImageProvider):
    """Produces distinct image bytes per call; `fail_when` decides which prompts fail"""

    def __init__(self, fail_when: Optional[Callable[[str], Optional[BaseException]]] = None):
        self.fail_when = fail_when
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def generate_image(
        self,
        prompt: str,
        reference_images: Optional[List[ContentPart]] = None,
        aspect_ratio: Optional[str] = None,
        image_size: Optional[str] = None,
    ) -> GeneratedImage:
        self.calls.append({
            "prompt": prompt,
            "reference_images": list(reference_images or []),
            "aspect_ratio": aspect_ratio,
            "image_size": image_size,
        })
        if self.fail_when:
            error = self.fail_when(prompt)
            if error is not None:
                raise error
        return GeneratedImage(
            data=f"image-{len(self.calls)}".encode(),
            mime_type="image/png",
            model="fake-image",
            prompt=prompt,
        )

    async def close(self):
        self.closed = True


def no_image(prompt: str) -> BaseException:
    return NoImageGeneratedError("No image generated in response")


def plan_json(
    page_count: int = 5,
    characters: Optional[List[Dict[str, Any]]] = None,
    title: str = "Luna and the Lost Star",
    arc: Optional[List[str]] = None,
    **overrides
) -> str:
    """A well-formed planner response"""
    if characters is None:
        characters = [
            {"name": "Luna", "visualDescription": "small girl, curly red hair, yellow raincoat",
             "displayDescription": "A curious girl", "approximateAge": "6", "role": "main"},
            {"name": "Pip", "visualDescription": "grey mouse with a blue scarf",
             "displayDescription": "Luna's friend", "approximateAge": "adult", "role": "supporting"},
        ]
    data = {
        "title": title,
        "theme": "Friendship helps us find our way",
        "storyArcSummary": arc if arc is not None else ["Luna finds a star", "Luna brings it home"],
        "pages": [
            {
                "pageNumber": n,
                "caption": f"Luna walks through the meadow on page {n}. Pip follows her.",
                "prompt": f"Luna and Pip in a moonlit meadow, scene {n}",
                "cameraAngle": "wide shot" if n == 1 else "medium shot",
            }
            for n in range(1, page_count + 1)
        ],
        "characters": characters,
    }
    data.update(overrides)
    return json.dumps(data)


async def no_sleep(delay: float) -> None:
    return None


class SleepRecorder:
    """Records backoff delays instead of sleeping"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def repository(tmp_path):
    """Story repository over temporary local storage"""
    return StoryRepository(
        LocalFileState(storage_dir=str(tmp_path / "data")),
        LocalObjectStore(storage_dir=str(tmp_path / "objects")),
    )


@pytest.fixture
def settings():
    return BookSettings(target_age=6, desired_page_count=5)


@pytest.fixture
def story_factory(repository, settings):
    """Create and persist a story"""
    async def _create(source_text: str = "Luna found a fallen star in the meadow.", **overrides) -> Story:
        story = Story(source_text=source_text, settings=overrides.pop("settings", settings), **overrides)
        await repository.create_story(story)
        return story

    return _create


@pytest.fixture
def local_config(tmp_path):
    """App config pointing storage at tmp_path"""
    return {
        "llm": {"provider": "gemini", "api_key": "test-key"},
        "storage": {
            "provider": "local",
            "local": {
                "data_dir": str(tmp_path / "data"),
                "objects_dir": str(tmp_path / "objects"),
            },
        },
        "retry": {
            "plan": {"max_retries": 2, "base_delay": 0.0},
            "character_reference": {"max_retries": 2, "base_delay": 0.0},
            "page_render": {"max_retries": 2, "base_delay": 0.0},
            "consistency": {"max_retries": 2, "base_delay": 0.0},
        },
        "pipeline": {"page_concurrency": 2},
    }
