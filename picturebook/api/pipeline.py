"""
Async entry points for the picture book pipeline.

Used by the CLI and intended for a thin web backend. Every call builds its
dependencies (model gateways, storage) from the config dict and passes them
in; no global singletons. Story, character and page records in storage are
the source of truth between calls.

Every function returns a plain dict. Failures come back as
{"error": ..., "kind": ..., "retryable": ...} instead of raising.
"""

import logging
from typing import Optional, Dict, Any, List, Tuple, Union

from pydantic import ValidationError

from picturebook.errors import (
    ConfigurationError,
    InvalidInputError,
    PictureBookError,
    error_payload,
)
from picturebook.llm import GeminiClient, ImageProvider, LLMProvider, OllamaClient
from picturebook.memory import LocalFileState, LocalObjectStore, StoryRepository
from picturebook.models import BookSettings, ConsistencyAnalysis
from picturebook.orchestrator import PictureBookPipeline

logger = logging.getLogger(__name__)

SettingsInput = Union[BookSettings, Dict[str, Any]]


def _create_llm(config: Dict[str, Any]) -> Tuple[LLMProvider, Optional[LLMProvider]]:
    """Text provider and optional separate vision provider"""
    llm_config = config.get("llm", {}) or {}
    provider = llm_config.get("provider", "gemini")

    if provider == "gemini":
        client = GeminiClient(
            api_key=llm_config.get("api_key"),
            text_model=llm_config.get("text_model", "gemini-2.5-flash"),
            image_model=(config.get("image", {}) or {}).get("model", "gemini-2.5-flash-image"),
        )
        return client, None
    if provider == "ollama":
        text = OllamaClient(
            model=llm_config.get("text_model", "llama3.1:70b"),
            base_url=llm_config.get("base_url", "http://localhost:11434"),
            timeout=llm_config.get("timeout", 300)
        )
        vision = OllamaClient(
            model=llm_config.get("vision_model", "llama3.2-vision"),
            base_url=llm_config.get("base_url", "http://localhost:11434"),
            timeout=llm_config.get("timeout", 300)
        )
        return text, vision

    raise ConfigurationError(f"Unknown llm provider: {provider}")


def _create_image_provider(config: Dict[str, Any], llm: LLMProvider) -> ImageProvider:
    image_config = config.get("image", {}) or {}
    provider = image_config.get("provider", "gemini")
    if provider != "gemini":
        raise ConfigurationError(f"Unknown image provider: {provider}")

    # Reuse the text client when it already talks to Gemini
    if isinstance(llm, GeminiClient):
        return llm
    return GeminiClient(
        api_key=image_config.get("api_key") or (config.get("llm", {}) or {}).get("api_key"),
        image_model=image_config.get("model", "gemini-2.5-flash-image"),
    )


def _create_storage(config: Dict[str, Any]) -> StoryRepository:
    """Build the story repository over local files or DynamoDB/S3"""
    storage_config = config.get("storage", {}) or {}
    provider = storage_config.get("provider", "local")

    if provider == "local":
        local_config = storage_config.get("local", {}) or {}
        structured_state = LocalFileState(
            storage_dir=local_config.get("data_dir", "./data")
        )
        object_store = LocalObjectStore(
            storage_dir=local_config.get("objects_dir", "./data/objects")
        )
    elif provider == "aws":
        from picturebook.memory import DynamoDBState, S3ObjectStore
        dynamodb_config = storage_config.get("dynamodb", {}) or {}
        structured_state = DynamoDBState(
            region=dynamodb_config.get("region", "us-east-1"),
            endpoint_url=dynamodb_config.get("endpoint_url"),
            table_prefix=dynamodb_config.get("table_prefix", "")
        )
        s3_config = storage_config.get("s3", {}) or {}
        object_store = S3ObjectStore(
            bucket=s3_config.get("bucket", "picturebook-images"),
            region=s3_config.get("region", "us-east-1"),
            endpoint_url=s3_config.get("endpoint_url")
        )
    else:
        raise ConfigurationError(f"Unknown storage provider: {provider}")

    return StoryRepository(structured_state, object_store)


def build_pipeline(config: Optional[Dict[str, Any]] = None) -> PictureBookPipeline:
    """Construct a pipeline with every dependency built from config"""
    config = config or {}
    llm, vision = _create_llm(config)
    image = _create_image_provider(config, llm)
    repository = _create_storage(config)
    return PictureBookPipeline(
        repository=repository,
        llm_provider=llm,
        image_provider=image,
        vision_provider=vision,
        config=config,
    )


def _settings(settings: SettingsInput, config: Dict[str, Any]) -> BookSettings:
    if isinstance(settings, BookSettings):
        return settings
    data = dict(settings or {})
    pipeline_config = config.get("pipeline", {}) or {}
    if "character_review" in pipeline_config:
        data.setdefault("character_review", pipeline_config["character_review"])
    try:
        return BookSettings(**data)
    except ValidationError as e:
        raise InvalidInputError(
            "Invalid book settings",
            details={"errors": e.errors(include_url=False, include_context=False)}
        ) from e


async def _call(config: Optional[Dict[str, Any]], label: str, action) -> Dict[str, Any]:
    """Build a pipeline, run `action(pipeline, config)` and convert failures to payloads"""
    config = config or {}
    pipeline = None
    try:
        pipeline = build_pipeline(config)
        return await action(pipeline, config)
    except Exception as e:
        logger.error(f"[API] {label} failed: {e}", exc_info=not isinstance(e, PictureBookError))
        return error_payload(e)
    finally:
        if pipeline is not None:
            await pipeline.close()


async def create_story(
    source_text: str,
    settings: SettingsInput,
    config: Optional[Dict[str, Any]] = None,
    title: Optional[str] = None
) -> Dict[str, Any]:
    """Create a story record from source text and settings"""
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        if not source_text or not source_text.strip():
            raise InvalidInputError("Source text is empty")
        story = await pipeline.create_story(source_text, _settings(settings, cfg), title)
        return {"story": story.model_dump(mode="json")}

    return await _call(config, "create_story", action)


async def plan_story(
    story_id: str,
    source_text: Optional[str] = None,
    settings: Optional[SettingsInput] = None,
    config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Plan an existing story.

    Returns:
        characters (with ids), pages, page_count, theme, arc_summary,
        style_guide, title, content_warning
    """
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        book_settings = _settings(settings, cfg) if settings is not None else None
        result = await pipeline.plan(story_id, source_text, book_settings)
        payload = result.model_dump(mode="json")
        payload["page_count"] = result.page_count
        return payload

    return await _call(config, "plan_story", action)


async def generate_character(
    story_id: str,
    character_id: str,
    config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Generate reference images for one character"""
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        result = await pipeline.generate_character(story_id, character_id)
        return result.model_dump()

    return await _call(config, "generate_character", action)


async def generate_characters(story_id: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Generate references for every character; reports completed/failed/total"""
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        return await pipeline.generate_characters(story_id)

    return await _call(config, "generate_characters", action)


async def render_page(
    story_id: str,
    page_id: str,
    config: Optional[Dict[str, Any]] = None,
    fix_instruction: Optional[str] = None
) -> Dict[str, Any]:
    """Render one page; returns success, page_number and the image key"""
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        result = await pipeline.render_page(story_id, page_id, fix_instruction)
        return result.model_dump()

    return await _call(config, "render_page", action)


async def render_pages(story_id: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Render all pages that do not have an image yet"""
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        summary = await pipeline.resume(story_id, check_consistency=False)
        return summary["pages"]

    return await _call(config, "render_pages", action)


async def analyze_consistency(story_id: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Run one consistency pass.

    Always returns {"issues": [...], "pages_needing_regeneration": [...]};
    a failed check looks the same as a clean one.
    """
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        analysis = await pipeline.analyze_consistency(story_id)
        return analysis.model_dump(mode="json")

    payload = await _call(config, "analyze_consistency", action)
    if "error" in payload:
        return ConsistencyAnalysis().model_dump(mode="json")
    return payload


async def check_page(
    story_id: str,
    page_id: str,
    character_id: str,
    config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Quick check of one character on one page"""
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        result = await pipeline.check_page(story_id, page_id, character_id)
        return result.model_dump()

    return await _call(config, "check_page", action)


async def regenerate_pages(
    story_id: str,
    analysis: Union[ConsistencyAnalysis, Dict[str, Any]],
    config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Re-render the pages flagged by one analysis, once each"""
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        parsed = analysis if isinstance(analysis, ConsistencyAnalysis) else ConsistencyAnalysis(**analysis)
        report = await pipeline.regenerate(story_id, parsed)
        return report.model_dump()

    return await _call(config, "regenerate_pages", action)


async def update_captions(
    story_id: str,
    captions: Union[Dict[int, str], List[Dict[str, Any]]],
    config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Edit page captions after plan review.

    Args:
        captions: {page_number: caption} or [{"page_number": n, "caption": ...}]
    """
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        if isinstance(captions, list):
            mapping = {
                int(item.get("page_number", item.get("pageNumber"))): str(item.get("caption", ""))
                for item in captions
                if item.get("page_number", item.get("pageNumber")) is not None
            }
        else:
            mapping = {int(k): str(v) for k, v in captions.items()}
        updated = await pipeline.update_captions(story_id, mapping)
        return {"success": True, "updated": updated}

    return await _call(config, "update_captions", action)


async def get_story(story_id: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Story record with its characters and pages in page order (storage only, no model clients)"""
    try:
        repository = _create_storage(config or {})
        story = await repository.get_story(story_id)
        characters = await repository.list_characters(story_id)
        pages = await repository.list_pages(story_id)
    except Exception as e:
        logger.error(f"[API] get_story failed: {e}", exc_info=not isinstance(e, PictureBookError))
        return error_payload(e)

    return {
        "story": story.model_dump(mode="json"),
        "characters": [c.model_dump(mode="json") for c in characters],
        "pages": [p.model_dump(mode="json") for p in pages],
    }


async def run_pipeline(
    source_text: str,
    settings: SettingsInput,
    config: Optional[Dict[str, Any]] = None,
    check_consistency: bool = True,
    title: Optional[str] = None
) -> Dict[str, Any]:
    """Create, plan, illustrate and check a story in one call"""
    async def action(pipeline: PictureBookPipeline, cfg: Dict[str, Any]) -> Dict[str, Any]:
        summary = await pipeline.run(
            source_text,
            _settings(settings, cfg),
            check_consistency=check_consistency,
            title=title,
        )
        story = await pipeline.repository.get_story(summary["story_id"])
        result: Dict[str, Any] = {
            "story_id": summary["story_id"],
            "title": story.title,
            "workflow_state": story.workflow_state.value,
            "current_step": story.current_step,
            "plan": summary["plan"].model_dump(mode="json"),
        }
        for key in ("characters", "pages"):
            if key in summary:
                result[key] = summary[key]
        if "consistency" in summary:
            result["consistency"] = summary["consistency"].model_dump(mode="json")
            result["regeneration"] = summary["regeneration"].model_dump()
        return result

    return await _call(config, "run_pipeline", action)
