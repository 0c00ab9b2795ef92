"""Async entry points for callers (CLI, web backend)"""

from .pipeline import (
    analyze_consistency,
    build_pipeline,
    check_page,
    create_story,
    generate_character,
    generate_characters,
    get_story,
    plan_story,
    regenerate_pages,
    render_page,
    render_pages,
    run_pipeline,
    update_captions,
)

__all__ = [
    "analyze_consistency",
    "build_pipeline",
    "check_page",
    "create_story",
    "generate_character",
    "generate_characters",
    "get_story",
    "plan_story",
    "regenerate_pages",
    "render_page",
    "render_pages",
    "run_pipeline",
    "update_captions",
]
