"""CLI interface for picturebook"""

import asyncio
import base64
import logging
import mimetypes
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from picturebook import api
from picturebook.models import AspectRatio, QualityTier


console = Console()


def load_config(config_path: Optional[Path] = None) -> dict:
    """Load configuration from config.yaml"""
    path = config_path or Path(__file__).parent.parent.parent / "config" / "config.yaml"
    if not path.exists():
        console.print(f"[yellow]Warning: Config file not found at {path}[/yellow]")
        return {}

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def encode_photo(path: Path) -> str:
    """Read a photo as a data URL"""
    mime_type = mimetypes.guess_type(str(path))[0] or "image/jpeg"
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{data}"


def show_error(payload: dict) -> bool:
    """Print an error payload; True if there was one"""
    if "error" not in payload:
        return False
    retry_hint = " (retryable)" if payload.get("retryable") else ""
    console.print(Panel(
        f"[bold red]{payload['error']}[/bold red]\n[dim]{payload.get('kind', 'internal')}{retry_hint}[/dim]",
        title="Error",
        border_style="red"
    ))
    return True


def settings_options(func):
    """Book settings shared by `create` and `run`"""
    options = [
        click.option("--age", "target_age", type=click.IntRange(3, 18), default=6, show_default=True,
                     help="Reader age"),
        click.option("--pages", "desired_page_count", type=click.IntRange(5, 30), default=10, show_default=True,
                     help="Number of pages"),
        click.option("--style", "aesthetic_style", default="whimsical watercolor", show_default=True,
                     help="Aesthetic style"),
        click.option("--intensity", type=click.IntRange(0, 10), default=3, show_default=True,
                     help="0=very gentle, 10=adventurous (capped by age)"),
        click.option("--notes", "freeform_notes", default="", help="Additional creative direction"),
        click.option("--quality", "quality_tier", type=click.Choice([q.value for q in QualityTier]),
                     default=QualityTier.STANDARD_FLASH.value, show_default=True),
        click.option("--aspect", "aspect_ratio", type=click.Choice([a.value for a in AspectRatio]),
                     default=AspectRatio.SQUARE.value, show_default=True),
        click.option("--hero-photo", type=click.Path(exists=True, dir_okay=False, path_type=Path),
                     help="Photo of the hero character"),
        click.option("--character-review/--no-character-review", default=False,
                     help="Pause after character references"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_settings(kwargs: dict) -> dict:
    hero_photo = kwargs.pop("hero_photo", None)
    settings = dict(kwargs)
    if hero_photo:
        settings["hero_photo"] = encode_photo(hero_photo)
    return settings


def read_source(source: Path) -> str:
    return source.read_text(encoding="utf-8")


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to config file"
)
@click.option("--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], verbose: bool):
    """picturebook - illustrated picture books from any story"""
    setup_logging(verbose)
    ctx.obj = load_config(config)


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", default=None, help="Story title (otherwise taken from the plan)")
@settings_options
@click.pass_obj
def create(config: dict, source: Path, title: Optional[str], **settings):
    """Create a story from a text file"""
    payload = asyncio.run(api.create_story(read_source(source), build_settings(settings), config, title=title))
    if show_error(payload):
        raise SystemExit(1)
    console.print(f"Story created: [cyan]{payload['story']['id']}[/cyan]")


@cli.command()
@click.argument("story_id")
@click.pass_obj
def plan(config: dict, story_id: str):
    """Plan pages and characters for a story"""
    with console.status("Planning story..."):
        payload = asyncio.run(api.plan_story(story_id, config=config))
    if show_error(payload):
        raise SystemExit(1)

    console.print(Panel(
        f"[bold]{payload['title']}[/bold]\n\n"
        f"[bold]Theme:[/bold] {payload['theme']}\n"
        + "\n".join(f"  • {beat}" for beat in payload["arc_summary"]),
        title="Plan",
        border_style="green"
    ))
    if payload.get("content_warning"):
        console.print(f"[yellow]{payload['content_warning']}[/yellow]")

    table = Table(title="Characters")
    table.add_column("Name", style="cyan")
    table.add_column("Role")
    table.add_column("Hero")
    table.add_column("ID", style="dim")
    for character in payload["characters"]:
        table.add_row(character["name"], character["role"], "✓" if character["is_hero"] else "", character["id"])
    console.print(table)

    pages = Table(title=f"Pages ({payload['page_count']})")
    pages.add_column("#", justify="right")
    pages.add_column("Camera")
    pages.add_column("Caption")
    for page in payload["pages"]:
        pages.add_row(str(page["page_number"]), page["camera_angle"], page["caption"])
    console.print(pages)


@cli.command()
@click.argument("story_id")
@click.option("--character", "character_id", default=None, help="Only this character")
@click.pass_obj
def characters(config: dict, story_id: str, character_id: Optional[str]):
    """Generate character reference images"""
    with console.status("Generating character references..."):
        if character_id:
            payload = asyncio.run(api.generate_character(story_id, character_id, config))
        else:
            payload = asyncio.run(api.generate_characters(story_id, config))
    if show_error(payload):
        raise SystemExit(1)

    results = payload.get("results", [payload])
    table = Table(title="Character References")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("References", justify="right")
    for result in results:
        status = "[green]hero photo[/green]" if result["is_hero"] else (
            "[green]completed[/green]" if result["success"] else "[red]error[/red]"
        )
        table.add_row(result["name"], status, str(result["references"]))
    console.print(table)
    if "total" in payload:
        console.print(f"{payload['completed']}/{payload['total']} characters completed")


@cli.command()
@click.argument("story_id")
@click.option("--page", "page_id", default=None, help="Only this page id")
@click.option("--fix", "fix_instruction", default=None, help="Extra instruction for a single page")
@click.pass_obj
def pages(config: dict, story_id: str, page_id: Optional[str], fix_instruction: Optional[str]):
    """Illustrate pages that have no image yet (or one page)"""
    with console.status("Illustrating pages..."):
        if page_id:
            payload = asyncio.run(api.render_page(story_id, page_id, config, fix_instruction))
        else:
            payload = asyncio.run(api.render_pages(story_id, config))
    if show_error(payload):
        raise SystemExit(1)

    if page_id:
        state = "[green]rendered[/green]" if payload["success"] else "[red]failed[/red]"
        console.print(f"Page {payload['page_number']}: {state}")
    else:
        console.print(f"Rendered {len(payload['rendered'])}/{payload['total']} pages")
        if payload["failed"]:
            console.print(f"[yellow]Failed pages: {payload['failed']}[/yellow]")


def print_analysis(payload: dict):
    issues = payload.get("issues", [])
    if not issues:
        console.print("[green]No consistency issues reported[/green]")
        return

    table = Table(title="Consistency Issues")
    table.add_column("Page", justify="right")
    table.add_column("Kind", style="cyan")
    table.add_column("Character")
    table.add_column("Description")
    for issue in issues:
        table.add_row(str(issue["page_number"]), issue["kind"], issue.get("character") or "", issue["description"])
    console.print(table)
    console.print(f"Pages needing regeneration: {payload.get('pages_needing_regeneration', [])}")


@cli.command()
@click.argument("story_id")
@click.pass_obj
def check(config: dict, story_id: str):
    """Run one consistency pass"""
    with console.status("Checking consistency..."):
        payload = asyncio.run(api.analyze_consistency(story_id, config))
    print_analysis(payload)


@cli.command()
@click.argument("story_id")
@click.pass_obj
def regenerate(config: dict, story_id: str):
    """Run one consistency pass and re-render the flagged pages once"""
    with console.status("Checking consistency..."):
        analysis = asyncio.run(api.analyze_consistency(story_id, config))
    print_analysis(analysis)
    if not analysis.get("pages_needing_regeneration"):
        return

    with console.status("Regenerating flagged pages..."):
        report = asyncio.run(api.regenerate_pages(story_id, analysis, config))
    if show_error(report):
        raise SystemExit(1)
    console.print(
        f"Regenerated {report['regenerated']}, failed {report['failed']}, skipped {report['skipped']}"
    )


@cli.command()
@click.argument("story_id")
@click.pass_obj
def show(config: dict, story_id: str):
    """Show a story with its characters and pages"""
    payload = asyncio.run(api.get_story(story_id, config))
    if show_error(payload):
        raise SystemExit(1)

    story = payload["story"]
    console.print(Panel(
        f"[bold]{story['title']}[/bold]\n"
        f"State: {story['workflow_state']} ({story['status']})\n"
        f"Step: {story['current_step']}",
        title=story["id"],
        border_style="blue"
    ))

    table = Table(title="Pages")
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Image", style="dim")
    table.add_column("ID", style="dim")
    for page in payload["pages"]:
        table.add_row(str(page["page_number"]), page["status"], page.get("image") or "", page["id"])
    console.print(table)


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", default=None, help="Story title (otherwise taken from the plan)")
@click.option("--skip-check", is_flag=True, help="Skip the consistency pass")
@settings_options
@click.pass_obj
def run(config: dict, source: Path, title: Optional[str], skip_check: bool, **settings):
    """Create, plan, illustrate and check a story in one go"""
    with console.status("Generating picture book..."):
        payload = asyncio.run(api.run_pipeline(
            read_source(source),
            build_settings(settings),
            config,
            check_consistency=not skip_check,
            title=title,
        ))
    if show_error(payload):
        raise SystemExit(1)

    table = Table(title=payload["title"])
    table.add_column("Component", style="cyan")
    table.add_column("Result", style="green")
    table.add_row("Story", payload["story_id"])
    table.add_row("State", f"{payload['workflow_state']} - {payload['current_step']}")
    table.add_row("Pages planned", str(len(payload["plan"]["pages"])))
    if "characters" in payload:
        table.add_row("Characters", f"{payload['characters']['completed']}/{payload['characters']['total']}")
    if "pages" in payload:
        table.add_row("Pages illustrated", f"{len(payload['pages']['rendered'])}/{payload['pages']['total']}")
    if "regeneration" in payload:
        table.add_row("Regenerated", str(payload["regeneration"]["regenerated"]))
    console.print(table)


def main():
    cli()


if __name__ == "__main__":
    main()
