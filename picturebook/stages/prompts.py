"""Prompt builders for the planning, image and analysis calls"""

from typing import List, Optional, Tuple

from picturebook.models import BookSettings, Character, Page, StyleGuide


SAFETY_CLAUSE = "SAFETY: Child-friendly, appropriate for ages 3-12, no scary or inappropriate content"
WATERMARK_CLAUSE = "Please include SynthID watermark for AI content identification"

PLAN_SYSTEM_PROMPT = (
    "You are an expert children's book author and visual storyteller. You turn stories "
    "into picture books with beautiful read-aloud prose and vivid, consistent illustrations."
)
CONSISTENCY_SYSTEM_PROMPT = (
    "You are a professional children's book editor reviewing illustrations for visual consistency."
)


def age_guidelines(target_age: int) -> str:
    if target_age <= 5:
        return "Very simple language, basic concepts, gentle themes, no scary elements, bright and cheerful imagery"
    if target_age <= 8:
        return "Simple sentences, adventure themes, mild challenges, positive outcomes, engaging action"
    if target_age <= 12:
        return "More complex plots, character development, moral lessons, age-appropriate conflicts"
    return "Advanced narratives, nuanced themes, complex emotional depth, mature conflict resolution"


def caption_length(target_age: int) -> Tuple[int, int, str]:
    """(min words, max words, sentence guidance) per page"""
    if target_age <= 7:
        return 50, 100, "2-3 rich, evocative sentences"
    if target_age <= 12:
        return 75, 150, "3-5 well-crafted sentences"
    return 100, 200, "4-6 sophisticated sentences"


def intensity_tone(intensity: int) -> str:
    if intensity >= 7:
        return "dramatic, vivid, and emotionally intense"
    if intensity >= 4:
        return "moderately engaging with some tension"
    return "gentle and calm"


def build_plan_prompt(source_text: str, settings: BookSettings, intensity: int) -> Tuple[str, str]:
    """System and user prompt for the plan call"""
    page_count = settings.desired_page_count
    min_words, max_words, sentences = caption_length(settings.target_age)
    notes = settings.freeform_notes or "None"

    user_prompt = f"""Transform this story into a {page_count}-page picture book for a {settings.target_age}-year-old reader.

CRITICAL REQUIREMENT: You MUST create exactly {page_count} pages, numbered 1 to {page_count}.

STORY TEXT:
{source_text}

CONTENT GUIDELINES:
- Age appropriateness: {age_guidelines(settings.target_age)}
- Intensity level: {intensity}/10 (0=very gentle, 10=adventurous); keep the imagery {intensity_tone(intensity)}
- Visual style: {settings.aesthetic_style}
- Additional creative direction: {notes}

PAGES:
- Choose the turning points, emotional peaks and visually striking moments of the story
- Each caption is story text read aloud: {sentences} ({min_words}-{max_words} words)
- Each prompt describes a full-page illustration with no text in the image: setting, characters in mid-action with visible emotion, environmental details
- Vary the camera angle across pages (wide shot, medium shot, close-up, aerial, worms eye, over shoulder, point of view)

CHARACTERS:
- visualDescription: precise physical details for image generation (features, clothing and colors, props, size)
- displayDescription: who they are in the story, 1-2 sentences for readers
- approximateAge: e.g. "child ~8", "young adult", "elderly"
- role: main, supporting or background

Format as JSON:
{{
  "title": "A concise, evocative title (2-6 words)",
  "theme": "The story's central theme",
  "storyArcSummary": ["Setup: ...", "Rising Action: ...", "Midpoint: ...", "Climax: ...", "Resolution: ..."],
  "pages": [
    {{"pageNumber": 1, "caption": "...", "prompt": "...", "cameraAngle": "wide shot"}}
  ],
  "characters": [
    {{"name": "...", "visualDescription": "...", "displayDescription": "...", "approximateAge": "...", "role": "main"}}
  ]
}}"""

    return PLAN_SYSTEM_PROMPT, user_prompt


def build_reference_prompt(character: Character, settings: BookSettings, angle: str) -> str:
    """Prompt for one character reference angle"""
    return f"""Create a character reference for children's book illustration - {angle}:

CHARACTER: {character.name}
DESCRIPTION: {character.visual_description}
AGE: {character.approximate_age or "unspecified"}

STYLE: {settings.aesthetic_style}
TARGET AGE: {settings.target_age}

REQUIREMENTS:
- {angle}
- Character design sheet style with clear, consistent lighting
- Plain background, no text or labels
- Child-friendly appearance
- Professional children's book illustration quality"""


def build_page_prompt(
    page: Page,
    style_guide: StyleGuide,
    characters: List[Character],
    fix_instruction: Optional[str] = None,
    hero_name: Optional[str] = None
) -> str:
    """Page illustration prompt; safety and watermark clauses are appended by finalize_image_prompt"""
    sections = [
        page.prompt,
        f"CAMERA: {page.camera_angle}",
        f"STORY MOMENT: {page.caption}",
        f"STYLE GUIDE:\n{style_guide.to_prompt()}",
    ]

    if characters:
        lines = [f"- {c.name}: {c.visual_description}" for c in characters]
        sections.append(
            "CHARACTERS (match the attached reference images exactly):\n" + "\n".join(lines)
        )
    if hero_name:
        sections.append(
            f"HERO: {hero_name} must match the attached photo reference "
            "(face, hair color, skin tone), drawn in the story's art style."
        )
    if fix_instruction:
        sections.append(f"CONSISTENCY FIX (this page is being regenerated):\n{fix_instruction}")

    return "\n\n".join(sections)


def finalize_image_prompt(prompt: str) -> str:
    """Append the fixed safety and provenance clauses to any page prompt"""
    return f"{prompt}\n\n{SAFETY_CLAUSE}\n\n{WATERMARK_CLAUSE}"


def build_consistency_prompt(
    characters: List[Character],
    page_count: int,
    style_guide: Optional[StyleGuide] = None,
    has_hero_photo: bool = False
) -> str:
    """Instruction block placed before the hero photo, references and pages"""
    hero = next((c for c in characters if c.is_hero), None) or next(
        (c for c in characters if c.role.value == "main"), None
    )
    hero_name = hero.name if hero else "the protagonist"

    character_lines = "\n".join(
        f"{i}. {c.name} ({c.role.value}){' [HERO - based on uploaded photo]' if c.is_hero else ''}: "
        f"{c.visual_description}"
        for i, c in enumerate(characters, 1)
    ) or "(no named characters)"

    style_block = ""
    if style_guide:
        style_block = (
            f"\nSTYLE GUIDE:\n- Art Style: {style_guide.art_style}\n"
            f"- Color Palette: {style_guide.color_palette}\n- Lighting: {style_guide.lighting}\n"
        )

    hero_block = ""
    if has_hero_photo:
        hero_block = (
            f"\nHERO PHOTO REFERENCE:\nA real photo was uploaded for {hero_name}. Any deviation from the "
            "photo (hair color, facial features, skin tone) is a critical issue that must be flagged.\n"
        )

    return f"""You are analyzing a {page_count}-page picture book for visual consistency.

CHARACTER REFERENCES:
{character_lines}
{style_block}{hero_block}
The images that follow are, in order: the hero photo (if any), character reference images, then the pages from first to last. Page 1 is the visual baseline.

CHECK FOR:
1. character_appearance: hair color, facial features, clothing or proportions that change between pages
2. timeline_logic: state changes (wet, broken, night) that do not persist
3. style_drift: art style, palette or level of detail that shifts between pages
4. object_continuity: recurring objects that look different

Return ONLY valid JSON:
{{
  "issues": [
    {{"pageNumber": 7, "type": "character_appearance", "description": "...", "characterInvolved": "...", "fixPrompt": "Specific instruction for regenerating this page"}}
  ],
  "pagesNeedingRegeneration": [7]
}}

If everything looks consistent, return {{"issues": [], "pagesNeedingRegeneration": []}}."""


def build_quick_check_prompt(character_name: str, character_description: str, page_number: int) -> str:
    """Single-page check of one character against its description"""
    return f"""You are checking if the character "{character_name}" on page {page_number} matches their description.

CHARACTER DESCRIPTION: {character_description}

Does the character in this image match the description? Look for facial features, hair color and style, clothing and accessories, body proportions.

Respond with JSON:
{{
  "matches": true,
  "issues": "description of any differences found, or empty string if matches"
}}"""
