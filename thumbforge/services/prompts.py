"""
Prompt assembly for the synthesis backends.

Two registers:
- cinematic: narrative sections (scene, camera, lighting, palette, person,
  depth, text space, quality bar), which image models follow better than
  keyword lists
- minimal: the brief plus one style line, for the baseline pipeline
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Tuple

from thumbforge.models.jobs import GenerationRequest
from thumbforge.services.composition import style_for_niche

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StyleProfile:
    name: str
    primary: str
    secondary: str
    background: str
    mood: str


STYLE_PROFILES: Mapping[str, StyleProfile] = {
    "mrbeast": StyleProfile("MrBeast", "#FFFF00", "#FF0000", "#1A1A1A", "bold, exaggerated, high-energy"),
    "hormozi": StyleProfile("Alex Hormozi", "#F7C204", "#02FB23", "#0A0A0A", "confident business authority, clean"),
    "gadzhi": StyleProfile("Iman Gadzhi", "#D4AF37", "#FFFFFF", "#111111", "muted luxury, minimalist"),
    "magnates": StyleProfile("Magnates Media", "#C0392B", "#F5F5F5", "#0D0D0D", "cinematic documentary, mysterious"),
    "gaming": StyleProfile("Gaming", "#00FFFF", "#FF00FF", "#050510", "neon, electric, dynamic"),
}

EXPRESSIONS: Mapping[str, str] = {
    "shocked": "wide eyes, mouth open in surprise, eyebrows raised high",
    "excited": "big genuine smile showing teeth, bright eyes, celebrating",
    "curious": "one raised eyebrow, slight smirk, head tilted, intrigued",
    "angry": "furrowed brows, narrowed eyes, clenched jaw",
    "fear": "wide fearful eyes, tense mouth, pulling back",
    "disgusted": "wrinkled nose, curled lip, grimace",
    "confident": "slight knowing smile, relaxed assured eyes, arms crossed",
    "determined": "focused intense eyes, set jaw, powerful stance",
}
DEFAULT_EXPRESSION = "excited"

CAMERA: Mapping[str, str] = {
    "gaming": "wide-angle lens, dramatic low angle, neon-lit environment, volumetric fog",
    "tech": "50mm lens, eye-level angle, clean studio, softbox lighting",
    "finance": "85mm portrait lens, slight low angle for authority, professional studio",
    "beauty": "85mm portrait lens, soft beauty dish, high-key environment",
    "fitness": "35mm lens, dynamic angle, hard side light, gym environment",
    "cooking": "50mm lens, warm golden light, kitchen environment",
    "travel": "wide-angle lens, cinematic framing, golden hour",
    "podcast": "85mm lens, interview angle, three-point lighting",
    "tutorial": "50mm lens, friendly angle, bright even light, clean background",
}
DEFAULT_CAMERA = "50mm lens, eye-level angle, dramatic rim lighting, dark studio"

RIM_LIGHT: Mapping[str, str] = {
    "gaming": "cyan and magenta",
    "tech": "electric blue",
    "finance": "gold",
    "beauty": "soft pink",
    "fitness": "orange",
    "cooking": "warm amber",
}
DEFAULT_RIM_LIGHT = "warm white"

# subject placement hint -> (where the subject goes, where text space is left)
SUBJECT_PLACEMENT: Mapping[str, Tuple[str, str]] = {
    "left": ("on the left third of the frame", "right"),
    "right": ("on the right third of the frame", "left"),
    "center": ("in the center of the frame", "top"),
}

VARIATION_SUFFIXES: Tuple[str, ...] = (
    "",
    "different lighting angle, same energy",
    "slightly different background elements",
    "alternative composition, same style",
)

FONT_BASE_SIZES: Mapping[str, int] = {
    "mrbeast": 180,
    "hormozi": 160,
    "gadzhi": 140,
    "gaming": 170,
}
DEFAULT_FONT_SIZE = 160
MIN_FONT_SIZE = 120
MAX_FONT_SIZE = 200


def style_for_request(request: GenerationRequest) -> str:
    """Explicit creator style, or the style the niche implies ('auto' counts as none)."""
    style = (request.creator_style or "").strip().lower()
    if style and style != "auto":
        return style
    return style_for_niche(request.niche)


def variation_suffix(index: int) -> str:
    return VARIATION_SUFFIXES[index % len(VARIATION_SUFFIXES)]


def with_variation(prompt: str, index: int) -> str:
    suffix = variation_suffix(index)
    return f"{prompt}, {suffix}" if suffix else prompt


def optimal_font_size(text: str, style: str | None = None) -> int:
    """
    Starting font size for overlay text.

    Long text and many words step down from the style's base size; the
    result stays within [120, 200].
    """
    size = FONT_BASE_SIZES.get((style or "").lower(), DEFAULT_FONT_SIZE)
    length = len(text)
    if length > 15:
        size -= 20
    if length > 25:
        size -= 20
    if len(text.split()) > 3:
        size -= 15
    return max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, size))


def overlay_text(request: GenerationRequest) -> str:
    return (request.desired_text or "").strip().upper()


def build_cinematic_prompt(request: GenerationRequest, style: str | None = None) -> str:
    style = style or style_for_request(request)
    profile = STYLE_PROFILES.get(style, STYLE_PROFILES["mrbeast"])
    niche = (request.niche or "").lower()
    expression = EXPRESSIONS.get((request.expression or "").lower(), EXPRESSIONS[DEFAULT_EXPRESSION])
    subject_where, text_side = SUBJECT_PLACEMENT.get(
        (request.subject_position or "left").lower(), SUBJECT_PLACEMENT["left"]
    )

    sections = [
        f"Create a professional YouTube thumbnail in the {profile.name} style.",
        "SCENE:\n"
        f"A high-impact thumbnail built for click-through. The scene shows {request.brief}. "
        f"The mood is {profile.mood}. It must look designed by a professional, not generated.",
        "PHOTOGRAPHY:\n"
        f"Shot with a {CAMERA.get(niche, DEFAULT_CAMERA)}. The main subject sits {subject_where}; "
        "depth of field separates subject from background.",
        "LIGHTING:\n"
        f"Dramatic key light with {RIM_LIGHT.get(niche, DEFAULT_RIM_LIGHT)} rim lights for edge separation. "
        "High overall contrast so the image pops against a white page.",
        "COLOR PALETTE:\n"
        f"Primary {profile.primary} and {profile.secondary} on a {profile.background} background, "
        "saturated enough to stand out in a crowded feed.",
    ]

    if request.has_face:
        sections.append(
            "PERSON:\n"
            f"The person from the reference photo fills 40-45% of the frame {subject_where}, "
            f"with {expression}. Their lighting matches the scene."
        )
    else:
        sections.append(f"ENERGY:\nThe scene carries the feeling of {expression}, with one clear focal subject.")

    sections.append(
        "DEPTH:\n"
        "Background with subtle bokeh, midground elements related to the topic, foreground subject "
        f"with glow. Add light leaks or haze where it suits the {niche or 'general'} niche."
    )

    if request.has_text:
        sections.append(
            "TEXT SPACE:\n"
            f"Keep clean negative space on the {text_side} side for bold overlay text. "
            "No important details there and no lettering in the image itself."
        )

    sections.append(
        "QUALITY:\n"
        "- Asymmetric 60/40 composition, not centered\n"
        "- Readable at 168x94 on mobile\n"
        "- Sharp subject, natural shadows\n"
        "- 16:9 aspect ratio"
    )
    return "\n\n".join(sections)


def build_minimal_prompt(request: GenerationRequest, style: str | None = None) -> str:
    style = style or style_for_request(request)
    profile = STYLE_PROFILES.get(style, STYLE_PROFILES["mrbeast"])
    prompt = f"YouTube thumbnail, 16:9: {request.brief}. Style: {profile.name}, {profile.mood}."
    if request.has_text:
        prompt += " Leave empty space for overlay text."
    return prompt
