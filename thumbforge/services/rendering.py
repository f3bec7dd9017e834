"""
Finalization: fit a candidate to the output canvas, draw the overlay text and
encode the result. Also renders platform crops of finished variants.
"""

from __future__ import annotations

import logging
import re
from io import BytesIO
from typing import Tuple

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont, ImageOps

from thumbforge.models.jobs import TextColor, TextLayout
from thumbforge.services import raster
from thumbforge.services.zones import REFERENCE_HEIGHT, REFERENCE_WIDTH, get_platform_profile, plan_crop

logger = logging.getLogger(__name__)

MAX_PNG_BYTES = 2 * 1024 * 1024
JPEG_QUALITIES = (92, 85, 78, 70, 60)

# Font files tried for each family before falling back to Pillow's bundled font.
FONT_FILES = {
    "Impact": ("impact.ttf", "Impact.ttf", "DejaVuSans-Bold.ttf"),
    "Arial Black": ("ariblk.ttf", "Arial Black.ttf", "DejaVuSans-Bold.ttf"),
    "Arial": ("arial.ttf", "Arial.ttf", "DejaVuSans.ttf"),
}
DEFAULT_FONT_FILES = ("DejaVuSans-Bold.ttf",)

_ANCHORS = {"start": "lm", "middle": "mm", "end": "rm"}
_RGBA = re.compile(r"rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*(?:,\s*([\d.]+)\s*)?\)")


def parse_color(value: str) -> Tuple[int, int, int, int]:
    """'#RRGGBB' or 'rgba(r,g,b,a)' -> RGBA tuple."""
    match = _RGBA.fullmatch(value.strip())
    if match:
        r, g, b, a = match.groups()
        alpha = round(float(a) * 255) if a is not None else 255
        return int(r), int(g), int(b), alpha
    rgb = ImageColor.getrgb(value)
    return rgb[0], rgb[1], rgb[2], 255


def load_font(family: str, size: int) -> ImageFont.ImageFont:
    for filename in FONT_FILES.get(family, DEFAULT_FONT_FILES):
        try:
            return ImageFont.truetype(filename, size)
        except OSError:
            continue
    logger.debug("No TrueType font for %s; using Pillow default", family)
    return ImageFont.load_default(size=size)


def to_image(image: bytes | np.ndarray | Image.Image) -> Image.Image:
    if isinstance(image, Image.Image):
        return image.convert("RGB")
    if isinstance(image, np.ndarray):
        return Image.fromarray(image).convert("RGB")
    return Image.open(BytesIO(image)).convert("RGB")


def fit_canvas(
    image: bytes | np.ndarray | Image.Image,
    width: int = REFERENCE_WIDTH,
    height: int = REFERENCE_HEIGHT,
) -> Image.Image:
    """Cover-resize to the canvas and center crop the excess."""
    return ImageOps.fit(to_image(image), (width, height), method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def render_text(canvas: Image.Image, layout: TextLayout, color: TextColor, stroke_width: int = 0,
                shadow_offset: Tuple[int, int] = (0, 0)) -> Image.Image:
    """
    Draw the fitted lines onto a copy of the canvas.

    Lines are stacked around `layout.y` (the block's vertical center) and
    aligned on `layout.x` according to the anchor.
    """
    font = load_font(layout.font_family, layout.font_size)
    anchor = _ANCHORS.get(layout.anchor, "mm")
    top = layout.y - layout.height / 2
    centers = [top + i * layout.line_height + layout.font_size / 2 for i in range(len(layout.lines))]

    base = canvas.convert("RGBA")
    if shadow_offset != (0, 0):
        shadow = Image.new("RGBA", base.size, (0, 0, 0, 0))
        shadow_draw = ImageDraw.Draw(shadow)
        dx, dy = shadow_offset
        for line, cy in zip(layout.lines, centers):
            shadow_draw.text((layout.x + dx, cy + dy), line, font=font, anchor=anchor, fill=parse_color(color.shadow))
        base = Image.alpha_composite(base, shadow)

    draw = ImageDraw.Draw(base)
    for line, cy in zip(layout.lines, centers):
        draw.text(
            (layout.x, cy),
            line,
            font=font,
            anchor=anchor,
            fill=parse_color(color.fill),
            stroke_width=stroke_width,
            stroke_fill=parse_color(color.stroke),
        )
    return base.convert("RGB")


def encode_output(image: Image.Image, max_bytes: int = MAX_PNG_BYTES) -> Tuple[bytes, str]:
    """
    PNG if it fits in `max_bytes`; otherwise JPEG at decreasing quality.

    Returns (bytes, media type).
    """
    buffer = BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    if buffer.tell() <= max_bytes:
        return buffer.getvalue(), "image/png"

    data = b""
    for quality in JPEG_QUALITIES:
        buffer = BytesIO()
        image.convert("RGB").save(buffer, format="JPEG", quality=quality, optimize=True)
        data = buffer.getvalue()
        if len(data) <= max_bytes:
            break
    logger.info("PNG over %d bytes; encoded JPEG of %d bytes", max_bytes, len(data))
    return data, "image/jpeg"


def finalize(
    canvas: Image.Image,
    layout: TextLayout | None = None,
    color: TextColor | None = None,
    stroke_width: int = 0,
    shadow_offset: Tuple[int, int] = (0, 0),
) -> Tuple[bytes, str]:
    """Render the overlay (when there is one) and encode the finished variant."""
    if layout is not None and color is not None and layout.lines:
        canvas = render_text(canvas, layout, color, stroke_width=stroke_width, shadow_offset=shadow_offset)
    return encode_output(canvas)


def crop_for_platform(image: bytes, platform: str) -> bytes:
    """Smart-crop a finished variant to a platform profile and encode it as PNG."""
    profile = get_platform_profile(platform)
    source = to_image(image)
    subject = raster.estimate_subject(np.asarray(source))
    box = plan_crop(source.width, source.height, profile, subject)
    cropped = source.crop((int(box.x), int(box.y), int(box.right), int(box.bottom)))
    resized = cropped.resize((profile.width, profile.height), Image.Resampling.LANCZOS)
    buffer = BytesIO()
    resized.save(buffer, format="PNG")
    return buffer.getvalue()
