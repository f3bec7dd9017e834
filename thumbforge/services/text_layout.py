"""
Font sizing, line wrapping and safe-zone placement for overlay text.

Text is measured with per-family width ratios instead of a real font
rasterizer so layout decisions are deterministic and do not depend on which
fonts are installed on the worker.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

from thumbforge.models.jobs import Box, TextLayout, TextPosition
from thumbforge.services.zones import (
    REFERENCE_HEIGHT,
    REFERENCE_WIDTH,
    duration_zone_for,
    safe_zone_bounds,
    text_box,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FontMetrics:
    """Glyph widths and heights as ratios of the font size."""

    average: float
    capital: float
    lower: float
    number: float
    space: float
    height: float
    ascent: float
    descent: float


FONT_METRICS: Mapping[str, FontMetrics] = {
    "Impact": FontMetrics(0.55, 0.70, 0.50, 0.60, 0.25, 1.15, 0.85, 0.15),
    "Arial Black": FontMetrics(0.65, 0.75, 0.55, 0.65, 0.28, 1.20, 0.85, 0.20),
    "Helvetica Neue": FontMetrics(0.55, 0.70, 0.50, 0.60, 0.28, 1.15, 0.80, 0.20),
    "Arial": FontMetrics(0.55, 0.70, 0.50, 0.60, 0.28, 1.15, 0.80, 0.20),
    "Georgia": FontMetrics(0.52, 0.72, 0.48, 0.58, 0.25, 1.20, 0.80, 0.25),
    "default": FontMetrics(0.58, 0.70, 0.52, 0.60, 0.27, 1.18, 0.82, 0.18),
}

WIDE_CHARS = frozenset("WMOQGDwm@%")
NARROW_CHARS = frozenset("ilIjtfr1!.,:;'\"")

FONT_SIZE_STEP = 4

# Named anchor points on the 1920x1080 reference canvas; y is the block center.
POSITION_PRESETS: Mapping[str, Tuple[int, int, str]] = {
    "topLeft": (90, 100, "start"),
    "topCenter": (960, 100, "middle"),
    "topRight": (1830, 100, "end"),
    "centerLeft": (90, 540, "start"),
    "center": (960, 540, "middle"),
    "centerRight": (1830, 540, "end"),
    "bottomLeft": (90, 980, "start"),
    "bottomCenter": (960, 980, "middle"),
    "bottomRight": (1830, 980, "end"),
    "rightCenter": (1700, 400, "end"),
    "rightUpper": (1700, 280, "end"),
    "rightThird": (1700, 400, "end"),
    "leftThird": (220, 400, "start"),
}


@dataclass(frozen=True, slots=True)
class TextStyle:
    """Typography constraints for one overlay."""

    font_family: str = "Impact"
    font_weight: int = 900
    line_height: float = 1.1
    min_font_size: int = 60
    max_font_size: int = 280
    stroke_width: int = 0
    shadow_dx: int = 0
    shadow_dy: int = 0


@dataclass(slots=True)
class FitResult:
    font_size: int
    lines: List[str]
    width: int
    height: int
    line_height: int
    fits: bool
    warnings: List[str] = field(default_factory=list)


@dataclass(slots=True)
class PlacementCheck:
    """Result of checking a text box against the safe zone and duration overlay."""

    valid: bool
    overflow: Dict[str, float]
    in_duration_zone: bool
    bounds: Box


def get_font_metrics(font_family: str | None) -> FontMetrics:
    return FONT_METRICS.get(font_family or "", FONT_METRICS["default"])


def char_width(char: str, font_size: float, metrics: FontMetrics) -> float:
    if char == " ":
        return font_size * metrics.space
    if char in WIDE_CHARS:
        return font_size * metrics.capital * 1.15
    if char in NARROW_CHARS:
        return font_size * metrics.lower * 0.5
    if "A" <= char <= "Z":
        return font_size * metrics.capital
    if "a" <= char <= "z":
        return font_size * metrics.lower
    if "0" <= char <= "9":
        return font_size * metrics.number
    return font_size * metrics.average


def measure_text(text: str, font_size: float, font_family: str = "Impact", font_weight: int = 900) -> Tuple[int, int]:
    """Return (width, height) in pixels of a single line of text."""
    if not text:
        return 0, 0
    metrics = get_font_metrics(font_family)
    width = sum(char_width(ch, font_size, metrics) for ch in text)
    if font_weight >= 700:
        width *= 1.05
    return math.ceil(width), math.ceil(font_size * metrics.height)


def measure_block(
    lines: List[str],
    font_size: float,
    font_family: str = "Impact",
    font_weight: int = 900,
    line_height: float = 1.1,
) -> Tuple[int, int, int]:
    """
    Return (width, height, line advance) of a multi-line block.

    The last line only contributes its font size, not a full line advance.
    """
    if not lines:
        return 0, 0, 0
    metrics = get_font_metrics(font_family)
    advance = font_size * metrics.height * line_height
    width = max(measure_text(line, font_size, font_family, font_weight)[0] for line in lines)
    height = (len(lines) - 1) * advance + font_size
    return math.ceil(width), math.ceil(height), math.ceil(advance)


def chars_per_line(max_width: float, font_size: float, font_family: str = "Impact") -> int:
    metrics = get_font_metrics(font_family)
    return max(1, math.floor(max_width / (font_size * metrics.average)))


def word_wrap(text: str, max_chars: int, max_lines: int = 3) -> List[str]:
    """
    Break text into at most `max_lines` lines of roughly `max_chars` characters.

    Whitespace is normalized first. A single overlong word is split, preferably
    after a hyphen. Text that still does not fit in `max_lines` lines is packed
    into the last line and truncated with an ellipsis.
    """
    return wrap_text(text, max_chars, max_lines)[0]


def wrap_text(text: str, max_chars: int, max_lines: int = 3) -> Tuple[List[str], bool]:
    """`word_wrap` that also reports whether any text was dropped."""
    clean = " ".join(text.split()) if text else ""
    if not clean:
        return [], False
    max_chars = max(1, max_chars)
    max_lines = max(1, max_lines)
    if len(clean) <= max_chars:
        return [clean], False

    words = clean.split(" ")
    if len(words) == 1:
        return _break_long_word(clean, max_chars, max_lines)

    lines, truncated = _balanced_wrap(words, max_chars, max_lines)
    if not lines:
        return _greedy_wrap(words, max_chars, max_lines)
    return lines, truncated


def _break_long_word(word: str, max_chars: int, max_lines: int) -> Tuple[List[str], bool]:
    parts: List[str] = []
    remaining = word
    while remaining and len(parts) < max_lines:
        if len(remaining) <= max_chars:
            parts.append(remaining)
            remaining = ""
            break
        break_point = max_chars
        hyphen = remaining.rfind("-", 0, max_chars + 1)
        if hyphen > max_chars / 2:
            break_point = hyphen + 1
        parts.append(remaining[:break_point])
        remaining = remaining[break_point:]
    return parts, bool(remaining)


def _balanced_wrap(words: List[str], max_chars: int, max_lines: int) -> Tuple[List[str], bool]:
    lines: List[str] = []
    current: List[str] = []
    current_length = 0

    for index, word in enumerate(words):
        new_length = current_length + (1 if current else 0) + len(word)
        if new_length > max_chars and current:
            lines.append(" ".join(current))
            if len(lines) >= max_lines:
                remaining = " ".join(words[index:])
                if len(remaining) > max_chars:
                    keep = max(0, max_chars - len(lines[-1]) - 4)
                    lines[-1] += " " + remaining[:keep] + "..."
                    return lines, True
                lines[-1] += " " + remaining
                return lines, False
            current = [word]
            current_length = len(word)
        else:
            current.append(word)
            current_length = new_length

    if current:
        lines.append(" ".join(current))
    return lines, False


def _greedy_wrap(words: List[str], max_chars: int, max_lines: int) -> Tuple[List[str], bool]:
    lines: List[str] = []
    current: List[str] = []
    current_length = 0

    for word in words:
        new_length = current_length + (1 if current else 0) + len(word)
        if new_length > max_chars and current:
            lines.append(" ".join(current))
            if len(lines) >= max_lines:
                return lines, True
            current = [word]
            current_length = len(word)
        else:
            current.append(word)
            current_length = new_length

    if current and len(lines) < max_lines:
        lines.append(" ".join(current))
        return lines, False
    return lines, bool(current)


def auto_fit(
    text: str,
    max_width: float,
    max_height: float,
    style: TextStyle = TextStyle(),
    max_lines: int = 3,
) -> FitResult:
    """
    Find the largest font size at which the wrapped text fits the box.

    Strategy:
    - Walk down from the maximum font size in fixed steps, wrapping the text
      for the characters-per-line each size allows.
    - The first size whose block fits, with no text dropped by the wrap, wins.
    - If nothing fits, settle on the minimum size and report the overflow and
      any truncation as warnings. The font never goes below the minimum.
    """
    warnings: List[str] = []
    if max_width <= 0:
        warnings.append(f"Invalid max width ({max_width:.0f}px) - must be greater than 0")
    if max_height <= 0:
        warnings.append(f"Invalid max height ({max_height:.0f}px) - must be greater than 0")

    min_size = style.min_font_size
    max_size = max(style.max_font_size, min_size)
    eff_width = max(1.0, max_width - 2 * style.stroke_width - abs(style.shadow_dx))
    eff_height = max(1.0, max_height - 2 * style.stroke_width - abs(style.shadow_dy))

    for size in range(max_size, min_size - 1, -FONT_SIZE_STEP):
        lines, truncated = wrap_text(text, chars_per_line(eff_width, size, style.font_family), max_lines)
        if not lines or truncated:
            continue
        width, height, advance = measure_block(lines, size, style.font_family, style.font_weight, style.line_height)
        if width <= eff_width and height <= eff_height:
            return FitResult(size, lines, width, height, advance, fits=True, warnings=warnings)

    lines, truncated = wrap_text(text, chars_per_line(eff_width, min_size, style.font_family), max_lines)
    width, height, advance = measure_block(lines, min_size, style.font_family, style.font_weight, style.line_height)
    warnings.append(f"Text at minimum size ({min_size}px) - may still overflow")
    if width > eff_width:
        warnings.append(f"Text width ({width}px) exceeds available width ({eff_width:.0f}px)")
    if height > eff_height:
        warnings.append(f"Text height ({height}px) exceeds available height ({eff_height:.0f}px)")
    if truncated:
        warnings.append(f"Text truncated to {len(lines)} line(s) - shorten the overlay text")
    return FitResult(
        min_size,
        lines,
        width,
        height,
        advance,
        fits=width <= eff_width and height <= eff_height and not truncated,
        warnings=warnings,
    )


def resolve_position(
    position: str | TextPosition | Tuple[float, float, str] | None,
    canvas_width: int = REFERENCE_WIDTH,
    canvas_height: int = REFERENCE_HEIGHT,
) -> Tuple[float, float, str]:
    """Turn a preset name, planner position or (x, y, anchor) tuple into canvas coordinates."""
    if isinstance(position, TextPosition):
        return position.x, position.y, position.anchor
    if isinstance(position, tuple):
        return position
    preset = POSITION_PRESETS.get(position or "")
    if preset is None:
        if position:
            logger.warning("Unknown position preset %s; using center", position)
        preset = POSITION_PRESETS["center"]
    x, y, anchor = preset
    return x * canvas_width / REFERENCE_WIDTH, y * canvas_height / REFERENCE_HEIGHT, anchor


def available_width(x: float, anchor: str, canvas_width: int, canvas_height: int, device: str = "desktop") -> float:
    safe = safe_zone_bounds(canvas_width, canvas_height, device)
    if anchor == "start":
        return safe.right - x
    if anchor == "end":
        return x - safe.x
    return 2 * min(x - safe.x, safe.right - x)


def adjust_position(
    width: float,
    height: float,
    x: float,
    y: float,
    anchor: str,
    canvas_width: int,
    canvas_height: int,
    device: str = "desktop",
) -> Tuple[float, float, bool, List[str]]:
    """
    Move a text block so it sits inside the safe zone and clear of the duration badge.

    Edges are cleared in order left, right, top, bottom. If the block then
    overlaps the duration badge, it moves by the smaller of the two escapes
    (up above the badge or left of it) that keeps it inside the safe zone.
    If neither stays inside, it moves up.
    """
    safe = safe_zone_bounds(canvas_width, canvas_height, device)
    notes: List[str] = []
    box = text_box(x, y, width, height, anchor)

    if box.x < safe.x:
        shift = safe.x - box.x
        x = math.ceil(x + shift)
        notes.append(f"Shifted right {shift:.0f}px to avoid left edge")
    box = text_box(x, y, width, height, anchor)
    if box.right > safe.right:
        shift = box.right - safe.right
        x = math.floor(x - shift)
        notes.append(f"Shifted left {shift:.0f}px to avoid right edge")
    if box.y < safe.y:
        shift = safe.y - box.y
        y = math.ceil(y + shift)
        notes.append(f"Shifted down {shift:.0f}px to avoid top edge")
    box = text_box(x, y, width, height, anchor)
    if box.bottom > safe.bottom:
        shift = box.bottom - safe.bottom
        y = math.floor(y - shift)
        notes.append(f"Shifted up {shift:.0f}px to avoid bottom edge")

    duration = duration_zone_for(canvas_width, canvas_height)
    box = text_box(x, y, width, height, anchor)
    if box.intersects(duration):
        up = box.bottom - duration.y
        left = box.right - duration.x
        up_ok = box.y - up >= safe.y
        left_ok = box.x - left >= safe.x
        if left_ok and (not up_ok or left < up):
            x = math.floor(x - left)
            notes.append(f"Shifted left {left:.0f}px to avoid duration overlay")
        else:
            y = math.floor(y - up)
            notes.append(f"Moved up {up:.0f}px to avoid duration overlay")

    return x, y, bool(notes), notes


def validate_placement(
    width: float,
    height: float,
    x: float,
    y: float,
    anchor: str,
    canvas_width: int,
    canvas_height: int,
    device: str = "desktop",
) -> PlacementCheck:
    safe = safe_zone_bounds(canvas_width, canvas_height, device)
    box = text_box(x, y, width, height, anchor)
    overflow = {
        "left": max(0.0, safe.x - box.x),
        "right": max(0.0, box.right - safe.right),
        "top": max(0.0, safe.y - box.y),
        "bottom": max(0.0, box.bottom - safe.bottom),
    }
    in_duration = box.intersects(duration_zone_for(canvas_width, canvas_height))
    return PlacementCheck(
        valid=not any(overflow.values()) and not in_duration,
        overflow=overflow,
        in_duration_zone=in_duration,
        bounds=box,
    )


def will_text_fit(text: str, font_size: float, max_width: float, font_family: str = "Impact") -> bool:
    return measure_text(text, font_size, font_family)[0] <= max_width


def find_optimal_font_size(
    text: str,
    max_width: float,
    min_size: int = 60,
    max_size: int = 280,
    font_family: str = "Impact",
) -> int:
    """Largest single-line font size that fits `max_width` (binary search), never below `min_size`."""
    low, high, best = min_size, max_size, min_size
    while low <= high:
        mid = (low + high) // 2
        if measure_text(text, mid, font_family)[0] <= max_width:
            best = mid
            low = mid + 1
        else:
            high = mid - 1
    return best


class TextLayoutFitter:
    """Fits overlay text to a canvas position and returns the final placement."""

    def __init__(self, device: str = "desktop") -> None:
        self.device = device

    def fit(
        self,
        text: str,
        position: str | TextPosition | Tuple[float, float, str] | None = "rightCenter",
        style: TextStyle = TextStyle(),
        canvas_width: int = REFERENCE_WIDTH,
        canvas_height: int = REFERENCE_HEIGHT,
        max_lines: int = 3,
        enforce_safe_zone: bool = True,
    ) -> TextLayout:
        x, y, anchor = resolve_position(position, canvas_width, canvas_height)
        safe = safe_zone_bounds(canvas_width, canvas_height, self.device)

        fit = auto_fit(
            text,
            max_width=available_width(x, anchor, canvas_width, canvas_height, self.device),
            max_height=safe.height,
            style=style,
            max_lines=max_lines,
        )
        warnings = list(fit.warnings)

        adjusted = False
        if enforce_safe_zone:
            x, y, adjusted, notes = adjust_position(
                fit.width, fit.height, x, y, anchor, canvas_width, canvas_height, self.device
            )
            warnings.extend(notes)
        x, y = round(x), round(y)

        check = validate_placement(fit.width, fit.height, x, y, anchor, canvas_width, canvas_height, self.device)
        if check.in_duration_zone:
            warnings.append("Text may conflict with the duration overlay")
        for side, amount in check.overflow.items():
            if amount > 0:
                warnings.append(f"{side.capitalize()} overflow: {amount:.0f}px")

        return TextLayout(
            x=x,
            y=y,
            anchor=anchor,
            font_size=fit.font_size,
            lines=fit.lines,
            fits=fit.fits and check.valid,
            position_adjusted=adjusted,
            width=fit.width,
            height=fit.height,
            line_height=fit.line_height,
            font_family=style.font_family,
            font_weight=style.font_weight,
            warnings=warnings,
        )
