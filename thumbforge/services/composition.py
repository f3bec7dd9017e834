"""
Content-aware text placement.

The planner ranks a fixed set of named zones on a candidate image: calm,
high-contrast cells win, zones near the subject lose, and zones whose text
box would sit under platform UI are penalized or, for the duration badge,
excluded outright.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Mapping, Sequence, Tuple

import numpy as np

from thumbforge.models.jobs import Box, CompositionAnalysis, FocalPoint, NegativeSpace, TextColor, TextPosition
from thumbforge.services import raster
from thumbforge.services.raster import DEFAULT_THRESHOLDS, GridAnalysis, RasterThresholds
from thumbforge.services.zones import danger_zones_for, duration_zone_for, safe_zone_bounds, text_box

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CandidateZone:
    name: str
    x: float
    y: float
    anchor: str
    base_priority: int


CANDIDATE_ZONES: Tuple[CandidateZone, ...] = (
    CandidateZone("top-right", 0.75, 0.20, "end", 8),
    CandidateZone("top-left", 0.25, 0.20, "start", 7),
    CandidateZone("top-center", 0.50, 0.18, "middle", 9),
    CandidateZone("middle-right", 0.75, 0.45, "end", 7),
    CandidateZone("middle-left", 0.25, 0.45, "start", 6),
    CandidateZone("lower-center", 0.50, 0.60, "middle", 5),
    CandidateZone("lower-left", 0.30, 0.58, "start", 4),
)

# Zone preferences per creator style: "top", "center", "right", "middle".
STYLE_ZONE_PREFERENCES: Mapping[str, Tuple[str, ...]] = {
    "mrbeast": ("top", "center"),
    "hormozi": ("right", "middle"),
    "gadzhi": ("center", "top"),
    "gaming": ("top",),
}

# Styles whose look a niche implies when no creator style was given.
NICHE_STYLES: Mapping[str, str] = {
    "gaming": "mrbeast",
    "cooking": "mrbeast",
    "reaction": "mrbeast",
    "entertainment": "mrbeast",
    "tech": "hormozi",
    "finance": "hormozi",
    "fitness": "hormozi",
    "tutorial": "hormozi",
    "business": "hormozi",
    "beauty": "gadzhi",
    "travel": "gadzhi",
    "luxury": "gadzhi",
    "podcast": "magnates",
    "documentary": "magnates",
}


@dataclass(frozen=True, slots=True)
class PlacementWeights:
    """Scoring constants for zone ranking."""

    uniform_variance: float = 40.0
    uniform_bonus: float = 20.0
    dark_brightness: float = 50.0
    bright_brightness: float = 200.0
    contrast_bonus: float = 15.0
    # Focal points closer than this fraction of the width push a zone down.
    focal_proximity: float = 0.15
    focal_penalty: float = 30.0
    danger_penalty: float = 50.0
    style_bonus: int = 2
    preferred_min_score: float = 30.0
    # Rough text box estimate: chars x size x 0.6 wide, size x 1.2 tall.
    char_width_factor: float = 0.6
    line_height_factor: float = 1.2


DEFAULT_WEIGHTS = PlacementWeights()

LIGHT_ON_DARK = TextColor(
    fill="#FFFFFF",
    stroke="#000000",
    shadow="rgba(0,0,0,0.8)",
    bg_luminance=0.3,
    reason="default",
)


def style_for_niche(niche: str | None) -> str:
    return NICHE_STYLES.get((niche or "").lower(), "mrbeast")


def _zone_priority(zone: CandidateZone, preferences: Sequence[str], bonus: int) -> int:
    priority = zone.base_priority
    if "top" in preferences and zone.y < 0.3:
        priority += bonus
    if "center" in preferences and zone.anchor == "middle":
        priority += bonus
    if "right" in preferences and zone.anchor == "end":
        priority += bonus
    if "middle" in preferences and 0.35 < zone.y < 0.55:
        priority += bonus
    return priority


def _preference_terms(preferred: str) -> List[str]:
    """'rightCenter' / 'top_right' / 'Top Right' -> ['right-center', 'right', 'center']."""
    words = [w.lower() for w in re.split(r"[\s_\-]+|(?<=[a-z])(?=[A-Z])", preferred.strip()) if w]
    if not words:
        return []
    terms = ["-".join(words)]
    if len(words) > 1:
        terms.extend(words)
    return terms


class CompositionPlanner:
    """
    Ranks text placements on an image and recommends a legible text color.

    Tables and thresholds are injected so callers (and tests) can tune them
    without touching module state.
    """

    def __init__(
        self,
        thresholds: RasterThresholds = DEFAULT_THRESHOLDS,
        weights: PlacementWeights = DEFAULT_WEIGHTS,
        zones: Sequence[CandidateZone] = CANDIDATE_ZONES,
        style_preferences: Mapping[str, Tuple[str, ...]] = STYLE_ZONE_PREFERENCES,
    ) -> None:
        self.thresholds = thresholds
        self.weights = weights
        self.zones = tuple(zones)
        self.style_preferences = style_preferences

    def analyze(
        self,
        image: np.ndarray | bytes,
        text_length: int = 10,
        font_size: int = 160,
        preferred_zone: str | None = None,
        style: str | None = None,
        niche: str | None = None,
    ) -> CompositionAnalysis:
        """
        Analyze an image and pick the best text position.

        Never raises: if the image cannot be decoded or any step fails, a
        centered-top fallback position with confidence 0.5 is returned and
        `fallback` is set on the result.
        """
        try:
            pixels = raster.decode_image(image) if isinstance(image, (bytes, bytearray)) else image
            return self._analyze(pixels, text_length, font_size, preferred_zone, style, niche)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Composition analysis failed, using fallback position: %s", exc)
            width, height = self._image_size(image)
            return self._fallback(width, height, text_length, font_size)

    def _analyze(
        self,
        pixels: np.ndarray,
        text_length: int,
        font_size: int,
        preferred_zone: str | None,
        style: str | None,
        niche: str | None,
    ) -> CompositionAnalysis:
        height, width = pixels.shape[:2]
        small = raster.to_analysis_size(pixels)
        grid = raster.analyze_grid(small)
        focal_points = raster.find_focal_points(grid, self.thresholds)
        negative_spaces = raster.find_negative_space(grid, self.thresholds)

        box_w, box_h = self._estimate_text_size(text_length, font_size, width, height)
        ranked = self._rank_positions(grid, focal_points, width, height, box_w, box_h, style, niche)
        best = self._select_best(ranked, preferred_zone)
        if best is None:
            best = self._fallback_position(width, height, box_h, score=50.0, zone="fallback-center", y_frac=0.3)
            logger.info("Every candidate zone hit the duration overlay; using %s", best.zone)

        text_color = self.recommend_text_color(pixels, best.x, best.y)

        sx = width / grid.width
        sy = height / grid.height
        logger.debug("Best text position %s at (%.0f, %.0f) score %.1f", best.zone, best.x, best.y, best.score)
        return CompositionAnalysis(
            width=width,
            height=height,
            best_position=best,
            text_color=text_color,
            confidence=min(1.0, max(0.0, best.score / 100.0)),
            focal_points=[FocalPoint(x=p.x * sx, y=p.y * sy, strength=p.strength) for p in focal_points],
            negative_spaces=[
                NegativeSpace(
                    x=s.x * sx,
                    y=s.y * sy,
                    width=s.width * sx,
                    height=s.height * sy,
                    uniformity=s.uniformity,
                    region_size=s.region_size,
                    brightness=s.brightness,
                )
                for s in negative_spaces
            ],
            ranked_positions=ranked,
        )

    def _estimate_text_size(self, text_length: int, font_size: int, width: int, height: int) -> Tuple[float, float]:
        """
        Rough text block size in image pixels.

        Font sizes are given on the 1920-wide canvas. The estimate is capped
        to what the layout fitter could ever produce: no wider than the safe
        zone and no taller than the space above the duration overlay.
        """
        scale = width / 1920
        box_w = max(1, text_length) * font_size * scale * self.weights.char_width_factor
        box_h = font_size * scale * self.weights.line_height_factor
        safe = safe_zone_bounds(width, height)
        duration = duration_zone_for(width, height)
        return min(box_w, safe.width), min(box_h, max(1.0, duration.y - safe.y))

    def _rank_positions(
        self,
        grid: GridAnalysis,
        focal_points: List[FocalPoint],
        width: int,
        height: int,
        box_w: float,
        box_h: float,
        style: str | None,
        niche: str | None,
    ) -> List[TextPosition]:
        w = self.weights
        style_key = (style or "").lower() or style_for_niche(niche)
        preferences = self.style_preferences.get(style_key, ())
        dangers = danger_zones_for(width, height)
        duration = duration_zone_for(width, height)
        min_distance = grid.width * w.focal_proximity

        positions: List[TextPosition] = []
        for zone in self.zones:
            score = float(_zone_priority(zone, preferences, w.style_bonus) * 10)

            gx = zone.x * grid.width
            gy = zone.y * grid.height
            col = min(grid.cols - 1, int(gx / grid.cell_width))
            row = min(grid.rows - 1, int(gy / grid.cell_height))
            if grid.variance[row, col] < w.uniform_variance:
                score += w.uniform_bonus
            brightness = grid.brightness[row, col]
            if brightness < w.dark_brightness or brightness > w.bright_brightness:
                score += w.contrast_bonus

            for point in focal_points:
                distance = math.hypot(gx - point.x, gy - point.y)
                if distance < min_distance:
                    score -= w.focal_penalty * (1 - distance / min_distance)

            x = round(zone.x * width)
            y = round(zone.y * height)
            box = text_box(x, y, box_w, box_h, zone.anchor)
            if any(box.intersects(danger) for danger in dangers.values()):
                score -= w.danger_penalty

            positions.append(
                TextPosition(
                    x=x,
                    y=y,
                    anchor=zone.anchor,
                    score=max(0.0, score),
                    zone=zone.name,
                    blocked=box.intersects(duration),
                )
            )

        positions.sort(key=lambda p: p.score, reverse=True)
        return positions

    def _select_best(self, ranked: List[TextPosition], preferred_zone: str | None) -> TextPosition | None:
        allowed = [p for p in ranked if not p.blocked]
        if not allowed:
            return None
        if preferred_zone:
            for term in _preference_terms(preferred_zone):
                for position in allowed:
                    if term in position.zone and position.score > self.weights.preferred_min_score:
                        return position
        return allowed[0]

    def recommend_text_color(self, pixels: np.ndarray, x: float, y: float) -> TextColor:
        """Light text on dark backgrounds, dark text on light ones."""
        try:
            lum = raster.sample_luminance(pixels, x, y)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Text color sampling failed: %s", exc)
            return LIGHT_ON_DARK

        if lum < 0.5:
            return TextColor(
                fill="#FFFFFF",
                stroke="#000000",
                shadow="rgba(0,0,0,0.8)",
                bg_luminance=lum,
                reason="light-on-dark",
            )
        return TextColor(
            fill="#000000",
            stroke="#FFFFFF",
            shadow="rgba(255,255,255,0.5)",
            bg_luminance=lum,
            reason="dark-on-light",
        )

    def _fallback_position(
        self,
        width: int,
        height: int,
        box_h: float,
        score: float,
        zone: str,
        y_frac: float,
    ) -> TextPosition:
        # Keep the text box's bottom edge above the duration overlay.
        duration = duration_zone_for(width, height)
        y = min(round(height * y_frac), math.floor(duration.y - box_h / 2))
        return TextPosition(x=round(width / 2), y=y, anchor="middle", score=score, zone=zone)

    def _fallback(self, width: int, height: int, text_length: int, font_size: int) -> CompositionAnalysis:
        _, box_h = self._estimate_text_size(text_length, font_size, width, height)
        position = self._fallback_position(width, height, box_h, score=50.0, zone="fallback-top-center", y_frac=0.25)
        return CompositionAnalysis(
            width=width,
            height=height,
            best_position=position,
            text_color=LIGHT_ON_DARK,
            confidence=0.5,
            fallback=True,
        )

    @staticmethod
    def _image_size(image: np.ndarray | bytes) -> Tuple[int, int]:
        if isinstance(image, np.ndarray) and image.ndim >= 2 and image.size > 0:
            return int(image.shape[1]), int(image.shape[0])
        return 1920, 1080
