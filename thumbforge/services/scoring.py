"""
Heuristic quality scoring for generated thumbnails.

Six sub-scores are combined with fixed weights into a 0-100 score:

- face: does the frame have a clear subject in its upper half
- composition: negative space, focal clarity and balance
- text_readability: how good the best text placement is
- color_harmony: saturation, vibrancy and channel variety
- technical: exposure, contrast and sharpness
- style_adherence: how well the image matches the creator style's flags

A failed sub-analysis never fails the scoring pass: it is logged, recorded in
`QualityScore.degraded` and replaced by the neutral score.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Mapping, Sequence, Tuple, TypeVar

import numpy as np

from thumbforge.models.jobs import CompositionAnalysis, FocalPoint, QualityScore
from thumbforge.services import raster
from thumbforge.services.composition import CompositionPlanner
from thumbforge.services.errors import AnalysisDegraded

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCORE_WEIGHTS: Mapping[str, float] = {
    "face": 0.25,
    "composition": 0.20,
    "text_readability": 0.20,
    "color_harmony": 0.15,
    "technical": 0.10,
    "style_adherence": 0.10,
}

NEUTRAL_SCORE = 70.0
NO_FACE_SCORE = 75.0

RECOMMENDATION_BUCKETS: Tuple[Tuple[float, str], ...] = (
    (85, "excellent"),
    (70, "good"),
    (55, "acceptable"),
    (40, "needs-improvement"),
)


@dataclass(frozen=True, slots=True)
class StyleScoring:
    """What a creator style rewards when judging an image."""

    high_saturation: bool = False
    low_saturation: bool = False
    high_contrast: bool = False
    clean_background: bool = False
    vibrant_colors: bool = False
    face_importance: str = "medium"


NO_STYLE = StyleScoring()

STYLE_SCORING: Mapping[str, StyleScoring] = {
    "mrbeast": StyleScoring(high_saturation=True, high_contrast=True, face_importance="high"),
    "hormozi": StyleScoring(high_contrast=True, clean_background=True, face_importance="high"),
    "gadzhi": StyleScoring(low_saturation=True, clean_background=True, face_importance="high"),
    "gaming": StyleScoring(high_saturation=True, vibrant_colors=True, face_importance="medium"),
    "documentary": StyleScoring(face_importance="medium"),
}


@dataclass(frozen=True, slots=True)
class TechnicalMetrics:
    contrast: float
    brightness: float
    sharpness: float
    exposure_score: float
    contrast_score: float
    sharpness_score: float
    overall: float


@dataclass(frozen=True, slots=True)
class ColorMetrics:
    saturation: float
    vibrancy: float
    color_spread: float
    harmony: float


@dataclass(frozen=True, slots=True)
class CompositionMetrics:
    negative_space_score: float
    focal_score: float
    balance_score: float
    face_score: float
    overall: float
    negative_space_count: int
    focal_point_count: int


@dataclass(frozen=True, slots=True)
class Comparison:
    winner: str
    score_a: float
    score_b: float
    margin: float


def recommendation_for(score: float) -> str:
    for threshold, label in RECOMMENDATION_BUCKETS:
        if score >= threshold:
            return label
    return "poor"


def technical_quality(pixels: np.ndarray) -> TechnicalMetrics:
    """
    Exposure, contrast and sharpness, weighted 0.3 / 0.35 / 0.35.

    Exposure loses a point per brightness level below 50 or above 200.
    Medium-high contrast (40-80) is preferred over very high or flat images.
    """
    stats = raster.global_stats(pixels)
    sharpness = raster.estimate_sharpness(pixels)

    exposure = 100.0
    if stats.brightness < 50:
        exposure -= 50 - stats.brightness
    if stats.brightness > 200:
        exposure -= stats.brightness - 200

    contrast = stats.contrast
    if 40 < contrast < 80:
        contrast_score = 90.0
    elif contrast >= 80:
        contrast_score = 85.0
    elif contrast < 30:
        contrast_score = 60.0
    else:
        contrast_score = 70.0

    sharpness_score = min(100.0, sharpness * 15)
    overall = exposure * 0.3 + contrast_score * 0.35 + sharpness_score * 0.35
    return TechnicalMetrics(
        contrast=contrast,
        brightness=stats.brightness,
        sharpness=sharpness,
        exposure_score=exposure,
        contrast_score=contrast_score,
        sharpness_score=sharpness_score,
        overall=overall,
    )


def color_quality(pixels: np.ndarray, flags: StyleScoring = NO_STYLE) -> ColorMetrics:
    stats = raster.global_stats(pixels)
    harmony = 75.0
    if stats.max_channel_gap > 50:
        harmony += 10
    if flags.high_saturation and stats.saturation > 80:
        harmony += 10
    if flags.low_saturation and stats.saturation < 60:
        harmony += 10
    if flags.vibrant_colors and stats.vibrancy > 30:
        harmony += 10
    return ColorMetrics(
        saturation=stats.saturation,
        vibrancy=stats.vibrancy,
        color_spread=stats.color_spread,
        harmony=min(100.0, harmony),
    )


def balance_score(focal_points: Sequence[FocalPoint], width: int, height: int) -> float:
    """
    How close the strength-weighted center of the focal points sits to a
    point slightly left of and above the frame center. Never below 50.
    """
    total = sum(p.strength for p in focal_points)
    if not focal_points or total <= 0:
        return NEUTRAL_SCORE
    center_x = sum(p.x * p.strength for p in focal_points) / total
    center_y = sum(p.y * p.strength for p in focal_points) / total
    distance = math.hypot(center_x - width * 0.4, center_y - height * 0.45)
    max_distance = math.hypot(width, height) / 2
    return max(50.0, 100 - distance / max_distance * 50)


def composition_quality(analysis: CompositionAnalysis, has_face: bool) -> CompositionMetrics:
    if analysis.negative_spaces:
        negative_score = min(100.0, analysis.negative_spaces[0].uniformity + 20)
    else:
        negative_score = 60.0

    if analysis.focal_points:
        focal_score = min(100.0, 60 + analysis.focal_points[0].strength / 2)
    else:
        focal_score = NEUTRAL_SCORE

    face_score = NO_FACE_SCORE
    if has_face and analysis.focal_points:
        upper = [p for p in analysis.focal_points if p.y < analysis.height * 0.5]
        face_score = 85.0 if upper else 65.0

    balance = balance_score(analysis.focal_points, analysis.width, analysis.height)
    return CompositionMetrics(
        negative_space_score=negative_score,
        focal_score=focal_score,
        balance_score=balance,
        face_score=face_score,
        overall=negative_score * 0.3 + focal_score * 0.3 + balance * 0.4,
        negative_space_count=len(analysis.negative_spaces),
        focal_point_count=len(analysis.focal_points),
    )


def text_readability(analysis: CompositionAnalysis) -> float:
    score = analysis.best_position.score
    if analysis.confidence > 0.7:
        score += 10
    lum = analysis.text_color.bg_luminance
    if lum < 0.3 or lum > 0.7:
        score += 10
    return min(100.0, score)


def style_adherence(color: ColorMetrics, composition: CompositionMetrics, flags: StyleScoring) -> float:
    score = 70.0
    if flags.high_saturation:
        score += 15 if color.saturation > 100 else -5
    if flags.high_contrast:
        score += 15 if color.color_spread > 40 else -5
    if flags.clean_background:
        score += 15 if composition.negative_space_count > 3 else -5
    if flags.face_importance == "high":
        score += 10 if composition.focal_point_count > 0 else -10
    return max(50.0, min(100.0, score))


def combine(sub_scores: Mapping[str, float], weights: Mapping[str, float] = SCORE_WEIGHTS) -> float:
    """Weighted sum of the sub-scores, clamped to [0, 100]. Missing sub-scores count as neutral."""
    total = sum(sub_scores.get(name, NEUTRAL_SCORE) * weight for name, weight in weights.items())
    if math.isnan(total):
        return 0.0
    return max(0.0, min(100.0, total))


def _guarded(name: str, fn: Callable[..., T], *args) -> Tuple[T | None, AnalysisDegraded | None]:
    try:
        return fn(*args), None
    except Exception as exc:  # noqa: BLE001
        logger.warning("%s analysis degraded: %s", name, exc)
        return None, AnalysisDegraded(name, exc)


class QualityScorer:
    """
    Scores one image at a time; sub-analyses of a single image run in a
    small thread pool since they only read the decoded pixels.
    """

    def __init__(
        self,
        planner: CompositionPlanner | None = None,
        weights: Mapping[str, float] = SCORE_WEIGHTS,
        style_table: Mapping[str, StyleScoring] = STYLE_SCORING,
        max_workers: int = 3,
    ) -> None:
        if abs(sum(weights.values()) - 1.0) > 1e-6:
            raise ValueError("Score weights must sum to 1.0")
        self.planner = planner or CompositionPlanner()
        self.weights = weights
        self.style_table = style_table
        self.max_workers = max_workers

    def flags_for(self, style: str | None) -> StyleScoring:
        return self.style_table.get((style or "").lower(), NO_STYLE)

    def _plan(self, pixels: np.ndarray, style: str | None, niche: str | None) -> CompositionAnalysis:
        analysis = self.planner.analyze(pixels, text_length=10, font_size=160, style=style, niche=niche)
        if analysis.fallback:
            raise RuntimeError("composition planner returned its fallback position")
        return analysis

    def score(
        self,
        image: np.ndarray | bytes,
        style: str | None = None,
        niche: str | None = None,
        has_face: bool = False,
    ) -> QualityScore:
        """
        Score an encoded or decoded image.

        Strategy:
        - Decode once; run technical, color and composition analysis
          concurrently over the same pixels.
        - Any failed analysis contributes the neutral score for the
          sub-scores that depend on it.
        - Style bonuses are applied to individual sub-scores before the
          weighted sum; the result is clamped to [0, 100].
        """
        flags = self.flags_for(style)
        degraded: List[str] = []

        if isinstance(image, (bytes, bytearray)):
            pixels, error = _guarded("decode", raster.decode_image, bytes(image))
        else:
            pixels, error = image, None

        technical = color = analysis = None
        if error is not None:
            degraded.extend(["technical", "color", "composition"])
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = {
                    "technical": pool.submit(_guarded, "technical", technical_quality, pixels),
                    "color": pool.submit(_guarded, "color", color_quality, pixels, flags),
                    "composition": pool.submit(_guarded, "composition", self._plan, pixels, style, niche),
                }
                results = {name: future.result() for name, future in futures.items()}
            technical, _ = results["technical"]
            color, _ = results["color"]
            analysis, _ = results["composition"]
            degraded.extend(name for name, (_, err) in results.items() if err is not None)

        composition = None
        if analysis is not None:
            composition, _ = _guarded("composition", composition_quality, analysis, has_face)
            if composition is None:
                degraded.append("composition")

        sub: Dict[str, float] = {
            "technical": technical.overall if technical else NEUTRAL_SCORE,
            "color_harmony": color.harmony if color else NEUTRAL_SCORE,
            "composition": composition.overall if composition else NEUTRAL_SCORE,
            "text_readability": text_readability(analysis) if analysis else NEUTRAL_SCORE,
        }
        if not has_face:
            sub["face"] = NO_FACE_SCORE
        else:
            sub["face"] = composition.face_score if composition else NEUTRAL_SCORE
        if color and composition:
            sub["style_adherence"] = style_adherence(color, composition, flags)
        else:
            sub["style_adherence"] = NEUTRAL_SCORE

        if flags.high_saturation and color and color.saturation > 120:
            sub["color_harmony"] += 10
        if flags.high_contrast and technical and technical.contrast > 60:
            sub["technical"] += 10
        if flags.face_importance == "high" and has_face:
            sub["face"] *= 1.2

        final = combine(sub, self.weights)
        details: Dict[str, object] = {}
        if technical:
            details["technical"] = asdict(technical)
        if color:
            details["color"] = asdict(color)
        if composition:
            details["composition"] = asdict(composition)
        if analysis:
            details["text_zone"] = {
                "zone": analysis.best_position.zone,
                "confidence": analysis.confidence,
                "bg_luminance": analysis.text_color.bg_luminance,
            }

        logger.debug("Final score %.1f/100 (degraded: %s)", final, degraded or "none")
        return QualityScore(
            final_score=final,
            breakdown={name: round(sub[name]) for name in SCORE_WEIGHTS},
            recommendation=recommendation_for(final),
            details=details,
            degraded=list(dict.fromkeys(degraded)),
        )

    def neutral(self, reason: str = "unscored") -> QualityScore:
        """Score used when a pipeline skips scoring altogether."""
        return QualityScore(
            final_score=NEUTRAL_SCORE,
            breakdown={name: int(NEUTRAL_SCORE) for name in SCORE_WEIGHTS},
            recommendation=reason,
        )

    def compare_images(self, image_a: bytes, image_b: bytes, **context) -> Comparison:
        """Score two images; ties go to A."""
        a = self.score(image_a, **context).final_score
        b = self.score(image_b, **context).final_score
        return Comparison(winner="A" if a >= b else "B", score_a=a, score_b=b, margin=abs(a - b))
