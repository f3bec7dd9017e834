"""
Tests for heuristic quality scoring.
"""

import logging
import math

import numpy as np
import pytest

from thumbforge.models.jobs import CompositionAnalysis, TextPosition
from thumbforge.services.composition import LIGHT_ON_DARK, CompositionPlanner
from thumbforge.services.raster import encode_png
from thumbforge.services.scoring import (
    NEUTRAL_SCORE,
    NO_FACE_SCORE,
    SCORE_WEIGHTS,
    QualityScorer,
    combine,
    recommendation_for,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def solid(width, height, color):
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    return image


def noise(width, height, seed=0):
    return np.random.default_rng(seed).integers(0, 256, size=(height, width, 3), dtype=np.uint8)


class FallbackPlanner(CompositionPlanner):
    def analyze(self, image, **kwargs):
        return CompositionAnalysis(
            width=640,
            height=360,
            best_position=TextPosition(x=320, y=90, anchor="middle", score=50.0, zone="fallback-top-center"),
            text_color=LIGHT_ON_DARK,
            confidence=0.5,
            fallback=True,
        )


class ExplodingPlanner(CompositionPlanner):
    def analyze(self, image, **kwargs):
        raise RuntimeError("planner exploded")


@pytest.mark.parametrize(
    "image",
    [
        solid(640, 360, (0, 0, 0)),
        solid(640, 360, (255, 255, 255)),
        solid(640, 360, (255, 0, 0)),
        noise(640, 360),
        solid(1, 1, (50, 60, 70)),
    ],
)
def test_scores_are_bounded(image):
    scorer = QualityScorer()
    for style in (None, "mrbeast", "hormozi", "gadzhi", "gaming"):
        for has_face in (False, True):
            result = scorer.score(encode_png(image), style=style, has_face=has_face)
            assert 0.0 <= result.final_score <= 100.0
            assert set(result.breakdown) == set(SCORE_WEIGHTS)


def test_scoring_is_deterministic():
    scorer = QualityScorer()
    data = encode_png(noise(320, 180, seed=11))
    first = scorer.score(data, style="mrbeast", has_face=True)
    second = scorer.score(data, style="mrbeast", has_face=True)
    assert first.final_score == second.final_score
    assert first.breakdown == second.breakdown


def test_undecodable_image_degrades_to_neutral():
    result = QualityScorer().score(b"not an image")

    assert set(result.degraded) >= {"technical", "color", "composition"}
    assert result.breakdown["face"] == NO_FACE_SCORE
    assert result.breakdown["technical"] == NEUTRAL_SCORE
    assert result.breakdown["style_adherence"] == NEUTRAL_SCORE
    assert result.final_score == pytest.approx(0.25 * 75 + 0.75 * 70)
    assert result.recommendation == "good"


def test_planner_fallback_counts_as_degraded_composition():
    result = QualityScorer(FallbackPlanner()).score(solid(640, 360, (120, 80, 40)))

    assert result.degraded == ["composition"]
    assert result.breakdown["composition"] == NEUTRAL_SCORE
    assert result.breakdown["text_readability"] == NEUTRAL_SCORE
    assert "technical" in result.details


def test_planner_exception_does_not_fail_scoring():
    result = QualityScorer(ExplodingPlanner()).score(noise(320, 180))
    assert "composition" in result.degraded
    assert 0.0 <= result.final_score <= 100.0


def test_face_score_without_face():
    result = QualityScorer().score(noise(320, 180), style="mrbeast", has_face=False)
    assert result.breakdown["face"] == NO_FACE_SCORE


def test_combine_clamps_and_handles_nan():
    assert combine({name: 200.0 for name in SCORE_WEIGHTS}) == 100.0
    assert combine({name: -50.0 for name in SCORE_WEIGHTS}) == 0.0
    assert combine({"face": math.nan}) == 0.0
    assert combine({}) == pytest.approx(NEUTRAL_SCORE)


def test_weights_must_sum_to_one():
    with pytest.raises(ValueError):
        QualityScorer(weights={"face": 0.5, "technical": 0.2})


def test_recommendation_buckets():
    assert recommendation_for(92) == "excellent"
    assert recommendation_for(85) == "excellent"
    assert recommendation_for(70) == "good"
    assert recommendation_for(60) == "acceptable"
    assert recommendation_for(45) == "needs-improvement"
    assert recommendation_for(10) == "poor"


def test_compare_images_ties_go_to_a():
    scorer = QualityScorer()
    data = encode_png(noise(320, 180, seed=5))

    comparison = scorer.compare_images(data, data, style="gaming")

    assert comparison.winner == "A"
    assert comparison.margin == 0


def test_neutral_score():
    neutral = QualityScorer().neutral()
    assert neutral.final_score == NEUTRAL_SCORE
    assert set(neutral.breakdown.values()) == {70}
    assert neutral.degraded == []
