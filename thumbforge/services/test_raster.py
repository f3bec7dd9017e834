"""
Tests for the pixel heuristics.

All images are synthesized in memory; no fixtures on disk.
"""

import logging

import cv2
import numpy as np
import pytest

from thumbforge.services import raster

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def solid(width, height, color):
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, :] = color
    return image


def test_decode_rejects_empty_and_garbage():
    with pytest.raises(ValueError):
        raster.decode_image(b"")
    with pytest.raises(ValueError):
        raster.decode_image(b"definitely not an image")


def test_decode_returns_rgb():
    """OpenCV decodes BGR; the helper must hand back RGB."""
    image = solid(20, 10, (255, 0, 0))
    decoded = raster.decode_image(raster.encode_png(image))
    assert decoded.shape == (10, 20, 3)
    assert tuple(decoded[0, 0]) == (255, 0, 0)
    logger.info("✓ Decoded pixels are RGB")


def test_solid_image_has_no_focal_points_and_is_all_negative_space():
    grid = raster.analyze_grid(raster.to_analysis_size(solid(1920, 1080, (128, 128, 128))))

    assert raster.find_focal_points(grid) == []
    spaces = raster.find_negative_space(grid)
    assert len(spaces) == raster.GRID_ROWS * raster.GRID_COLS
    assert all(space.uniformity == pytest.approx(100.0) for space in spaces)


def test_one_pixel_image_is_valid_input():
    image = solid(1, 1, (10, 200, 30))
    grid = raster.analyze_grid(image)

    assert grid.brightness.shape == (raster.GRID_ROWS, raster.GRID_COLS)
    assert raster.find_focal_points(grid) == []
    assert raster.estimate_sharpness(image) == 0.0


def test_bright_cell_is_the_strongest_focal_point():
    image = solid(raster.ANALYSIS_WIDTH, raster.ANALYSIS_HEIGHT, (0, 0, 0))
    # Cell (row 3, col 5) of the 8x12 grid is 32x27 pixels.
    image[81:108, 160:192] = 255
    grid = raster.analyze_grid(image)

    points = raster.find_focal_points(grid)

    assert points
    assert len(points) <= raster.DEFAULT_THRESHOLDS.max_focal_points
    assert points[0].x == pytest.approx(5.5 * 32)
    assert points[0].y == pytest.approx(3.5 * 27)
    assert [p.strength for p in points] == sorted((p.strength for p in points), reverse=True)


def test_analysis_is_deterministic():
    rng = np.random.default_rng(7)
    image = rng.integers(0, 256, size=(216, 384, 3), dtype=np.uint8)

    first = raster.analyze_grid(image)
    second = raster.analyze_grid(image)

    assert np.array_equal(first.brightness, second.brightness)
    assert np.array_equal(first.variance, second.variance)
    assert raster.find_focal_points(first) == raster.find_focal_points(second)
    assert raster.estimate_sharpness(image) == raster.estimate_sharpness(image)


def test_sharpness_prefers_edges():
    flat = solid(200, 200, (90, 90, 90))
    edges = flat.copy()
    cv2.rectangle(edges, (50, 50), (150, 150), (255, 255, 255), 3)

    assert raster.estimate_sharpness(flat) == 0.0
    assert raster.estimate_sharpness(edges) > 0.0


def test_global_stats_of_pure_red():
    stats = raster.global_stats(solid(16, 16, (255, 0, 0)))

    assert stats.brightness == pytest.approx(85.0)
    assert stats.contrast == pytest.approx(0.0)
    assert stats.max_channel_gap == pytest.approx(255.0)
    assert stats.color_spread == pytest.approx(170.0)


def test_sample_luminance_extremes():
    assert raster.sample_luminance(solid(300, 300, (255, 255, 255)), 150, 150) == pytest.approx(1.0)
    assert raster.sample_luminance(solid(300, 300, (0, 0, 0)), 150, 150) == pytest.approx(0.0)
    # Window partially off the image is clipped, not an error.
    assert 0.0 <= raster.sample_luminance(solid(30, 30, (40, 40, 40)), 0, 29) <= 1.0


def test_subject_estimate_of_flat_image_is_centered():
    subject = raster.estimate_subject(solid(300, 200, (128, 128, 128)))
    assert subject.x == pytest.approx(0.5)
    assert subject.y == pytest.approx(0.5)
    assert subject.size == 0.6
