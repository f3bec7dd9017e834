"""
Stateless pixel heuristics shared by composition planning and quality scoring.

Every function takes a decoded RGB uint8 array and is deterministic: the same
buffer always yields bit-identical results. Solid-color and 1x1 images are
valid input; they simply produce empty focal/negative-space lists or zero
sharpness rather than errors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

import cv2
import numpy as np

from thumbforge.models.jobs import FocalPoint, NegativeSpace
from thumbforge.services.zones import SubjectEstimate

logger = logging.getLogger(__name__)

# Working resolution for grid analysis (16:9, a fifth of 1920x1080).
ANALYSIS_WIDTH = 384
ANALYSIS_HEIGHT = 216
GRID_ROWS = 8
GRID_COLS = 12
SUBJECT_GRID = 3
SHARPNESS_DIVISOR = 10.0

_LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)
_EDGE_KERNEL = np.array(
    [[-1, -1, -1], [-1, 8, -1], [-1, -1, -1]],
    dtype=np.float32,
)


@dataclass(frozen=True, slots=True)
class RasterThresholds:
    """Empirically tuned cut-offs for focal-point and negative-space detection."""

    focal_contrast: float = 30.0
    focal_variance: float = 50.0
    negative_space_variance: float = 30.0
    max_focal_points: int = 5


DEFAULT_THRESHOLDS = RasterThresholds()


@dataclass(frozen=True, slots=True)
class GridAnalysis:
    """Per-cell brightness and color variance of an image split into rows x cols."""

    width: int
    height: int
    rows: int
    cols: int
    brightness: np.ndarray
    variance: np.ndarray

    @property
    def cell_width(self) -> float:
        return self.width / self.cols

    @property
    def cell_height(self) -> float:
        return self.height / self.rows


@dataclass(frozen=True, slots=True)
class ImageStats:
    """Whole-image channel statistics used for exposure and color heuristics."""

    width: int
    height: int
    channel_means: Tuple[float, float, float]
    channel_stds: Tuple[float, float, float]
    # Average of the channel means / standard deviations.
    brightness: float
    contrast: float
    # Average pairwise difference between channel means.
    colorfulness: float
    # Largest pairwise difference between channel means.
    max_channel_gap: float
    # Largest distance of a channel mean from the average mean.
    color_spread: float
    saturation: float
    vibrancy: float


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (PNG, JPEG, WebP, ...) into an RGB uint8 array.

    Raises ValueError if the bytes are not a decodable image.
    """
    buffer = np.frombuffer(data, dtype=np.uint8)
    if buffer.size == 0:
        raise ValueError("Empty image buffer")
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Image bytes could not be decoded")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def encode_png(image: np.ndarray) -> bytes:
    """Encode an RGB array as PNG bytes."""
    ok, encoded = cv2.imencode(".png", cv2.cvtColor(image, cv2.COLOR_RGB2BGR))
    if not ok:
        raise ValueError("PNG encoding failed")
    return encoded.tobytes()


def to_analysis_size(image: np.ndarray) -> np.ndarray:
    """Resize to the fixed working resolution used by the grid heuristics."""
    h, w = image.shape[:2]
    if (w, h) == (ANALYSIS_WIDTH, ANALYSIS_HEIGHT):
        return image
    interpolation = cv2.INTER_AREA if w >= ANALYSIS_WIDTH else cv2.INTER_LINEAR
    return cv2.resize(image, (ANALYSIS_WIDTH, ANALYSIS_HEIGHT), interpolation=interpolation)


def _cell_bounds(length: int, parts: int) -> List[Tuple[int, int]]:
    """
    Split [0, length) into `parts` contiguous, never-empty ranges.

    When the image is smaller than the grid, neighbouring cells share pixels
    instead of coming out empty.
    """
    bounds: List[Tuple[int, int]] = []
    for i in range(parts):
        start = min(int(i * length / parts), length - 1)
        stop = max(start + 1, int((i + 1) * length / parts))
        bounds.append((start, stop))
    return bounds


def luminance(image: np.ndarray) -> np.ndarray:
    """Perceptual brightness 0.299R + 0.587G + 0.114B per pixel, in [0, 255]."""
    return image.astype(np.float64) @ _LUMA_WEIGHTS


def brightness_grid(image: np.ndarray, rows: int = GRID_ROWS, cols: int = GRID_COLS) -> np.ndarray:
    """Mean perceptual brightness of every grid cell, shape (rows, cols)."""
    h, w = image.shape[:2]
    luma = luminance(image)
    grid = np.zeros((rows, cols), dtype=np.float64)
    for r, (y0, y1) in enumerate(_cell_bounds(h, rows)):
        for c, (x0, x1) in enumerate(_cell_bounds(w, cols)):
            grid[r, c] = luma[y0:y1, x0:x1].mean()
    return grid


def variance_grid(
    image: np.ndarray,
    rows: int = GRID_ROWS,
    cols: int = GRID_COLS,
    stride: int = 2,
) -> np.ndarray:
    """
    Color variance of every grid cell, shape (rows, cols).

    Samples every `stride`-th pixel in both directions and returns the root
    of the mean squared RGB distance from the cell's mean color; a flat cell
    scores 0.
    """
    h, w = image.shape[:2]
    grid = np.zeros((rows, cols), dtype=np.float64)
    for r, (y0, y1) in enumerate(_cell_bounds(h, rows)):
        for c, (x0, x1) in enumerate(_cell_bounds(w, cols)):
            samples = image[y0:y1:stride, x0:x1:stride].reshape(-1, 3).astype(np.float64)
            deviation = samples - samples.mean(axis=0)
            grid[r, c] = float(np.sqrt((deviation ** 2).sum(axis=1).mean()))
    return grid


def analyze_grid(image: np.ndarray, rows: int = GRID_ROWS, cols: int = GRID_COLS) -> GridAnalysis:
    h, w = image.shape[:2]
    return GridAnalysis(
        width=w,
        height=h,
        rows=rows,
        cols=cols,
        brightness=brightness_grid(image, rows, cols),
        variance=variance_grid(image, rows, cols),
    )


def find_focal_points(grid: GridAnalysis, thresholds: RasterThresholds = DEFAULT_THRESHOLDS) -> List[FocalPoint]:
    """
    Flag interior cells that stand out from their neighbourhood.

    Strategy:
    - Compare each interior cell's brightness with the mean of its four
      direct neighbours.
    - A cell is focal if that contrast exceeds `focal_contrast` or its own
      color variance exceeds `focal_variance`.
    - Strength is contrast + variance; keep the strongest few.

    Points are returned in the pixel space the grid was computed on.
    """
    points: List[FocalPoint] = []
    b = grid.brightness
    for row in range(1, grid.rows - 1):
        for col in range(1, grid.cols - 1):
            neighbours = (b[row - 1, col] + b[row + 1, col] + b[row, col - 1] + b[row, col + 1]) / 4
            contrast = abs(b[row, col] - neighbours)
            variance = grid.variance[row, col]
            if contrast > thresholds.focal_contrast or variance > thresholds.focal_variance:
                points.append(
                    FocalPoint(
                        x=(col + 0.5) * grid.cell_width,
                        y=(row + 0.5) * grid.cell_height,
                        strength=float(contrast + variance),
                    )
                )
    points.sort(key=lambda p: p.strength, reverse=True)
    return points[: thresholds.max_focal_points]


def find_negative_space(
    grid: GridAnalysis,
    thresholds: RasterThresholds = DEFAULT_THRESHOLDS,
) -> List[NegativeSpace]:
    """
    Report every uniform cell, ranked by uniformity x region size.

    Cells are not merged; the region size only counts how many horizontal
    neighbours are uniform too, so wide calm bands rank above isolated cells.
    """
    uniform = grid.variance < thresholds.negative_space_variance
    spaces: List[NegativeSpace] = []
    for row in range(grid.rows):
        for col in range(grid.cols):
            if not uniform[row, col]:
                continue
            region_size = 1
            if col > 0 and uniform[row, col - 1]:
                region_size += 1
            if col < grid.cols - 1 and uniform[row, col + 1]:
                region_size += 1
            spaces.append(
                NegativeSpace(
                    x=col * grid.cell_width,
                    y=row * grid.cell_height,
                    width=grid.cell_width,
                    height=grid.cell_height,
                    uniformity=float(100.0 - grid.variance[row, col]),
                    region_size=region_size,
                    brightness=float(grid.brightness[row, col]),
                )
            )
    spaces.sort(key=lambda s: s.uniformity * s.region_size, reverse=True)
    return spaces


def estimate_sharpness(image: np.ndarray) -> float:
    """
    Standard deviation of an edge-filter response on the greyscale image, / 10.

    The response is clipped to the 8-bit range, as an image-space convolution
    would store it. A flat image scores 0.
    """
    grey = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY).astype(np.float32)
    response = cv2.filter2D(grey, -1, _EDGE_KERNEL, borderType=cv2.BORDER_REPLICATE)
    response = np.clip(response, 0, 255)
    return float(response.std()) / SHARPNESS_DIVISOR


def global_stats(image: np.ndarray) -> ImageStats:
    h, w = image.shape[:2]
    pixels = image.reshape(-1, 3).astype(np.float64)
    means = pixels.mean(axis=0)
    stds = pixels.std(axis=0)
    avg_mean = float(means.mean())
    r, g, b = (float(m) for m in means)
    gaps = (abs(r - g), abs(r - b), abs(g - b))
    spread = float(np.abs(means - avg_mean).max())
    saturation = spread * 2
    return ImageStats(
        width=w,
        height=h,
        channel_means=(r, g, b),
        channel_stds=tuple(float(s) for s in stds),
        brightness=avg_mean,
        contrast=float(stds.mean()),
        colorfulness=sum(gaps) / 3,
        max_channel_gap=max(gaps),
        color_spread=spread,
        saturation=saturation,
        vibrancy=saturation * (1 - saturation / 255),
    )


def sample_luminance(image: np.ndarray, x: float, y: float, window: int = 100) -> float:
    """Relative luminance in [0, 1] of the mean color of a window centered on (x, y)."""
    h, w = image.shape[:2]
    half = window // 2
    x0 = int(min(max(0, x - half), max(0, w - 1)))
    y0 = int(min(max(0, y - half), max(0, h - 1)))
    x1 = max(x0 + 1, min(w, x0 + window))
    y1 = max(y0 + 1, min(h, y0 + window))
    mean_color = image[y0:y1, x0:x1].reshape(-1, 3).astype(np.float64).mean(axis=0)
    return float(mean_color @ _LUMA_WEIGHTS) / 255.0


def estimate_subject(image: np.ndarray) -> SubjectEstimate:
    """
    Guess where the main subject sits using a 3x3 grid.

    Strategy:
    - Score each cell by detail (mean channel stdev) damped by how far its
      brightness is from mid-grey.
    - Weighted center of the three best cells is the subject center.
    - A wide score range means a compact, well-separated subject (0.4 of the
      frame); otherwise assume it fills more of the frame (0.6).
    """
    h, w = image.shape[:2]
    cells = []
    for r, (y0, y1) in enumerate(_cell_bounds(h, SUBJECT_GRID)):
        for c, (x0, x1) in enumerate(_cell_bounds(w, SUBJECT_GRID)):
            region = image[y0:y1, x0:x1].reshape(-1, 3).astype(np.float64)
            detail = float(region.std(axis=0).mean())
            brightness = float(region.mean(axis=0).mean())
            score = detail * (1 - abs(brightness - 128) / 128)
            cells.append((score, (x0 + x1) / 2, (y0 + y1) / 2))

    cells.sort(key=lambda cell: cell[0], reverse=True)
    top = cells[:3]
    total = sum(score for score, _, _ in top)
    if total <= 0:
        center_x, center_y = w / 2, h / 2
    else:
        center_x = sum(score * x for score, x, _ in top) / total
        center_y = sum(score * y for score, _, y in top) / total

    score_range = cells[0][0] - cells[-1][0]
    return SubjectEstimate(x=center_x / w, y=center_y / h, size=0.4 if score_range > 20 else 0.6)
