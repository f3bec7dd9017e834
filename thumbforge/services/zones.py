"""
Platform geometry: safe zones, UI danger zones and crop profiles.

All constants are expressed on the 1920x1080 reference canvas and scaled
proportionally for other canvas sizes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping

from thumbforge.models.jobs import Box

logger = logging.getLogger(__name__)

REFERENCE_WIDTH = 1920
REFERENCE_HEIGHT = 1080


@dataclass(frozen=True, slots=True)
class SafeMargin:
    horizontal: float
    vertical: float


SAFE_MARGINS: Mapping[str, SafeMargin] = {
    "desktop": SafeMargin(horizontal=90, vertical=50),
    "mobile": SafeMargin(horizontal=160, vertical=90),
}

# Video duration badge drawn by the player in the bottom-right corner.
DURATION_ZONE = Box(x=1750, y=1000, width=170, height=80)

# Regions obscured by platform UI, used to penalize text placements.
DANGER_ZONES: Mapping[str, Box] = {
    "timestamp": Box(x=1600, y=920, width=320, height=160),
    "bottom-left-icons": Box(x=0, y=920, width=180, height=160),
    "top-right-badge": Box(x=1700, y=0, width=220, height=140),
    "mobile-bottom-crop": Box(x=0, y=1000, width=1920, height=80),
}


def scale_box(box: Box, width: int, height: int) -> Box:
    """Scale a reference-canvas box to a canvas of the given size."""
    sx = width / REFERENCE_WIDTH
    sy = height / REFERENCE_HEIGHT
    return Box(x=box.x * sx, y=box.y * sy, width=box.width * sx, height=box.height * sy)


def duration_zone_for(width: int, height: int) -> Box:
    return scale_box(DURATION_ZONE, width, height)


def danger_zones_for(width: int, height: int) -> Dict[str, Box]:
    return {name: scale_box(box, width, height) for name, box in DANGER_ZONES.items()}


def safe_margin_for(width: int, height: int, device: str = "desktop") -> SafeMargin:
    """Safe margins scaled to the canvas; unknown devices use the desktop margins."""
    margin = SAFE_MARGINS.get(device, SAFE_MARGINS["desktop"])
    return SafeMargin(
        horizontal=margin.horizontal * width / REFERENCE_WIDTH,
        vertical=margin.vertical * height / REFERENCE_HEIGHT,
    )


def safe_zone_bounds(width: int = REFERENCE_WIDTH, height: int = REFERENCE_HEIGHT, device: str = "desktop") -> Box:
    """Return the rectangle of the canvas that no platform UI covers."""
    margin = safe_margin_for(width, height, device)
    return Box(
        x=margin.horizontal,
        y=margin.vertical,
        width=max(0.0, width - 2 * margin.horizontal),
        height=max(0.0, height - 2 * margin.vertical),
    )


def text_box(x: float, y: float, width: float, height: float, anchor: str) -> Box:
    """
    Bounding box of a text block anchored at (x, y).

    The anchor selects which horizontal edge x refers to (start = left,
    middle = center, end = right); y is always the vertical center.
    """
    if anchor == "end":
        left = x - width
    elif anchor == "middle":
        left = x - width / 2
    else:
        left = x
    return Box(x=left, y=y - height / 2, width=width, height=height)


@dataclass(frozen=True, slots=True)
class EdgeInsets:
    top: float
    right: float
    bottom: float
    left: float


@dataclass(frozen=True, slots=True)
class PlatformProfile:
    """Target format for a platform-specific crop."""

    name: str
    width: int
    height: int
    aspect_ratio: float
    safe_zone: EdgeInsets
    # "subject" centers the crop on the detected subject, "center" on the image.
    focus: str
    min_subject_size: float
    zoom: float = 1.0


def _profile(name, width, height, aspect, safe, focus, min_subject, zoom=1.0) -> PlatformProfile:
    return PlatformProfile(
        name=name,
        width=width,
        height=height,
        aspect_ratio=aspect,
        safe_zone=EdgeInsets(*safe),
        focus=focus,
        min_subject_size=min_subject,
        zoom=zoom,
    )


PLATFORM_PROFILES: Mapping[str, PlatformProfile] = {
    p.name: p
    for p in (
        _profile("youtube", 1280, 720, 16 / 9, (0.05, 0.15, 0.15, 0.05), "subject", 0.3),
        _profile("youtube-hd", 1920, 1080, 16 / 9, (0.05, 0.15, 0.15, 0.05), "subject", 0.3),
        _profile("youtube-mobile", 320, 180, 16 / 9, (0.02, 0.05, 0.1, 0.02), "subject", 0.5, zoom=1.3),
        _profile("youtube-suggested", 168, 94, 16 / 9, (0.0, 0.05, 0.08, 0.0), "subject", 0.6, zoom=1.5),
        _profile("instagram-square", 1080, 1080, 1.0, (0.05, 0.05, 0.05, 0.05), "center", 0.4),
        _profile("instagram-portrait", 1080, 1350, 4 / 5, (0.05, 0.05, 0.05, 0.05), "subject", 0.35),
        _profile("instagram-story", 1080, 1920, 9 / 16, (0.1, 0.05, 0.15, 0.05), "subject", 0.3),
        _profile("pinterest", 1000, 1500, 2 / 3, (0.05, 0.05, 0.05, 0.05), "subject", 0.35),
        _profile("facebook", 1200, 628, 1.91, (0.05, 0.1, 0.1, 0.05), "center", 0.3),
        _profile("facebook-cover", 1640, 856, 1.91, (0.1, 0.15, 0.15, 0.15), "center", 0.25),
        _profile("twitter", 1200, 675, 16 / 9, (0.05, 0.1, 0.1, 0.05), "center", 0.3),
        _profile("linkedin", 1200, 627, 1.91, (0.05, 0.1, 0.1, 0.05), "center", 0.3),
        _profile("tiktok", 1080, 1920, 9 / 16, (0.15, 0.1, 0.15, 0.05), "subject", 0.35),
    )
}


def get_platform_profile(name: str) -> PlatformProfile:
    profile = PLATFORM_PROFILES.get(name)
    if profile is None:
        logger.warning("Unknown platform %s; using youtube", name)
        return PLATFORM_PROFILES["youtube"]
    return profile


@dataclass(frozen=True, slots=True)
class SubjectEstimate:
    """Subject center and size as fractions of the image dimensions."""

    x: float
    y: float
    size: float


def plan_crop(
    source_width: int,
    source_height: int,
    profile: PlatformProfile,
    subject: SubjectEstimate | None = None,
) -> Box:
    """
    Compute the crop rectangle that turns the source into the profile's aspect.

    Strategy:
    - Take the largest rectangle of the target aspect that fits the source,
      then shrink it by the profile's zoom factor.
    - For subject-focused profiles, place it so the subject lands at the
      center of the profile's safe area (the crop minus its per-edge insets);
      otherwise center it on the image.
    - Clamp the rectangle to the source bounds. A subject near an edge ends
      up off-center rather than cut off.
    """
    source_aspect = source_width / source_height
    if source_aspect > profile.aspect_ratio:
        crop_h = float(source_height)
        crop_w = crop_h * profile.aspect_ratio
    else:
        crop_w = float(source_width)
        crop_h = crop_w / profile.aspect_ratio

    crop_w = min(crop_w / profile.zoom, source_width)
    crop_h = min(crop_h / profile.zoom, source_height)

    if profile.focus == "subject" and subject is not None:
        inset = profile.safe_zone
        center_x = subject.x * source_width
        center_y = subject.y * source_height
        offset_x = crop_w * (inset.left + (1 - inset.left - inset.right) / 2)
        offset_y = crop_h * (inset.top + (1 - inset.top - inset.bottom) / 2)
    else:
        center_x = source_width / 2
        center_y = source_height / 2
        offset_x = crop_w / 2
        offset_y = crop_h / 2

    left = min(max(0.0, round(center_x - offset_x)), source_width - crop_w)
    top = min(max(0.0, round(center_y - offset_y)), source_height - crop_h)

    return Box(x=round(left), y=round(top), width=round(crop_w), height=round(crop_h))
