import pytest

from thumbforge.models.jobs import Box
from thumbforge.services.zones import (
    DURATION_ZONE,
    PLATFORM_PROFILES,
    SubjectEstimate,
    duration_zone_for,
    get_platform_profile,
    plan_crop,
    safe_zone_bounds,
    text_box,
)


def test_duration_zone_scales_with_canvas():
    assert duration_zone_for(1920, 1080) == DURATION_ZONE
    assert duration_zone_for(960, 540) == Box(x=875, y=500, width=85, height=40)


def test_safe_zone_bounds():
    assert safe_zone_bounds() == Box(x=90, y=50, width=1740, height=980)
    mobile = safe_zone_bounds(device="mobile")
    assert mobile.x == 160 and mobile.y == 90


def test_touching_boxes_do_not_intersect():
    a = Box(0, 0, 10, 10)
    assert not a.intersects(Box(10, 0, 10, 10))
    assert not a.intersects(Box(0, 10, 10, 10))
    assert a.intersects(Box(9, 9, 10, 10))


def test_text_box_anchors():
    assert text_box(100, 50, 40, 20, "start") == Box(100, 40, 40, 20)
    assert text_box(100, 50, 40, 20, "middle") == Box(80, 40, 40, 20)
    assert text_box(100, 50, 40, 20, "end") == Box(60, 40, 40, 20)


def test_unknown_platform_uses_youtube():
    assert get_platform_profile("myspace") is PLATFORM_PROFILES["youtube"]


def test_center_crop_to_square():
    box = plan_crop(1920, 1080, PLATFORM_PROFILES["instagram-square"])
    assert box == Box(x=420, y=0, width=1080, height=1080)


def test_subject_crop_stays_inside_source():
    profile = PLATFORM_PROFILES["tiktok"]
    box = plan_crop(1920, 1080, profile, SubjectEstimate(x=0.05, y=0.5, size=0.4))

    assert box.x == 0
    assert box.height == 1080
    assert box.right <= 1920
    assert box.width / box.height == pytest.approx(9 / 16, abs=0.01)


def test_zoomed_profile_crops_tighter():
    profile = PLATFORM_PROFILES["youtube-suggested"]
    box = plan_crop(1920, 1080, profile, SubjectEstimate(x=0.5, y=0.5, size=0.4))

    assert box.width == round(1920 / profile.zoom)
    assert box.height == round(1080 / profile.zoom)
    assert box.x >= 0 and box.y >= 0


def test_subject_lands_in_center_of_safe_area():
    # youtube-mobile keeps a deeper bottom inset (0.10) than top (0.02).
    profile = PLATFORM_PROFILES["youtube-mobile"]
    box = plan_crop(1920, 1080, profile, SubjectEstimate(x=0.5, y=0.5, size=0.4))

    assert (box.x, box.y) == (244, 158)
    assert (960 - box.x) / box.width == pytest.approx(0.485, abs=0.002)
    assert (540 - box.y) / box.height == pytest.approx(0.46, abs=0.002)
