import pytest

from thumbforge.models.jobs import TextPosition
from thumbforge.services.text_layout import (
    TextLayoutFitter,
    TextStyle,
    auto_fit,
    find_optimal_font_size,
    measure_text,
    resolve_position,
    validate_placement,
    will_text_fit,
    word_wrap,
    wrap_text,
)
from thumbforge.services.zones import duration_zone_for, safe_zone_bounds, text_box


def test_measure_text():
    assert measure_text("", 100) == (0, 0)
    # W, O, W are wide (0.70 * 1.15), "!" is narrow (0.50 * 0.5); bold adds 5%.
    assert measure_text("WOW!", 160) == (448, 184)


def test_short_text_fits_without_adjustment():
    layout = TextLayoutFitter().fit("WOW!", "rightCenter", TextStyle(max_font_size=160))

    assert layout.fits
    assert not layout.position_adjusted
    assert (layout.x, layout.y, layout.anchor) == (1700, 400, "end")
    assert layout.font_size == 160
    assert layout.lines == ["WOW!"]
    assert layout.width == 448
    assert layout.warnings == []


def test_bottom_right_moves_clear_of_duration_overlay():
    layout = TextLayoutFitter().fit("WOW!", "bottomRight", TextStyle(max_font_size=160))

    assert layout.position_adjusted
    assert (layout.x, layout.y) == (1830, 920)
    assert layout.fits
    box = text_box(layout.x, layout.y, layout.width, layout.height, layout.anchor)
    assert not box.intersects(duration_zone_for(1920, 1080))
    assert safe_zone_bounds().contains(box)
    assert any("duration overlay" in w for w in layout.warnings)


@pytest.mark.parametrize(
    "text,position",
    [
        ("SUBSCRIBE NOW", "bottomRight"),
        ("I SPENT 100 DAYS IN THE WILDERNESS", "bottomCenter"),
        ("MONEY", "bottomLeft"),
        ("WHY?", "topLeft"),
        ("THE END IS NEAR", "centerRight"),
    ],
)
def test_fitted_text_never_overlaps_duration_overlay(text, position):
    layout = TextLayoutFitter().fit(text, position, TextStyle(max_font_size=200))
    check = validate_placement(layout.width, layout.height, layout.x, layout.y, layout.anchor, 1920, 1080)
    assert not check.in_duration_zone
    assert 1 <= len(layout.lines) <= 3
    assert layout.font_size >= 60


def test_sixty_character_headline_wraps_within_three_lines():
    text = "I TRIED EVERY SINGLE FAST FOOD BURGER IN AMERICA FOR A WEEK!"
    assert len(text) == 60

    layout = TextLayoutFitter().fit(text, "center", TextStyle(max_font_size=200), max_lines=3)

    assert 1 < len(layout.lines) <= 3
    assert layout.fits or any("overflow" in w or "minimum size" in w for w in layout.warnings)


def test_dropped_text_is_reported_not_hidden():
    layout = TextLayoutFitter().fit("I" * 200, "center", TextStyle(max_font_size=200), max_lines=3)

    assert not layout.fits
    assert layout.font_size == 60
    assert len(layout.lines) == 3
    assert any("truncated to 3 line(s)" in w for w in layout.warnings)


def test_font_steps_down_rather_than_truncating():
    text = "ONE TWO THREE FOUR FIVE SIX SEVEN EIGHT NINE TEN"
    result = auto_fit(text, max_width=1740, max_height=980, style=TextStyle(max_font_size=280))

    assert result.fits
    assert " ".join(result.lines) == text
    assert not any("truncated" in w for w in result.warnings)


def test_wrap_text_flags_truncation():
    assert wrap_text("SUPER-LONG-HYPHENATEDWORD", 10, 3) == (["SUPER-LONG-", "HYPHENATED", "WORD"], False)
    assert wrap_text("ABCDEFGHIJKL", 4, 2) == (["ABCD", "EFGH"], True)
    lines, truncated = wrap_text("one two three four five six seven eight", 9, 2)
    assert truncated and lines[-1].endswith("...")
    assert wrap_text("short", 10) == (["short"], False)


def test_font_never_goes_below_minimum():
    text = "THIS IS A VERY LONG HEADLINE THAT CANNOT POSSIBLY FIT IN A SMALL BOX EVER"
    result = auto_fit(text, max_width=200, max_height=80, style=TextStyle(min_font_size=60, max_font_size=120))

    assert result.font_size == 60
    assert not result.fits
    assert any("minimum size" in w for w in result.warnings)
    assert len(result.lines) <= 3


def test_auto_fit_reports_invalid_box():
    result = auto_fit("HI", max_width=0, max_height=0)
    assert any("Invalid max width" in w for w in result.warnings)
    assert result.font_size >= 60


def test_word_wrap_normalizes_whitespace():
    assert word_wrap("  hello \n  world  ", 20) == ["hello world"]
    assert word_wrap("", 10) == []
    assert word_wrap("   ", 10) == []


def test_word_wrap_splits_long_word_after_hyphen():
    assert word_wrap("SUPER-LONG-HYPHENATEDWORD", 10, 3) == ["SUPER-LONG-", "HYPHENATED", "WORD"]


def test_word_wrap_truncates_overflow():
    lines = word_wrap("one two three four five six seven eight", 9, 2)
    assert len(lines) == 2
    assert lines[-1].endswith("...")


def test_unknown_preset_resolves_to_center():
    assert resolve_position("nowhere") == (960, 540, "middle")
    assert resolve_position("topCenter", 960, 540) == (480, 50, "middle")
    position = TextPosition(x=10, y=20, anchor="start", score=1.0, zone="z")
    assert resolve_position(position) == (10, 20, "start")


def test_optimal_single_line_size():
    size = find_optimal_font_size("WOW!", 448, min_size=60, max_size=280)
    assert size == 160
    assert will_text_fit("WOW!", size, 448)
    assert not will_text_fit("WOW!", size + 1, 448)
    assert find_optimal_font_size("A" * 200, 100) == 60


def test_canvas_scaling_keeps_layout_inside_safe_zone():
    layout = TextLayoutFitter().fit("BIG NEWS TODAY", "topRight", TextStyle(), canvas_width=1280, canvas_height=720)
    box = text_box(layout.x, layout.y, layout.width, layout.height, layout.anchor)
    assert safe_zone_bounds(1280, 720).contains(box)
