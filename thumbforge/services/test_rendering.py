from io import BytesIO

import numpy as np
from PIL import Image

from thumbforge.models.jobs import TextColor, TextLayout
from thumbforge.services import rendering


def png(width, height, color=(40, 40, 40)):
    buffer = BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


WHITE_TEXT = TextColor(fill="#FFFFFF", stroke="#000000", shadow="rgba(0,0,0,0.8)", bg_luminance=0.1, reason="test")


def test_parse_color():
    assert rendering.parse_color("#FF0000") == (255, 0, 0, 255)
    assert rendering.parse_color("rgba(0,0,0,0.8)") == (0, 0, 0, 204)
    assert rendering.parse_color("rgb(1, 2, 3)") == (1, 2, 3, 255)


def test_fit_canvas_covers_output_size():
    assert rendering.fit_canvas(png(1280, 720)).size == (1920, 1080)
    assert rendering.fit_canvas(png(1024, 1024)).size == (1920, 1080)


def test_finalize_draws_text_inside_block():
    canvas = rendering.fit_canvas(png(640, 360))
    layout = TextLayout(
        x=1700,
        y=400,
        anchor="end",
        font_size=160,
        lines=["WOW!"],
        fits=True,
        position_adjusted=False,
        width=448,
        height=160,
        line_height=203,
    )

    data, media_type = rendering.finalize(canvas, layout, WHITE_TEXT, stroke_width=12, shadow_offset=(8, 8))

    assert media_type == "image/png"
    result = np.asarray(Image.open(BytesIO(data)).convert("RGB"))
    assert result.shape == (1080, 1920, 3)
    # Background elsewhere is untouched; the text block region changed.
    assert tuple(result[50, 50]) == (40, 40, 40)
    assert (result[320:480, 1252:1700] != 40).any()


def test_finalize_without_text_only_encodes():
    canvas = rendering.fit_canvas(png(640, 360))
    data, media_type = rendering.finalize(canvas)
    assert media_type == "image/png"
    assert Image.open(BytesIO(data)).size == (1920, 1080)


def test_large_png_falls_back_to_jpeg():
    noise = np.random.default_rng(1).integers(0, 256, size=(200, 200, 3), dtype=np.uint8)
    data, media_type = rendering.encode_output(Image.fromarray(noise), max_bytes=20_000)
    assert media_type == "image/jpeg"
    assert data[:2] == b"\xff\xd8"


def test_platform_crop_dimensions():
    source = png(1920, 1080, (200, 100, 50))
    for platform, size in (("tiktok", (1080, 1920)), ("instagram-square", (1080, 1080)), ("youtube", (1280, 720))):
        cropped = Image.open(BytesIO(rendering.crop_for_platform(source, platform)))
        assert cropped.size == size
