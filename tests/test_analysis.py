"""Tests for placeholder encoding, average color and the brand palette advisory."""

import io

import pytest
from PIL import Image

from conftest import VIOLET, YELLOW, make_image_bytes
from core.config import Settings
from services.media import analysis


def _gradient(width: int, height: int) -> Image.Image:
    im = Image.new("RGB", (width, height))
    im.putdata([(x * 255 // width, y * 255 // height, 128) for y in range(height) for x in range(width)])
    return im


def test_placeholder_is_deterministic_and_fixed_length() -> None:
    im = _gradient(32, 24)
    first = analysis.encode_placeholder(im.tobytes(), 32, 24)

    assert first == analysis.encode_placeholder(im.tobytes(), 32, 24)
    assert len(first) == 28
    assert len(analysis.encode_placeholder_quick(im.tobytes(), 32, 24)) == 16


def test_placeholder_ignores_alpha() -> None:
    im = _gradient(16, 16)
    rgba = im.copy()
    rgba.putalpha(40)
    assert analysis.encode_placeholder(rgba.tobytes(), 16, 16) == analysis.encode_placeholder(im.tobytes(), 16, 16)


def test_placeholder_rejects_mismatched_buffer() -> None:
    with pytest.raises(ValueError):
        analysis.encode_placeholder(b"\x00" * 10, 4, 4)
    with pytest.raises(ValueError):
        analysis.encode_placeholder(b"", 0, 4)


def test_placeholder_for_large_image_uses_thumbnail() -> None:
    h = analysis.placeholder_for_image(_gradient(400, 300))
    assert len(h) == 28


def test_average_color_is_hex() -> None:
    assert analysis.average_color_of(Image.new("RGB", (8, 8), (255, 0, 0))) == "#ff0000"
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (16, 32, 48)).save(buf, format="PNG")
    assert analysis.extract_average_color(buf.getvalue()) == "#102030"


def test_brand_violet_has_no_message(cfg: Settings) -> None:
    result = analysis.analyze_brand_colors(Image.new("RGB", (50, 50), VIOLET), cfg)
    assert cfg.brand_hue_min <= result.avg_hue <= cfg.brand_hue_max
    assert not result.deviates_from_brand
    assert result.message is None


def test_yellow_is_flagged(cfg: Settings) -> None:
    result = analysis.analyze_brand_colors(Image.new("RGB", (50, 50), YELLOW), cfg)
    assert result.is_blocked_hue
    assert "yellow" in result.message


def test_neutral_grey_is_accepted(cfg: Settings) -> None:
    result = analysis.analyze_brand_colors(Image.new("RGB", (50, 50), (128, 128, 128)), cfg)
    assert result.saturation == 0
    assert result.message is None


def test_off_brand_hue_deviates(cfg: Settings) -> None:
    result = analysis.analyze_brand_colors(Image.new("RGB", (50, 50), (0, 200, 0)), cfg)
    assert result.avg_hue == 120
    assert result.deviates_from_brand and not result.is_blocked_hue
    assert "deviates" in result.message


def test_advisory_reads_encoded_buffer(cfg: Settings) -> None:
    assert analysis.brand_color_advisory(make_image_bytes((120, 80), YELLOW, fmt="PNG"), cfg) is not None
