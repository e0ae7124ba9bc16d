from __future__ import annotations

import colorsys
import io

import blurhash
from PIL import Image as PILImage, ImageStat

from core.config import Settings, settings as default_settings
from domain.dtos import BrandColorAnalysis


PLACEHOLDER_SAMPLE_PX = 32
BRAND_SAMPLE_PX = 100


def encode_placeholder(pixels: bytes, width: int, height: int, components_x: int = 4, components_y: int = 3) -> str:
    """Blurhash of a packed RGB or RGBA buffer; alpha is ignored.

    The string length depends only on the component counts, and identical
    pixels always give an identical string.
    """
    if width < 1 or height < 1:
        raise ValueError("width and height must be positive")
    channels, rem = divmod(len(pixels), width * height)
    if rem or channels not in (3, 4):
        raise ValueError(f"pixel buffer of {len(pixels)} bytes does not match {width}x{height} RGB/RGBA")
    row_len = width * channels
    rows = []
    for y in range(height):
        row = pixels[y * row_len : (y + 1) * row_len]
        rows.append([[row[x], row[x + 1], row[x + 2]] for x in range(0, row_len, channels)])
    return blurhash.encode(rows, components_x=components_x, components_y=components_y)


def encode_placeholder_quick(pixels: bytes, width: int, height: int) -> str:
    return encode_placeholder(pixels, width, height, components_x=3, components_y=2)


def placeholder_for_image(im: PILImage.Image, components_x: int = 4, components_y: int = 3) -> str:
    thumb = im.convert("RGB")
    thumb.thumbnail((PLACEHOLDER_SAMPLE_PX, PLACEHOLDER_SAMPLE_PX), PILImage.Resampling.BOX)
    return encode_placeholder(thumb.tobytes(), thumb.width, thumb.height, components_x, components_y)


def to_hex(rgb: tuple[int, int, int]) -> str:
    return "#%02x%02x%02x" % rgb


def average_color_of(im: PILImage.Image) -> str:
    stat = ImageStat.Stat(im.convert("RGB"))
    r, g, b = (int(round(c)) for c in stat.mean[:3])
    return to_hex((r, g, b))


def extract_average_color(buffer: bytes) -> str:
    with PILImage.open(io.BytesIO(buffer)) as im:
        return average_color_of(im)


def dominant_color(im: PILImage.Image, num_colors: int = 6) -> tuple[int, int, int]:
    small = im.convert("RGB").resize((BRAND_SAMPLE_PX, BRAND_SAMPLE_PX))
    pal = small.quantize(colors=num_colors, method=PILImage.Quantize.MEDIANCUT)
    palette = pal.getpalette() or []
    counts = pal.getcolors() or []
    # most frequent palette index wins
    _, idx = max(counts, key=lambda c: c[0])
    r, g, b = palette[idx * 3 : idx * 3 + 3]
    return r, g, b


def analyze_brand_colors(im: PILImage.Image, cfg: Settings | None = None) -> BrandColorAnalysis:
    """Advisory only: the result may carry a message but never blocks an upload."""
    cfg = cfg or default_settings
    r, g, b = dominant_color(im)
    h, _, _ = colorsys.rgb_to_hsv(r / 255, g / 255, b / 255)
    hue = int(round(h * 360)) % 360
    mx, mn = max(r, g, b), min(r, g, b)
    saturation = 0.0 if mx == 0 else (mx - mn) / mx

    is_blocked = saturation >= cfg.neutral_saturation_max and cfg.blocked_hue_min <= hue <= cfg.blocked_hue_max
    is_brand = cfg.brand_hue_min <= hue <= cfg.brand_hue_max
    is_neutral = saturation < cfg.neutral_saturation_max
    deviates = not is_brand and not is_neutral

    message = None
    if is_blocked:
        message = (
            f"Image contains yellow hues ({hue}°). Brand guideline: no yellow. Please adjust colors."
        )
    elif deviates:
        message = (
            f"Image hue ({hue}°) deviates from brand palette "
            f"(violet {cfg.brand_hue_min:g}-{cfg.brand_hue_max:g}° or neutral). Consider adjusting for brand consistency."
        )
    return BrandColorAnalysis(
        avg_hue=hue,
        saturation=round(saturation, 3),
        is_blocked_hue=is_blocked,
        deviates_from_brand=deviates,
        message=message,
    )


def brand_color_advisory(buffer: bytes, cfg: Settings | None = None) -> str | None:
    with PILImage.open(io.BytesIO(buffer)) as im:
        return analyze_brand_colors(im, cfg).message
