from __future__ import annotations

import io
from typing import Iterable, List

import structlog
from PIL import Image as PILImage, ImageCms, ImageOps

from core.config import Settings, settings as default_settings
from domain.entities import Derivative, OriginalImage, ProcessedImage
from domain.errors import UnreadableImageError
from domain.media_rules import DERIVATIVE_FORMATS, MIME_TO_EXT
from services.media.analysis import average_color_of, placeholder_for_image
from services.media.keys import build_key, compute_content_hash, size_token


log = structlog.get_logger(__name__)

_PIL_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "MPO": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "AVIF": "image/avif",
}

_SRGB = ImageCms.createProfile("sRGB")


def fit_inside(width: int, height: int, size: int) -> tuple[int, int]:
    """Scale so the long edge equals `size`; the short edge is rounded half-up and never below 1."""
    long_edge = max(width, height)
    if width >= height:
        return size, max(1, (2 * size * height + long_edge) // (2 * long_edge))
    return max(1, (2 * size * width + long_edge) // (2 * long_edge)), size


def target_sizes(width: int, height: int, sizes: Iterable[int]) -> List[int]:
    long_edge = max(width, height)
    return [s for s in sizes if s <= long_edge]


def _decode(raw_bytes: bytes) -> PILImage.Image:
    try:
        im = PILImage.open(io.BytesIO(raw_bytes))
        im.load()
    except (PILImage.UnidentifiedImageError, PILImage.DecompressionBombError, OSError, ValueError, SyntaxError) as e:
        raise UnreadableImageError(f"Unable to decode image: {e}") from e
    if not im.width or not im.height:
        raise UnreadableImageError("Unable to read image dimensions")
    return im


def _has_alpha(im: PILImage.Image) -> bool:
    return im.mode in ("RGBA", "LA", "PA") or (im.mode == "P" and "transparency" in im.info)


def _to_srgb(im: PILImage.Image) -> PILImage.Image:
    target_mode = "RGBA" if _has_alpha(im) else "RGB"
    icc = im.info.get("icc_profile")
    if icc:
        try:
            src = ImageCms.ImageCmsProfile(io.BytesIO(icc))
            base = im if im.mode in ("RGB", "CMYK", "L") else im.convert("RGB")
            converted = ImageCms.profileToProfile(base, src, _SRGB, outputMode="RGB")
            if target_mode == "RGBA":
                converted.putalpha(im.convert("RGBA").getchannel("A"))
            return converted
        except (ImageCms.PyCMSError, OSError) as e:
            log.warning("media_icc_convert_failed", error=str(e))
    return im.convert(target_mode)


def normalize(raw_bytes: bytes) -> tuple[PILImage.Image, str]:
    """Decode once, bake EXIF orientation into pixels, convert to sRGB, drop all metadata.

    Returns the clean image and the source MIME type.
    """
    im = _decode(raw_bytes)
    mime = _PIL_FORMAT_MIME.get(im.format or "", "image/jpeg")
    oriented = ImageOps.exif_transpose(im)
    srgb = _to_srgb(oriented)
    # rebuilt from raw pixels so no exif/icc/xmp survives
    clean = PILImage.frombytes(srgb.mode, srgb.size, srgb.tobytes())
    return clean, mime


def _encode(im: PILImage.Image, fmt: str, cfg: Settings) -> bytes:
    buf = io.BytesIO()
    if fmt == "avif":
        im.save(buf, format="AVIF", quality=cfg.avif_quality)
    elif fmt == "webp":
        im.save(buf, format="WEBP", quality=cfg.webp_quality, method=4)
    elif fmt == "jpg":
        im.convert("RGB").save(buf, format="JPEG", quality=95, optimize=True)
    elif fmt == "png":
        im.save(buf, format="PNG", optimize=True)
    else:
        raise ValueError(f"Unsupported output format: {fmt}")
    return buf.getvalue()


def _encode_original(im: PILImage.Image, mime: str, cfg: Settings) -> tuple[bytes, str]:
    ext = MIME_TO_EXT.get(mime, "jpg")
    buf = io.BytesIO()
    if ext == "webp":
        im.save(buf, format="WEBP", quality=95, method=4)
    elif ext == "avif":
        im.save(buf, format="AVIF", quality=85)
    else:
        return _encode(im, ext, cfg), ext
    return buf.getvalue(), ext


def process(
    original_bytes: bytes,
    entity_slug: str,
    kind: str,
    *,
    prefix: str = "",
    cfg: Settings | None = None,
) -> ProcessedImage:
    """Render the original plus every (size x format) derivative that does not upscale.

    Raises UnreadableImageError when the buffer cannot be decoded.
    """
    cfg = cfg or default_settings
    clean, mime = normalize(original_bytes)
    width, height = clean.size

    placeholder = placeholder_for_image(clean)
    avg_color = average_color_of(clean)
    content_hash = compute_content_hash(clean.tobytes())

    original_blob, original_ext = _encode_original(clean, mime, cfg)
    original = OriginalImage(
        key=prefix + build_key(entity_slug, kind, size_token(None), original_ext),
        width=width,
        height=height,
        size_bytes=len(original_blob),
        format=original_ext,
        content_type=mime,
        data=original_blob,
    )

    derivatives: List[Derivative] = []
    for size in target_sizes(width, height, cfg.derivative_sizes):
        tw, th = fit_inside(width, height, size)
        resized = clean.resize((tw, th), PILImage.Resampling.LANCZOS)
        for fmt in DERIVATIVE_FORMATS:
            blob = _encode(resized, fmt, cfg)
            derivatives.append(
                Derivative(
                    key=prefix + build_key(entity_slug, kind, size_token(size), fmt),
                    width=tw,
                    height=th,
                    size_bytes=len(blob),
                    format=fmt,
                    data=blob,
                )
            )

    log.info(
        "media_processed",
        entity_slug=entity_slug,
        kind=kind,
        width=width,
        height=height,
        derivatives=len(derivatives),
    )
    return ProcessedImage(
        original=original,
        derivatives=derivatives,
        placeholder_hash=placeholder,
        average_color=avg_color,
        content_hash=content_hash,
        base_key=f"{prefix}{entity_slug}__{kind}",
    )
