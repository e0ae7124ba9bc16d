from __future__ import annotations

import io
import re
from typing import List

import filetype
from PIL import Image as PILImage, UnidentifiedImageError

from core.config import Settings, settings as default_settings
from domain.errors import FieldError, MediaValidationError
from domain.media_rules import (
    ALLOWED_EXTENSIONS,
    ALLOWED_IMAGE_MIMES,
    ALLOWED_VIDEO_MIMES,
    ALT_TEXT_MAX,
    ASPECT_RULES,
    BLOCKED_MIMES,
    MEDIA_KINDS,
    media_type_for,
    normalize_mime,
)


_MB = 1024 * 1024
# EN + RU letters, digits, basic punctuation
_ALT_TEXT_RE = re.compile(r"^[a-zA-Zа-яА-ЯёЁ0-9\s.,!?;:()\-—–'\"«»]+$")
# EXIF orientations that swap the axes once baked in
_TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}
_EXIF_ORIENTATION = 0x0112


def check_upload(declared_size: int, declared_mime: str, kind: str, cfg: Settings | None = None) -> tuple[List[FieldError], List[str]]:
    cfg = cfg or default_settings
    errors: List[FieldError] = []
    warnings: List[str] = []
    mime = normalize_mime(declared_mime)
    media_type = media_type_for(mime)

    if kind not in MEDIA_KINDS:
        errors.append(FieldError("kind", f"Unknown media kind {kind!r}. Allowed: {', '.join(MEDIA_KINDS)}", "INVALID_KIND"))

    if mime in BLOCKED_MIMES:
        errors.append(FieldError("contentType", f"File type {mime} is blocked for security reasons", "BLOCKED_MIME_TYPE"))
    else:
        allowed = ALLOWED_IMAGE_MIMES if media_type == "image" else ALLOWED_VIDEO_MIMES
        if mime not in allowed:
            errors.append(
                FieldError(
                    "contentType",
                    f"File type {mime or '<empty>'} is not supported. Allowed: {', '.join(allowed)}",
                    "UNSUPPORTED_MIME_TYPE",
                )
            )

    if declared_size <= 0:
        errors.append(FieldError("sizeBytes", "File size must be positive", "INVALID_SIZE"))
    else:
        limit = cfg.image_max_bytes if media_type == "image" else cfg.video_max_bytes
        if declared_size > limit:
            errors.append(
                FieldError(
                    "file",
                    f"File size {declared_size / _MB:.2f}MB exceeds maximum {limit / _MB:g}MB for {media_type}s",
                    "FILE_TOO_LARGE",
                )
            )
        elif media_type == "image" and declared_size > cfg.image_preferred_bytes:
            warnings.append(
                f"File size {declared_size / _MB:.2f}MB exceeds preferred limit "
                f"{cfg.image_preferred_bytes / _MB:g}MB. Consider optimizing the image."
            )
    return errors, warnings


def validate_upload(declared_size: int, declared_mime: str, kind: str, cfg: Settings | None = None) -> List[str]:
    """Raise MediaValidationError on size/MIME/kind problems; return non-fatal warnings."""
    errors, warnings = check_upload(declared_size, declared_mime, kind, cfg)
    if errors:
        raise MediaValidationError(errors)
    return warnings


def validate_filename(filename: str, declared_mime: str) -> None:
    name = (filename or "").strip()
    if not name or len(name) > 255:
        raise MediaValidationError([FieldError("filename", "Filename must be 1-255 characters", "INVALID_FILENAME")])
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    allowed = ALLOWED_EXTENSIONS.get(normalize_mime(declared_mime), ())
    if ext not in allowed:
        raise MediaValidationError(
            [FieldError("filename", f"Extension .{ext or '?'} does not match {declared_mime}", "UNSUPPORTED_EXTENSION")]
        )


def detect_mime(buffer: bytes) -> str | None:
    kind = filetype.guess(buffer[:8192])
    return normalize_mime(kind.mime) if kind else None


def verify_magic_bytes(buffer: bytes, declared_mime: str) -> bool:
    detected = detect_mime(buffer)
    if not detected:
        return False
    return detected == normalize_mime(declared_mime)


def read_dimensions(buffer: bytes) -> tuple[int, int] | None:
    """Width/height from the header only, as displayed after EXIF orientation."""
    try:
        with PILImage.open(io.BytesIO(buffer)) as im:
            w, h = im.size
            orientation = im.getexif().get(_EXIF_ORIENTATION)
    except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError, ValueError, SyntaxError):
        return None
    if not w or not h:
        return None
    if orientation in _TRANSPOSED_ORIENTATIONS:
        return h, w
    return w, h


def check_aspect_ratio(width: int, height: int, kind: str) -> List[FieldError]:
    rules = ASPECT_RULES.get(kind)
    if not rules:
        return [FieldError("kind", f"Unknown media kind {kind!r}", "INVALID_KIND")]
    ratio = width / height
    for rule in rules:
        if not rule.matches(ratio):
            continue
        if width < rule.min_width or height < rule.min_height:
            return [
                FieldError(
                    "dimensions",
                    f"Image dimensions {width}x{height} are below minimum "
                    f"{rule.min_width}x{rule.min_height} for {kind} ({rule.label})",
                    "DIMENSIONS_TOO_SMALL",
                )
            ]
        return []
    bands = " or ".join(f"{r.label} ({r.band[0]:.2f}-{r.band[1]:.2f})" for r in rules)
    errors = [
        FieldError(
            "dimensions",
            f"Image aspect ratio {ratio:.2f} doesn't match required {bands} for {kind}",
            "INVALID_ASPECT_RATIO",
        )
    ]
    # no band matched, so hold the image to the most lenient minimum of the kind
    min_width = min(r.min_width for r in rules)
    min_height = min(r.min_height for r in rules)
    if width < min_width or height < min_height:
        errors.append(
            FieldError(
                "dimensions",
                f"Image dimensions {width}x{height} are below minimum {min_width}x{min_height} for {kind}",
                "DIMENSIONS_TOO_SMALL",
            )
        )
    return errors


def validate_dimensions_and_aspect(buffer: bytes, kind: str) -> tuple[int, int]:
    dims = read_dimensions(buffer)
    if dims is None:
        raise MediaValidationError(
            [FieldError("image", "Unable to read image dimensions or image exceeds the pixel limit", "INVALID_IMAGE")]
        )
    errors = check_aspect_ratio(dims[0], dims[1], kind)
    if errors:
        raise MediaValidationError(errors)
    return dims


def check_alt_text(text: str | None) -> List[FieldError]:
    if text is None:
        return []
    errors: List[FieldError] = []
    if not text.strip():
        errors.append(FieldError("alt", "Alt text must not be empty", "ALT_EMPTY"))
        return errors
    if len(text) > ALT_TEXT_MAX:
        errors.append(
            FieldError("alt", f"Alt text must be {ALT_TEXT_MAX} characters or less (current: {len(text)})", "ALT_TOO_LONG")
        )
    if not _ALT_TEXT_RE.match(text):
        errors.append(
            FieldError(
                "alt",
                "Alt text contains invalid characters. Use English/Russian letters, numbers, and basic punctuation only.",
                "ALT_INVALID_CHARS",
            )
        )
    return errors


def validate_alt_text(text: str | None) -> None:
    errors = check_alt_text(text)
    if errors:
        raise MediaValidationError(errors)
