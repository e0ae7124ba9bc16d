from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


MediaKind = Literal["cover", "gallery", "promo", "device"]
MediaType = Literal["image", "video"]
DerivativeFormat = Literal["avif", "webp"]

MEDIA_KINDS: tuple[str, ...] = ("cover", "gallery", "promo", "device")

# modern high-compression format first, broadly compatible second
DERIVATIVE_FORMATS: tuple[str, ...] = ("avif", "webp")

ALLOWED_IMAGE_MIMES: tuple[str, ...] = ("image/jpeg", "image/png", "image/webp", "image/avif")
ALLOWED_VIDEO_MIMES: tuple[str, ...] = ("video/mp4", "video/webm")

# denied regardless of any allow-list
BLOCKED_MIMES: frozenset[str] = frozenset(
    {
        "image/svg+xml",
        "text/html",
        "text/javascript",
        "application/javascript",
        "application/x-javascript",
        "application/x-sh",
        "application/x-shellscript",
        "application/x-msdownload",
        "application/x-msdos-program",
        "application/x-executable",
        "application/x-elf",
        "application/x-mach-binary",
        "application/java-archive",
        "application/x-php",
        "application/x-python",
    }
)

MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-png": "image/png",
}

ALLOWED_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "image/jpeg": ("jpg", "jpeg"),
    "image/png": ("png",),
    "image/webp": ("webp",),
    "image/avif": ("avif",),
    "video/mp4": ("mp4",),
    "video/webm": ("webm",),
}

# file extension used in object keys for each source MIME type
MIME_TO_EXT = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/avif": "avif",
}

ALT_TEXT_MAX = 140


@dataclass(frozen=True)
class AspectRule:
    ratio: float
    tolerance: float
    min_width: int
    min_height: int
    label: str

    @property
    def band(self) -> tuple[float, float]:
        return self.ratio * (1 - self.tolerance), self.ratio * (1 + self.tolerance)

    def matches(self, ratio: float) -> bool:
        lo, hi = self.band
        return lo <= ratio <= hi


ASPECT_RULES: dict[str, tuple[AspectRule, ...]] = {
    "cover": (
        AspectRule(0.8, 0.05, 1200, 1500, "4:5"),
        AspectRule(0.75, 0.05, 1200, 1600, "3:4"),
    ),
    "gallery": (
        AspectRule(1.78, 0.05, 1920, 1080, "16:9"),
        AspectRule(1.5, 0.05, 1800, 1200, "3:2"),
    ),
    "promo": (AspectRule(1.78, 0.03, 1920, 1080, "16:9"),),
    "device": (AspectRule(1.0, 0.03, 1200, 1200, "1:1"),),
}


def normalize_mime(mime: str) -> str:
    m = (mime or "").split(";")[0].strip().lower()
    return MIME_ALIASES.get(m, m)


def media_type_for(mime: str) -> MediaType:
    return "video" if normalize_mime(mime).startswith("video/") else "image"
