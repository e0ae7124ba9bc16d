from __future__ import annotations

import hashlib
import re
import uuid
from dataclasses import dataclass
from typing import Iterable

from domain.errors import InvalidUploadIdError
from domain.media_rules import MEDIA_KINDS


UPLOAD_NAMESPACE = "upload"
ASSET_NAMESPACE = "assets"
UPLOAD_EXT = "upload"

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_TOKEN_RE = re.compile(r"^[0-9a-f]{32}$")


@dataclass(frozen=True)
class UploadRef:
    upload_id: str
    entity_slug: str
    kind: str
    token: str

    @property
    def temp_key(self) -> str:
        return f"{UPLOAD_NAMESPACE}/{self.upload_id}.{UPLOAD_EXT}"


def slugify(name: str) -> str:
    s = name.lower().strip()
    s = re.sub(r"[^\w\s-]", "", s)
    s = re.sub(r"[\s_-]+", "-", s)
    return s.strip("-")


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and len(slug) <= 100 and bool(SLUG_RE.match(slug))


def build_key(entity_slug: str, kind: str, size_token: str, ext: str) -> str:
    """`{entitySlug}__{kind}__{sizeToken}.{ext}`; sizeToken is `original` or `{N}w`."""
    return f"{entity_slug}__{kind}__{size_token}.{ext}"


def size_token(size: int | None) -> str:
    return "original" if size is None else f"{size}w"


def new_asset_prefix() -> str:
    return f"{ASSET_NAMESPACE}/{uuid.uuid4().hex[:16]}/"


def new_upload_ref(entity_slug: str, kind: str) -> UploadRef:
    token = uuid.uuid4().hex
    return UploadRef(
        upload_id=f"{entity_slug}__{kind}__{token}",
        entity_slug=entity_slug,
        kind=kind,
        token=token,
    )


def parse_upload_id(upload_id: str) -> UploadRef:
    """Accepts the bare upload id or the full temp key."""
    raw = upload_id or ""
    if raw.startswith(f"{UPLOAD_NAMESPACE}/"):
        raw = raw[len(UPLOAD_NAMESPACE) + 1 :]
    if raw.endswith(f".{UPLOAD_EXT}"):
        raw = raw[: -len(UPLOAD_EXT) - 1]
    parts = raw.split("__")
    if len(parts) != 3:
        raise InvalidUploadIdError(f"Malformed upload id: {upload_id!r}")
    slug, kind, token = parts
    if not is_valid_slug(slug) or kind not in MEDIA_KINDS or not _TOKEN_RE.match(token):
        raise InvalidUploadIdError(f"Malformed upload id: {upload_id!r}")
    return UploadRef(upload_id=raw, entity_slug=slug, kind=kind, token=token)


def compute_content_hash(data: bytes) -> str:
    # cache-busting only, never used for deduplication
    return hashlib.sha256(data).hexdigest()[:8]


def build_cdn_url(base_url: str, key: str, content_hash: str | None = None) -> str:
    url = f"{base_url.rstrip('/')}/{key}"
    if content_hash:
        return f"{url}?v={content_hash}"
    return url


def build_srcset(base_url: str, sizes: Iterable[dict], content_hash: str | None = None) -> dict[str, str]:
    """Per-format `srcset` strings from the stored `sizes` manifest."""
    out: dict[str, list[str]] = {}
    for s in sizes:
        url = build_cdn_url(base_url, s["key"], content_hash)
        out.setdefault(s["format"], []).append(f"{url} {s['width']}w")
    return {fmt: ", ".join(parts) for fmt, parts in out.items()}
