from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List


@dataclass
class UploadSlot:
    upload_id: str
    temp_key: str
    upload_url: str
    declared_content_type: str
    declared_size: int
    kind: str
    entity_slug: str
    expires_at: datetime
    expires_in: int


@dataclass
class OriginalImage:
    key: str
    width: int
    height: int
    size_bytes: int
    format: str
    content_type: str
    data: bytes = field(default=b"", repr=False, compare=False)

    def manifest(self) -> dict[str, Any]:
        return {"key": self.key, "width": self.width, "height": self.height, "sizeBytes": self.size_bytes}


@dataclass
class Derivative:
    key: str
    width: int
    height: int
    size_bytes: int
    format: str
    data: bytes = field(default=b"", repr=False, compare=False)

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"

    def manifest(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "width": self.width,
            "height": self.height,
            "sizeBytes": self.size_bytes,
            "format": self.format,
        }


@dataclass
class ProcessedImage:
    original: OriginalImage
    derivatives: List[Derivative]
    placeholder_hash: str
    average_color: str
    content_hash: str
    base_key: str

    def manifest(self) -> dict[str, Any]:
        return {
            "original": self.original.manifest(),
            "sizes": [d.manifest() for d in self.derivatives],
        }

    def all_keys(self) -> list[str]:
        return [self.original.key, *[d.key for d in self.derivatives]]


@dataclass
class ImageAsset:
    id: str
    bucket: str
    key: str
    mime: str
    width: int
    height: int
    bytes: int
    format: str
    placeholder_hash: str
    average_color: str
    alt_text: str | None
    content_hash: str
    derivatives: dict[str, Any]
    created_at: datetime | None = None

    def stored_keys(self) -> list[str]:
        manifest = self.derivatives or {}
        keys: list[str] = []
        original = manifest.get("original") or {}
        if original.get("key"):
            keys.append(original["key"])
        keys.extend(s["key"] for s in manifest.get("sizes") or [] if s.get("key"))
        return keys
