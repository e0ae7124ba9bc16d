from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from domain.entities import ImageAsset


@dataclass
class BrandColorAnalysis:
    avg_hue: int
    saturation: float
    is_blocked_hue: bool
    deviates_from_brand: bool
    message: str | None = None


@dataclass
class CompleteResult:
    asset: ImageAsset
    content_hash: str
    warnings: List[str] = field(default_factory=list)


@dataclass
class DeleteResult:
    asset_id: str
    deleted_keys: List[str]
