from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SignUploadRequest(_CamelModel):
    filename: str = Field(..., min_length=1, max_length=255, examples=["rtx-4090-cover.jpg"])
    content_type: str = Field(..., alias="contentType", min_length=1, examples=["image/jpeg"])
    size_bytes: int = Field(..., alias="sizeBytes", gt=0, examples=[2_500_000])
    kind: Literal["cover", "gallery", "promo", "device"] = Field(..., examples=["gallery"])
    entity_slug: str = Field(..., alias="entitySlug", min_length=1, max_length=100, examples=["gaming-pc-pro"])


class SignUploadResponse(_CamelModel):
    upload_id: str = Field(..., alias="uploadId")
    upload_url: str = Field(..., alias="uploadUrl")
    key: str
    expires_in: int = Field(..., alias="expiresIn")


class CompleteUploadRequest(_CamelModel):
    upload_id: str = Field(..., alias="uploadId", min_length=1)
    alt: str | None = None


class ImageAssetOut(_CamelModel):
    id: str
    bucket: str
    key: str = Field(..., description="Base key prefix of the asset; not a fetchable object")
    mime: str
    width: int
    height: int
    bytes: int
    format: str
    blurhash: str
    avg_color: str = Field(..., alias="avgColor")
    alt: str | None = None
    content_hash: str = Field(..., alias="contentHash")
    derivatives: dict[str, Any] = Field(
        ...,
        description=(
            "Stored manifest {original, sizes}. Delivery must use these keys as stored; "
            "they carry a per-asset prefix and cannot be rebuilt from entity slug and kind."
        ),
    )
    cdn_url: str = Field(..., alias="cdnUrl")
    srcset: dict[str, str] = Field(default_factory=dict)


class CompleteUploadResponse(_CamelModel):
    image_asset: ImageAssetOut = Field(..., alias="imageAsset")
    warnings: list[str] | None = None


class DeleteAssetRequest(_CamelModel):
    asset_id: str = Field(..., alias="assetId", min_length=1)
    type: Literal["image", "video"] = "image"


class DeleteAssetResponse(_CamelModel):
    success: bool = True
    deleted_keys: list[str] = Field(..., alias="deletedKeys")


class AssetListResponse(_CamelModel):
    items: list[ImageAssetOut]
