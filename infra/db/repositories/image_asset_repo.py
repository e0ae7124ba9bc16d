from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities import ImageAsset
from domain.errors import AssetPersistenceError
from infra.db.models import (
    Device,
    ImageAsset as ImageAssetRow,
    PcBuild,
    PromoCampaign,
    device_gallery_images,
    pc_build_gallery_images,
)


# relation name -> column holding the image id
USAGE_RELATIONS = {
    "pcBuildsCover": PcBuild.__table__.c.cover_image_id,
    "pcBuildsGallery": pc_build_gallery_images.c.image_id,
    "devicesCover": Device.__table__.c.cover_image_id,
    "devicesGallery": device_gallery_images.c.image_id,
    "promoCampaigns": PromoCampaign.__table__.c.image_id,
}


def _to_entity(row: ImageAssetRow) -> ImageAsset:
    return ImageAsset(
        id=row.id,
        bucket=row.bucket,
        key=row.key,
        mime=row.mime,
        width=row.width,
        height=row.height,
        bytes=row.bytes,
        format=row.format,
        placeholder_hash=row.blurhash,
        average_color=row.avg_color,
        alt_text=row.alt,
        content_hash=row.content_hash,
        derivatives=row.derivatives,
        created_at=row.created_at,
    )


class ImageAssetRepo:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        bucket: str,
        key: str,
        mime: str,
        width: int,
        height: int,
        size_bytes: int,
        format: str,
        blurhash: str,
        avg_color: str,
        alt: str | None,
        content_hash: str,
        derivatives: dict[str, Any],
    ) -> ImageAsset:
        asset_id = uuid.uuid4().hex
        await self.session.execute(
            insert(ImageAssetRow).values(
                id=asset_id,
                bucket=bucket,
                key=key,
                mime=mime,
                width=width,
                height=height,
                bytes=size_bytes,
                format=format,
                blurhash=blurhash,
                avg_color=avg_color,
                alt=alt,
                content_hash=content_hash,
                derivatives=derivatives,
            )
        )
        await self.session.commit()
        created = await self.get(asset_id)
        if created is None:
            raise AssetPersistenceError(f"Asset {asset_id} not readable after insert")
        return created

    async def get(self, asset_id: str) -> ImageAsset | None:
        res = await self.session.execute(select(ImageAssetRow).where(ImageAssetRow.id == asset_id))
        row = res.scalars().first()
        return _to_entity(row) if row else None

    async def list_recent(self, *, limit: int = 50) -> list[ImageAsset]:
        res = await self.session.execute(
            select(ImageAssetRow).order_by(ImageAssetRow.created_at.desc(), ImageAssetRow.id).limit(limit)
        )
        return [_to_entity(r) for r in res.scalars().all()]

    async def usage_counts(self, asset_id: str) -> dict[str, int]:
        usage: dict[str, int] = {}
        for name, col in USAGE_RELATIONS.items():
            res = await self.session.execute(select(func.count()).select_from(col.table).where(col == asset_id))
            usage[name] = int(res.scalar_one())
        return usage

    async def delete(self, asset_id: str) -> bool:
        res = await self.session.execute(delete(ImageAssetRow).where(ImageAssetRow.id == asset_id))
        await self.session.commit()
        return bool(res.rowcount)
