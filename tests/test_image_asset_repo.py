"""Tests for the image asset repository against SQLite."""

import pytest
from sqlalchemy import insert

from domain.errors import AssetPersistenceError
from infra.db.models import Device, PcBuild, PromoCampaign, device_gallery_images, pc_build_gallery_images
from infra.db.repositories.image_asset_repo import ImageAssetRepo


MANIFEST = {
    "original": {"key": "assets/p/s__cover__original.jpg", "width": 1200, "height": 1500, "sizeBytes": 10},
    "sizes": [
        {"key": "assets/p/s__cover__320w.avif", "width": 256, "height": 320, "sizeBytes": 3, "format": "avif"},
        {"key": "assets/p/s__cover__320w.webp", "width": 256, "height": 320, "sizeBytes": 4, "format": "webp"},
    ],
}


async def _create(repo: ImageAssetRepo, alt: str | None = "Front view"):
    return await repo.create(
        bucket="test-bucket",
        key="assets/p/s__cover",
        mime="image/jpeg",
        width=1200,
        height=1500,
        size_bytes=10,
        format="jpg",
        blurhash="L00000fQfQfQfQfQfQfQfQfQfQfQ",
        avg_color="#9632dc",
        alt=alt,
        content_hash="abcd1234",
        derivatives=MANIFEST,
    )


async def test_create_and_get(session) -> None:
    repo = ImageAssetRepo(session)
    asset = await _create(repo)

    fetched = await repo.get(asset.id)
    assert fetched is not None
    assert fetched.key == "assets/p/s__cover"
    assert fetched.alt_text == "Front view"
    assert fetched.derivatives == MANIFEST
    assert fetched.stored_keys() == [
        "assets/p/s__cover__original.jpg",
        "assets/p/s__cover__320w.avif",
        "assets/p/s__cover__320w.webp",
    ]


async def test_get_unknown_returns_none(session) -> None:
    assert await ImageAssetRepo(session).get("0" * 32) is None


async def test_usage_counts_every_relation(session) -> None:
    repo = ImageAssetRepo(session)
    asset = await _create(repo)
    unused = await _create(repo, alt=None)

    await session.execute(insert(PcBuild).values(id=1, slug="pc-1", cover_image_id=asset.id))
    await session.execute(insert(Device).values(id=1, slug="mouse", cover_image_id=None))
    await session.execute(insert(pc_build_gallery_images).values(pc_build_id=1, image_id=asset.id))
    await session.execute(insert(device_gallery_images).values(device_id=1, image_id=asset.id))
    await session.execute(insert(PromoCampaign).values(id=1, slug="sale", image_id=asset.id))
    await session.commit()

    assert await repo.usage_counts(asset.id) == {
        "pcBuildsCover": 1,
        "pcBuildsGallery": 1,
        "devicesCover": 0,
        "devicesGallery": 1,
        "promoCampaigns": 1,
    }
    assert sum((await repo.usage_counts(unused.id)).values()) == 0


async def test_delete(session) -> None:
    repo = ImageAssetRepo(session)
    asset = await _create(repo)

    assert await repo.delete(asset.id) is True
    assert await repo.get(asset.id) is None
    assert await repo.delete(asset.id) is False


async def test_list_recent_limits(session) -> None:
    repo = ImageAssetRepo(session)
    for _ in range(3):
        await _create(repo)
    assert len(await repo.list_recent(limit=2)) == 2


async def test_create_raises_when_row_cannot_be_read_back(session, monkeypatch) -> None:
    repo = ImageAssetRepo(session)

    async def _missing(asset_id: str):
        return None

    monkeypatch.setattr(repo, "get", _missing)
    with pytest.raises(AssetPersistenceError):
        await _create(repo)
