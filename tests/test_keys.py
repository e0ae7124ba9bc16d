"""Tests for object key layout, upload ids and delivery URLs."""

import pytest

from domain.errors import InvalidUploadIdError
from services.media.keys import (
    build_cdn_url,
    build_key,
    build_srcset,
    compute_content_hash,
    is_valid_slug,
    new_asset_prefix,
    new_upload_ref,
    parse_upload_id,
    size_token,
    slugify,
)


def test_build_key_layout() -> None:
    assert build_key("gaming-pc-pro", "gallery", size_token(None), "jpg") == "gaming-pc-pro__gallery__original.jpg"
    assert build_key("gaming-pc-pro", "gallery", size_token(640), "avif") == "gaming-pc-pro__gallery__640w.avif"


def test_upload_ref_round_trips_through_parse() -> None:
    ref = new_upload_ref("rtx-4090", "cover")

    assert ref.temp_key == f"upload/{ref.upload_id}.upload"
    assert parse_upload_id(ref.upload_id) == ref
    assert parse_upload_id(ref.temp_key) == ref


def test_upload_ids_are_unique() -> None:
    assert new_upload_ref("a", "cover").upload_id != new_upload_ref("a", "cover").upload_id


@pytest.mark.parametrize(
    "upload_id",
    [
        "",
        "no-separators",
        "slug__cover",
        "slug__poster__" + "a" * 32,
        "Bad_Slug__cover__" + "a" * 32,
        "slug__cover__xyz",
        "slug__cover__" + "a" * 32 + "__extra",
    ],
)
def test_parse_upload_id_rejects_malformed(upload_id: str) -> None:
    with pytest.raises(InvalidUploadIdError):
        parse_upload_id(upload_id)


def test_slug_rules() -> None:
    assert slugify("  Gaming PC Pro_2024! ") == "gaming-pc-pro-2024"
    assert is_valid_slug("gaming-pc-pro")
    assert not is_valid_slug("gaming--pc")
    assert not is_valid_slug("Gaming")
    assert not is_valid_slug("x" * 101)


def test_asset_prefix_is_per_asset() -> None:
    first, second = new_asset_prefix(), new_asset_prefix()
    assert first.startswith("assets/") and first.endswith("/")
    assert first != second


def test_content_hash_is_short_and_stable() -> None:
    h = compute_content_hash(b"pixels")
    assert len(h) == 8
    assert h == compute_content_hash(b"pixels")
    assert h != compute_content_hash(b"pixels!")


def test_cdn_url_appends_version() -> None:
    assert build_cdn_url("https://cdn.test/", "assets/x/a.avif", "abcd1234") == "https://cdn.test/assets/x/a.avif?v=abcd1234"
    assert build_cdn_url("https://cdn.test", "a.avif") == "https://cdn.test/a.avif"


def test_srcset_groups_by_format() -> None:
    sizes = [
        {"key": "p/s__gallery__320w.avif", "width": 320, "height": 213, "format": "avif"},
        {"key": "p/s__gallery__320w.webp", "width": 320, "height": 213, "format": "webp"},
        {"key": "p/s__gallery__640w.avif", "width": 640, "height": 427, "format": "avif"},
    ]
    srcset = build_srcset("https://cdn.test", sizes, "h")

    assert srcset["avif"] == (
        "https://cdn.test/p/s__gallery__320w.avif?v=h 320w, https://cdn.test/p/s__gallery__640w.avif?v=h 640w"
    )
    assert srcset["webp"] == "https://cdn.test/p/s__gallery__320w.webp?v=h 320w"
