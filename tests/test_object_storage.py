"""Tests for the local-directory and S3 storage adapters."""

from urllib.parse import parse_qs, urlparse

import boto3
import pytest
from botocore.stub import Stubber

from core.config import Settings
from domain.errors import ObjectNotFoundError, StorageUnavailableError
from infra.storage.object_storage import LocalObjectStorage, S3ObjectStorage, create_object_storage


@pytest.fixture
def local(cfg: Settings, tmp_path) -> LocalObjectStorage:
    return LocalObjectStorage(cfg, base_dir=str(tmp_path))


def test_local_put_get_keeps_content_type(local: LocalObjectStorage) -> None:
    local.put_bytes("assets/p/a.webp", b"data", "image/webp")
    obj = local.get_object("assets/p/a.webp")

    assert obj.data == b"data"
    assert obj.content_type == "image/webp"


def test_local_missing_object_raises(local: LocalObjectStorage) -> None:
    with pytest.raises(ObjectNotFoundError):
        local.get_object("upload/missing.upload")


def test_local_delete_is_idempotent(local: LocalObjectStorage) -> None:
    local.put_bytes("upload/x.upload", b"1", "image/png")
    local.delete("upload/x.upload")
    local.delete("upload/x.upload")
    assert list(local.list_objects("")) == []


def test_local_list_filters_by_prefix_and_hides_sidecars(local: LocalObjectStorage) -> None:
    local.put_bytes("upload/a.upload", b"1", "image/png")
    local.put_bytes("assets/p/b.avif", b"22", "image/avif")

    listed = {o.key: o.size for o in local.list_objects("assets/")}
    assert listed == {"assets/p/b.avif": 2}


def test_local_rejects_path_traversal(local: LocalObjectStorage) -> None:
    with pytest.raises(ValueError):
        local.put_bytes("../escape", b"x", "image/png")


def test_local_presigned_url_verifies(local: LocalObjectStorage) -> None:
    url = local.presign_put("upload/s__cover__t.upload", "image/jpeg", 600)
    parsed = urlparse(url)
    q = parse_qs(parsed.query)
    expires, sig = int(q["expires"][0]), q["sig"][0]

    assert parsed.path == "/api/media/uploads/upload/s__cover__t.upload"
    assert local.verify_signature("upload/s__cover__t.upload", "image/jpeg", expires, sig)
    assert not local.verify_signature("upload/s__cover__t.upload", "image/png", expires, sig)
    assert not local.verify_signature("upload/s__cover__t.upload", "image/jpeg", expires - 10_000, sig)


@pytest.fixture
def s3(cfg: Settings):
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )
    storage = S3ObjectStorage(cfg.model_copy(update={"s3_bucket": "media"}), client=client)
    with Stubber(client) as stubber:
        yield storage, stubber


def test_s3_missing_key_maps_to_not_found(s3) -> None:
    storage, stubber = s3
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
    with pytest.raises(ObjectNotFoundError):
        storage.get_object("upload/x.upload")


def test_s3_put_failure_is_storage_unavailable(s3) -> None:
    storage, stubber = s3
    stubber.add_client_error("put_object", service_error_code="SlowDown", http_status_code=503)
    with pytest.raises(StorageUnavailableError):
        storage.put_bytes("assets/p/a.avif", b"x", "image/avif")


def test_s3_put_sends_cache_headers(s3) -> None:
    storage, stubber = s3
    stubber.add_response(
        "put_object",
        {},
        {
            "Bucket": "media",
            "Key": "assets/p/a.avif",
            "Body": b"x",
            "ContentType": "image/avif",
            "CacheControl": "public, max-age=31536000, immutable",
        },
    )
    storage.put_bytes("assets/p/a.avif", b"x", "image/avif", "public, max-age=31536000, immutable")
    stubber.assert_no_pending_responses()


def test_s3_presign_binds_content_type(s3) -> None:
    storage, _ = s3
    url = storage.presign_put("upload/x.upload", "image/png", 600)
    assert "upload/x.upload" in url
    assert "X-Amz-Signature" in url or "Signature" in url


def test_factory_picks_backend(cfg: Settings, tmp_path) -> None:
    local_cfg = cfg.model_copy(update={"local_storage_dir": str(tmp_path)})
    assert isinstance(create_object_storage(local_cfg), LocalObjectStorage)

    s3_cfg = cfg.model_copy(
        update={"s3_bucket": "media", "s3_access_key_id": "k", "s3_secret_access_key": "s", "s3_region": "us-east-1"}
    )
    assert isinstance(create_object_storage(s3_cfg), S3ObjectStorage)
