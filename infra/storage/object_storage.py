from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator
from urllib.parse import quote, urlencode

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from core.config import Settings, settings as default_settings
from domain.errors import ObjectNotFoundError, StorageUnavailableError


log = structlog.get_logger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_META_SUFFIX = ".meta.json"

CACHE_ORIGINAL = "public, max-age=604800"
CACHE_IMMUTABLE = "public, max-age=31536000, immutable"


@dataclass
class StoredObject:
    key: str
    data: bytes
    content_type: str | None


@dataclass
class ObjectInfo:
    key: str
    size: int
    last_modified: datetime


class S3ObjectStorage:
    """S3 / R2 / MinIO bucket behind boto3."""

    def __init__(self, cfg: Settings | None = None, client=None) -> None:
        cfg = cfg or default_settings
        self._bucket = cfg.s3_bucket or ""
        self._s3 = client or boto3.client(
            "s3",
            endpoint_url=cfg.s3_endpoint_url,
            region_name=cfg.s3_region,
            aws_access_key_id=cfg.s3_access_key_id,
            aws_secret_access_key=cfg.s3_secret_access_key,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path" if cfg.s3_endpoint_url else "auto"},
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        )

    @property
    def bucket_name(self) -> str:
        return self._bucket

    def put_bytes(self, object_key: str, data: bytes, content_type: str, cache_control: str | None = None) -> str:
        params = {"Bucket": self._bucket, "Key": object_key, "Body": data, "ContentType": content_type}
        if cache_control:
            params["CacheControl"] = cache_control
        try:
            self._s3.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"S3 upload failed for {object_key}: {e}") from e
        return object_key

    def get_object(self, object_key: str) -> StoredObject:
        try:
            resp = self._s3.get_object(Bucket=self._bucket, Key=object_key)
            body = resp["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(object_key) from e
            raise StorageUnavailableError(f"S3 download failed for {object_key}: {e}") from e
        except BotoCoreError as e:
            raise StorageUnavailableError(f"S3 download failed for {object_key}: {e}") from e
        return StoredObject(key=object_key, data=body, content_type=resp.get("ContentType"))

    def delete(self, object_key: str) -> None:
        # S3 treats deleting a missing key as success
        try:
            self._s3.delete_object(Bucket=self._bucket, Key=object_key)
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"S3 delete failed for {object_key}: {e}") from e

    def list_objects(self, prefix: str) -> Iterator[ObjectInfo]:
        try:
            paginator = self._s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    yield ObjectInfo(key=item["Key"], size=int(item.get("Size", 0)), last_modified=item["LastModified"])
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"S3 list failed for {prefix}: {e}") from e

    def presign_put(self, object_key: str, content_type: str, expires_in: int) -> str:
        try:
            return self._s3.generate_presigned_url(
                "put_object",
                Params={"Bucket": self._bucket, "Key": object_key, "ContentType": content_type},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageUnavailableError(f"S3 presign failed for {object_key}: {e}") from e


class LocalObjectStorage:
    """Directory-backed storage for development; uploads go through the API's signed PUT route."""

    def __init__(self, cfg: Settings | None = None, base_dir: str | None = None) -> None:
        cfg = cfg or default_settings
        self.base_dir = os.path.abspath(base_dir or os.path.join(os.getcwd(), cfg.local_storage_dir))
        os.makedirs(self.base_dir, exist_ok=True)
        self._secret = cfg.upload_signing_secret.encode("utf-8")
        self._api_base = cfg.api_base_url.rstrip("/")

    @property
    def bucket_name(self) -> str:
        return "local"

    def _path(self, object_key: str) -> str:
        if not object_key or object_key.startswith("/") or ".." in object_key.split("/"):
            raise ValueError(f"Illegal object key: {object_key!r}")
        return os.path.join(self.base_dir, object_key)

    def put_bytes(self, object_key: str, data: bytes, content_type: str, cache_control: str | None = None) -> str:
        path = self._path(object_key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
            with open(path + _META_SUFFIX, "w", encoding="utf-8") as f:
                json.dump({"content_type": content_type, "cache_control": cache_control}, f)
        except OSError as e:
            raise StorageUnavailableError(f"Local write failed for {object_key}: {e}") from e
        return object_key

    def get_object(self, object_key: str) -> StoredObject:
        path = self._path(object_key)
        try:
            with open(path, "rb") as f:
                data = f.read()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(object_key) from e
        except OSError as e:
            raise StorageUnavailableError(f"Local read failed for {object_key}: {e}") from e
        content_type = None
        try:
            with open(path + _META_SUFFIX, encoding="utf-8") as f:
                content_type = json.load(f).get("content_type")
        except FileNotFoundError:
            pass
        return StoredObject(key=object_key, data=data, content_type=content_type)

    def delete(self, object_key: str) -> None:
        path = self._path(object_key)
        for p in (path, path + _META_SUFFIX):
            try:
                os.remove(p)
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageUnavailableError(f"Local delete failed for {object_key}: {e}") from e

    def list_objects(self, prefix: str) -> Iterator[ObjectInfo]:
        for root, _dirs, files in os.walk(self.base_dir):
            for name in files:
                if name.endswith(_META_SUFFIX):
                    continue
                path = os.path.join(root, name)
                key = os.path.relpath(path, self.base_dir).replace(os.sep, "/")
                if not key.startswith(prefix):
                    continue
                st = os.stat(path)
                yield ObjectInfo(
                    key=key,
                    size=st.st_size,
                    last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                )

    def _signature(self, object_key: str, content_type: str, expires: int) -> str:
        msg = f"{object_key}\n{content_type}\n{expires}".encode("utf-8")
        return hmac.new(self._secret, msg, hashlib.sha256).hexdigest()

    def presign_put(self, object_key: str, content_type: str, expires_in: int) -> str:
        expires = int(time.time()) + expires_in
        query = urlencode({"expires": expires, "sig": self._signature(object_key, content_type, expires)})
        return f"{self._api_base}/api/media/uploads/{quote(object_key)}?{query}"

    def verify_signature(self, object_key: str, content_type: str, expires: int, sig: str) -> bool:
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self._signature(object_key, content_type, expires), sig)


ObjectStorage = S3ObjectStorage | LocalObjectStorage


def create_object_storage(cfg: Settings | None = None) -> ObjectStorage:
    cfg = cfg or default_settings
    if cfg.use_s3:
        log.info("object_storage", backend="s3", bucket=cfg.s3_bucket, endpoint=cfg.s3_endpoint_url)
        return S3ObjectStorage(cfg)
    log.info("object_storage", backend="local", base_dir=cfg.local_storage_dir)
    return LocalObjectStorage(cfg)
