from __future__ import annotations

import io
import struct
import threading
import zlib
from datetime import datetime, timezone
from typing import Iterator

import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.config import Settings
from domain.errors import ObjectNotFoundError, StorageUnavailableError
from infra.db.models import Base
from infra.storage.object_storage import ObjectInfo, StoredObject


VIOLET = (150, 50, 220)
YELLOW = (255, 220, 0)


def make_image_bytes(
    size: tuple[int, int],
    color: tuple[int, int, int] = VIOLET,
    fmt: str = "JPEG",
    exif_orientation: int | None = None,
) -> bytes:
    im = Image.new("RGB", size, color)
    # a dark corner block so orientation changes are visible in pixel order
    im.paste((0, 0, 0), (0, 0, max(1, size[0] // 4), max(1, size[1] // 4)))
    kwargs = {}
    if exif_orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = exif_orientation
        kwargs["exif"] = exif
    buf = io.BytesIO()
    im.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def make_png_with_header_size(width: int, height: int) -> bytes:
    """A valid 1x1 PNG whose IHDR claims `width` x `height`."""
    data = make_image_bytes((1, 1), fmt="PNG")
    # signature(8) + length(4) + b"IHDR"(4), then 13 bytes of header data and its crc
    header = bytearray(data[16:29])
    header[0:8] = struct.pack(">II", width, height)
    crc = struct.pack(">I", zlib.crc32(b"IHDR" + bytes(header)) & 0xFFFFFFFF)
    return data[:16] + bytes(header) + crc + data[33:]


class InMemoryStorage:
    """Object storage double; `fail_put`/`fail_delete` hold key substrings that raise."""

    def __init__(self) -> None:
        self.objects: dict[str, StoredObject] = {}
        self.fail_put: set[str] = set()
        self.fail_delete: set[str] = set()
        self.put_calls: list[str] = []
        self._lock = threading.Lock()

    @property
    def bucket_name(self) -> str:
        return "test-bucket"

    def put_bytes(self, object_key: str, data: bytes, content_type: str, cache_control: str | None = None) -> str:
        with self._lock:
            self.put_calls.append(object_key)
        if any(s in object_key for s in self.fail_put):
            raise StorageUnavailableError(f"injected put failure for {object_key}")
        with self._lock:
            self.objects[object_key] = StoredObject(key=object_key, data=data, content_type=content_type)
        return object_key

    def get_object(self, object_key: str) -> StoredObject:
        obj = self.objects.get(object_key)
        if obj is None:
            raise ObjectNotFoundError(object_key)
        return obj

    def delete(self, object_key: str) -> None:
        if any(s in object_key for s in self.fail_delete):
            raise StorageUnavailableError(f"injected delete failure for {object_key}")
        with self._lock:
            self.objects.pop(object_key, None)

    def list_objects(self, prefix: str) -> Iterator[ObjectInfo]:
        now = datetime.now(timezone.utc)
        for key, obj in list(self.objects.items()):
            if key.startswith(prefix):
                yield ObjectInfo(key=key, size=len(obj.data), last_modified=now)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(o.key for o in self.list_objects(prefix))

    def presign_put(self, object_key: str, content_type: str, expires_in: int) -> str:
        return f"https://storage.test/{object_key}?ct={content_type}&ttl={expires_in}"


class InMemoryLocks:
    def __init__(self) -> None:
        self.held: set[str] = set()

    async def acquire(self, upload_id: str) -> bool:
        if upload_id in self.held:
            return False
        self.held.add(upload_id)
        return True

    async def release(self, upload_id: str) -> None:
        self.held.discard(upload_id)


@pytest.fixture
def cfg() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        api_base_url="http://testserver",
        cdn_base_url="https://cdn.test",
        upload_signing_secret="test-secret",
        derivative_sizes=[320, 640],
        complete_timeout_sec=30.0,
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def locks() -> InMemoryLocks:
    return InMemoryLocks()


@pytest.fixture
async def session():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as s:
        yield s
    await engine.dispose()
