from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


metadata_obj = MetaData(naming_convention=NAMING_CONVENTION)

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    metadata = metadata_obj


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ImageAsset(Base, TimestampMixin):
    __tablename__ = "image_assets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    bucket: Mapped[str] = mapped_column(String(128))
    key: Mapped[str] = mapped_column(String(512))  # base key, without size/format suffix
    mime: Mapped[str] = mapped_column(String(64))
    width: Mapped[int] = mapped_column(Integer)
    height: Mapped[int] = mapped_column(Integer)
    bytes: Mapped[int] = mapped_column(BigInteger)
    format: Mapped[str] = mapped_column(String(16))
    blurhash: Mapped[str] = mapped_column(String(64))
    avg_color: Mapped[str] = mapped_column(String(7))
    alt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_hash: Mapped[str] = mapped_column(String(16))
    derivatives: Mapped[dict[str, Any]] = mapped_column(JSONType)

    __table_args__ = (Index("ix_image_assets_created_at", "created_at"),)


# Referencing entities are owned by the catalog; only the image FKs matter here.
class PcBuild(Base):
    __tablename__ = "pc_builds"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True)
    cover_image_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("image_assets.id", ondelete="RESTRICT"), nullable=True, index=True
    )


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True)
    cover_image_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("image_assets.id", ondelete="RESTRICT"), nullable=True, index=True
    )


class PromoCampaign(Base):
    __tablename__ = "promo_campaigns"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True)
    image_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("image_assets.id", ondelete="RESTRICT"), nullable=True, index=True
    )


pc_build_gallery_images = Table(
    "pc_build_gallery_images",
    metadata_obj,
    Column("pc_build_id", ForeignKey("pc_builds.id", ondelete="CASCADE"), primary_key=True),
    Column("image_id", ForeignKey("image_assets.id", ondelete="RESTRICT"), primary_key=True),
)

device_gallery_images = Table(
    "device_gallery_images",
    metadata_obj,
    Column("device_id", ForeignKey("devices.id", ondelete="CASCADE"), primary_key=True),
    Column("image_id", ForeignKey("image_assets.id", ondelete="RESTRICT"), primary_key=True),
)
