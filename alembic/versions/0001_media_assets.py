from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_media_assets"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "image_assets",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("bucket", sa.String(length=128), nullable=False),
        sa.Column("key", sa.String(length=512), nullable=False),
        sa.Column("mime", sa.String(length=64), nullable=False),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("bytes", sa.BigInteger(), nullable=False),
        sa.Column("format", sa.String(length=16), nullable=False),
        sa.Column("blurhash", sa.String(length=64), nullable=False),
        sa.Column("avg_color", sa.String(length=7), nullable=False),
        sa.Column("alt", sa.Text(), nullable=True),
        sa.Column("content_hash", sa.String(length=16), nullable=False),
        sa.Column("derivatives", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_image_assets_created_at", "image_assets", ["created_at"])

    for table, column in (("pc_builds", "cover_image_id"), ("devices", "cover_image_id"), ("promo_campaigns", "image_id")):
        op.create_table(
            table,
            sa.Column("id", sa.BigInteger(), primary_key=True),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column(
                column,
                sa.String(length=32),
                sa.ForeignKey("image_assets.id", ondelete="RESTRICT"),
                nullable=True,
            ),
            sa.UniqueConstraint("slug"),
        )
        op.create_index(f"ix_{table}_{column}", table, [column])

    op.create_table(
        "pc_build_gallery_images",
        sa.Column("pc_build_id", sa.BigInteger(), sa.ForeignKey("pc_builds.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("image_id", sa.String(length=32), sa.ForeignKey("image_assets.id", ondelete="RESTRICT"), primary_key=True),
    )
    op.create_table(
        "device_gallery_images",
        sa.Column("device_id", sa.BigInteger(), sa.ForeignKey("devices.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("image_id", sa.String(length=32), sa.ForeignKey("image_assets.id", ondelete="RESTRICT"), primary_key=True),
    )


def downgrade() -> None:
    op.drop_table("device_gallery_images")
    op.drop_table("pc_build_gallery_images")
    for table, column in (("promo_campaigns", "image_id"), ("devices", "cover_image_id"), ("pc_builds", "cover_image_id")):
        op.drop_index(f"ix_{table}_{column}", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_image_assets_created_at", table_name="image_assets")
    op.drop_table("image_assets")
