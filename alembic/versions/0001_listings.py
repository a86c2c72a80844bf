from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_listings"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "listings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),

        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("short_description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False),

        sa.Column("bedrooms", sa.Integer(), nullable=False),
        sa.Column("bathrooms", sa.Integer(), nullable=False),
        sa.Column("garage_spaces", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(14, 2), nullable=False),

        sa.Column("location", sa.String(length=300), nullable=False),
        sa.Column("property_type", sa.String(length=100), nullable=False),
        sa.Column("house_area", sa.Integer(), nullable=False),
        sa.Column("lot_area", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),

        # one entry per photo slot, null for an empty slot
        sa.Column(
            "photos",
            sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql"),
            nullable=False,
        ),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),

        sa.CheckConstraint("status IN ('Available', 'Unavailable')", name="ck_listings_status"),
    )

    op.create_index("ix_listings_created_at", "listings", ["created_at"])


def downgrade():
    op.drop_index("ix_listings_created_at", table_name="listings")
    op.drop_table("listings")
