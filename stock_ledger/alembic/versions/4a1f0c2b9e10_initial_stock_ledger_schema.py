"""initial stock ledger schema

Revision ID: 4a1f0c2b9e10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4a1f0c2b9e10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BigIntId = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

location_kind = sa.Enum("warehouse", "rack_group", "rack_level", "rack_slot", name="location_kind")
movement_type = sa.Enum("IN", "TRANSFER", "DELIVERY_OUT", "DELIVERY_REVERT", "ADJUST", name="movement_type")
offer_status = sa.Enum("pending", "accepted", "rejected", name="offer_status")
delivery_status = sa.Enum("none", "delivered", name="delivery_status")


def upgrade() -> None:
    op.create_table(
        "locations",
        sa.Column("id", BigIntId, primary_key=True),
        sa.Column("parent_id", BigIntId, sa.ForeignKey("locations.id", ondelete="CASCADE")),
        sa.Column("kind", location_kind, nullable=False),
        sa.Column("code", sa.String(64)),
        sa.Column("name", sa.String(200)),
        sa.Column("number", sa.Integer()),
        sa.Column("address", sa.String(500)),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("parent_id", "code", name="uq_location_parent_code"),
        sa.UniqueConstraint("parent_id", "number", name="uq_location_parent_number"),
        sa.CheckConstraint("number IS NULL OR number > 0", name="ck_location_number_pos"),
    )
    op.create_index("ix_locations_parent_id", "locations", ["parent_id"])
    op.create_index("ix_locations_kind", "locations", ["kind"])

    op.create_table(
        "stock_records",
        sa.Column("id", BigIntId, primary_key=True),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("variant_id", sa.String(64)),
        sa.Column("variant_key", sa.String(64), nullable=False, server_default=""),
        sa.Column("variant_name", sa.String(255)),
        sa.Column("variant_sku", sa.String(64)),
        sa.Column("location_id", BigIntId, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("product_id", "variant_key", "location_id", name="uq_stock_record_product_location"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_quantity_nonneg"),
        sa.CheckConstraint("reserved_quantity >= 0", name="ck_stock_reserved_nonneg"),
        sa.CheckConstraint("reserved_quantity <= quantity", name="ck_stock_reserved_le_quantity"),
    )
    op.create_index("ix_stock_records_product_id", "stock_records", ["product_id"])
    op.create_index("ix_stock_records_location_id", "stock_records", ["location_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", BigIntId, primary_key=True),
        sa.Column("movement_type", movement_type, nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("variant_id", sa.String(64)),
        sa.Column("variant_name", sa.String(255)),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("source_location_id", BigIntId),
        sa.Column("target_location_id", BigIntId),
        sa.Column("reference", sa.String(128)),
        sa.Column("note", sa.Text()),
        sa.Column("quotation_id", sa.String(64)),
        sa.Column("correlation_id", sa.String(36)),
        sa.Column(
            "reversal_of_id",
            BigIntId,
            sa.ForeignKey("stock_movements.id", ondelete="RESTRICT"),
            unique=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity <> 0", name="ck_stock_movement_qty_nonzero"),
    )
    op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"])
    op.create_index("ix_stock_movements_source_location_id", "stock_movements", ["source_location_id"])
    op.create_index("ix_stock_movements_target_location_id", "stock_movements", ["target_location_id"])
    op.create_index("ix_stock_movements_quotation_id", "stock_movements", ["quotation_id"])
    op.create_index("ix_stock_movements_correlation_id", "stock_movements", ["correlation_id"])
    op.create_index("ix_stock_movements_product_time", "stock_movements", ["product_id", "created_at"])

    op.create_table(
        "min_stock_thresholds",
        sa.Column("id", BigIntId, primary_key=True),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("variant_id", sa.String(64)),
        sa.Column("variant_key", sa.String(64), nullable=False, server_default=""),
        sa.Column("min_stock", sa.Integer(), nullable=False),
        sa.UniqueConstraint("product_id", "variant_key", name="uq_min_stock_product"),
        sa.CheckConstraint("min_stock >= 0", name="ck_min_stock_nonneg"),
    )

    op.create_table(
        "quotations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("number", sa.String(64)),
        sa.Column("offer_status", offer_status, nullable=False),
        sa.Column("delivery_status", delivery_status, nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "quotation_lines",
        sa.Column("id", BigIntId, primary_key=True),
        sa.Column("quotation_id", sa.String(64), sa.ForeignKey("quotations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("variant_id", sa.String(64)),
        sa.Column("variant_name", sa.String(255)),
        sa.Column("quantity", sa.Integer(), nullable=False),
    )
    op.create_index("ix_quotation_lines_quotation_id", "quotation_lines", ["quotation_id"])

    op.create_table(
        "stock_reservations",
        sa.Column("id", BigIntId, primary_key=True),
        sa.Column("quotation_id", sa.String(64), sa.ForeignKey("quotations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("stock_record_id", BigIntId, sa.ForeignKey("stock_records.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("quotation_id", "stock_record_id", name="uq_reservation_quotation_record"),
        sa.CheckConstraint("quantity > 0", name="ck_reservation_qty_pos"),
    )
    op.create_index("ix_stock_reservations_quotation_id", "stock_reservations", ["quotation_id"])
    op.create_index("ix_stock_reservations_stock_record_id", "stock_reservations", ["stock_record_id"])


def downgrade() -> None:
    op.drop_table("stock_reservations")
    op.drop_table("quotation_lines")
    op.drop_table("quotations")
    op.drop_table("min_stock_thresholds")
    op.drop_table("stock_movements")
    op.drop_table("stock_records")
    op.drop_table("locations")

    bind = op.get_bind()
    for enum_type in (delivery_status, offer_status, movement_type, location_kind):
        enum_type.drop(bind, checkfirst=True)
