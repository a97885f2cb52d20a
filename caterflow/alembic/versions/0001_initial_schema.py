"""initial caterflow schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

from caterflow.app.db.models.core_types import (
    AdjustmentType,
    ApprovalStatus,
    BinType,
    CountStatus,
    ItemType,
    POStatus,
    ReceiptStatus,
    ReceivedCondition,
    Role,
    UnitOfMeasure,
)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
FK = sa.BigInteger()
QTY = sa.Numeric(14, 3)
MONEY = sa.Numeric(14, 2)
TS = sa.DateTime(timezone=True)

# un seul objet Enum par type PG (approval_status est partagé)
APPROVAL_STATUS = sa.Enum(ApprovalStatus, name="approval_status")


def _fk(column: str, target: str, ondelete: str, nullable: bool = True) -> sa.Column:
    return sa.Column(column, FK, sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    # ---------- MASTER DATA ----------
    op.create_table(
        "sites",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("location", sa.String(255)),
        sa.Column("contact_number", sa.String(64)),
        sa.Column("email", sa.String(255)),
        sa.Column("patient_count", sa.Integer()),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("patient_count IS NULL OR patient_count >= 0", name="ck_site_patient_count_nonneg"),
    )

    op.create_table(
        "bins",
        sa.Column("id", PK, primary_key=True),
        _fk("site_id", "sites.id", "RESTRICT", nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("location_description", sa.String(255)),
        sa.Column("capacity", sa.Integer()),
        sa.Column("bin_type", sa.Enum(BinType, name="bin_type"), nullable=False),
        sa.UniqueConstraint("site_id", "name", name="uq_bin_site_name"),
        sa.CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_bin_capacity_nonneg"),
    )
    op.create_index("ix_bins_site_id", "bins", ["site_id"])

    op.create_table(
        "categories",
        sa.Column("id", PK, primary_key=True),
        sa.Column("title", sa.String(200), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
    )

    op.create_table(
        "suppliers",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("contact_person", sa.String(200)),
        sa.Column("phone_number", sa.String(64)),
        sa.Column("email", sa.String(255)),
        sa.Column("address", sa.Text()),
        sa.Column("terms", sa.String(255)),
    )

    op.create_table(
        "stock_items",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("item_type", sa.Enum(ItemType, name="item_type"), nullable=False),
        _fk("category_id", "categories.id", "SET NULL"),
        sa.Column("unit_of_measure", sa.Enum(UnitOfMeasure, name="unit_of_measure"), nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("minimum_stock_level", QTY, nullable=False),
        sa.Column("reorder_quantity", QTY),
        _fk("primary_supplier_id", "suppliers.id", "SET NULL"),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint("unit_price >= 0", name="ck_stock_item_unit_price_nonneg"),
        sa.CheckConstraint("minimum_stock_level >= 0", name="ck_stock_item_min_level_nonneg"),
    )

    op.create_table(
        "stock_item_suppliers",
        sa.Column("stock_item_id", FK, sa.ForeignKey("stock_items.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("supplier_id", FK, sa.ForeignKey("suppliers.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "dispatch_types",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("default_time", sa.String(5)),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )

    # ---------- AUTH ----------
    op.create_table(
        "users",
        sa.Column("id", PK, primary_key=True),
        _fk("site_id", "sites.id", "SET NULL"),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255)),
        sa.Column("role", sa.Enum(Role, name="role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )

    # ---------- PROCUREMENT / INBOUND ----------
    op.create_table(
        "purchase_orders",
        sa.Column("id", PK, primary_key=True),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column("order_date", TS, nullable=False),
        _fk("supplier_id", "suppliers.id", "RESTRICT", nullable=False),
        _fk("site_id", "sites.id", "RESTRICT", nullable=False),
        sa.Column("status", sa.Enum(POStatus, name="po_status"), nullable=False),
        sa.Column("expected_delivery_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        _fk("ordered_by", "users.id", "RESTRICT", nullable=False),
        _fk("approved_by", "users.id", "SET NULL"),
        sa.Column("approved_at", TS),
        sa.Column("created_at", TS, nullable=False),
    )

    op.create_table(
        "purchase_order_lines",
        sa.Column("po_id", FK, sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("stock_item_id", FK, sa.ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("ordered_quantity", QTY, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.CheckConstraint("ordered_quantity > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )

    op.create_table(
        "goods_receipts",
        sa.Column("id", PK, primary_key=True),
        sa.Column("receipt_number", sa.String(64), nullable=False, unique=True),
        sa.Column("receipt_date", TS, nullable=False),
        _fk("po_id", "purchase_orders.id", "RESTRICT"),
        _fk("receiving_bin_id", "bins.id", "RESTRICT", nullable=False),
        _fk("received_by", "users.id", "RESTRICT", nullable=False),
        sa.Column("status", sa.Enum(ReceiptStatus, name="receipt_status"), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("completed_at", TS),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_goods_receipts_po_id", "goods_receipts", ["po_id"])
    op.create_index("ix_goods_receipts_bin_date", "goods_receipts", ["receiving_bin_id", "receipt_date"])

    op.create_table(
        "goods_receipt_lines",
        sa.Column("receipt_id", FK, sa.ForeignKey("goods_receipts.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("stock_item_id", FK, sa.ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("received_quantity", QTY, nullable=False),
        sa.Column("batch_number", sa.String(64)),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("condition", sa.Enum(ReceivedCondition, name="received_condition"), nullable=False),
        sa.CheckConstraint("received_quantity >= 0", name="ck_gr_line_qty_nonneg"),
    )

    # ---------- INTERNAL MOVEMENTS ----------
    op.create_table(
        "internal_transfers",
        sa.Column("id", PK, primary_key=True),
        sa.Column("transfer_number", sa.String(64), nullable=False, unique=True),
        sa.Column("transfer_date", TS, nullable=False),
        _fk("from_bin_id", "bins.id", "RESTRICT", nullable=False),
        _fk("to_bin_id", "bins.id", "RESTRICT", nullable=False),
        _fk("transferred_by", "users.id", "RESTRICT", nullable=False),
        sa.Column("status", APPROVAL_STATUS, nullable=False),
        _fk("approved_by", "users.id", "SET NULL"),
        sa.Column("approved_at", TS),
        sa.Column("completed_at", TS),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("from_bin_id <> to_bin_id", name="ck_transfer_bins_differ"),
    )
    op.create_index("ix_internal_transfers_status_date", "internal_transfers", ["status", "transfer_date"])

    op.create_table(
        "internal_transfer_lines",
        sa.Column("transfer_id", FK, sa.ForeignKey("internal_transfers.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("stock_item_id", FK, sa.ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("transferred_quantity", QTY, nullable=False),
        sa.CheckConstraint("transferred_quantity > 0", name="ck_transfer_line_qty_pos"),
    )

    op.create_table(
        "dispatch_logs",
        sa.Column("id", PK, primary_key=True),
        sa.Column("dispatch_number", sa.String(64), nullable=False, unique=True),
        sa.Column("dispatch_date", TS, nullable=False),
        _fk("dispatch_type_id", "dispatch_types.id", "SET NULL"),
        _fk("source_bin_id", "bins.id", "RESTRICT", nullable=False),
        _fk("dispatched_by", "users.id", "RESTRICT", nullable=False),
        sa.Column("people_fed", sa.Integer()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_dispatch_logs_bin_date", "dispatch_logs", ["source_bin_id", "dispatch_date"])

    op.create_table(
        "dispatch_lines",
        sa.Column("dispatch_id", FK, sa.ForeignKey("dispatch_logs.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("stock_item_id", FK, sa.ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("dispatched_quantity", QTY, nullable=False),
        sa.Column("total_cost", MONEY, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("dispatched_quantity >= 0", name="ck_dispatch_line_qty_nonneg"),
    )

    op.create_table(
        "stock_adjustments",
        sa.Column("id", PK, primary_key=True),
        sa.Column("adjustment_number", sa.String(64), nullable=False, unique=True),
        sa.Column("adjustment_date", TS, nullable=False),
        _fk("bin_id", "bins.id", "RESTRICT", nullable=False),
        _fk("adjusted_by", "users.id", "RESTRICT", nullable=False),
        sa.Column("adjustment_type", sa.Enum(AdjustmentType, name="adjustment_type"), nullable=False),
        sa.Column("status", APPROVAL_STATUS, nullable=False),
        _fk("approved_by", "users.id", "SET NULL"),
        sa.Column("approved_at", TS),
        sa.Column("completed_at", TS),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
    )

    op.create_table(
        "stock_adjustment_lines",
        sa.Column("adjustment_id", FK, sa.ForeignKey("stock_adjustments.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("stock_item_id", FK, sa.ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("adjusted_quantity", QTY, nullable=False),
        sa.Column("reason", sa.String(255)),
        sa.CheckConstraint("adjusted_quantity <> 0", name="ck_adjustment_line_qty_nonzero"),
    )

    # ---------- INVENTORY COUNTS ----------
    op.create_table(
        "inventory_counts",
        sa.Column("id", PK, primary_key=True),
        sa.Column("count_number", sa.String(64), nullable=False, unique=True),
        sa.Column("count_date", TS, nullable=False),
        _fk("bin_id", "bins.id", "RESTRICT", nullable=False),
        _fk("counted_by", "users.id", "RESTRICT", nullable=False),
        sa.Column("status", sa.Enum(CountStatus, name="count_status"), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("completed_at", TS),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_inventory_counts_bin_date", "inventory_counts", ["bin_id", "count_date"])

    op.create_table(
        "counted_items",
        sa.Column("count_id", FK, sa.ForeignKey("inventory_counts.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("stock_item_id", FK, sa.ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("counted_quantity", QTY, nullable=False),
        sa.Column("system_quantity_at_count_time", QTY),
        sa.Column("variance", QTY),
        sa.CheckConstraint("counted_quantity >= 0", name="ck_counted_item_qty_nonneg"),
    )

    # ---------- AUDIT ----------
    op.create_table(
        "audit_log",
        sa.Column("id", PK, primary_key=True),
        _fk("actor_id", "users.id", "SET NULL"),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("message", sa.Text()),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])
    op.create_index("ix_audit_created_at", "audit_log", ["created_at"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "counted_items",
        "inventory_counts",
        "stock_adjustment_lines",
        "stock_adjustments",
        "dispatch_lines",
        "dispatch_logs",
        "internal_transfer_lines",
        "internal_transfers",
        "goods_receipt_lines",
        "goods_receipts",
        "purchase_order_lines",
        "purchase_orders",
        "users",
        "dispatch_types",
        "stock_item_suppliers",
        "stock_items",
        "suppliers",
        "categories",
        "bins",
        "sites",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_name in (
        "approval_status",
        "adjustment_type",
        "count_status",
        "received_condition",
        "receipt_status",
        "po_status",
        "role",
        "unit_of_measure",
        "item_type",
        "bin_type",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
