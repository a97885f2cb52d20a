from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    Column,
    String,
    Integer,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Table,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from caterflow.app.db.base import Base, BigIntPK
from caterflow.app.db.models.core_types import (
    Role,
    BinType,
    ItemType,
    UnitOfMeasure,
    POStatus,
    ReceiptStatus,
    ReceivedCondition,
    ApprovalStatus,
    AdjustmentType,
    CountStatus,
)

Qty = Numeric(14, 3)
Money = Numeric(14, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA ----------
class Site(Base):
    __tablename__ = "sites"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    location: Mapped[str | None] = mapped_column(String(255))
    contact_number: Mapped[str | None] = mapped_column(String(64))
    email: Mapped[str | None] = mapped_column(String(255))
    patient_count: Mapped[int | None] = mapped_column(Integer)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    bins: Mapped[list["Bin"]] = relationship(back_populates="site")

    __table_args__ = (
        CheckConstraint("patient_count IS NULL OR patient_count >= 0", name="ck_site_patient_count_nonneg"),
    )


class Bin(Base):
    __tablename__ = "bins"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    location_description: Mapped[str | None] = mapped_column(String(255))
    capacity: Mapped[int | None] = mapped_column(Integer)
    bin_type: Mapped[BinType] = mapped_column(
        Enum(BinType, name="bin_type"),
        default=BinType.main_storage,
        nullable=False,
    )

    site: Mapped[Site] = relationship(back_populates="bins")
    __table_args__ = (
        UniqueConstraint("site_id", "name", name="uq_bin_site_name"),
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_bin_capacity_nonneg"),
    )


class Category(Base):
    __tablename__ = "categories"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(200))
    phone_number: Mapped[str | None] = mapped_column(String(64))
    email: Mapped[str | None] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(Text)
    terms: Mapped[str | None] = mapped_column(String(255))


stock_item_suppliers = Table(
    "stock_item_suppliers",
    Base.metadata,
    Column("stock_item_id", ForeignKey("stock_items.id", ondelete="CASCADE"), primary_key=True),
    Column("supplier_id", ForeignKey("suppliers.id", ondelete="CASCADE"), primary_key=True),
)


class StockItem(Base):
    __tablename__ = "stock_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    item_type: Mapped[ItemType] = mapped_column(Enum(ItemType, name="item_type"), default=ItemType.food, nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"))
    unit_of_measure: Mapped[UnitOfMeasure] = mapped_column(
        Enum(UnitOfMeasure, name="unit_of_measure"),
        default=UnitOfMeasure.each,
        nullable=False,
    )
    unit_price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    minimum_stock_level: Mapped[Decimal] = mapped_column(Qty, default=Decimal("0"), nullable=False)
    reorder_quantity: Mapped[Decimal | None] = mapped_column(Qty)
    primary_supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="SET NULL"))
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    category: Mapped[Category | None] = relationship()
    primary_supplier: Mapped[Supplier | None] = relationship()
    suppliers: Mapped[list[Supplier]] = relationship(secondary=stock_item_suppliers)

    __table_args__ = (
        CheckConstraint("unit_price >= 0", name="ck_stock_item_unit_price_nonneg"),
        CheckConstraint("minimum_stock_level >= 0", name="ck_stock_item_min_level_nonneg"),
    )


class DispatchType(Base):
    __tablename__ = "dispatch_types"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    default_time: Mapped[str | None] = mapped_column(String(5))  # "HH:MM"
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ---------- AUTH ----------
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    site_id: Mapped[int | None] = mapped_column(ForeignKey("sites.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    site: Mapped[Site | None] = relationship()


# ---------- PROCUREMENT / INBOUND ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[POStatus] = mapped_column(Enum(POStatus, name="po_status"), default=POStatus.draft, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)

    ordered_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    supplier: Mapped[Supplier] = relationship()
    site: Mapped[Site] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(back_populates="po", cascade="all, delete-orphan")

    @property
    def total_amount(self) -> Decimal:
        return sum((ln.ordered_quantity * ln.unit_price for ln in self.lines), Decimal("0"))


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    po_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id", ondelete="CASCADE"), primary_key=True)
    stock_item_id: Mapped[int] = mapped_column(ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True)
    ordered_quantity: Mapped[Decimal] = mapped_column(Qty, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    stock_item: Mapped[StockItem] = relationship()

    __table_args__ = (
        CheckConstraint("ordered_quantity > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )


class GoodsReceipt(Base):
    __tablename__ = "goods_receipts"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    receipt_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    receipt_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    po_id: Mapped[int | None] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        index=True,
    )
    receiving_bin_id: Mapped[int] = mapped_column(ForeignKey("bins.id", ondelete="RESTRICT"), nullable=False)
    received_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    status: Mapped[ReceiptStatus] = mapped_column(
        Enum(ReceiptStatus, name="receipt_status"),
        default=ReceiptStatus.draft,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    receiving_bin: Mapped[Bin] = relationship()
    lines: Mapped[list["GoodsReceiptLine"]] = relationship(back_populates="receipt", cascade="all, delete-orphan")

    __table_args__ = (Index("ix_goods_receipts_bin_date", "receiving_bin_id", "receipt_date"),)


class GoodsReceiptLine(Base):
    __tablename__ = "goods_receipt_lines"
    receipt_id: Mapped[int] = mapped_column(ForeignKey("goods_receipts.id", ondelete="CASCADE"), primary_key=True)
    stock_item_id: Mapped[int] = mapped_column(ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True)
    received_quantity: Mapped[Decimal] = mapped_column(Qty, nullable=False)
    batch_number: Mapped[str | None] = mapped_column(String(64))
    expiry_date: Mapped[date | None] = mapped_column(Date)
    condition: Mapped[ReceivedCondition] = mapped_column(
        Enum(ReceivedCondition, name="received_condition"),
        default=ReceivedCondition.good,
        nullable=False,
    )

    receipt: Mapped[GoodsReceipt] = relationship(back_populates="lines")
    stock_item: Mapped[StockItem] = relationship()

    __table_args__ = (CheckConstraint("received_quantity >= 0", name="ck_gr_line_qty_nonneg"),)


# ---------- INTERNAL MOVEMENTS ----------
class InternalTransfer(Base):
    __tablename__ = "internal_transfers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    transfer_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    from_bin_id: Mapped[int] = mapped_column(ForeignKey("bins.id", ondelete="RESTRICT"), nullable=False)
    to_bin_id: Mapped[int] = mapped_column(ForeignKey("bins.id", ondelete="RESTRICT"), nullable=False)
    transferred_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, name="approval_status"),
        default=ApprovalStatus.draft,
        nullable=False,
    )
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    from_bin: Mapped[Bin] = relationship(foreign_keys=[from_bin_id])
    to_bin: Mapped[Bin] = relationship(foreign_keys=[to_bin_id])
    lines: Mapped[list["InternalTransferLine"]] = relationship(back_populates="transfer", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("from_bin_id <> to_bin_id", name="ck_transfer_bins_differ"),
        Index("ix_internal_transfers_status_date", "status", "transfer_date"),
    )


class InternalTransferLine(Base):
    __tablename__ = "internal_transfer_lines"
    transfer_id: Mapped[int] = mapped_column(ForeignKey("internal_transfers.id", ondelete="CASCADE"), primary_key=True)
    stock_item_id: Mapped[int] = mapped_column(ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True)
    transferred_quantity: Mapped[Decimal] = mapped_column(Qty, nullable=False)

    transfer: Mapped[InternalTransfer] = relationship(back_populates="lines")
    stock_item: Mapped[StockItem] = relationship()

    __table_args__ = (CheckConstraint("transferred_quantity > 0", name="ck_transfer_line_qty_pos"),)


class DispatchLog(Base):
    __tablename__ = "dispatch_logs"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    dispatch_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    dispatch_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dispatch_type_id: Mapped[int | None] = mapped_column(ForeignKey("dispatch_types.id", ondelete="SET NULL"))
    source_bin_id: Mapped[int] = mapped_column(ForeignKey("bins.id", ondelete="RESTRICT"), nullable=False)
    dispatched_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    people_fed: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    dispatch_type: Mapped[DispatchType | None] = relationship()
    source_bin: Mapped[Bin] = relationship()
    lines: Mapped[list["DispatchLine"]] = relationship(back_populates="dispatch", cascade="all, delete-orphan")

    __table_args__ = (Index("ix_dispatch_logs_bin_date", "source_bin_id", "dispatch_date"),)


class DispatchLine(Base):
    __tablename__ = "dispatch_lines"
    dispatch_id: Mapped[int] = mapped_column(ForeignKey("dispatch_logs.id", ondelete="CASCADE"), primary_key=True)
    stock_item_id: Mapped[int] = mapped_column(ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True)
    dispatched_quantity: Mapped[Decimal] = mapped_column(Qty, nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    dispatch: Mapped[DispatchLog] = relationship(back_populates="lines")
    stock_item: Mapped[StockItem] = relationship()

    __table_args__ = (CheckConstraint("dispatched_quantity >= 0", name="ck_dispatch_line_qty_nonneg"),)


class StockAdjustment(Base):
    __tablename__ = "stock_adjustments"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    adjustment_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    adjustment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    bin_id: Mapped[int] = mapped_column(ForeignKey("bins.id", ondelete="RESTRICT"), nullable=False)
    adjusted_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    adjustment_type: Mapped[AdjustmentType] = mapped_column(Enum(AdjustmentType, name="adjustment_type"), nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, name="approval_status"),
        default=ApprovalStatus.draft,
        nullable=False,
    )
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    bin: Mapped[Bin] = relationship()
    lines: Mapped[list["StockAdjustmentLine"]] = relationship(back_populates="adjustment", cascade="all, delete-orphan")


class StockAdjustmentLine(Base):
    __tablename__ = "stock_adjustment_lines"
    adjustment_id: Mapped[int] = mapped_column(ForeignKey("stock_adjustments.id", ondelete="CASCADE"), primary_key=True)
    stock_item_id: Mapped[int] = mapped_column(ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True)
    # signé : > 0 trouvé, < 0 perte
    adjusted_quantity: Mapped[Decimal] = mapped_column(Qty, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255))

    adjustment: Mapped[StockAdjustment] = relationship(back_populates="lines")
    stock_item: Mapped[StockItem] = relationship()

    __table_args__ = (CheckConstraint("adjusted_quantity <> 0", name="ck_adjustment_line_qty_nonzero"),)


# ---------- INVENTORY COUNTS ----------
class InventoryCount(Base):
    __tablename__ = "inventory_counts"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    count_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    count_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    bin_id: Mapped[int] = mapped_column(ForeignKey("bins.id", ondelete="RESTRICT"), nullable=False)
    counted_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[CountStatus] = mapped_column(
        Enum(CountStatus, name="count_status"),
        default=CountStatus.in_progress,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    bin: Mapped[Bin] = relationship()
    lines: Mapped[list["CountedItem"]] = relationship(back_populates="count", cascade="all, delete-orphan")

    __table_args__ = (Index("ix_inventory_counts_bin_date", "bin_id", "count_date"),)


class CountedItem(Base):
    __tablename__ = "counted_items"
    count_id: Mapped[int] = mapped_column(ForeignKey("inventory_counts.id", ondelete="CASCADE"), primary_key=True)
    stock_item_id: Mapped[int] = mapped_column(ForeignKey("stock_items.id", ondelete="RESTRICT"), primary_key=True)
    counted_quantity: Mapped[Decimal] = mapped_column(Qty, nullable=False)
    system_quantity_at_count_time: Mapped[Decimal | None] = mapped_column(Qty)
    variance: Mapped[Decimal | None] = mapped_column(Qty)

    count: Mapped[InventoryCount] = relationship(back_populates="lines")
    stock_item: Mapped[StockItem] = relationship()

    __table_args__ = (CheckConstraint("counted_quantity >= 0", name="ck_counted_item_qty_nonneg"),)


# ---------- AUDIT ----------
class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_entity", "entity_type", "entity_id"),
        Index("ix_audit_created_at", "created_at"),
    )
