"""
SQLAlchemy ORM persistence models for the Procurement module.

Responsibility
--------------
Provide database-backed persistence for suppliers, purchase orders,
purchase order lines, goods receipts and goods receipt lines.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``ProcurementService`` for
persistence and by the kernel data service (through ``Base.metadata``) for
list/form reads.  Inherits from ``TrackedBase`` and ``SoftDeleteMixin``.

Invariants enforced
-------------------
* All monetary and quantity fields use ``Decimal`` (Numeric(38,9)).
* Enum fields stored as String(30) for readability and portability.
* ``status``, ``quantity_received`` and ``quantity_invoiced`` are written
  only by workflow services; entity allow-lists never name them.
* Document numbers are unique.

Audit relevance
---------------
* Actor/timestamp columns record who submitted, approved, rejected or
  cancelled a purchase order, and who accepted or rejected a receipt.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procure_kernel.db.base import SoftDeleteMixin, TrackedBase

# ---------------------------------------------------------------------------
# SupplierModel
# ---------------------------------------------------------------------------


class SupplierModel(TrackedBase, SoftDeleteMixin):
    """A vendor goods are purchased from."""

    __tablename__ = "suppliers"

    __table_args__ = (
        UniqueConstraint("supplier_code", name="uq_supplier_code"),
    )

    supplier_code: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_terms_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SupplierModel {self.supplier_code}>"


# ---------------------------------------------------------------------------
# PurchaseOrderModel
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase, SoftDeleteMixin):
    """
    A purchase order.

    Maps to the ``PurchaseOrder`` DTO in ``procure_modules.procurement.models``.

    Guarantees:
        - ``po_number`` is unique.
        - ``status`` follows PURCHASE_ORDER_WORKFLOW.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_po_number"),
        Index("idx_po_supplier", "supplier_id"),
        Index("idx_po_status", "status"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(ForeignKey("suppliers.id"), nullable=False)
    po_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_by_id: Mapped[UUID | None]
    submitted_at: Mapped[datetime | None]
    approved_by_id: Mapped[UUID | None]
    approved_at: Mapped[datetime | None]
    rejected_by_id: Mapped[UUID | None]
    rejected_at: Mapped[datetime | None]
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by_id: Mapped[UUID | None]
    cancelled_at: Mapped[datetime | None]
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    def to_dto(self):
        from procure_modules.procurement.models import POStatus, PurchaseOrder

        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            supplier_id=self.supplier_id,
            po_date=self.po_date,
            total_amount=self.total_amount,
            currency=self.currency,
            status=POStatus(self.status),
            expected_delivery_date=self.expected_delivery_date,
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}]>"


class PurchaseOrderLineModel(TrackedBase):
    """
    A line on a purchase order with its running received/invoiced totals.
    """

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        Index("idx_po_line_po", "purchase_order_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_code: Mapped[str] = mapped_column(String(100), nullable=False)
    item_description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    quantity_ordered: Mapped[Decimal]
    unit_price: Mapped[Decimal]
    line_total: Mapped[Decimal]
    uom: Mapped[str] = mapped_column(String(20), nullable=False, default="EA")
    quantity_received: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    quantity_invoiced: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    purchase_order: Mapped[PurchaseOrderModel] = relationship(
        "PurchaseOrderModel", back_populates="lines",
    )

    def to_dto(self):
        from procure_modules.procurement.models import PurchaseOrderLine

        return PurchaseOrderLine(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            line_number=self.line_number,
            item_code=self.item_code,
            quantity_ordered=self.quantity_ordered,
            unit_price=self.unit_price,
            line_total=self.line_total,
            item_description=self.item_description,
            uom=self.uom,
            quantity_received=self.quantity_received,
            quantity_invoiced=self.quantity_invoiced,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderLineModel #{self.line_number} {self.item_code}>"


# ---------------------------------------------------------------------------
# GoodsReceiptModel
# ---------------------------------------------------------------------------


class GoodsReceiptModel(TrackedBase, SoftDeleteMixin):
    """
    Receipt of goods against an approved purchase order.

    Guarantees:
        - ``receipt_number`` is unique.
        - Accepting a receipt is the only path that increments PO line
          ``quantity_received``.
    """

    __tablename__ = "goods_receipts"

    __table_args__ = (
        UniqueConstraint("receipt_number", name="uq_receipt_number"),
        Index("idx_gr_po", "purchase_order_id"),
        Index("idx_gr_status", "status"),
    )

    receipt_number: Mapped[str] = mapped_column(String(50), nullable=False)
    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False,
    )
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    accepted_by_id: Mapped[UUID | None]
    accepted_at: Mapped[datetime | None]
    rejected_by_id: Mapped[UUID | None]
    rejected_at: Mapped[datetime | None]
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["GoodsReceiptLineModel"]] = relationship(
        "GoodsReceiptLineModel",
        back_populates="goods_receipt",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self):
        from procure_modules.procurement.models import GoodsReceipt, GRStatus

        return GoodsReceipt(
            id=self.id,
            receipt_number=self.receipt_number,
            purchase_order_id=self.purchase_order_id,
            receipt_date=self.receipt_date,
            status=GRStatus(self.status),
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<GoodsReceiptModel {self.receipt_number} [{self.status}]>"


class GoodsReceiptLineModel(TrackedBase):
    """Quantity received against one purchase order line."""

    __tablename__ = "goods_receipt_lines"

    __table_args__ = (
        Index("idx_gr_line_receipt", "goods_receipt_id"),
        Index("idx_gr_line_po_line", "purchase_order_line_id"),
    )

    goods_receipt_id: Mapped[UUID] = mapped_column(
        ForeignKey("goods_receipts.id"), nullable=False,
    )
    purchase_order_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_order_lines.id"), nullable=False,
    )
    quantity_received: Mapped[Decimal]
    quality_status: Mapped[str] = mapped_column(String(30), nullable=False, default="accepted")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    goods_receipt: Mapped[GoodsReceiptModel] = relationship(
        "GoodsReceiptModel", back_populates="lines",
    )

    def to_dto(self):
        from procure_modules.procurement.models import GoodsReceiptLine

        return GoodsReceiptLine(
            id=self.id,
            goods_receipt_id=self.goods_receipt_id,
            purchase_order_line_id=self.purchase_order_line_id,
            quantity_received=self.quantity_received,
            quality_status=self.quality_status,
            notes=self.notes,
        )
