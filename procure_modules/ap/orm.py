"""
SQLAlchemy ORM persistence models for the Accounts Payable module.

Responsibility
--------------
Provide database-backed persistence for supplier invoices (with their
matched lines), payments and clearing entries.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``APService`` and, through
``Base.metadata``, by the kernel data service for list/form reads.

Invariants enforced
-------------------
* All monetary and quantity fields use ``Decimal`` (Numeric(38,9)).
* ``status``, ``matching_status`` and ``payment_status`` are written only by
  workflow services.
* Invoice and payment numbers are unique.
* A payment is cleared at most once (unique ``payment_id`` on clearing).

Audit relevance
---------------
* Variance approval records approver, time and note.
* Payments record who processed, cleared, cancelled or reversed them.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procure_kernel.db.base import SoftDeleteMixin, TrackedBase

# ---------------------------------------------------------------------------
# InvoiceReceiptModel
# ---------------------------------------------------------------------------


class InvoiceReceiptModel(TrackedBase, SoftDeleteMixin):
    """
    A supplier invoice matched against a purchase order and its receipts.

    Guarantees:
        - ``invoice_number`` is unique.
        - ``total_amount`` = sum(line totals) + ``tax_amount``.
    """

    __tablename__ = "invoice_receipts"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoice_number"),
        Index("idx_invoice_po", "purchase_order_id"),
        Index("idx_invoice_supplier", "supplier_id"),
        Index("idx_invoice_status", "status"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    purchase_order_id: Mapped[UUID] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(ForeignKey("suppliers.id"), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending_match")
    matching_status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(String(30), nullable=False, default="unpaid")
    variance_approved_by_id: Mapped[UUID | None]
    variance_approved_at: Mapped[datetime | None]
    variance_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["InvoiceLineModel"]] = relationship(
        "InvoiceLineModel",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLineModel.line_number",
    )

    def __repr__(self) -> str:
        return f"<InvoiceReceiptModel {self.invoice_number} [{self.status}/{self.matching_status}]>"


class InvoiceLineModel(TrackedBase):
    """One invoiced PO line and its match outcome."""

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint("invoice_id", "line_number", name="uq_invoice_line_number"),
        Index("idx_invoice_line_invoice", "invoice_id"),
        Index("idx_invoice_line_po_line", "purchase_order_line_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoice_receipts.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_order_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_order_lines.id"), nullable=False,
    )
    goods_receipt_line_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("goods_receipt_lines.id"), nullable=True,
    )
    quantity_invoiced: Mapped[Decimal]
    unit_price: Mapped[Decimal]
    line_total: Mapped[Decimal]
    match_status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    variance_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    variance_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)

    invoice: Mapped[InvoiceReceiptModel] = relationship(
        "InvoiceReceiptModel", back_populates="lines",
    )

    def __repr__(self) -> str:
        return f"<InvoiceLineModel #{self.line_number} [{self.match_status}]>"


# ---------------------------------------------------------------------------
# PaymentModel
# ---------------------------------------------------------------------------


class PaymentModel(TrackedBase, SoftDeleteMixin):
    """A payment against an approved invoice."""

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("payment_number", name="uq_payment_number"),
        Index("idx_payment_invoice", "invoice_id"),
        Index("idx_payment_status", "status"),
    )

    payment_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoice_receipts.id"), nullable=False)
    amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    processed_by_id: Mapped[UUID | None]
    processed_at: Mapped[datetime | None]
    cleared_by_id: Mapped[UUID | None]
    cleared_at: Mapped[datetime | None]
    cancelled_by_id: Mapped[UUID | None]
    cancelled_at: Mapped[datetime | None]
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    failed_at: Mapped[datetime | None]
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversed_by_id: Mapped[UUID | None]
    reversed_at: Mapped[datetime | None]
    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentModel {self.payment_number} {self.amount} [{self.status}]>"


class ClearingEntryModel(TrackedBase):
    """Bank confirmation that a processed payment settled."""

    __tablename__ = "clearing_entries"

    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_clearing_payment"),
        Index("idx_clearing_invoice", "invoice_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(ForeignKey("payments.id"), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoice_receipts.id"), nullable=False)
    clearing_date: Mapped[date] = mapped_column(Date, nullable=False)
    cleared_amount: Mapped[Decimal]
    bank_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ClearingEntryModel payment={self.payment_id} {self.cleared_amount}>"
