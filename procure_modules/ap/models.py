"""
Accounts Payable Domain Models.

Invoice and payment states, the line inputs accepted by ``APService`` and
the read-only summaries it returns.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procure_modules._workflow_helpers import to_decimal, to_uuid


class InvoiceStatus(Enum):
    """Invoice lifecycle states."""
    PENDING_MATCH = "pending_match"
    MATCHED = "matched"
    VARIANCE_REVIEW = "variance_review"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentState(Enum):
    """Payment lifecycle states."""
    PENDING = "pending"
    PROCESSED = "processed"
    CLEARED = "cleared"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REVERSED = "reversed"


class PaymentMethod(Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    WIRE = "wire"
    CREDIT_CARD = "credit_card"
    ACH = "ach"


@dataclass(frozen=True)
class InvoiceLineInput:
    """An invoiced quantity and price against one purchase order line."""
    purchase_order_line_id: UUID
    quantity: Decimal
    unit_price: Decimal
    goods_receipt_line_id: UUID | None = None

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> InvoiceLineInput:
        gr_line = data.get("goods_receipt_line_id")
        return cls(
            purchase_order_line_id=to_uuid(data.get("purchase_order_line_id"), "purchase_order_line_id"),
            quantity=to_decimal(data.get("quantity"), "quantity"),
            unit_price=to_decimal(data.get("unit_price"), "unit_price"),
            goods_receipt_line_id=to_uuid(gr_line, "goods_receipt_line_id") if gr_line else None,
        )


@dataclass(frozen=True)
class LineMatchSummary:
    """Per-line view of a three-way match, for review screens."""
    invoice_line_id: UUID
    purchase_order_line_id: UUID
    item_code: str
    quantity_ordered: Decimal
    quantity_received: Decimal
    quantity_invoiced: Decimal
    po_unit_price: Decimal
    invoice_unit_price: Decimal
    match_status: str
    variance_amount: Decimal
    variance_reason: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice_line_id": str(self.invoice_line_id),
            "purchase_order_line_id": str(self.purchase_order_line_id),
            "item_code": self.item_code,
            "quantity_ordered": str(self.quantity_ordered),
            "quantity_received": str(self.quantity_received),
            "quantity_invoiced": str(self.quantity_invoiced),
            "po_unit_price": str(self.po_unit_price),
            "invoice_unit_price": str(self.invoice_unit_price),
            "match_status": self.match_status,
            "variance_amount": str(self.variance_amount),
            "variance_reason": self.variance_reason,
        }


@dataclass(frozen=True)
class InvoiceMatchingSummary:
    invoice_id: UUID
    invoice_number: str
    status: str
    matching_status: str
    total_variance: Decimal
    lines: tuple[LineMatchSummary, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice_id": str(self.invoice_id),
            "invoice_number": self.invoice_number,
            "status": self.status,
            "matching_status": self.matching_status,
            "total_variance": str(self.total_variance),
            "lines": [line.to_dict() for line in self.lines],
        }


@dataclass(frozen=True)
class OutstandingAmount:
    invoice_id: UUID
    total_amount: Decimal
    settled_amount: Decimal
    outstanding: Decimal
    available_for_payment: Decimal
    payment_status: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice_id": str(self.invoice_id),
            "total_amount": str(self.total_amount),
            "settled_amount": str(self.settled_amount),
            "outstanding": str(self.outstanding),
            "available_for_payment": str(self.available_for_payment),
            "payment_status": self.payment_status,
        }
