"""
Procurement Domain Models.

The nouns of procurement: suppliers, purchase orders, goods receipts, and
the line inputs accepted by the workflow service.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procure_kernel.logging_config import get_logger
from procure_modules._workflow_helpers import to_decimal, to_uuid

logger = get_logger("modules.procurement.models")


class POStatus(Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"
    CANCELLED = "cancelled"


RECEIVABLE_PO_STATUSES = frozenset({
    POStatus.APPROVED.value,
    POStatus.PARTIALLY_RECEIVED.value,
    POStatus.FULLY_RECEIVED.value,
})


class GRStatus(Enum):
    """Goods receipt states."""
    DRAFT = "draft"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class QualityStatus(Enum):
    ACCEPTED = "accepted"
    DAMAGED = "damaged"
    PENDING_INSPECTION = "pending_inspection"


@dataclass(frozen=True)
class PurchaseOrderLineInput:
    """A requested purchase order line."""
    item_code: str
    quantity: Decimal
    unit_price: Decimal
    item_description: str = ""
    uom: str = "EA"

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PurchaseOrderLineInput:
        return cls(
            item_code=str(data.get("item_code", "")),
            quantity=to_decimal(data.get("quantity"), "quantity"),
            unit_price=to_decimal(data.get("unit_price"), "unit_price"),
            item_description=str(data.get("item_description") or ""),
            uom=str(data.get("uom") or "EA"),
        )


@dataclass(frozen=True)
class GoodsReceiptLineInput:
    """A received quantity against one purchase order line."""
    purchase_order_line_id: UUID
    quantity: Decimal
    quality_status: str = QualityStatus.ACCEPTED.value
    notes: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> GoodsReceiptLineInput:
        return cls(
            purchase_order_line_id=to_uuid(data.get("purchase_order_line_id"), "purchase_order_line_id"),
            quantity=to_decimal(data.get("quantity"), "quantity"),
            quality_status=str(data.get("quality_status") or QualityStatus.ACCEPTED.value),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A line item on a purchase order."""
    id: UUID
    purchase_order_id: UUID
    line_number: int
    item_code: str
    quantity_ordered: Decimal
    unit_price: Decimal
    line_total: Decimal
    item_description: str | None = None
    uom: str = "EA"
    quantity_received: Decimal = Decimal("0")
    quantity_invoiced: Decimal = Decimal("0")

    @property
    def quantity_open(self) -> Decimal:
        return max(Decimal("0"), self.quantity_ordered - self.quantity_received)


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order."""
    id: UUID
    po_number: str
    supplier_id: UUID
    po_date: date
    total_amount: Decimal
    currency: str
    status: POStatus
    expected_delivery_date: date | None = None
    notes: str | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class GoodsReceiptLine:
    id: UUID
    goods_receipt_id: UUID
    purchase_order_line_id: UUID
    quantity_received: Decimal
    quality_status: str = QualityStatus.ACCEPTED.value
    notes: str | None = None


@dataclass(frozen=True)
class GoodsReceipt:
    """Receipt of goods against a purchase order."""
    id: UUID
    receipt_number: str
    purchase_order_id: UUID
    receipt_date: date
    status: GRStatus
    notes: str | None = None
    lines: tuple[GoodsReceiptLine, ...] = field(default_factory=tuple)
