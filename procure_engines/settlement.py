"""
procure_engines.settlement -- Invoice outstanding and payment status.

Pure functions over (invoice total, payments).  Processed and cleared
payments settle the invoice; pending payments additionally reserve
headroom so two pending payments cannot together exceed the total.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from procure_engines.tracer import traced_engine

ZERO = Decimal("0")

SETTLED_STATUSES = frozenset({"processed", "cleared"})
RESERVING_STATUSES = frozenset({"pending", "processed", "cleared"})


class PaymentStatus(str, Enum):
    """Invoice-level payment status."""

    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


@dataclass(frozen=True)
class SettlementSummary:
    total_amount: Decimal
    settled_amount: Decimal
    reserved_amount: Decimal

    @property
    def outstanding(self) -> Decimal:
        return max(ZERO, self.total_amount - self.settled_amount)

    @property
    def available_for_payment(self) -> Decimal:
        """Headroom for a new payment after pending ones are reserved."""
        return max(ZERO, self.total_amount - self.reserved_amount)

    @property
    def payment_status(self) -> PaymentStatus:
        if self.settled_amount <= ZERO:
            return PaymentStatus.UNPAID
        if self.settled_amount >= self.total_amount:
            return PaymentStatus.PAID
        return PaymentStatus.PARTIALLY_PAID


class SettlementCalculator:
    """Pure settlement arithmetic; ``payments`` are (amount, status) pairs."""

    @traced_engine("settlement", "1.0", fingerprint_fields=("total_amount", "payments"))
    def summarize(
        self,
        *,
        total_amount: Decimal,
        payments: Iterable[tuple[Decimal, str]],
    ) -> SettlementSummary:
        settled = ZERO
        reserved = ZERO
        for amount, status in payments:
            if status in SETTLED_STATUSES:
                settled += amount
            if status in RESERVING_STATUSES:
                reserved += amount
        return SettlementSummary(
            total_amount=total_amount,
            settled_amount=settled,
            reserved_amount=reserved,
        )
