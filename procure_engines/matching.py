"""
procure_engines.matching -- Three-way match of invoice lines.

Responsibility:
    Compare each invoice line against its purchase-order line (ordered
    quantity, unit price) and goods-receipt totals (received quantity, net
    of quantity already invoiced), classify it as matched / variance /
    pending, and roll the line results up to an invoice matching status.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Identical inputs produce identical outputs; no clock access.
    - Decimal arithmetic only; price tolerance is a percentage of the
      ordered unit price.
    - Roll-up precedence: any variance -> variance; else any pending ->
      pending; else matched.

Failure modes:
    - ValueError for negative quantities or prices, or a negative tolerance.

Audit relevance:
    Variance lines block payment until an approver records a variance note.
    Each invocation is traced via ``@traced_engine``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from procure_engines.tracer import traced_engine
from procure_kernel.logging_config import get_logger

logger = get_logger("engines.matching")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class MatchStatus(str, Enum):
    """Per-line and per-invoice match outcome."""

    PENDING = "pending"
    MATCHED = "matched"
    VARIANCE = "variance"


class VarianceReason(str, Enum):
    QUANTITY_EXCEEDS_RECEIVED = "quantity_exceeds_received"
    PRICE_VARIANCE = "price_variance"


@dataclass(frozen=True)
class MatchTolerance:
    """Price tolerance as a percentage of the ordered unit price."""

    price_tolerance_percent: Decimal = Decimal("5")

    def __post_init__(self) -> None:
        if self.price_tolerance_percent < ZERO:
            raise ValueError("price_tolerance_percent must be >= 0")


@dataclass(frozen=True)
class LineMatchInput:
    """
    One invoice line and the PO/receipt figures it is matched against.

    ``previously_invoiced`` is the PO line's invoiced quantity before this
    invoice, so the quantity still open for invoicing is
    ``quantity_received - previously_invoiced``.
    """

    po_line_id: UUID
    quantity_ordered: Decimal
    quantity_received: Decimal
    previously_invoiced: Decimal
    po_unit_price: Decimal
    invoice_quantity: Decimal
    invoice_unit_price: Decimal

    def __post_init__(self) -> None:
        for name in (
            "quantity_ordered",
            "quantity_received",
            "previously_invoiced",
            "po_unit_price",
            "invoice_quantity",
            "invoice_unit_price",
        ):
            if getattr(self, name) < ZERO:
                raise ValueError(f"{name} must be >= 0")

    @property
    def open_quantity(self) -> Decimal:
        return max(ZERO, self.quantity_received - self.previously_invoiced)


@dataclass(frozen=True)
class LineMatchResult:
    po_line_id: UUID
    status: MatchStatus
    reasons: tuple[VarianceReason, ...]
    open_quantity: Decimal
    over_quantity: Decimal
    price_difference: Decimal
    price_variance_percent: Decimal
    variance_amount: Decimal

    @property
    def variance_reason(self) -> str | None:
        if not self.reasons:
            return None
        return ",".join(r.value for r in self.reasons)


@dataclass(frozen=True)
class InvoiceMatchResult:
    status: MatchStatus
    lines: tuple[LineMatchResult, ...]

    @property
    def total_variance(self) -> Decimal:
        return sum((line.variance_amount for line in self.lines), ZERO)

    @property
    def has_variance(self) -> bool:
        return self.status is MatchStatus.VARIANCE

    @property
    def variance_line_count(self) -> int:
        return sum(1 for line in self.lines if line.status is MatchStatus.VARIANCE)


class ThreeWayMatchEngine:
    """
    Pure three-way matching.

    Contract:
        ``match_line`` classifies one line; ``match`` classifies every line
        and rolls the statuses up.  Neither reads state.
    """

    def match_line(self, line: LineMatchInput, tolerance: MatchTolerance) -> LineMatchResult:
        price_difference = line.invoice_unit_price - line.po_unit_price
        if line.po_unit_price > ZERO:
            price_variance_percent = abs(price_difference) / line.po_unit_price * HUNDRED
        else:
            price_variance_percent = ZERO

        open_quantity = line.open_quantity
        over_quantity = max(ZERO, line.invoice_quantity - open_quantity)

        if line.quantity_received == ZERO:
            return LineMatchResult(
                po_line_id=line.po_line_id,
                status=MatchStatus.PENDING,
                reasons=(),
                open_quantity=open_quantity,
                over_quantity=over_quantity,
                price_difference=price_difference,
                price_variance_percent=price_variance_percent,
                variance_amount=ZERO,
            )

        reasons: list[VarianceReason] = []
        if over_quantity > ZERO:
            reasons.append(VarianceReason.QUANTITY_EXCEEDS_RECEIVED)
        if price_variance_percent > tolerance.price_tolerance_percent:
            reasons.append(VarianceReason.PRICE_VARIANCE)

        variance_amount = ZERO
        if reasons:
            variance_amount = (
                line.invoice_quantity * price_difference + over_quantity * line.po_unit_price
            )

        return LineMatchResult(
            po_line_id=line.po_line_id,
            status=MatchStatus.VARIANCE if reasons else MatchStatus.MATCHED,
            reasons=tuple(reasons),
            open_quantity=open_quantity,
            over_quantity=over_quantity,
            price_difference=price_difference,
            price_variance_percent=price_variance_percent,
            variance_amount=variance_amount,
        )

    @traced_engine("three_way_match", "1.0", fingerprint_fields=("lines", "tolerance"))
    def match(
        self,
        *,
        lines: Sequence[LineMatchInput],
        tolerance: MatchTolerance,
    ) -> InvoiceMatchResult:
        results = tuple(self.match_line(line, tolerance) for line in lines)
        statuses = {r.status for r in results}
        if MatchStatus.VARIANCE in statuses:
            status = MatchStatus.VARIANCE
        elif MatchStatus.PENDING in statuses or not results:
            status = MatchStatus.PENDING
        else:
            status = MatchStatus.MATCHED

        logger.debug(
            "three_way_match_completed",
            extra={
                "line_count": len(results),
                "match_status": status.value,
                "variance_lines": sum(1 for r in results if r.status is MatchStatus.VARIANCE),
            },
        )
        return InvoiceMatchResult(status=status, lines=results)
