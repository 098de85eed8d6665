"""
Accounts Payable Module Service (``procure_modules.ap.service``).

Responsibility
--------------
Invoice receipt (with three-way match), re-matching, cancellation, variance
approval and the payment lifecycle (create, process, clear, cancel, fail,
retry, reverse), keeping the invoice ``payment_status`` and ``paid`` state
in step with settled payments.

Architecture position
---------------------
**Modules layer** -- thin workflow glue.  Matching and settlement arithmetic
live in ``procure_engines``; this service loads rows, calls the engines and
writes the outcome through the shared ``WorkflowRunner``.

Invariants enforced
-------------------
* An invoice that varied cannot be paid until a variance note is recorded.
* Pending, processed and cleared payments together never exceed the
  invoice total; outstanding counts processed and cleared only.
* ``quantity_invoiced`` on PO lines moves in the same savepoint as the
  invoice lines that consume it.  Only matched and variance lines consume
  quantity; cancelling an invoice releases it.
* The service flushes and never commits.

Failure modes
-------------
* Business-rule failures -> ``WorkflowResult`` with ``is_success == False``
  and a snake_case ``code``.
* Read helpers raise ``RecordNotFoundError`` / ``ActionDeniedError``.

Audit relevance
---------------
Variance approver, time and note are stored on the invoice; every payment
transition records its actor and timestamp; clearing creates a
``ClearingEntryModel`` row.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_engines.matching import (
    LineMatchInput,
    MatchStatus,
    MatchTolerance,
    ThreeWayMatchEngine,
)
from procure_engines.settlement import PaymentStatus, SettlementCalculator, SettlementSummary
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.workflow import WorkflowResult
from procure_kernel.exceptions import BusinessRuleViolation, RecordNotFoundError
from procure_kernel.logging_config import get_logger
from procure_kernel.services.base import BaseService
from procure_kernel.services.permission_resolver import PermissionResolver, as_user_id
from procure_modules._workflow_helpers import (
    WorkflowRunner,
    next_document_number,
    row_snapshot,
    to_date,
    to_decimal,
    to_uuid,
)
from procure_modules.ap.config import APConfig
from procure_modules.ap.models import (
    InvoiceLineInput,
    InvoiceMatchingSummary,
    InvoiceStatus,
    LineMatchSummary,
    OutstandingAmount,
    PaymentState,
)
from procure_modules.ap.orm import (
    ClearingEntryModel,
    InvoiceLineModel,
    InvoiceReceiptModel,
    PaymentModel,
)
from procure_modules.ap.workflows import INVOICE_WORKFLOW, PAYMENT_WORKFLOW
from procure_modules.procurement.models import RECEIVABLE_PO_STATUSES, GRStatus
from procure_modules.procurement.orm import (
    GoodsReceiptLineModel,
    GoodsReceiptModel,
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    SupplierModel,
)

logger = get_logger("modules.ap.service")

INVOICE_RECEIPT = "invoice_receipt"
PAYMENT = "payment"

ZERO = Decimal("0")

_INVOICE_STATUS_FOR_MATCH = {
    MatchStatus.MATCHED: InvoiceStatus.APPROVED.value,
    MatchStatus.VARIANCE: InvoiceStatus.VARIANCE_REVIEW.value,
    MatchStatus.PENDING: InvoiceStatus.PENDING_MATCH.value,
}


class APService(BaseService):
    """
    Invoice and payment workflows.

    Contract
    --------
    * Workflow methods return ``WorkflowResult``; read helpers return frozen
      summaries.
    * The session is flushed, never committed.
    * Clock is injectable for deterministic testing.
    """

    def __init__(
        self,
        session: Session,
        resolver: PermissionResolver,
        clock: Clock | None = None,
        config: APConfig | None = None,
    ):
        super().__init__(session)
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._config = config or APConfig.with_defaults()
        self._runner = WorkflowRunner(session, resolver, self._clock)
        self._matcher = ThreeWayMatchEngine()
        self._settlement = SettlementCalculator()

    # =========================================================================
    # Invoices
    # =========================================================================

    def create_invoice_receipt(
        self,
        actor_id: Any,
        po_id: Any,
        lines: Sequence[Mapping[str, Any]] = (),
        invoice_date: Any = None,
        supplier_invoice_number: str | None = None,
        tax_amount: Any = ZERO,
        currency: str | None = None,
        due_date: Any = None,
        invoice_number: str | None = None,
    ) -> WorkflowResult:
        """
        Record a supplier invoice and three-way match it.

        With no ``lines`` the invoice covers every received-but-not-invoiced
        quantity at the PO price.  A matched invoice is approved on creation;
        a variance goes to review; an invoice with a line that has nothing
        received stays in ``pending_match`` until ``rematch_invoice``.  Pending
        lines do not consume PO quantity.
        """

        def operation() -> WorkflowResult:
            self._runner.authorize(actor_id, INVOICE_RECEIPT, "create")
            po = self._runner.load_for_update(PurchaseOrderModel, po_id, "Purchase order")
            if po.status not in RECEIVABLE_PO_STATUSES:
                raise BusinessRuleViolation(
                    f"Cannot invoice purchase order in status '{po.status}'",
                    "po_not_receivable",
                )
            accepted = self._accepted_receipt_lines(po.id)
            if not accepted:
                raise BusinessRuleViolation(
                    f"Purchase order {po.po_number} has no accepted goods receipt",
                    "no_accepted_receipt",
                )
            invoice_currency = currency or po.currency
            if invoice_currency != po.currency:
                raise BusinessRuleViolation(
                    f"Invoice currency {invoice_currency} does not match PO currency {po.currency}",
                    "currency_mismatch",
                )
            tax = to_decimal(tax_amount, "tax_amount")
            if tax < ZERO:
                raise BusinessRuleViolation("Tax amount must be >= 0", "invalid_amount")

            po_lines = self._lock_po_lines(po.id)
            if lines:
                line_inputs = [InvoiceLineInput.from_mapping(line) for line in lines]
            else:
                line_inputs = self._uninvoiced_lines(po_lines, accepted)
                if not line_inputs:
                    raise BusinessRuleViolation(
                        f"Nothing left to invoice on {po.po_number}", "nothing_to_invoice",
                    )

            match_inputs = []
            running_invoiced: dict[UUID, Decimal] = {
                line_id: line.quantity_invoiced for line_id, line in po_lines.items()
            }
            for index, line in enumerate(line_inputs, start=1):
                po_line = po_lines.get(line.purchase_order_line_id)
                if po_line is None:
                    raise BusinessRuleViolation(
                        f"Line {index}: {line.purchase_order_line_id} is not a line of {po.po_number}",
                        "invalid_po_line",
                    )
                if line.quantity <= ZERO:
                    raise BusinessRuleViolation(f"Line {index}: quantity must be > 0", "invalid_quantity")
                if line.unit_price < ZERO:
                    raise BusinessRuleViolation(f"Line {index}: unit price must be >= 0", "invalid_price")
                if line.goods_receipt_line_id is not None:
                    gr_line = accepted.get(line.goods_receipt_line_id)
                    if gr_line is None or gr_line.purchase_order_line_id != po_line.id:
                        raise BusinessRuleViolation(
                            f"Line {index}: {line.goods_receipt_line_id} is not an accepted "
                            f"receipt line for PO line {po_line.line_number}",
                            "invalid_goods_receipt_line",
                        )
                match_inputs.append(
                    LineMatchInput(
                        po_line_id=po_line.id,
                        quantity_ordered=po_line.quantity_ordered,
                        quantity_received=po_line.quantity_received,
                        previously_invoiced=running_invoiced[po_line.id],
                        po_unit_price=po_line.unit_price,
                        invoice_quantity=line.quantity,
                        invoice_unit_price=line.unit_price,
                    )
                )
                running_invoiced[po_line.id] += line.quantity

            tolerance = MatchTolerance(price_tolerance_percent=self._config.match_tolerance_percent)
            match = self._matcher.match(lines=match_inputs, tolerance=tolerance)

            supplier = self.session.get(SupplierModel, po.supplier_id)
            on_date = to_date(invoice_date, "invoice_date") if invoice_date is not None else self._clock.today()
            if due_date is not None:
                due = to_date(due_date, "due_date")
            else:
                terms = supplier.payment_terms_days if supplier is not None else None
                if terms is None:
                    terms = self._config.default_payment_terms_days
                due = on_date + timedelta(days=terms)

            actor = as_user_id(actor_id)
            subtotal = sum((line.line_total for line in line_inputs), ZERO)
            status = _INVOICE_STATUS_FOR_MATCH[match.status]
            invoice = InvoiceReceiptModel(
                invoice_number=invoice_number or next_document_number(
                    self.session, InvoiceReceiptModel.invoice_number,
                    self._config.invoice_number_prefix, on_date,
                ),
                supplier_invoice_number=supplier_invoice_number,
                purchase_order_id=po.id,
                supplier_id=po.supplier_id,
                invoice_date=on_date,
                due_date=due,
                total_amount=subtotal + tax,
                tax_amount=tax,
                currency=invoice_currency,
                status=status,
                matching_status=match.status.value,
                payment_status=PaymentStatus.UNPAID.value,
                created_by_id=actor,
            )
            self.session.add(invoice)
            for number, (line, result) in enumerate(zip(line_inputs, match.lines), start=1):
                invoice.lines.append(
                    InvoiceLineModel(
                        line_number=number,
                        purchase_order_line_id=line.purchase_order_line_id,
                        goods_receipt_line_id=line.goods_receipt_line_id,
                        quantity_invoiced=line.quantity,
                        unit_price=line.unit_price,
                        line_total=line.line_total,
                        match_status=result.status.value,
                        variance_amount=result.variance_amount,
                        variance_reason=result.variance_reason,
                        created_by_id=actor,
                    )
                )
                if result.status is not MatchStatus.PENDING:
                    po_line = po_lines[line.purchase_order_line_id]
                    po_line.quantity_invoiced = po_line.quantity_invoiced + line.quantity
                    po_line.updated_by_id = actor
            self.session.flush()

            logger.info(
                "ap_invoice_created",
                extra={
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                    "po_id": str(po.id),
                    "matching_status": match.status.value,
                    "invoice_status": status,
                    "variance_lines": match.variance_line_count,
                },
            )
            return WorkflowResult.ok(
                invoice.id,
                "create",
                status,
                data={
                    "invoice_number": invoice.invoice_number,
                    "matching_status": match.status.value,
                    "total_amount": str(invoice.total_amount),
                    "total_variance": str(match.total_variance),
                    "variance_line_count": match.variance_line_count,
                    "due_date": due.isoformat(),
                },
            )

        return self._runner.run("create", None, operation)

    def approve_invoice_variance(self, actor_id: Any, invoice_id: Any, notes: str | None) -> WorkflowResult:
        """Approve an invoice in variance review; a note is required."""

        def operation() -> WorkflowResult:
            invoice = self._runner.load_for_update(InvoiceReceiptModel, invoice_id, "Invoice")
            self._runner.authorize(actor_id, INVOICE_RECEIPT, "approve_variance", invoice)
            previous, new = self._runner.transition(
                INVOICE_WORKFLOW, invoice, "approve_variance", actor_id,
                values={
                    "variance_approved_by_id": as_user_id(actor_id),
                    "variance_approved_at": self._clock.now(),
                    "variance_notes": notes.strip() if notes else notes,
                },
                reason=notes,
            )
            return WorkflowResult.ok(invoice.id, "approve_variance", new, previous, data={"notes": notes})

        return self._runner.run("approve_variance", self._maybe_uuid(invoice_id), operation)

    def rematch_invoice(self, actor_id: Any, invoice_id: Any) -> WorkflowResult:
        """
        Re-run the three-way match on a ``pending_match`` invoice.

        Lines that were pending consume PO quantity now.  The invoice ends in
        ``approved`` or ``variance_review``; while any line still has nothing
        received the call fails with ``match_pending`` and changes nothing.
        """

        def operation() -> WorkflowResult:
            invoice = self._runner.load_for_update(InvoiceReceiptModel, invoice_id, "Invoice")
            self._runner.authorize(actor_id, INVOICE_RECEIPT, "rematch", invoice)
            INVOICE_WORKFLOW.resolve(invoice.status, "rematch")

            po_lines = self._lock_po_lines(invoice.purchase_order_id)
            running_invoiced = self._invoiced_by_others(invoice, po_lines)
            match_inputs = []
            for line in invoice.lines:
                po_line = po_lines[line.purchase_order_line_id]
                match_inputs.append(
                    LineMatchInput(
                        po_line_id=po_line.id,
                        quantity_ordered=po_line.quantity_ordered,
                        quantity_received=po_line.quantity_received,
                        previously_invoiced=running_invoiced[po_line.id],
                        po_unit_price=po_line.unit_price,
                        invoice_quantity=line.quantity_invoiced,
                        invoice_unit_price=line.unit_price,
                    )
                )
                running_invoiced[po_line.id] += line.quantity_invoiced

            tolerance = MatchTolerance(price_tolerance_percent=self._config.match_tolerance_percent)
            match = self._matcher.match(lines=match_inputs, tolerance=tolerance)
            if match.status is MatchStatus.PENDING:
                raise BusinessRuleViolation(
                    f"Invoice {invoice.invoice_number} still has lines with nothing received",
                    "match_pending",
                )

            actor = as_user_id(actor_id)
            for line, result in zip(invoice.lines, match.lines):
                if line.match_status == MatchStatus.PENDING.value:
                    po_line = po_lines[line.purchase_order_line_id]
                    po_line.quantity_invoiced = po_line.quantity_invoiced + line.quantity_invoiced
                    po_line.updated_by_id = actor
                line.match_status = result.status.value
                line.variance_amount = result.variance_amount
                line.variance_reason = result.variance_reason
                line.updated_by_id = actor
            self.session.flush()

            previous, _ = self._runner.transition(
                INVOICE_WORKFLOW, invoice, "rematch", actor_id,
                values={"matching_status": match.status.value},
            )
            follow_up = "flag_variance" if match.has_variance else "approve"
            _, new = self._runner.transition(INVOICE_WORKFLOW, invoice, follow_up, actor_id)

            logger.info(
                "ap_invoice_rematched",
                extra={
                    "invoice_id": str(invoice.id),
                    "matching_status": match.status.value,
                    "invoice_status": new,
                    "variance_lines": match.variance_line_count,
                },
            )
            return WorkflowResult.ok(
                invoice.id,
                "rematch",
                new,
                previous,
                data={
                    "matching_status": match.status.value,
                    "total_variance": str(match.total_variance),
                    "variance_line_count": match.variance_line_count,
                },
            )

        return self._runner.run("rematch", self._maybe_uuid(invoice_id), operation)

    def cancel_invoice(self, actor_id: Any, invoice_id: Any, reason: str | None) -> WorkflowResult:
        """Cancel an unpaid invoice in match or variance review and release its PO quantity."""

        def operation() -> WorkflowResult:
            invoice = self._runner.load_for_update(InvoiceReceiptModel, invoice_id, "Invoice")
            self._runner.authorize(actor_id, INVOICE_RECEIPT, "cancel", invoice)
            po_lines = self._lock_po_lines(invoice.purchase_order_id)
            previous, new = self._runner.transition(
                INVOICE_WORKFLOW, invoice, "cancel", actor_id, reason=reason,
            )

            actor = as_user_id(actor_id)
            released = ZERO
            for line in invoice.lines:
                if line.match_status == MatchStatus.PENDING.value:
                    continue
                po_line = po_lines[line.purchase_order_line_id]
                po_line.quantity_invoiced = max(ZERO, po_line.quantity_invoiced - line.quantity_invoiced)
                po_line.updated_by_id = actor
                released += line.quantity_invoiced
            self.session.flush()

            logger.info(
                "ap_invoice_cancelled",
                extra={"invoice_id": str(invoice.id), "released_quantity": str(released)},
            )
            return WorkflowResult.ok(
                invoice.id, "cancel", new, previous,
                data={"reason": reason, "released_quantity": str(released)},
            )

        return self._runner.run("cancel", self._maybe_uuid(invoice_id), operation)

    def get_invoice_matching_summary(self, actor_id: Any, invoice_id: Any) -> InvoiceMatchingSummary:
        invoice = self._load_invoice(invoice_id)
        self._resolver.require_action(actor_id, INVOICE_RECEIPT, "read", row_snapshot(invoice))
        po_line_ids = [line.purchase_order_line_id for line in invoice.lines]
        po_lines = {
            line.id: line
            for line in self.session.execute(
                select(PurchaseOrderLineModel).where(PurchaseOrderLineModel.id.in_(po_line_ids))
            ).scalars()
        }
        summaries = []
        for line in invoice.lines:
            po_line = po_lines[line.purchase_order_line_id]
            summaries.append(
                LineMatchSummary(
                    invoice_line_id=line.id,
                    purchase_order_line_id=po_line.id,
                    item_code=po_line.item_code,
                    quantity_ordered=po_line.quantity_ordered,
                    quantity_received=po_line.quantity_received,
                    quantity_invoiced=line.quantity_invoiced,
                    po_unit_price=po_line.unit_price,
                    invoice_unit_price=line.unit_price,
                    match_status=line.match_status,
                    variance_amount=line.variance_amount,
                    variance_reason=line.variance_reason,
                )
            )
        return InvoiceMatchingSummary(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            status=invoice.status,
            matching_status=invoice.matching_status,
            total_variance=sum((s.variance_amount for s in summaries), ZERO),
            lines=tuple(summaries),
        )

    def get_outstanding_amount(self, actor_id: Any, invoice_id: Any) -> OutstandingAmount:
        invoice = self._load_invoice(invoice_id)
        self._resolver.require_action(actor_id, INVOICE_RECEIPT, "read", row_snapshot(invoice))
        summary = self._settle(invoice)
        return OutstandingAmount(
            invoice_id=invoice.id,
            total_amount=summary.total_amount,
            settled_amount=summary.settled_amount,
            outstanding=summary.outstanding,
            available_for_payment=summary.available_for_payment,
            payment_status=summary.payment_status.value,
        )

    # =========================================================================
    # Payments
    # =========================================================================

    def create_payment(
        self,
        actor_id: Any,
        invoice_id: Any,
        amount: Any,
        payment_method: str = "bank_transfer",
        payment_date: Any = None,
        currency: str | None = None,
        reference: str | None = None,
        payment_number: str | None = None,
    ) -> WorkflowResult:
        """Create a pending payment; pending amounts reserve invoice headroom."""

        def operation() -> WorkflowResult:
            self._runner.authorize(actor_id, PAYMENT, "create")
            invoice = self._runner.load_for_update(InvoiceReceiptModel, invoice_id, "Invoice")
            if invoice.status == InvoiceStatus.VARIANCE_REVIEW.value:
                raise BusinessRuleViolation(
                    f"Invoice {invoice.invoice_number} has an unapproved variance",
                    "variance_not_approved",
                )
            if invoice.status != InvoiceStatus.APPROVED.value:
                raise BusinessRuleViolation(
                    f"Invoice {invoice.invoice_number} in status '{invoice.status}' cannot be paid",
                    "invoice_not_approved",
                )
            value = to_decimal(amount, "amount")
            if value <= ZERO:
                raise BusinessRuleViolation("Payment amount must be > 0", "invalid_amount")
            payment_currency = currency or invoice.currency
            if payment_currency != invoice.currency:
                raise BusinessRuleViolation(
                    f"Payment currency {payment_currency} does not match invoice currency {invoice.currency}",
                    "currency_mismatch",
                )
            if payment_method not in self._config.allowed_payment_methods:
                raise BusinessRuleViolation(
                    f"Unsupported payment method: {payment_method}", "invalid_payment_method",
                )
            summary = self._settle(invoice)
            if value > summary.available_for_payment:
                raise BusinessRuleViolation(
                    f"Payment {value} exceeds outstanding {summary.available_for_payment}",
                    "exceeds_outstanding",
                )

            on_date = to_date(payment_date, "payment_date") if payment_date is not None else self._clock.today()
            payment = PaymentModel(
                payment_number=payment_number or next_document_number(
                    self.session, PaymentModel.payment_number,
                    self._config.payment_number_prefix, on_date,
                ),
                invoice_id=invoice.id,
                amount=value,
                currency=payment_currency,
                payment_date=on_date,
                payment_method=payment_method,
                status=PaymentState.PENDING.value,
                reference=reference,
                created_by_id=as_user_id(actor_id),
            )
            self.session.add(payment)
            self.session.flush()
            logger.info(
                "ap_payment_created",
                extra={
                    "payment_id": str(payment.id),
                    "invoice_id": str(invoice.id),
                    "amount": str(value),
                    "available_before": str(summary.available_for_payment),
                },
            )
            return WorkflowResult.ok(
                payment.id,
                "create",
                payment.status,
                data={
                    "payment_number": payment.payment_number,
                    "amount": str(value),
                    "outstanding": str(summary.outstanding),
                },
            )

        return self._runner.run("create", None, operation)

    def process_payment(self, actor_id: Any, payment_id: Any) -> WorkflowResult:
        def operation() -> WorkflowResult:
            payment = self._runner.load_for_update(PaymentModel, payment_id, "Payment")
            self._runner.authorize(actor_id, PAYMENT, "process", payment)
            previous, new = self._runner.transition(
                PAYMENT_WORKFLOW, payment, "process", actor_id,
                values={"processed_by_id": as_user_id(actor_id), "processed_at": self._clock.now()},
            )
            invoice_state = self._recompute_invoice(payment.invoice_id, actor_id)
            return WorkflowResult.ok(payment.id, "process", new, previous, data=invoice_state)

        return self._runner.run("process", self._maybe_uuid(payment_id), operation)

    def clear_payment(
        self,
        actor_id: Any,
        payment_id: Any,
        bank_reference: str | None = None,
        clearing_date: Any = None,
    ) -> WorkflowResult:
        """Mark a processed payment cleared and record the clearing entry."""

        def operation() -> WorkflowResult:
            payment = self._runner.load_for_update(PaymentModel, payment_id, "Payment")
            self._runner.authorize(actor_id, PAYMENT, "clear", payment)
            previous, new = self._runner.transition(
                PAYMENT_WORKFLOW, payment, "clear", actor_id,
                values={"cleared_by_id": as_user_id(actor_id), "cleared_at": self._clock.now()},
            )
            entry = ClearingEntryModel(
                payment_id=payment.id,
                invoice_id=payment.invoice_id,
                clearing_date=(
                    to_date(clearing_date, "clearing_date") if clearing_date is not None else self._clock.today()
                ),
                cleared_amount=payment.amount,
                bank_reference=bank_reference,
                created_by_id=as_user_id(actor_id),
            )
            self.session.add(entry)
            self.session.flush()
            invoice_state = self._recompute_invoice(payment.invoice_id, actor_id)
            return WorkflowResult.ok(
                payment.id, "clear", new, previous,
                data={**invoice_state, "clearing_entry_id": str(entry.id)},
            )

        return self._runner.run("clear", self._maybe_uuid(payment_id), operation)

    def cancel_payment(self, actor_id: Any, payment_id: Any, reason: str | None) -> WorkflowResult:
        def operation() -> WorkflowResult:
            payment = self._runner.load_for_update(PaymentModel, payment_id, "Payment")
            self._runner.authorize(actor_id, PAYMENT, "cancel", payment)
            previous, new = self._runner.transition(
                PAYMENT_WORKFLOW, payment, "cancel", actor_id,
                values={
                    "cancelled_by_id": as_user_id(actor_id),
                    "cancelled_at": self._clock.now(),
                    "cancellation_reason": reason,
                },
                reason=reason,
            )
            return WorkflowResult.ok(payment.id, "cancel", new, previous, data={"reason": reason})

        return self._runner.run("cancel", self._maybe_uuid(payment_id), operation)

    def fail_payment(self, actor_id: Any, payment_id: Any, reason: str | None) -> WorkflowResult:
        def operation() -> WorkflowResult:
            payment = self._runner.load_for_update(PaymentModel, payment_id, "Payment")
            self._runner.authorize(actor_id, PAYMENT, "fail", payment)
            previous, new = self._runner.transition(
                PAYMENT_WORKFLOW, payment, "fail", actor_id,
                values={"failed_at": self._clock.now(), "failure_reason": reason},
                reason=reason,
            )
            data: dict[str, Any] = {"reason": reason}
            if previous == PaymentState.PROCESSED.value:
                data.update(self._recompute_invoice(payment.invoice_id, actor_id))
            return WorkflowResult.ok(payment.id, "fail", new, previous, data=data)

        return self._runner.run("fail", self._maybe_uuid(payment_id), operation)

    def retry_payment(self, actor_id: Any, payment_id: Any) -> WorkflowResult:
        """Return a failed payment to pending if the invoice still has room."""

        def operation() -> WorkflowResult:
            payment = self._runner.load_for_update(PaymentModel, payment_id, "Payment")
            self._runner.authorize(actor_id, PAYMENT, "retry", payment)
            PAYMENT_WORKFLOW.resolve(payment.status, "retry")
            invoice = self._runner.load_for_update(InvoiceReceiptModel, payment.invoice_id, "Invoice")
            if invoice.status != InvoiceStatus.APPROVED.value:
                raise BusinessRuleViolation(
                    f"Invoice {invoice.invoice_number} in status '{invoice.status}' cannot be paid",
                    "invoice_not_approved",
                )
            summary = self._settle(invoice)
            if payment.amount > summary.available_for_payment:
                raise BusinessRuleViolation(
                    f"Payment {payment.amount} exceeds outstanding {summary.available_for_payment}",
                    "exceeds_outstanding",
                )
            previous, new = self._runner.transition(
                PAYMENT_WORKFLOW, payment, "retry", actor_id,
                values={"failure_reason": None, "failed_at": None},
            )
            return WorkflowResult.ok(payment.id, "retry", new, previous)

        return self._runner.run("retry", self._maybe_uuid(payment_id), operation)

    def reverse_payment(self, actor_id: Any, payment_id: Any, reason: str | None) -> WorkflowResult:
        """Reverse a processed or cleared payment; a paid invoice reopens."""

        def operation() -> WorkflowResult:
            payment = self._runner.load_for_update(PaymentModel, payment_id, "Payment")
            self._runner.authorize(actor_id, PAYMENT, "reverse", payment)
            previous, new = self._runner.transition(
                PAYMENT_WORKFLOW, payment, "reverse", actor_id,
                values={
                    "reversed_by_id": as_user_id(actor_id),
                    "reversed_at": self._clock.now(),
                    "reversal_reason": reason,
                },
                reason=reason,
            )
            invoice_state = self._recompute_invoice(payment.invoice_id, actor_id)
            return WorkflowResult.ok(
                payment.id, "reverse", new, previous, data={**invoice_state, "reason": reason},
            )

        return self._runner.run("reverse", self._maybe_uuid(payment_id), operation)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _accepted_receipt_lines(self, po_id: UUID) -> dict[UUID, GoodsReceiptLineModel]:
        rows = self.session.execute(
            select(GoodsReceiptLineModel)
            .join(GoodsReceiptModel, GoodsReceiptLineModel.goods_receipt_id == GoodsReceiptModel.id)
            .where(
                GoodsReceiptModel.purchase_order_id == po_id,
                GoodsReceiptModel.status == GRStatus.ACCEPTED.value,
                GoodsReceiptModel.is_deleted.is_(False),
            )
            .order_by(GoodsReceiptModel.receipt_date, GoodsReceiptLineModel.created_at)
        ).scalars()
        return {line.id: line for line in rows}

    def _lock_po_lines(self, po_id: UUID) -> dict[UUID, PurchaseOrderLineModel]:
        rows = self.session.execute(
            select(PurchaseOrderLineModel)
            .where(PurchaseOrderLineModel.purchase_order_id == po_id)
            .order_by(PurchaseOrderLineModel.line_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {line.id: line for line in rows}

    @staticmethod
    def _uninvoiced_lines(
        po_lines: Mapping[UUID, PurchaseOrderLineModel],
        accepted: Mapping[UUID, GoodsReceiptLineModel],
    ) -> list[InvoiceLineInput]:
        latest_receipt_line: dict[UUID, UUID] = {}
        for gr_line in accepted.values():
            latest_receipt_line[gr_line.purchase_order_line_id] = gr_line.id
        result = []
        for po_line in po_lines.values():
            open_quantity = po_line.quantity_received - po_line.quantity_invoiced
            if open_quantity > ZERO:
                result.append(
                    InvoiceLineInput(
                        purchase_order_line_id=po_line.id,
                        quantity=open_quantity,
                        unit_price=po_line.unit_price,
                        goods_receipt_line_id=latest_receipt_line.get(po_line.id),
                    )
                )
        return result

    @staticmethod
    def _invoiced_by_others(
        invoice: InvoiceReceiptModel, po_lines: Mapping[UUID, PurchaseOrderLineModel],
    ) -> dict[UUID, Decimal]:
        """PO line invoiced quantities minus what ``invoice`` itself already consumed."""
        result = {line_id: line.quantity_invoiced for line_id, line in po_lines.items()}
        for line in invoice.lines:
            if line.match_status != MatchStatus.PENDING.value:
                result[line.purchase_order_line_id] -= line.quantity_invoiced
        return result

    def _payment_rows(self, invoice_id: UUID) -> list[tuple[Decimal, str]]:
        rows = self.session.execute(
            select(PaymentModel.amount, PaymentModel.status).where(
                PaymentModel.invoice_id == invoice_id,
                PaymentModel.is_deleted.is_(False),
            )
        ).all()
        return [(amount, status) for amount, status in rows]

    def _settle(self, invoice: InvoiceReceiptModel) -> SettlementSummary:
        return self._settlement.summarize(
            total_amount=invoice.total_amount,
            payments=self._payment_rows(invoice.id),
        )

    def _recompute_invoice(self, invoice_id: UUID, actor_id: Any) -> dict[str, Any]:
        """Refresh payment_status and move the invoice into or out of ``paid``."""
        invoice = self._runner.load_for_update(InvoiceReceiptModel, invoice_id, "Invoice")
        summary = self._settle(invoice)
        payment_status = summary.payment_status.value
        if invoice.payment_status != payment_status:
            invoice.payment_status = payment_status
            invoice.updated_by_id = as_user_id(actor_id)
            self.session.flush()

        if summary.payment_status is PaymentStatus.PAID and invoice.status == InvoiceStatus.APPROVED.value:
            self._runner.transition(INVOICE_WORKFLOW, invoice, "mark_paid", actor_id)
        elif summary.payment_status is not PaymentStatus.PAID and invoice.status == InvoiceStatus.PAID.value:
            self._runner.transition(INVOICE_WORKFLOW, invoice, "reopen", actor_id)

        logger.info(
            "ap_invoice_settlement_recomputed",
            extra={
                "invoice_id": str(invoice.id),
                "payment_status": payment_status,
                "invoice_status": invoice.status,
                "outstanding": str(summary.outstanding),
            },
        )
        return {
            "invoice_id": str(invoice.id),
            "invoice_status": invoice.status,
            "payment_status": payment_status,
            "outstanding": str(summary.outstanding),
        }

    def _load_invoice(self, invoice_id: Any) -> InvoiceReceiptModel:
        try:
            rid = to_uuid(invoice_id, "invoice_id")
        except BusinessRuleViolation:
            raise RecordNotFoundError(INVOICE_RECEIPT, str(invoice_id)) from None
        invoice = self.session.get(InvoiceReceiptModel, rid)
        if invoice is None or invoice.is_deleted:
            raise RecordNotFoundError(INVOICE_RECEIPT, str(invoice_id))
        return invoice

    @staticmethod
    def _maybe_uuid(value: Any) -> UUID | None:
        try:
            return to_uuid(value, "id")
        except BusinessRuleViolation:
            return None
