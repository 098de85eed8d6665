"""
Procurement Module Service (``procure_modules.procurement.service``).

Responsibility
--------------
Purchase order lifecycle (create, submit, approve, reject, cancel) and
goods receipt lifecycle (create, accept, reject), including the
open-quantity check and the PO receive transitions applied on acceptance.

Architecture position
---------------------
**Modules layer** -- thin workflow glue.  Composes the kernel permission
resolver and the shared ``WorkflowRunner``; state tables live in
``procure_modules.procurement.workflows``.

Invariants enforced
-------------------
* Every operation runs inside one savepoint; a failed business rule leaves
  no partial writes (PO line totals and PO status move together with the
  receipt status).
* Status changes go through compare-and-set UPDATEs after a FOR UPDATE load.
* Cumulative received never exceeds ordered * (1 + tolerance / 100); the
  check runs on creation and again, under row locks, on acceptance.
* The service flushes and never commits.

Failure modes
-------------
* Business-rule failures -> ``WorkflowResult`` with ``is_success == False``
  and a snake_case ``code``.
* Configuration and storage problems raise (ConfigurationError,
  BackendError).

Audit relevance
---------------
Structured log events for every applied or rejected transition are emitted
by the runner; actor and timestamp columns are set on every transition.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.workflow import WorkflowResult
from procure_kernel.exceptions import BusinessRuleViolation
from procure_kernel.logging_config import get_logger
from procure_kernel.services.base import BaseService
from procure_kernel.services.permission_resolver import PermissionResolver, as_user_id
from procure_modules._workflow_helpers import (
    WorkflowRunner,
    next_document_number,
    to_date,
    to_uuid,
)
from procure_modules.procurement.config import ProcurementConfig
from procure_modules.procurement.models import (
    RECEIVABLE_PO_STATUSES,
    GoodsReceiptLineInput,
    GRStatus,
    POStatus,
    PurchaseOrderLineInput,
)
from procure_modules.procurement.orm import (
    GoodsReceiptLineModel,
    GoodsReceiptModel,
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    SupplierModel,
)
from procure_modules.procurement.workflows import (
    GOODS_RECEIPT_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
)

logger = get_logger("modules.procurement.service")

PURCHASE_ORDER = "purchase_order"
GOODS_RECEIPT = "goods_receipt"

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class ProcurementService(BaseService):
    """
    Purchase order and goods receipt workflows.

    Contract
    --------
    * Every public method returns ``WorkflowResult``; callers inspect
      ``result.is_success``.
    * The session is flushed, never committed; ``ProcureRuntime`` owns the
      transaction.
    * Clock is injectable for deterministic testing.
    """

    def __init__(
        self,
        session: Session,
        resolver: PermissionResolver,
        clock: Clock | None = None,
        config: ProcurementConfig | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._config = config or ProcurementConfig.with_defaults()
        self._runner = WorkflowRunner(session, resolver, self._clock)

    # =========================================================================
    # Purchase Orders
    # =========================================================================

    def create_purchase_order(
        self,
        actor_id: Any,
        supplier_id: Any,
        lines: Sequence[Mapping[str, Any]] = (),
        po_date: Any = None,
        expected_delivery_date: Any = None,
        currency: str | None = None,
        notes: str | None = None,
        po_number: str | None = None,
    ) -> WorkflowResult:
        """Create a draft purchase order with its lines."""

        def operation() -> WorkflowResult:
            self._runner.authorize(actor_id, PURCHASE_ORDER, "create")
            supplier = self.session.get(SupplierModel, to_uuid(supplier_id, "supplier_id"))
            if supplier is None or supplier.is_deleted:
                raise BusinessRuleViolation(f"Supplier not found: {supplier_id}", "supplier_not_found")
            if not supplier.is_active:
                raise BusinessRuleViolation(f"Supplier {supplier.supplier_code} is inactive", "supplier_inactive")

            line_inputs = [PurchaseOrderLineInput.from_mapping(line) for line in lines]
            for index, line in enumerate(line_inputs, start=1):
                if line.quantity <= ZERO:
                    raise BusinessRuleViolation(f"Line {index}: quantity must be > 0", "invalid_quantity")
                if line.unit_price < ZERO:
                    raise BusinessRuleViolation(f"Line {index}: unit price must be >= 0", "invalid_price")
                if not line.item_code:
                    raise BusinessRuleViolation(f"Line {index}: item code is required", "invalid_input")

            order_date = to_date(po_date, "po_date") if po_date is not None else self._clock.today()
            actor = as_user_id(actor_id)
            total = sum((line.line_total for line in line_inputs), ZERO)
            po = PurchaseOrderModel(
                po_number=po_number or next_document_number(
                    self.session, PurchaseOrderModel.po_number,
                    self._config.po_number_prefix, order_date,
                ),
                supplier_id=supplier.id,
                po_date=order_date,
                expected_delivery_date=(
                    to_date(expected_delivery_date, "expected_delivery_date")
                    if expected_delivery_date is not None else None
                ),
                total_amount=total,
                currency=currency or supplier.currency or self._config.default_currency,
                status=POStatus.DRAFT.value,
                notes=notes,
                created_by_id=actor,
            )
            self.session.add(po)
            for number, line in enumerate(line_inputs, start=1):
                po.lines.append(
                    PurchaseOrderLineModel(
                        line_number=number,
                        item_code=line.item_code,
                        item_description=line.item_description or None,
                        quantity_ordered=line.quantity,
                        unit_price=line.unit_price,
                        line_total=line.line_total,
                        uom=line.uom,
                        created_by_id=actor,
                    )
                )
            self.session.flush()

            logger.info(
                "procurement_po_created",
                extra={
                    "po_id": str(po.id),
                    "po_number": po.po_number,
                    "line_count": len(line_inputs),
                    "total_amount": str(total),
                },
            )
            return WorkflowResult.ok(
                po.id,
                "create",
                po.status,
                data={
                    "po_number": po.po_number,
                    "total_amount": str(total),
                    "line_count": len(line_inputs),
                },
            )

        return self._runner.run("create", None, operation)

    def submit_purchase_order(self, actor_id: Any, po_id: Any) -> WorkflowResult:
        def operation() -> WorkflowResult:
            po = self._runner.load_for_update(PurchaseOrderModel, po_id, "Purchase order")
            self._runner.authorize(actor_id, PURCHASE_ORDER, "submit", po)
            if po.status == POStatus.DRAFT.value and self._config.require_lines_on_submit:
                if not po.lines:
                    raise BusinessRuleViolation("Purchase order has no lines", "no_lines")
                if po.total_amount <= ZERO:
                    raise BusinessRuleViolation("Purchase order total must be > 0", "zero_total")
            previous, new = self._runner.transition(
                PURCHASE_ORDER_WORKFLOW, po, "submit", actor_id,
                values={"submitted_by_id": as_user_id(actor_id), "submitted_at": self._clock.now()},
            )
            return WorkflowResult.ok(po.id, "submit", new, previous)

        return self._runner.run("submit", self._maybe_uuid(po_id), operation)

    def approve_purchase_order(self, actor_id: Any, po_id: Any) -> WorkflowResult:
        def operation() -> WorkflowResult:
            po = self._runner.load_for_update(PurchaseOrderModel, po_id, "Purchase order")
            self._runner.authorize(actor_id, PURCHASE_ORDER, "approve", po)
            previous, new = self._runner.transition(
                PURCHASE_ORDER_WORKFLOW, po, "approve", actor_id,
                values={"approved_by_id": as_user_id(actor_id), "approved_at": self._clock.now()},
            )
            return WorkflowResult.ok(po.id, "approve", new, previous)

        return self._runner.run("approve", self._maybe_uuid(po_id), operation)

    def reject_purchase_order(self, actor_id: Any, po_id: Any, reason: str | None) -> WorkflowResult:
        """Send a submitted purchase order back to draft with a reason."""

        def operation() -> WorkflowResult:
            po = self._runner.load_for_update(PurchaseOrderModel, po_id, "Purchase order")
            self._runner.authorize(actor_id, PURCHASE_ORDER, "reject", po)
            previous, new = self._runner.transition(
                PURCHASE_ORDER_WORKFLOW, po, "reject", actor_id,
                values={
                    "rejected_by_id": as_user_id(actor_id),
                    "rejected_at": self._clock.now(),
                    "rejection_reason": reason,
                },
                reason=reason,
            )
            return WorkflowResult.ok(po.id, "reject", new, previous, data={"reason": reason})

        return self._runner.run("reject", self._maybe_uuid(po_id), operation)

    def cancel_purchase_order(self, actor_id: Any, po_id: Any, reason: str | None) -> WorkflowResult:
        def operation() -> WorkflowResult:
            po = self._runner.load_for_update(PurchaseOrderModel, po_id, "Purchase order")
            self._runner.authorize(actor_id, PURCHASE_ORDER, "cancel", po)
            previous, new = self._runner.transition(
                PURCHASE_ORDER_WORKFLOW, po, "cancel", actor_id,
                values={
                    "cancelled_by_id": as_user_id(actor_id),
                    "cancelled_at": self._clock.now(),
                    "cancellation_reason": reason,
                },
                reason=reason,
            )
            return WorkflowResult.ok(po.id, "cancel", new, previous, data={"reason": reason})

        return self._runner.run("cancel", self._maybe_uuid(po_id), operation)

    # =========================================================================
    # Goods Receipts
    # =========================================================================

    def create_goods_receipt(
        self,
        actor_id: Any,
        po_id: Any,
        lines: Sequence[Mapping[str, Any]],
        receipt_date: Any = None,
        notes: str | None = None,
        receipt_number: str | None = None,
    ) -> WorkflowResult:
        """Create a draft receipt after checking quantities against the PO."""

        def operation() -> WorkflowResult:
            self._runner.authorize(actor_id, GOODS_RECEIPT, "create")
            po = self._runner.load_for_update(PurchaseOrderModel, po_id, "Purchase order")
            if po.status not in RECEIVABLE_PO_STATUSES:
                raise BusinessRuleViolation(
                    f"Cannot receive against purchase order in status '{po.status}'",
                    "po_not_receivable",
                )
            line_inputs = [GoodsReceiptLineInput.from_mapping(line) for line in lines]
            if not line_inputs:
                raise BusinessRuleViolation("Goods receipt has no lines", "no_lines")

            po_lines = {line.id: line for line in po.lines}
            pending: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
            for index, line in enumerate(line_inputs, start=1):
                po_line = po_lines.get(line.purchase_order_line_id)
                if po_line is None:
                    raise BusinessRuleViolation(
                        f"Line {index}: {line.purchase_order_line_id} is not a line of {po.po_number}",
                        "invalid_po_line",
                    )
                if line.quantity <= ZERO:
                    raise BusinessRuleViolation(f"Line {index}: quantity must be > 0", "invalid_quantity")
                pending[po_line.id] += line.quantity
            for po_line_id, quantity in pending.items():
                self._check_open_quantity(po_lines[po_line_id], quantity)

            on_date = to_date(receipt_date, "receipt_date") if receipt_date is not None else self._clock.today()
            actor = as_user_id(actor_id)
            receipt = GoodsReceiptModel(
                receipt_number=receipt_number or next_document_number(
                    self.session, GoodsReceiptModel.receipt_number,
                    self._config.receipt_number_prefix, on_date,
                ),
                purchase_order_id=po.id,
                receipt_date=on_date,
                status=GRStatus.DRAFT.value,
                notes=notes,
                created_by_id=actor,
            )
            self.session.add(receipt)
            for line in line_inputs:
                receipt.lines.append(
                    GoodsReceiptLineModel(
                        purchase_order_line_id=line.purchase_order_line_id,
                        quantity_received=line.quantity,
                        quality_status=line.quality_status,
                        notes=line.notes,
                        created_by_id=actor,
                    )
                )
            self.session.flush()
            return WorkflowResult.ok(
                receipt.id,
                "create",
                receipt.status,
                data={
                    "receipt_number": receipt.receipt_number,
                    "purchase_order_id": str(po.id),
                    "line_count": len(line_inputs),
                },
            )

        return self._runner.run("create", None, operation)

    def accept_goods_receipt(self, actor_id: Any, receipt_id: Any) -> WorkflowResult:
        """
        Accept a draft receipt: bump PO line received totals and move the PO
        to partially_received or fully_received, atomically.
        """

        def operation() -> WorkflowResult:
            receipt = self._runner.load_for_update(GoodsReceiptModel, receipt_id, "Goods receipt")
            self._runner.authorize(actor_id, GOODS_RECEIPT, "accept", receipt)
            GOODS_RECEIPT_WORKFLOW.resolve(receipt.status, "accept")

            po = self._runner.load_for_update(PurchaseOrderModel, receipt.purchase_order_id, "Purchase order")
            if po.status not in RECEIVABLE_PO_STATUSES:
                raise BusinessRuleViolation(
                    f"Cannot receive against purchase order in status '{po.status}'",
                    "po_not_receivable",
                )
            po_lines = self._lock_po_lines(po.id)

            incoming: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
            for line in receipt.lines:
                incoming[line.purchase_order_line_id] += line.quantity_received

            previous, new = self._runner.transition(
                GOODS_RECEIPT_WORKFLOW, receipt, "accept", actor_id,
                values={"accepted_by_id": as_user_id(actor_id), "accepted_at": self._clock.now()},
            )

            for po_line_id, quantity in incoming.items():
                po_line = po_lines[po_line_id]
                self._check_open_quantity(po_line, quantity)
                po_line.quantity_received = po_line.quantity_received + quantity
                po_line.updated_by_id = as_user_id(actor_id)
            self.session.flush()

            po_status = self._apply_receipt_to_po(po, po_lines.values(), actor_id)
            logger.info(
                "procurement_receipt_accepted",
                extra={
                    "receipt_id": str(receipt.id),
                    "po_id": str(po.id),
                    "po_status": po_status,
                },
            )
            return WorkflowResult.ok(
                receipt.id, "accept", new, previous,
                data={"purchase_order_id": str(po.id), "purchase_order_status": po_status},
            )

        return self._runner.run("accept", self._maybe_uuid(receipt_id), operation)

    def reject_goods_receipt(self, actor_id: Any, receipt_id: Any, reason: str | None) -> WorkflowResult:
        def operation() -> WorkflowResult:
            receipt = self._runner.load_for_update(GoodsReceiptModel, receipt_id, "Goods receipt")
            self._runner.authorize(actor_id, GOODS_RECEIPT, "reject", receipt)
            previous, new = self._runner.transition(
                GOODS_RECEIPT_WORKFLOW, receipt, "reject", actor_id,
                values={
                    "rejected_by_id": as_user_id(actor_id),
                    "rejected_at": self._clock.now(),
                    "rejection_reason": reason,
                },
                reason=reason,
            )
            return WorkflowResult.ok(receipt.id, "reject", new, previous, data={"reason": reason})

        return self._runner.run("reject", self._maybe_uuid(receipt_id), operation)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_purchase_order(self, po_id: Any):
        po = self.session.get(PurchaseOrderModel, to_uuid(po_id, "po_id"))
        if po is None or po.is_deleted:
            return None
        return po.to_dto()

    def get_goods_receipt(self, receipt_id: Any):
        receipt = self.session.get(GoodsReceiptModel, to_uuid(receipt_id, "receipt_id"))
        if receipt is None or receipt.is_deleted:
            return None
        return receipt.to_dto()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _receipt_limit(self, po_line: PurchaseOrderLineModel) -> Decimal:
        factor = Decimal("1") + self._config.over_receipt_tolerance_percent / HUNDRED
        return po_line.quantity_ordered * factor

    def _check_open_quantity(self, po_line: PurchaseOrderLineModel, quantity: Decimal) -> None:
        limit = self._receipt_limit(po_line)
        if po_line.quantity_received + quantity > limit:
            open_quantity = max(ZERO, limit - po_line.quantity_received)
            raise BusinessRuleViolation(
                f"Line {po_line.line_number}: receiving {quantity} exceeds open quantity {open_quantity}",
                "exceeds_open_quantity",
            )

    def _lock_po_lines(self, po_id: UUID) -> dict[UUID, PurchaseOrderLineModel]:
        rows = self.session.execute(
            select(PurchaseOrderLineModel)
            .where(PurchaseOrderLineModel.purchase_order_id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {line.id: line for line in rows}

    def _apply_receipt_to_po(self, po: PurchaseOrderModel, lines, actor_id: Any) -> str:
        lines = list(lines)
        if po.status == POStatus.FULLY_RECEIVED.value:
            return po.status
        if lines and all(line.quantity_received >= line.quantity_ordered for line in lines):
            action = "receive_full"
        elif any(line.quantity_received > ZERO for line in lines):
            action = "receive_partial"
        else:
            return po.status
        _, new = self._runner.transition(PURCHASE_ORDER_WORKFLOW, po, action, actor_id)
        return new

    @staticmethod
    def _maybe_uuid(value: Any) -> UUID | None:
        try:
            return to_uuid(value, "id")
        except BusinessRuleViolation:
            return None
