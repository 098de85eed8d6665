"""
Procurement Workflows.

State machines for purchase orders and goods receipts.  The receive_*
actions are applied by the goods-receipt service when a receipt is
accepted; they are not user-invocable.
"""

from procure_kernel.domain.workflow import Guard, Transition, Workflow
from procure_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINES = Guard(
    name="has_lines",
    description="Purchase order has at least one line and a positive total",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Every PO line has received >= ordered",
)

WITHIN_OPEN_QUANTITY = Guard(
    name="within_open_quantity",
    description="Receipt quantities fit the open quantity plus tolerance",
)

logger.info(
    "procurement_workflow_guards_defined",
    extra={
        "guards": [
            HAS_LINES.name,
            ALL_LINES_RECEIVED.name,
            WITHIN_OPEN_QUANTITY.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "submitted",
        "approved",
        "partially_received",
        "fully_received",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "submitted", action="submit", guard=HAS_LINES),
        Transition("submitted", "approved", action="approve"),
        Transition("submitted", "draft", action="reject", requires_reason=True),
        Transition("draft", "cancelled", action="cancel", requires_reason=True),
        Transition("submitted", "cancelled", action="cancel", requires_reason=True),
        Transition("approved", "partially_received", action="receive_partial"),
        Transition("partially_received", "partially_received", action="receive_partial"),
        Transition("approved", "fully_received", action="receive_full", guard=ALL_LINES_RECEIVED),
        Transition("partially_received", "fully_received", action="receive_full", guard=ALL_LINES_RECEIVED),
    ),
    terminal_states=("cancelled",),
)

logger.info(
    "procurement_po_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
        "initial_state": PURCHASE_ORDER_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Goods Receipt Workflow
# -----------------------------------------------------------------------------

GOODS_RECEIPT_WORKFLOW = Workflow(
    name="goods_receipt",
    description="Goods receipt lifecycle",
    initial_state="draft",
    states=("draft", "accepted", "rejected"),
    transitions=(
        Transition("draft", "accepted", action="accept", guard=WITHIN_OPEN_QUANTITY),
        Transition("draft", "rejected", action="reject", requires_reason=True),
    ),
    terminal_states=("accepted", "rejected"),
)

logger.info(
    "procurement_gr_workflow_registered",
    extra={
        "workflow_name": GOODS_RECEIPT_WORKFLOW.name,
        "state_count": len(GOODS_RECEIPT_WORKFLOW.states),
        "transition_count": len(GOODS_RECEIPT_WORKFLOW.transitions),
        "initial_state": GOODS_RECEIPT_WORKFLOW.initial_state,
    },
)
