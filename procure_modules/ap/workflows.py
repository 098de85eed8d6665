"""
Accounts Payable Workflows.

State machines for invoice receipts and payments.  An invoice left in
``pending_match`` (some line had nothing received) is re-run with
``rematch`` once goods arrive: it passes through ``matched`` and continues
to ``approved`` or, with ``flag_variance``, to ``variance_review``.
``mark_paid`` and ``reopen`` are applied by the payment service when
settlement totals change.
"""

from procure_kernel.domain.workflow import Guard, Transition, Workflow
from procure_kernel.logging_config import get_logger

logger = get_logger("modules.ap.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Every invoiced PO line has a received quantity",
)

FULLY_SETTLED = Guard(
    name="fully_settled",
    description="Processed and cleared payments cover the invoice total",
)

WITHIN_OUTSTANDING = Guard(
    name="within_outstanding",
    description="Payment amount fits the invoice headroom after reservations",
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="invoice_receipt",
    description="Supplier invoice lifecycle after three-way match",
    initial_state="pending_match",
    states=("pending_match", "matched", "variance_review", "approved", "paid", "cancelled"),
    transitions=(
        Transition("pending_match", "matched", action="rematch", guard=ALL_LINES_RECEIVED),
        Transition("pending_match", "cancelled", action="cancel", requires_reason=True),
        Transition("matched", "variance_review", action="flag_variance"),
        Transition("matched", "approved", action="approve"),
        Transition("variance_review", "approved", action="approve_variance", requires_reason=True),
        Transition("variance_review", "cancelled", action="cancel", requires_reason=True),
        Transition("approved", "paid", action="mark_paid", guard=FULLY_SETTLED),
        Transition("paid", "approved", action="reopen"),
    ),
    terminal_states=("cancelled",),
)

logger.info(
    "ap_invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Payment Workflow
# -----------------------------------------------------------------------------

PAYMENT_WORKFLOW = Workflow(
    name="payment",
    description="Payment lifecycle",
    initial_state="pending",
    states=("pending", "processed", "cleared", "failed", "cancelled", "reversed"),
    transitions=(
        Transition("pending", "processed", action="process"),
        Transition("pending", "cancelled", action="cancel", requires_reason=True),
        Transition("pending", "failed", action="fail", requires_reason=True),
        Transition("processed", "failed", action="fail", requires_reason=True),
        Transition("processed", "cleared", action="clear"),
        Transition("processed", "reversed", action="reverse", requires_reason=True),
        Transition("cleared", "reversed", action="reverse", requires_reason=True),
        Transition("failed", "pending", action="retry", guard=WITHIN_OUTSTANDING),
    ),
    terminal_states=("cancelled", "reversed"),
)

logger.info(
    "ap_payment_workflow_registered",
    extra={
        "workflow_name": PAYMENT_WORKFLOW.name,
        "state_count": len(PAYMENT_WORKFLOW.states),
        "transition_count": len(PAYMENT_WORKFLOW.transitions),
        "initial_state": PAYMENT_WORKFLOW.initial_state,
    },
)
