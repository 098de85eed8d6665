"""
Accounts Payable Module (``procure_modules.ap``).

Responsibility
--------------
The invoice-to-payment half of purchase-to-pay: invoice receipts with
three-way PO/receipt/invoice matching, variance approval, payments and
clearing.

Architecture position
---------------------
**Modules layer** -- workflows and config schema plus a service that
delegates matching and settlement arithmetic to ``procure_engines``.

Failure modes
-------------
* ``WorkflowResult.is_success == False`` -- unapproved variance,
  overpayment, invalid transition or denied action.  Caller inspects
  ``result.code``.
* Database exceptions are wrapped in ``BackendError``.
"""

from procure_modules.ap.config import APConfig
from procure_modules.ap.models import InvoiceStatus, PaymentMethod, PaymentState
from procure_modules.ap.workflows import INVOICE_WORKFLOW, PAYMENT_WORKFLOW

__all__ = [
    "InvoiceStatus",
    "PaymentMethod",
    "PaymentState",
    "INVOICE_WORKFLOW",
    "PAYMENT_WORKFLOW",
    "APConfig",
]
