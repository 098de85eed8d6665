"""
Procurement Module (``procure_modules.procurement``).

Responsibility
--------------
Purchase orders from draft to approval, and goods receipts that move an
approved order to partially or fully received.

Architecture position
---------------------
**Modules layer** -- declarative workflows and config schema plus a service
that composes the kernel permission resolver and the shared workflow runner.

Failure modes
-------------
* ``WorkflowResult.is_success == False`` -- invalid transition, denied
  action or business-rule rejection.  Caller inspects ``result.code``.
* Configuration and storage problems raise.
"""

from procure_modules.procurement.config import ProcurementConfig
from procure_modules.procurement.models import (
    GoodsReceipt,
    GoodsReceiptLine,
    GRStatus,
    POStatus,
    PurchaseOrder,
    PurchaseOrderLine,
)
from procure_modules.procurement.workflows import (
    GOODS_RECEIPT_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
)

__all__ = [
    "GoodsReceipt",
    "GoodsReceiptLine",
    "GRStatus",
    "POStatus",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "GOODS_RECEIPT_WORKFLOW",
    "PURCHASE_ORDER_WORKFLOW",
    "ProcurementConfig",
]
