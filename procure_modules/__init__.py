"""
Procure Modules.

Business entities and their workflow services, built over the Procure
Kernel and Engines.  Each module contains:
- Domain models (the nouns and line inputs)
- ORM models (persistence)
- Workflows (state machines)
- Configuration schemas (policy and settings)
- A workflow service returning ``WorkflowResult``

Modules:
- Procurement: Suppliers, purchase orders, goods receipts
- AP: Invoice receipts with three-way match, payments, clearing
"""

from procure_modules import ap, procurement

__all__ = [
    "ap",
    "procurement",
]
