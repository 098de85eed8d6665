"""
Module: procure_engines
Responsibility:
    Pure calculation engines used by the workflow services: three-way
    matching of invoice lines against purchase-order and receipt quantities,
    and invoice settlement (outstanding amount, payment status).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import procure_kernel.logging_config only.
    MUST NOT import procure_modules or procure_services.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic for quantities, prices and amounts.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine``, emitting a
    PROCURE_ENGINE_TRACE log record with engine name, version, input
    fingerprint and duration.
"""

from procure_engines.matching import (
    InvoiceMatchResult,
    LineMatchInput,
    LineMatchResult,
    MatchStatus,
    MatchTolerance,
    ThreeWayMatchEngine,
    VarianceReason,
)
from procure_engines.settlement import (
    PaymentStatus,
    SettlementCalculator,
    SettlementSummary,
)

__all__ = [
    "InvoiceMatchResult",
    "LineMatchInput",
    "LineMatchResult",
    "MatchStatus",
    "MatchTolerance",
    "PaymentStatus",
    "SettlementCalculator",
    "SettlementSummary",
    "ThreeWayMatchEngine",
    "VarianceReason",
]
