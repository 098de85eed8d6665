"""
Accounts Payable Configuration Schema.

Defines the structure and sensible defaults for AP settings.  Actual values
are loaded from the ``modules.ap`` section of the runtime settings file.
"""

from dataclasses import dataclass, field, fields
from decimal import Decimal
from typing import Self

from procure_kernel.logging_config import get_logger

logger = get_logger("modules.ap.config")


@dataclass
class APConfig:
    """
    Configuration schema for the accounts payable module.

    Override at instantiation with site-specific values:

        config = APConfig(
            match_tolerance_percent=Decimal("2"),
            default_payment_terms_days=45,
        )
    """

    # Three-way match: allowed |invoice - PO| unit price, percent of PO price
    match_tolerance_percent: Decimal = Decimal("5")

    # Used when the supplier has no payment terms
    default_payment_terms_days: int = 30

    # Document numbering
    invoice_number_prefix: str = "INV"
    payment_number_prefix: str = "PAY"

    allowed_payment_methods: tuple[str, ...] = field(
        default_factory=lambda: ("bank_transfer", "check", "wire", "credit_card", "ach")
    )

    def __post_init__(self):
        self.match_tolerance_percent = Decimal(str(self.match_tolerance_percent))
        if self.match_tolerance_percent < 0:
            raise ValueError("match_tolerance_percent must be >= 0")
        if int(self.default_payment_terms_days) < 0:
            raise ValueError("default_payment_terms_days must be >= 0")
        self.default_payment_terms_days = int(self.default_payment_terms_days)
        self.allowed_payment_methods = tuple(self.allowed_payment_methods)
        if not self.allowed_payment_methods:
            raise ValueError("allowed_payment_methods must not be empty")
        logger.info(
            "ap_config_initialized",
            extra={
                "match_tolerance_percent": str(self.match_tolerance_percent),
                "default_payment_terms_days": self.default_payment_terms_days,
                "payment_methods": list(self.allowed_payment_methods),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with default values."""
        logger.info("ap_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g., a YAML settings section)."""
        logger.info(
            "ap_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown ap settings: {', '.join(unknown)}")
        return cls(**data)
