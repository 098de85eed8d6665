"""
Procurement Configuration Schema.

Defines the structure and sensible defaults for procurement settings.
Actual values are loaded from the ``modules.procurement`` section of the
runtime settings file.
"""

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Self

from procure_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.config")


@dataclass
class ProcurementConfig:
    """
    Configuration schema for the procurement module.

    Override at instantiation with site-specific values:

        config = ProcurementConfig(
            over_receipt_tolerance_percent=Decimal("10"),
            **settings.modules.get("procurement", {}),
        )
    """

    # Receiving: cumulative received may reach ordered * (1 + pct / 100)
    over_receipt_tolerance_percent: Decimal = Decimal("0")

    # Submission
    require_lines_on_submit: bool = True

    # Document numbering
    po_number_prefix: str = "PO"
    receipt_number_prefix: str = "GR"
    default_currency: str = "USD"

    def __post_init__(self):
        self.over_receipt_tolerance_percent = Decimal(str(self.over_receipt_tolerance_percent))
        if self.over_receipt_tolerance_percent < 0:
            raise ValueError("over_receipt_tolerance_percent must be >= 0")
        logger.info(
            "procurement_config_initialized",
            extra={
                "over_receipt_tolerance_percent": str(self.over_receipt_tolerance_percent),
                "require_lines_on_submit": self.require_lines_on_submit,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with default values."""
        logger.info("procurement_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g., a YAML settings section)."""
        logger.info(
            "procurement_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown procurement settings: {', '.join(unknown)}")
        return cls(**data)
