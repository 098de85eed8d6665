"""
procure_services -- Request-facing façade over the kernel and modules.

``ProcureRuntime`` exposes every operation by name and owns one transaction
per call.  ``ViewGenerator`` renders list, form and row fragments and turns
every failure into an escaped error fragment.
"""

from procure_services.runtime import ProcureRuntime
from procure_services.view_generator import ViewGenerator, ViewResponse

__all__ = [
    "ProcureRuntime",
    "ViewGenerator",
    "ViewResponse",
]
