"""
Procure Kernel - server-side UI runtime

Renders permission-filtered HTML views from configuration stored as data:
- Parameterized filter compilation over allow-listed fields
- Role-based field visibility/editability and row-level action rules
- Logic-less template rendering with cached token trees
- Paginated list/form data access with soft-delete discipline
"""

__version__ = "0.1.0"
