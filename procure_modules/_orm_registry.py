"""
Module ORM Registry (``procure_modules._orm_registry``).

Responsibility
--------------
Ensure all SQLAlchemy ORM models are imported so that ``Base.metadata``
contains their table definitions before tables are created or the data
service resolves an entity's ``primary_table``.

Architecture position
---------------------
**Modules layer** -- utility.  ``procure_kernel.db.engine`` imports it
lazily inside ``create_tables()``; nothing imports it at module load.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``procure_modules.*.orm`` module.

    Kernel configuration tables are registered first.  Idempotent.
    """
    import procure_kernel.models  # noqa: F401
    # fmt: off
    import procure_modules.procurement.orm  # noqa: F401
    import procure_modules.ap.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Create kernel and module tables.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from procure_kernel.db.engine import create_tables

    create_tables()
