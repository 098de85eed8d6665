"""
Module: procure_kernel.models.generation_log
Responsibility: Append-only record of one view rendering attempt.
Architecture position: Kernel > Models.  Written only by
    services/generation_logger.py, in its own transaction.

Invariants enforced:
    - Rows are inserted once and never updated.

Audit relevance:
    Timing, row counts, cache behaviour and failure text per rendered view.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from procure_kernel.db.base import Base


class GenerationLogModel(Base):
    """One rendering attempt (success or failure)."""

    __tablename__ = "ui_generation_logs"

    __table_args__ = (
        Index("idx_generation_log_entity", "entity_type", "started_at"),
        Index("idx_generation_log_user", "user_id"),
    )

    request_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    view_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    template_cache_hit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    permission_cache_hit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    data_row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<GenerationLogModel {self.entity_type}/{self.view_kind} {self.duration_ms}ms>"
