"""
GenerationLogger -- best-effort sink for view rendering attempts.

Each entry is written in its own session and transaction, so a logging
failure can never roll back (or be rolled back with) the caller's unit of
work.  Failures are reported as ``generation_log_write_failed`` warnings
and ``record`` returns False.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procure_kernel.logging_config import get_logger
from procure_kernel.models.generation_log import GenerationLogModel

logger = get_logger("services.generation_logger")


@dataclass(frozen=True)
class GenerationLogEntry:
    request_id: str
    user_id: UUID | None
    entity_type: str
    view_kind: str
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    success: bool
    template_cache_hit: bool = False
    permission_cache_hit: bool = False
    data_row_count: int = 0
    output_size_bytes: int = 0
    error_message: str | None = None

    @classmethod
    def from_model(cls, model: GenerationLogModel) -> GenerationLogEntry:
        return cls(
            request_id=model.request_id,
            user_id=model.user_id,
            entity_type=model.entity_type,
            view_kind=model.view_kind,
            started_at=model.started_at,
            finished_at=model.finished_at,
            duration_ms=model.duration_ms,
            success=model.success,
            template_cache_hit=model.template_cache_hit,
            permission_cache_hit=model.permission_cache_hit,
            data_row_count=model.data_row_count,
            output_size_bytes=model.output_size_bytes,
            error_message=model.error_message,
        )


class GenerationLogger:
    """Writes GenerationLogEntry rows through a dedicated session factory."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, entry: GenerationLogEntry) -> bool:
        session = None
        try:
            session = self._session_factory()
            session.add(
                GenerationLogModel(
                    request_id=entry.request_id,
                    user_id=entry.user_id,
                    entity_type=entry.entity_type,
                    view_kind=entry.view_kind,
                    started_at=entry.started_at,
                    finished_at=entry.finished_at,
                    duration_ms=entry.duration_ms,
                    template_cache_hit=entry.template_cache_hit,
                    permission_cache_hit=entry.permission_cache_hit,
                    data_row_count=entry.data_row_count,
                    output_size_bytes=entry.output_size_bytes,
                    success=entry.success,
                    error_message=entry.error_message,
                )
            )
            session.commit()
            return True
        except Exception as exc:
            # Logging must never break rendering.
            if session is not None:
                session.rollback()
            logger.warning(
                "generation_log_write_failed",
                extra={
                    "entity_type": entry.entity_type,
                    "request_id": entry.request_id,
                    "error_type": type(exc).__name__,
                },
            )
            return False
        finally:
            if session is not None:
                session.close()

    def recent(self, entity_type: str | None = None, limit: int = 20) -> list[GenerationLogEntry]:
        session = self._session_factory()
        try:
            stmt = select(GenerationLogModel)
            if entity_type is not None:
                stmt = stmt.where(GenerationLogModel.entity_type == entity_type)
            stmt = stmt.order_by(GenerationLogModel.started_at.desc()).limit(limit)
            return [GenerationLogEntry.from_model(m) for m in session.execute(stmt).scalars()]
        finally:
            session.close()


class NullGenerationLogger:
    """No-op sink."""

    def record(self, entry: GenerationLogEntry) -> bool:
        return True

    def recent(self, entity_type: str | None = None, limit: int = 20) -> list[GenerationLogEntry]:
        return []
