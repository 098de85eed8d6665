"""
Shared helpers for module workflow operations.

Used by procure_modules/*/service.py so every state-changing operation
follows one contract:

1. open a SAVEPOINT (``session.begin_nested()``)
2. load the row ``FOR UPDATE`` and check the actor's action permission
   with the row as the record
3. resolve the transition through the workflow table
4. write the new status with a compare-and-set UPDATE
   (``... WHERE id = :id AND status = :expected``)
5. flush; on WorkflowError roll the savepoint back and return a failed
   WorkflowResult

Architecture: Modules layer.  Imports only from procure_kernel.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from procure_kernel.db.base import Base
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.workflow import Transition, Workflow, WorkflowResult
from procure_kernel.exceptions import (
    BackendError,
    BusinessRuleViolation,
    StatusConflictError,
    WorkflowError,
)
from procure_kernel.logging_config import get_logger
from procure_kernel.services.permission_resolver import PermissionResolver, as_user_id

logger = get_logger("modules.workflow")

ModelT = TypeVar("ModelT", bound=Base)


def row_snapshot(instance: Base) -> dict[str, Any]:
    """Column values of an ORM instance, for row-condition evaluation."""
    return {column.key: getattr(instance, column.key) for column in instance.__table__.columns}


def to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise BusinessRuleViolation(f"Invalid {field_name}: {value!r}", "invalid_input")
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise BusinessRuleViolation(f"Invalid {field_name}: {value!r}", "invalid_input") from None
    if not result.is_finite():
        raise BusinessRuleViolation(f"Invalid {field_name}: {value!r}", "invalid_input")
    return result


def to_date(value: Any, field_name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise BusinessRuleViolation(f"Invalid {field_name}: {value!r}", "invalid_input") from None


def to_uuid(value: Any, field_name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise BusinessRuleViolation(f"Invalid {field_name}: {value!r}", "invalid_input") from None


def require_reason(reason: str | None, action: str) -> str:
    if reason is None or not str(reason).strip():
        raise BusinessRuleViolation(f"A reason is required to {action}", "reason_required")
    return str(reason).strip()


def next_document_number(session: Session, column, prefix: str, on_date: date) -> str:
    """``PREFIX-YYYY-NNNNN``; the column's unique constraint catches races."""
    stem = f"{prefix}-{on_date.year}-"
    count = session.execute(
        select(func.count()).where(column.like(f"{stem}%"))
    ).scalar_one()
    return f"{stem}{count + 1:05d}"


class WorkflowRunner:
    """
    Executes workflow operations atomically and authorizes them.

    Contract:
        ``run`` converts WorkflowError raised by ``operation`` into a failed
        WorkflowResult after rolling back the savepoint; SQLAlchemyError is
        wrapped in BackendError; anything else rolls back and propagates.
    """

    def __init__(self, session: Session, resolver: PermissionResolver, clock: Clock | None = None):
        self.session = session
        self.resolver = resolver
        self.clock = clock or SystemClock()

    def run(
        self,
        action: str,
        entity_id: UUID | None,
        operation: Callable[[], WorkflowResult],
    ) -> WorkflowResult:
        savepoint = self.session.begin_nested()
        try:
            result = operation()
            self.session.flush()
        except WorkflowError as exc:
            savepoint.rollback()
            logger.info(
                "workflow_transition_rejected",
                extra={
                    "action": action,
                    "entity_id": str(entity_id) if entity_id else None,
                    "result_code": exc.result_code,
                    "reason": exc.reason,
                },
            )
            return WorkflowResult.failed(
                entity_id,
                action,
                exc.reason,
                exc.result_code,
                previous_status=getattr(exc, "current_status", None),
            )
        except SQLAlchemyError as exc:
            savepoint.rollback()
            raise BackendError(action, exc) from exc
        except Exception:
            savepoint.rollback()
            raise

        savepoint.commit()
        logger.info(
            "workflow_transition_applied",
            extra={
                "action": action,
                "entity_id": str(result.entity_id) if result.entity_id else None,
                "previous_status": result.previous_status,
                "new_status": result.new_status,
            },
        )
        return result

    # -- steps used inside operations -------------------------------------

    def load_for_update(self, model: type[ModelT], entity_id: Any, label: str) -> ModelT:
        """Lock and return a live row, or raise ``not_found``."""
        rid = to_uuid(entity_id, f"{label} id")
        stmt = (
            select(model)
            .where(model.id == rid)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if hasattr(model, "is_deleted"):
            stmt = stmt.where(model.is_deleted.is_(False))
        instance = self.session.execute(stmt).scalar_one_or_none()
        if instance is None:
            raise WorkflowError(f"{label} not found: {rid}", "not_found")
        return instance

    def authorize(
        self,
        actor_id: Any,
        entity_name: str,
        action: str,
        record: Mapping[str, Any] | Base | None = None,
    ) -> None:
        if isinstance(record, Base):
            record = row_snapshot(record)
        if not self.resolver.can_perform_action(actor_id, entity_name, action, record):
            raise WorkflowError(f"Action '{action}' denied on {entity_name}", "action_denied")

    def transition(
        self,
        workflow: Workflow,
        instance: Base,
        action: str,
        actor_id: Any,
        values: Mapping[str, Any] | None = None,
        reason: str | None = None,
    ) -> tuple[str, str]:
        """
        Apply ``action`` to ``instance`` via compare-and-set.

        Returns (previous_status, new_status).

        Raises:
            InvalidTransitionError: action not legal from the current status.
            BusinessRuleViolation: reason required but missing.
            StatusConflictError: the row's status changed underneath us.
        """
        current = instance.status
        step: Transition = workflow.resolve(current, action)
        if step.requires_reason:
            require_reason(reason, action)

        model = type(instance)
        payload = dict(values or {})
        payload["status"] = step.to_state
        payload["updated_by_id"] = as_user_id(actor_id)
        payload["updated_at"] = self.clock.now()
        result = self.session.execute(
            update(model)
            .where(model.id == instance.id, model.status == current)
            .values(**payload)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StatusConflictError(workflow.name, str(instance.id), current)
        self.session.refresh(instance)
        return current, step.to_state
