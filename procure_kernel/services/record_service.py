"""
RecordService -- generic update, soft delete and restore.

Responsibility:
    Apply user edits to configured entities through the mutable-field
    allow-list, and soft-delete or restore rows.  Workflow-owned columns
    (status, running totals) are never in the allow-list, so this service
    cannot bypass a state machine.

Architecture position:
    Kernel > Services.  Writes with Core UPDATE statements against the
    entity's primary table and flushes; never commits.

Invariants enforced:
    - Every changed key is both allow-listed for the entity and editable for
      the role in form_edit; otherwise MassAssignmentError before any write.
    - Values are coerced with the filter value coercer for the field's kind.
    - The permission check sees the row as stored (row conditions apply).
    - Bulk operations isolate each id in its own savepoint.

Failure modes:
    - ActionDeniedError, MassAssignmentError, FilterValueTypeError,
      RecordNotFoundError raise.
    - ``no_changes``, ``already_deleted`` and ``not_deleted`` are returned as
      failed RecordResults.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import false, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.domain.entity_schema import EntitySpec, ViewKind
from procure_kernel.domain.filter_compiler import coerce_value
from procure_kernel.exceptions import (
    AuthorizationError,
    BackendError,
    FilterValueTypeError,
    MassAssignmentError,
    NotFoundError,
    RecordNotFoundError,
    ValidationError,
)
from procure_kernel.logging_config import get_logger
from procure_kernel.services.base import BaseService
from procure_kernel.services.config_cache import ConfigurationSnapshot
from procure_kernel.services.data_service import DataService
from procure_kernel.services.permission_resolver import PermissionResolver, as_user_id

logger = get_logger("services.record_service")


@dataclass(frozen=True)
class RecordResult:
    """Outcome of one generic record operation."""

    success: bool
    record_id: UUID
    action: str
    code: str | None = None
    reason: str | None = None
    old_values: Mapping[str, Any] = field(default_factory=dict)
    new_values: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.success

    @classmethod
    def failed(cls, record_id: UUID, action: str, code: str, reason: str) -> RecordResult:
        return cls(success=False, record_id=record_id, action=action, code=code, reason=reason)


@dataclass(frozen=True)
class BulkResult:
    """Aggregate of a bulk operation; ``failures`` maps id -> code."""

    action: str
    succeeded: tuple[str, ...] = ()
    failures: Mapping[str, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "succeeded": list(self.succeeded),
            "failures": dict(self.failures),
        }


class RecordService(BaseService):
    """Generic writes over configured entities."""

    def __init__(
        self,
        session: Session,
        config: ConfigurationSnapshot,
        resolver: PermissionResolver | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._config = config
        self._resolver = resolver or PermissionResolver(config)
        self._data = DataService(session, config, self._resolver)
        self._clock = clock or SystemClock()

    # -- single-record operations -----------------------------------------

    def update_record(
        self,
        user_id: Any,
        entity_name: str,
        record_id: Any,
        changes: Mapping[str, Any],
    ) -> RecordResult:
        entity = self._config.entity(entity_name)
        row = self._live_row(entity_name, record_id)
        rid = row["id"]
        self._resolver.require_action(user_id, entity_name, "edit", row)

        coerced = self._validate_changes(user_id, entity, changes)
        changed = {k: v for k, v in coerced.items() if row.get(k) != v}
        if not changed:
            return RecordResult.failed(rid, "update", "no_changes", "No field values changed")

        table = self._data.table_for(entity)
        values = dict(changed)
        values["updated_by_id"] = as_user_id(user_id)
        values["updated_at"] = self._clock.now()
        stmt = (
            update(table)
            .where(table.c.id == rid, table.c.is_deleted == false())
            .values(**values)
        )
        self._execute(stmt, entity_name, rid, "update_record")

        logger.info(
            "record_updated",
            extra={
                "entity_type": entity_name,
                "record_id": str(rid),
                "fields": sorted(changed),
            },
        )
        return RecordResult(
            success=True,
            record_id=rid,
            action="update",
            old_values={k: row.get(k) for k in changed},
            new_values=changed,
        )

    def soft_delete_record(
        self,
        user_id: Any,
        entity_name: str,
        record_id: Any,
        reason: str | None = None,
    ) -> RecordResult:
        entity = self._config.entity(entity_name)
        row = self._data.fetch_record_any(entity_name, record_id)
        rid = row["id"]
        self._resolver.require_action(user_id, entity_name, "delete", row)
        if row.get("is_deleted"):
            return RecordResult.failed(rid, "delete", "already_deleted", "Record is already deleted")

        table = self._data.table_for(entity)
        actor = as_user_id(user_id)
        now = self._clock.now()
        stmt = (
            update(table)
            .where(table.c.id == rid, table.c.is_deleted == false())
            .values(
                is_deleted=True,
                deleted_at=now,
                deleted_by_id=actor,
                deletion_reason=reason,
                updated_by_id=actor,
                updated_at=now,
            )
        )
        if self._execute(stmt, entity_name, rid, "soft_delete_record", required=False) == 0:
            return RecordResult.failed(rid, "delete", "already_deleted", "Record is already deleted")

        logger.info(
            "record_soft_deleted",
            extra={"entity_type": entity_name, "record_id": str(rid)},
        )
        return RecordResult(
            success=True,
            record_id=rid,
            action="delete",
            old_values={"is_deleted": False},
            new_values={"is_deleted": True},
        )

    def restore_record(self, user_id: Any, entity_name: str, record_id: Any) -> RecordResult:
        entity = self._config.entity(entity_name)
        row = self._data.fetch_record_any(entity_name, record_id)
        rid = row["id"]
        self._resolver.require_action(user_id, entity_name, "edit", row)
        if not row.get("is_deleted"):
            return RecordResult.failed(rid, "restore", "not_deleted", "Record is not deleted")

        table = self._data.table_for(entity)
        actor = as_user_id(user_id)
        now = self._clock.now()
        stmt = (
            update(table)
            .where(table.c.id == rid, table.c.is_deleted == true())
            .values(
                is_deleted=False,
                deleted_at=None,
                deleted_by_id=None,
                deletion_reason=None,
                restored_at=now,
                restored_by_id=actor,
                updated_by_id=actor,
                updated_at=now,
            )
        )
        if self._execute(stmt, entity_name, rid, "restore_record", required=False) == 0:
            return RecordResult.failed(rid, "restore", "not_deleted", "Record is not deleted")

        logger.info(
            "record_restored",
            extra={"entity_type": entity_name, "record_id": str(rid)},
        )
        return RecordResult(
            success=True,
            record_id=rid,
            action="restore",
            old_values={"is_deleted": True},
            new_values={"is_deleted": False},
        )

    # -- bulk operations ---------------------------------------------------

    def bulk_update(
        self,
        user_id: Any,
        entity_name: str,
        record_ids: Iterable[Any],
        changes: Mapping[str, Any],
    ) -> BulkResult:
        return self._bulk(
            "bulk_update",
            record_ids,
            lambda rid: self.update_record(user_id, entity_name, rid, changes),
        )

    def bulk_soft_delete(
        self,
        user_id: Any,
        entity_name: str,
        record_ids: Iterable[Any],
        reason: str | None = None,
    ) -> BulkResult:
        return self._bulk(
            "bulk_soft_delete",
            record_ids,
            lambda rid: self.soft_delete_record(user_id, entity_name, rid, reason),
        )

    def _bulk(self, action: str, record_ids: Iterable[Any], operation) -> BulkResult:
        succeeded: list[str] = []
        failures: dict[str, str] = {}
        for record_id in record_ids:
            key = str(record_id)
            savepoint = self.session.begin_nested()
            try:
                result = operation(record_id)
            except (ValidationError, AuthorizationError, NotFoundError) as exc:
                savepoint.rollback()
                failures[key] = exc.code.lower()
                continue
            except Exception:
                savepoint.rollback()
                raise
            if result.success:
                savepoint.commit()
                succeeded.append(key)
            else:
                savepoint.rollback()
                failures[key] = result.code or "failed"

        logger.info(
            "bulk_operation_completed",
            extra={
                "action": action,
                "success_count": len(succeeded),
                "failure_count": len(failures),
            },
        )
        return BulkResult(action=action, succeeded=tuple(succeeded), failures=failures)

    # -- helpers -----------------------------------------------------------

    def _live_row(self, entity_name: str, record_id: Any) -> dict[str, Any]:
        row = self._data.fetch_record_any(entity_name, record_id)
        if row.get("is_deleted"):
            raise RecordNotFoundError(entity_name, str(row["id"]))
        return row

    def _validate_changes(
        self, user_id: Any, entity: EntitySpec, changes: Mapping[str, Any],
    ) -> dict[str, Any]:
        caps = self._resolver.field_capabilities(user_id, entity.entity_name, ViewKind.FORM_EDIT)
        rejected = [
            name
            for name in changes
            if name not in entity.mutable_fields
            or entity.get_field(name) is None
            or not caps.can_edit(name)
        ]
        if rejected:
            raise MassAssignmentError(entity.entity_name, rejected)

        coerced: dict[str, Any] = {}
        for name, value in changes.items():
            spec = entity.get_field(name)
            if value is None or value == "":
                if spec.is_required:
                    raise FilterValueTypeError(name, spec.value_kind.value, value)
                coerced[name] = None
            else:
                coerced[name] = coerce_value(spec, value)
        return coerced

    def _execute(self, stmt, entity_name: str, record_id: UUID, operation: str, required: bool = True) -> int:
        try:
            result = self.session.execute(stmt)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise BackendError(operation, exc) from exc
        # Core UPDATE bypasses the identity map.
        self.session.expire_all()
        if required and result.rowcount == 0:
            raise RecordNotFoundError(entity_name, str(record_id))
        return result.rowcount
