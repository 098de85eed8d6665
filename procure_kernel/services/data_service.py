"""
DataService -- permission-aware list and record reads.

Responsibility:
    Fetch pages and single records of a configured entity, projecting only
    the fields the user's role may see and rejecting filters or sorts that
    reference fields it may not see.

Architecture position:
    Kernel > Services.  Uses SQLAlchemy Core against
    ``Base.metadata.tables[entity.primary_table]``; business tables are
    registered by ``procure_modules._orm_registry`` before first use.

Invariants enforced:
    - Projection = ``id`` + visible fields (+ one nested object per visible
      lookup field, keyed by the lookup entity name).
    - Soft-deleted rows are excluded from every read except
      ``fetch_record_any``.
    - Count and page queries share one WHERE clause.
    - ``id`` is always the final ORDER BY tiebreaker.
    - User-supplied values reach SQL only as bound parameters.

Failure modes:
    - ActionDeniedError: read/create/edit not allowed.
    - FieldAccessDeniedError: filter or sort on an invisible field.
    - UnknownFilterFieldError / FilterValueTypeError / InvalidSortError /
      InvalidPaginationError: malformed client input.
    - RecordNotFoundError: record absent or soft-deleted.
    - FieldMappingError: configuration names a table or column the ORM
      metadata does not have.
    - BackendError: wraps SQLAlchemyError.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import Table, false, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from procure_kernel.db.base import Base
from procure_kernel.domain.capabilities import FieldCapabilitySet
from procure_kernel.domain.entity_schema import EntitySpec, ViewKind
from procure_kernel.domain.filter_compiler import FilterCompiler, resolve_filter_key
from procure_kernel.exceptions import (
    ActionDeniedError,
    BackendError,
    FieldAccessDeniedError,
    FieldMappingError,
    InvalidPaginationError,
    InvalidSortError,
    RecordNotFoundError,
    UnknownFilterFieldError,
)
from procure_kernel.logging_config import get_logger
from procure_kernel.services.config_cache import ConfigurationSnapshot
from procure_kernel.services.permission_resolver import PermissionResolver

logger = get_logger("services.data_service")

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 1000

SORT_DIRECTIONS = ("ASC", "DESC")


@dataclass(frozen=True)
class ListPage:
    """One page of projected records plus pagination metadata."""

    records: tuple[dict[str, Any], ...]
    total_count: int
    page: int
    page_size: int
    filters: Mapping[str, Any] = field(default_factory=dict)
    sort: str = "id"
    sort_dir: str = "ASC"

    @property
    def total_pages(self) -> int:
        if self.total_count == 0:
            return 0
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def page_start(self) -> int:
        if self.total_count == 0 or not self.records:
            return 0
        return (self.page - 1) * self.page_size + 1

    @property
    def page_end(self) -> int:
        if self.page_start == 0:
            return 0
        return self.page_start + len(self.records) - 1

    @property
    def prev_page(self) -> int | None:
        return self.page - 1 if self.has_prev else None

    @property
    def next_page(self) -> int | None:
        return self.page + 1 if self.has_next else None

    def to_template_data(self) -> dict[str, Any]:
        return {
            "total_count": self.total_count,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "has_prev": self.has_prev,
            "has_next": self.has_next,
            "page_start": self.page_start,
            "page_end": self.page_end,
            "prev_page": self.prev_page,
            "next_page": self.next_page,
            "sort": self.sort,
            "sort_dir": self.sort_dir,
        }


def _as_int(parameter: str, value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidPaginationError(parameter, value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    raise InvalidPaginationError(parameter, value)


def _as_record_id(entity_name: str, record_id: Any) -> UUID:
    if isinstance(record_id, UUID):
        return record_id
    try:
        return UUID(str(record_id))
    except ValueError:
        raise RecordNotFoundError(entity_name, str(record_id)) from None


class DataService:
    """
    List/record reads for configured entities.

    Args:
        config: Per-request configuration snapshot.
        resolver: Permission resolver over the same snapshot.
        default_page_size: Used when no page size is supplied.
        max_page_size: Upper clamp for page size and keyset limits.
    """

    def __init__(
        self,
        session: Session,
        config: ConfigurationSnapshot,
        resolver: PermissionResolver | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        self.session = session
        self._config = config
        self._resolver = resolver or PermissionResolver(config)
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # -- table mapping -----------------------------------------------------

    def table_for(self, entity: EntitySpec) -> Table:
        table = Base.metadata.tables.get(entity.primary_table)
        if table is None:
            raise FieldMappingError(entity.entity_name, entity.primary_table)
        return table

    def _column(self, entity: EntitySpec, table: Table, name: str):
        if name not in table.c:
            raise FieldMappingError(entity.entity_name, name)
        return table.c[name]

    def _live(self, table: Table) -> list:
        if "is_deleted" in table.c:
            return [table.c.is_deleted == false()]
        return []

    # -- projection --------------------------------------------------------

    def _projection(self, entity: EntitySpec, table: Table, caps: FieldCapabilitySet):
        """Build (columns, from_clause, lookup_specs) for the visible fields."""
        columns = [table.c.id.label("id")]
        from_clause = table
        lookups: list[tuple[str, str, str]] = []

        for index, spec in enumerate(caps.visible_fields()):
            if spec.field_name == "id":
                continue
            column = self._column(entity, table, spec.field_name)
            columns.append(column.label(spec.field_name))
            if not (spec.is_lookup and spec.lookup_entity and spec.lookup_display_field):
                continue
            target = self._config.entity(spec.lookup_entity)
            target_table = self.table_for(target).alias(f"lookup_{index}")
            display = self._column(target, target_table, spec.lookup_display_field)
            label = f"__lookup_{index}"
            columns.append(display.label(label))
            from_clause = from_clause.outerjoin(target_table, target_table.c.id == column)
            lookups.append((label, spec.lookup_key, spec.lookup_display_field))

        return columns, from_clause, lookups

    @staticmethod
    def _to_record(row: Mapping[str, Any], lookups: Sequence[tuple[str, str, str]]) -> dict[str, Any]:
        record = dict(row)
        for label, key, display_field in lookups:
            record[key] = {display_field: record.pop(label, None)}
        return record

    # -- filters / sort ----------------------------------------------------

    def _where(self, entity: EntitySpec, table: Table, caps: FieldCapabilitySet, filters):
        filters = dict(filters or {})
        all_fields = entity.fields_by_name
        for key in filters:
            resolved = resolve_filter_key(key, all_fields)
            if resolved is None:
                raise UnknownFilterFieldError(key, entity.entity_name)
            if not caps.can_see(resolved[0].field_name):
                raise FieldAccessDeniedError(entity.entity_name, resolved[0].field_name)
        compiled = FilterCompiler(entity.fields).compile(filters)
        for name in compiled.field_names:
            self._column(entity, table, name)
        return compiled.to_clauses(table) + self._live(table)

    def _order_by(self, entity: EntitySpec, table: Table, caps: FieldCapabilitySet, sort, sort_dir):
        if sort_dir is None or sort_dir == "":
            direction = "ASC"
        elif isinstance(sort_dir, str):
            direction = sort_dir.strip().upper()
        else:
            direction = None
        if direction not in SORT_DIRECTIONS:
            raise InvalidSortError(sort, str(sort_dir), "direction must be ASC or DESC")
        sort_field = sort or "id"
        if sort_field != "id":
            if entity.get_field(sort_field) is None:
                raise InvalidSortError(sort_field, direction, f"unknown field '{sort_field}'")
            if not caps.can_see(sort_field):
                raise FieldAccessDeniedError(entity.entity_name, sort_field)
        column = self._column(entity, table, sort_field)
        primary = column.desc() if direction == "DESC" else column.asc()
        clauses = [primary]
        if sort_field != "id":
            clauses.append(table.c.id.asc())
        return sort_field, direction, clauses

    def _clamp(self, page_size: int) -> int:
        return max(1, min(page_size, self.max_page_size))

    # -- public reads ------------------------------------------------------

    def fetch_list(
        self,
        user_id: Any,
        entity_name: str,
        filters: Mapping[str, Any] | None = None,
        sort: str | None = None,
        sort_dir: str | None = None,
        page: Any = 1,
        page_size: Any = None,
    ) -> ListPage:
        entity = self._config.entity(entity_name)
        self._resolver.require_action(user_id, entity_name, "read")
        caps = self._resolver.field_capabilities(user_id, entity_name, ViewKind.LIST)
        table = self.table_for(entity)

        page = max(1, _as_int("page", page, 1))
        page_size = self._clamp(_as_int("page_size", page_size, self.default_page_size))

        where = self._where(entity, table, caps, filters)
        sort_field, direction, order_by = self._order_by(entity, table, caps, sort, sort_dir)
        columns, from_clause, lookups = self._projection(entity, table, caps)

        count_stmt = select(func.count()).select_from(table).where(*where)
        page_stmt = (
            select(*columns)
            .select_from(from_clause)
            .where(*where)
            .order_by(*order_by)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        try:
            total = self.session.execute(count_stmt).scalar_one()
            rows = self.session.execute(page_stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise BackendError("fetch_list", exc) from exc

        records = tuple(self._to_record(row, lookups) for row in rows)
        logger.debug(
            "list_fetched",
            extra={
                "entity_type": entity_name,
                "total_count": total,
                "row_count": len(records),
                "page": page,
                "page_size": page_size,
            },
        )
        return ListPage(
            records=records,
            total_count=total,
            page=page,
            page_size=page_size,
            filters=dict(filters or {}),
            sort=sort_field,
            sort_dir=direction,
        )

    def fetch_record(
        self,
        user_id: Any,
        entity_name: str,
        record_id: Any,
        view_kind: ViewKind | str = ViewKind.FORM_VIEW,
    ) -> dict[str, Any]:
        """
        One live record projected for ``view_kind``.

        The raw row is loaded first so row conditions on the required action
        see every column, including ones the role cannot view.
        """
        view_kind = ViewKind(view_kind)
        entity = self._config.entity(entity_name)
        table = self.table_for(entity)
        rid = _as_record_id(entity_name, record_id)

        raw = self._load_row(table, rid, include_deleted=False)
        if raw is None:
            raise RecordNotFoundError(entity_name, str(rid))
        action = view_kind.required_action
        if not self._resolver.can_perform_action(user_id, entity_name, action, raw):
            raise ActionDeniedError(str(user_id), entity_name, action)

        caps = self._resolver.field_capabilities(user_id, entity_name, view_kind)
        columns, from_clause, lookups = self._projection(entity, table, caps)
        stmt = select(*columns).select_from(from_clause).where(table.c.id == rid, *self._live(table))
        try:
            row = self.session.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            raise BackendError("fetch_record", exc) from exc
        if row is None:
            raise RecordNotFoundError(entity_name, str(rid))
        return self._to_record(row, lookups)

    def fetch_list_after(
        self,
        user_id: Any,
        entity_name: str,
        filters: Mapping[str, Any] | None = None,
        after_id: Any = None,
        limit: Any = None,
    ) -> dict[str, Any]:
        """Keyset page ordered by ``id``; pass ``next_cursor`` back as ``after_id``."""
        entity = self._config.entity(entity_name)
        self._resolver.require_action(user_id, entity_name, "read")
        caps = self._resolver.field_capabilities(user_id, entity_name, ViewKind.LIST)
        table = self.table_for(entity)
        limit = self._clamp(_as_int("limit", limit, self.default_page_size))

        where = self._where(entity, table, caps, filters)
        if after_id is not None:
            where.append(table.c.id > _as_record_id(entity_name, after_id))
        columns, from_clause, lookups = self._projection(entity, table, caps)
        stmt = (
            select(*columns)
            .select_from(from_clause)
            .where(*where)
            .order_by(table.c.id.asc())
            .limit(limit + 1)
        )
        try:
            rows = self.session.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise BackendError("fetch_list_after", exc) from exc

        has_more = len(rows) > limit
        records = [self._to_record(row, lookups) for row in rows[:limit]]
        next_cursor = str(records[-1]["id"]) if has_more and records else None
        return {"records": records, "next_cursor": next_cursor, "has_more": has_more}

    def fetch_record_any(self, entity_name: str, record_id: Any) -> dict[str, Any]:
        """
        Every column of the row, soft-deleted or not.

        Internal path for restore and workflow services; no permission check
        and no projection.  Never feed its result to a template.
        """
        entity = self._config.entity(entity_name)
        table = self.table_for(entity)
        rid = _as_record_id(entity_name, record_id)
        row = self._load_row(table, rid, include_deleted=True)
        if row is None:
            raise RecordNotFoundError(entity_name, str(rid))
        return row

    def _load_row(self, table: Table, record_id: UUID, include_deleted: bool) -> dict[str, Any] | None:
        stmt = select(table).where(table.c.id == record_id)
        if not include_deleted:
            stmt = stmt.where(*self._live(table))
        try:
            row = self.session.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            raise BackendError("load_row", exc) from exc
        return dict(row) if row is not None else None
