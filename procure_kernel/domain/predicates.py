"""
Predicate -- tagged-variant representation of one compiled filter clause.

Responsibility:
    Hold a (field, operator, bound values) triple produced by the filter
    compiler and lower it either to parameterized SQL text or to a SQLAlchemy
    Core expression.

Architecture position:
    Kernel > Domain -- pure, no I/O.  SQLAlchemy is used only to build
    expression objects; nothing is executed here.

Invariants enforced:
    - Clause text contains only the quoted, allow-listed field identifier,
      operator keywords and ``:param`` placeholders.  Values only ever live
      in ``params``.
    - Field identifiers match ``^[A-Za-z_][A-Za-z0-9_]*$``; anything else is
      rejected at construction.

Failure modes:
    - ValueError on an identifier that is not a plain SQL name (the compiler
      never produces one; this guards direct construction).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import String, Table, cast, false
from sqlalchemy.sql.elements import ColumnElement

from procure_kernel.domain.entity_schema import ValueKind

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Operator(str, Enum):
    """Comparison operators reachable from the filter key grammar."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    ILIKE = "ilike"
    IN = "in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


_SQL_OPERATORS: dict[Operator, str] = {
    Operator.EQ: "=",
    Operator.NE: "<>",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.ILIKE: "ILIKE",
}


def quote_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Not a plain SQL identifier: {name!r}")
    return f'"{name}"'


@dataclass(frozen=True)
class Predicate:
    """One compiled filter clause."""

    field_name: str
    operator: Operator
    values: tuple[Any, ...]
    param_names: tuple[str, ...]
    value_kind: ValueKind = ValueKind.TEXT

    def __post_init__(self) -> None:
        if not _IDENTIFIER.match(self.field_name):
            raise ValueError(f"Not a plain SQL identifier: {self.field_name!r}")
        if len(self.values) != len(self.param_names):
            raise ValueError("values and param_names must align")

    @property
    def params(self) -> dict[str, Any]:
        return dict(zip(self.param_names, self.values))

    def sql(self, alias: str | None = None) -> str:
        """Render clause text with placeholders only."""
        column = quote_identifier(self.field_name)
        if alias:
            column = f"{quote_identifier(alias)}.{column}"

        if self.operator is Operator.IS_NULL:
            return f"{column} IS NULL"
        if self.operator is Operator.IS_NOT_NULL:
            return f"{column} IS NOT NULL"
        if self.operator is Operator.IN:
            if not self.param_names:
                return "1 = 0"
            placeholders = ", ".join(f":{name}" for name in self.param_names)
            return f"{column} IN ({placeholders})"
        return f"{column} {_SQL_OPERATORS[self.operator]} :{self.param_names[0]}"

    def expression(self, table: Table) -> ColumnElement[bool]:
        """Lower to a SQLAlchemy Core expression over ``table``."""
        column = table.c[self.field_name]
        op = self.operator

        if op is Operator.IS_NULL:
            return column.is_(None)
        if op is Operator.IS_NOT_NULL:
            return column.is_not(None)
        if op is Operator.IN:
            if not self.values:
                return false()
            return column.in_(list(self.values))
        if op is Operator.ILIKE:
            target = column if self.value_kind is ValueKind.TEXT else cast(column, String)
            return target.ilike(self.values[0])

        value = self.values[0]
        if op is Operator.EQ:
            return column == value
        if op is Operator.NE:
            return column != value
        if op is Operator.GT:
            return column > value
        if op is Operator.GTE:
            return column >= value
        if op is Operator.LT:
            return column < value
        return column <= value


@dataclass(frozen=True)
class CompiledFilter:
    """Ordered predicates combined with AND."""

    predicates: tuple[Predicate, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.predicates)

    @property
    def params(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for predicate in self.predicates:
            merged.update(predicate.params)
        return merged

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(p.field_name for p in self.predicates)

    def where_sql(self, alias: str | None = None) -> str:
        return " AND ".join(p.sql(alias) for p in self.predicates)

    def to_clauses(self, table: Table) -> list[ColumnElement[bool]]:
        return [p.expression(table) for p in self.predicates]
