"""
Filter compiler -- key/suffix filter maps to parameterized predicates.

Responsibility:
    Validate a JSON-shaped filter map against an entity's field definitions
    and lower it to an ordered ``CompiledFilter``.  Every user-supplied value
    is type-checked, coerced and placed in a bound parameter.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Consumed by the data service (list
    queries) and the record service (update value coercion).

Grammar:
    ``field``            equality (membership when the value is a list)
    ``field_gte``        >=        ``field_gt``   >
    ``field_lte``        <=        ``field_lt``   <
    ``field_like``       case-insensitive pattern; % and _ pass through
    ``field_not``        <>
    ``field_null``       IS NULL       (value ignored)
    ``field_notnull``    IS NOT NULL   (value ignored)

    A list value always compiles to IN, whatever the suffix, except for the
    two null tests.  Clauses are ANDed; there is no OR.

    TODO(product): ``_like`` does not escape ``%`` and ``_`` in user input,
    so users can search with wildcards.  Confirm this is wanted before
    changing it; the value is still bound either way.

Invariants enforced:
    - Unknown keys raise UnknownFilterFieldError; nothing is silently dropped
      except ``None`` values, which mean "no constraint".
    - Values never appear in clause text.
    - The soft-delete clause is NOT added here; the compiler does not know
      where its filters come from.

Failure modes:
    - UnknownFilterFieldError: key resolves to no field.
    - FilterValueTypeError: value fails its field's value-kind pattern, or is
      not a scalar / list of scalars.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from procure_kernel.domain.entity_schema import FieldSpec, ValueKind
from procure_kernel.domain.predicates import CompiledFilter, Operator, Predicate
from procure_kernel.exceptions import FilterValueTypeError, UnknownFilterFieldError
from procure_kernel.logging_config import get_logger

logger = get_logger("domain.filter_compiler")

# Longest first so "_notnull" wins over "_null" and "_gte" over "_gt".
SUFFIX_OPERATORS: tuple[tuple[str, Operator], ...] = (
    ("_notnull", Operator.IS_NOT_NULL),
    ("_null", Operator.IS_NULL),
    ("_like", Operator.ILIKE),
    ("_gte", Operator.GTE),
    ("_lte", Operator.LTE),
    ("_not", Operator.NE),
    ("_gt", Operator.GT),
    ("_lt", Operator.LT),
)

INTEGER_PATTERN = re.compile(r"^-?[0-9]+$")
DECIMAL_PATTERN = re.compile(r"^-?[0-9]+(\.[0-9]+)?$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATETIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$")
UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
TRUE_TOKENS = frozenset({"true", "t", "1", "yes"})
FALSE_TOKENS = frozenset({"false", "f", "0", "no"})

_SCALAR_TYPES = (str, int, float, Decimal, bool, date, UUID)


def resolve_filter_key(
    key: str, fields: Mapping[str, FieldSpec],
) -> tuple[FieldSpec, Operator] | None:
    """
    Split a filter key into (field, operator).

    An exact field-name match wins over suffix stripping, so a field that
    happens to end in ``_not`` is still addressable by equality.
    """
    if key in fields:
        return fields[key], Operator.EQ
    for suffix, operator in SUFFIX_OPERATORS:
        if key.endswith(suffix):
            base = key[: -len(suffix)]
            if base in fields:
                return fields[base], operator
    return None


def coerce_value(field: FieldSpec, value: Any, kind: ValueKind | None = None) -> Any:
    """
    Validate ``value`` against the field's value kind and return the typed value.

    Raises:
        FilterValueTypeError: on pattern or type mismatch.
    """
    kind = kind or field.value_kind
    name = field.field_name

    def _reject() -> FilterValueTypeError:
        return FilterValueTypeError(name, kind.value, value)

    if not isinstance(value, _SCALAR_TYPES):
        raise _reject()

    if kind is ValueKind.TEXT:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    if kind is ValueKind.INTEGER:
        if isinstance(value, bool):
            raise _reject()
        text = str(value).strip()
        if not INTEGER_PATTERN.match(text):
            raise _reject()
        return int(text)

    if kind is ValueKind.DECIMAL:
        if isinstance(value, bool):
            raise _reject()
        text = str(value).strip()
        if not DECIMAL_PATTERN.match(text):
            raise _reject()
        try:
            return Decimal(text)
        except InvalidOperation:
            raise _reject() from None

    if kind is ValueKind.BOOLEAN:
        if isinstance(value, bool):
            return value
        token = str(value).strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
        raise _reject()

    if kind is ValueKind.DATE:
        if isinstance(value, datetime):
            raise _reject()
        if isinstance(value, date):
            return value
        text = str(value).strip()
        if not DATE_PATTERN.match(text):
            raise _reject()
        try:
            return date.fromisoformat(text)
        except ValueError:
            raise _reject() from None

    if kind is ValueKind.DATETIME:
        if isinstance(value, datetime):
            return value
        text = str(value).strip()
        if DATE_PATTERN.match(text):
            text = f"{text}T00:00:00"
        if not DATETIME_PATTERN.match(text):
            raise _reject()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise _reject() from None

    if kind is ValueKind.UUID:
        if isinstance(value, UUID):
            return value
        text = str(value).strip()
        if not UUID_PATTERN.match(text):
            raise _reject()
        return UUID(text)

    raise _reject()


class FilterCompiler:
    """
    Compiles filter maps for one entity's field set.

    Contract:
        ``compile`` is deterministic: the same map (same key order) always
        yields the same predicates and parameter names.
    """

    def __init__(self, fields: Iterable[FieldSpec]):
        self._fields: dict[str, FieldSpec] = {f.field_name: f for f in fields}

    def compile(self, filters: Mapping[str, Any] | None) -> CompiledFilter:
        if not filters:
            return CompiledFilter()

        predicates: list[Predicate] = []
        for index, (key, raw) in enumerate(filters.items()):
            resolved = resolve_filter_key(str(key), self._fields)
            if resolved is None:
                raise UnknownFilterFieldError(str(key))
            field, operator = resolved
            predicate = self._compile_one(index, field, operator, raw)
            if predicate is not None:
                predicates.append(predicate)

        compiled = CompiledFilter(tuple(predicates))
        logger.debug(
            "filter_compiled",
            extra={
                "predicate_count": len(predicates),
                "clauses": [f"{p.field_name}:{p.operator.value}" for p in predicates],
            },
        )
        return compiled

    def _compile_one(
        self, index: int, field: FieldSpec, operator: Operator, raw: Any,
    ) -> Predicate | None:
        param = f"f{index}"

        if operator in (Operator.IS_NULL, Operator.IS_NOT_NULL):
            return Predicate(field.field_name, operator, (), (), field.value_kind)

        if raw is None:
            return None

        kind = ValueKind.TEXT if operator is Operator.ILIKE else field.value_kind

        if isinstance(raw, (list, tuple)):
            values = []
            for item in raw:
                if item is None or isinstance(item, (list, tuple, dict)):
                    raise FilterValueTypeError(field.field_name, kind.value, item)
                values.append(coerce_value(field, item, kind))
            names = tuple(f"{param}_{i}" for i in range(len(values)))
            return Predicate(field.field_name, Operator.IN, tuple(values), names, field.value_kind)

        if isinstance(raw, dict):
            raise FilterValueTypeError(field.field_name, kind.value, raw)

        value = coerce_value(field, raw, kind)
        return Predicate(field.field_name, operator, (value,), (param,), field.value_kind)
