"""
Typed query builder for list endpoints.

Filters are (field, operator, value) triples checked against a declared
whitelist of fields before they reach the ORM, instead of passing raw
query-parameter dicts into .filter().

    query = (
        Query(allowed_fields={'status': str, 'total_amount': Decimal})
        .where('status', Op.IN, ['pending', 'processing'])
        .where('total_amount', Op.GTE, Decimal('500'))
    )
    orders = query.apply(Order.objects.all())
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from django.db.models import Q


class Op(str, Enum):
    EQ = 'eq'
    NE = 'ne'
    LT = 'lt'
    LTE = 'lte'
    GT = 'gt'
    GTE = 'gte'
    IN = 'in'
    CONTAINS = 'contains'
    STARTSWITH = 'startswith'


_LOOKUPS = {
    Op.EQ: 'exact',
    Op.NE: 'exact',
    Op.LT: 'lt',
    Op.LTE: 'lte',
    Op.GT: 'gt',
    Op.GTE: 'gte',
    Op.IN: 'in',
    Op.CONTAINS: 'icontains',
    Op.STARTSWITH: 'istartswith',
}

_OP_VALUES = {op.value for op in Op}


class QueryError(ValueError):
    """Raised when a filter names an unknown field or carries a bad value."""
    pass


@dataclass(frozen=True)
class Filter:
    field: str
    op: Op
    value: Any

    def to_q(self) -> Q:
        q = Q(**{f"{self.field}__{_LOOKUPS[self.op]}": self.value})
        return ~q if self.op is Op.NE else q


@dataclass
class Query:
    """
    Accumulates filters for a queryset.

    allowed_fields maps an ORM lookup path to a converter applied to each
    value, so string query parameters become properly typed values.
    """
    allowed_fields: Dict[str, Callable[[Any], Any]]
    filters: List[Filter] = field(default_factory=list)
    ordering: Optional[str] = None

    def where(self, field_name: str, op: Op, value) -> 'Query':
        if field_name not in self.allowed_fields:
            raise QueryError(f"Filtering on '{field_name}' is not allowed")
        op = Op(op)
        convert = self.allowed_fields[field_name]
        try:
            if op is Op.IN:
                values = value.split(',') if isinstance(value, str) else list(value)
                typed = [convert(v) for v in values]
            else:
                typed = convert(value)
        except (TypeError, ValueError, InvalidOperation) as e:
            raise QueryError(f"Invalid value for '{field_name}': {value!r}") from e
        self.filters.append(Filter(field_name, op, typed))
        return self

    def order_by(self, field_name: str) -> 'Query':
        if field_name.lstrip('-') not in self.allowed_fields:
            raise QueryError(f"Ordering by '{field_name}' is not allowed")
        self.ordering = field_name
        return self

    def to_q(self) -> Q:
        combined = Q()
        for f in self.filters:
            combined &= f.to_q()
        return combined

    def apply(self, queryset):
        queryset = queryset.filter(self.to_q())
        if self.ordering:
            queryset = queryset.order_by(self.ordering)
        return queryset

    @classmethod
    def from_params(cls, params, allowed_fields, ordering_param='ordering') -> 'Query':
        """
        Build a query from request parameters of the form
        ``field=value`` or ``field__op=value``; unrelated keys are ignored.
        """
        query = cls(allowed_fields=allowed_fields)
        for key, value in params.items():
            if key == ordering_param:
                query.order_by(value)
                continue
            field_name, op = key, Op.EQ
            head, sep, tail = key.rpartition('__')
            if sep and tail in _OP_VALUES:
                field_name, op = head, Op(tail)
            if field_name not in allowed_fields:
                continue
            query.where(field_name, op, value)
        return query


def to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ('true', '1', 'yes'):
        return True
    if lowered in ('false', '0', 'no'):
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def to_decimal(value) -> Decimal:
    return Decimal(str(value))
