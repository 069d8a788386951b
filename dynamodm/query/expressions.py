"""
Filter expressions for dynamodm queries.

A filter is a flat list of Condition leaves that are always AND-combined.
Callers build filters from the wire shape::

    {"status": "completed", "total": {">=": 100}, "tags": ["a", "b"]}

or with Django-style lookups (``total__gte=100``). Both normalize to the
same Condition list before reaching the FilterCompiler.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from dynamodm.exceptions import QueryError

# Canonical operator names and what they mean
OPERATORS = {
    "=": "equals",
    "!=": "not equals",
    "<": "less than",
    "<=": "less than or equal",
    ">": "greater than",
    ">=": "greater than or equal",
    "in": "in list",
    "not-in": "not in list",
    "contains": "contains",
    "begins-with": "starts with",
    "exists": "attribute present",
    "not-exists": "attribute absent",
}

OPERATOR_ALIASES = {
    "eq": "=",
    "==": "=",
    "$eq": "=",
    "ne": "!=",
    "<>": "!=",
    "$ne": "!=",
    "lt": "<",
    "$lt": "<",
    "lte": "<=",
    "le": "<=",
    "$lte": "<=",
    "gt": ">",
    "$gt": ">",
    "gte": ">=",
    "ge": ">=",
    "$gte": ">=",
    "$in": "in",
    "nin": "not-in",
    "not_in": "not-in",
    "notin": "not-in",
    "$nin": "not-in",
    "$contains": "contains",
    "includes": "contains",
    "begins_with": "begins-with",
    "beginswith": "begins-with",
    "startswith": "begins-with",
    "starts_with": "begins-with",
    "$beginsWith": "begins-with",
    "attribute_exists": "exists",
    "not_exists": "not-exists",
    "attribute_not_exists": "not-exists",
}

SET_OPERATORS = ("in", "not-in")


def normalize_operator(operator: str) -> str:
    """
    Map an operator or one of its aliases to the canonical name.

    Raises:
        QueryError: If the operator is unknown
    """
    if operator in OPERATORS:
        return operator
    canonical = OPERATOR_ALIASES.get(operator) or OPERATOR_ALIASES.get(operator.lower())
    if canonical is None:
        raise QueryError(f"Unknown operator {operator!r}. Supported: {', '.join(OPERATORS)}")
    return canonical


def parse_field_lookup(field_lookup: str) -> tuple[str, str]:
    """
    Parse a field lookup string into field name and operator.

    Example:
        >>> parse_field_lookup("age__gte")
        ('age', '>=')
        >>> parse_field_lookup("name")
        ('name', '=')
    """
    if "__" in field_lookup:
        field, operator = field_lookup.rsplit("__", 1)
        return field, normalize_operator(operator)
    return field_lookup, "="


@dataclass(frozen=True)
class Condition:
    """A single ``field operator value`` filter leaf."""

    field: str
    operator: str
    value: Any = None

    def __repr__(self) -> str:
        return f"<{self.field} {self.operator} {self.value!r}>"


def condition(field: str, operator: str, value: Any = None) -> Condition:
    """
    Build a normalized Condition.

    Sequence values on equality become set membership, and on inequality
    set exclusion.
    """
    operator = normalize_operator(operator)
    if isinstance(value, (list, tuple, set, frozenset)):
        if operator == "=":
            operator = "in"
        elif operator == "!=":
            operator = "not-in"
    if operator in SET_OPERATORS:
        if not isinstance(value, (list, tuple, set, frozenset)):
            value = [value]
        value = list(value)
    return Condition(field, operator, value)


def normalize_filter(filters: Optional[Mapping[str, Any]]) -> list[Condition]:
    """
    Convert a filter mapping into AND-combined Condition leaves.

    Values may be plain (equality, or membership for lists) or a mapping of
    operator to value; several operators on one field produce several leaves.

    Example:
        >>> normalize_filter({"age": {">=": 18, "<": 65}, "status": "active"})
        [<age >= 18>, <age < 65>, <status = 'active'>]
    """
    if not filters:
        return []
    if not isinstance(filters, Mapping):
        raise QueryError(f"Filters must be a mapping, got {type(filters).__name__}")

    conditions: list[Condition] = []
    for key, value in filters.items():
        if key in ("or", "$or", "OR"):
            raise QueryError("OR filters are not supported; issue separate queries and merge the results")
        field, lookup_operator = parse_field_lookup(key)
        if isinstance(value, Mapping):
            if not value:
                raise QueryError(f"Empty operator mapping for field {field!r}")
            for operator, operand in value.items():
                conditions.append(condition(field, operator, operand))
        else:
            conditions.append(condition(field, lookup_operator, value))
    return conditions


def merge_filters(*filters: Optional[Mapping[str, Any]]) -> list[Condition]:
    """Normalize several filter mappings into one AND-combined list."""
    conditions: list[Condition] = []
    for filter_ in filters:
        conditions.extend(normalize_filter(filter_))
    return conditions


def sort_value(value: Any) -> tuple[bool, Any]:
    """Sort helper placing missing values last in ascending order."""
    return (value is None, value if value is not None else 0)
