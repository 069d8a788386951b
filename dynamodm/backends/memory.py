"""
In-memory backend for dynamodm.

Simple dict-based storage for testing and examples without requiring
external services. Mirrors the DynamoDB semantics the library relies on:
items are indexed by key, queries are ordered by sort key, missing
attributes fail comparisons and transactions are all-or-nothing.
"""

import logging
from copy import deepcopy
from typing import Any, Optional, Sequence

from dynamodm.backends.base import Backend, KeySchema, TransactDelete, TransactOperation, TransactPut
from dynamodm.exceptions import ConfigurationError, DuplicateKeyError, TransactionError
from dynamodm.query.expressions import Condition, sort_value

logger = logging.getLogger(__name__)

_MISSING = object()


def _compare(stored: Any, operator: str, value: Any) -> bool:
    try:
        if operator == "<":
            return stored < value
        if operator == "<=":
            return stored <= value
        if operator == ">":
            return stored > value
        if operator == ">=":
            return stored >= value
    except TypeError:
        # Mismatched types never compare in DynamoDB either
        return False
    raise ValueError(f"Not a comparison operator: {operator}")


def matches_condition(item: dict[str, Any], cond: Condition) -> bool:
    """Evaluate one stored-level condition against an item."""
    stored = item.get(cond.field, _MISSING)
    present = stored is not _MISSING and stored is not None
    operator = cond.operator

    if operator == "exists":
        return present
    if operator == "not-exists":
        return not present
    if operator == "!=":
        return not present or stored != cond.value
    if operator == "not-in":
        return not present or stored not in cond.value
    if not present:
        return False
    if operator == "=":
        return stored == cond.value
    if operator == "in":
        return stored in cond.value
    if operator == "contains":
        try:
            return cond.value in stored
        except TypeError:
            return False
    if operator == "begins-with":
        return isinstance(stored, str) and stored.startswith(cond.value)
    return _compare(stored, operator, cond.value)


def matches_conditions(item: dict[str, Any], conditions: Sequence[Condition]) -> bool:
    return all(matches_condition(item, cond) for cond in conditions)


class InMemoryBackend(Backend):
    """
    In-memory storage backend using Python dicts.

    Stores all data in memory. Data is lost when the process ends.
    Useful for testing and examples.

    Example:
        >>> class User(Model, model_backend=InMemoryBackend()):
        ...     id: str = Field(primary_key=True)
        ...     name: str
        >>>
        >>> user = await User.create(id="123", name="Alice")
    """

    def __init__(self) -> None:
        super().__init__()
        # Storage: {table_name: {key_tuple: item}}
        self._storage: dict[str, dict[tuple[Any, ...], dict[str, Any]]] = {}

    @property
    def backend_name(self) -> str:
        """Backend identifier."""
        return 'memory'

    def _schema(self, table: str) -> KeySchema:
        schema = self.key_schema(table)
        if schema is None:
            raise ConfigurationError(f"Table {table!r} has no registered key schema")
        return schema

    def _table(self, table: str) -> dict[tuple[Any, ...], dict[str, Any]]:
        return self._storage.setdefault(table, {})

    def _key_tuple(self, table: str, values: dict[str, Any]) -> tuple[Any, ...]:
        schema = self._schema(table)
        return tuple(schema.key_of(values)[name] for name in schema.attributes)

    @staticmethod
    def _project(item: dict[str, Any], projection: Optional[Sequence[str]]) -> dict[str, Any]:
        if projection is None:
            return deepcopy(item)
        return {name: deepcopy(item[name]) for name in projection if name in item}

    def clear(self, table: Optional[str] = None) -> None:
        """Drop all items, or only the items of one table."""
        if table is None:
            self._storage.clear()
        else:
            self._storage.pop(table, None)

    async def get_item(self, table: str, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        item = self._table(table).get(self._key_tuple(table, key))
        return deepcopy(item) if item is not None else None

    async def put_item(self, table: str, item: dict[str, Any], *, require_absent: bool = False) -> None:
        storage = self._table(table)
        key = self._key_tuple(table, item)
        if require_absent and key in storage:
            raise DuplicateKeyError(f"Item with key {key} already exists in {table}")
        storage[key] = deepcopy(item)

    async def delete_item(self, table: str, key: dict[str, Any]) -> bool:
        return self._table(table).pop(self._key_tuple(table, key), None) is not None

    async def query(
        self,
        table: str,
        key_conditions: Sequence[Condition],
        filter_conditions: Sequence[Condition] = (),
        *,
        descending: bool = False,
        projection: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        schema = self._schema(table)
        candidates = [
            item for item in self._table(table).values()
            if matches_conditions(item, key_conditions)
        ]
        if schema.sort_key:
            candidates.sort(key=lambda item: sort_value(item.get(schema.sort_key)), reverse=descending)

        results = []
        for item in candidates:
            if matches_conditions(item, filter_conditions):
                results.append(self._project(item, projection))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def scan(
        self,
        table: str,
        filter_conditions: Sequence[Condition] = (),
        *,
        projection: Optional[Sequence[str]] = None,
    ) -> list[dict[str, Any]]:
        return [
            self._project(item, projection)
            for item in self._table(table).values()
            if matches_conditions(item, filter_conditions)
        ]

    async def transact_write(self, operations: Sequence[TransactOperation]) -> None:
        # Validate everything first so a failing operation applies nothing
        touched: set[tuple[str, tuple[Any, ...]]] = set()
        planned: list[tuple[TransactOperation, tuple[Any, ...]]] = []
        for index, operation in enumerate(operations):
            values = operation.item if isinstance(operation, TransactPut) else operation.key
            key = self._key_tuple(operation.table, values)
            if (operation.table, key) in touched:
                raise TransactionError(
                    f"Transaction cancelled: operation {index} targets an item already in the batch"
                )
            touched.add((operation.table, key))
            if (
                isinstance(operation, TransactPut)
                and operation.require_absent
                and key in self._table(operation.table)
            ):
                raise TransactionError(
                    f"Transaction cancelled: operation {index} conditional check failed, "
                    f"item {key} already exists in {operation.table}"
                )
            planned.append((operation, key))

        for operation, key in planned:
            storage = self._table(operation.table)
            if isinstance(operation, TransactPut):
                storage[key] = deepcopy(operation.item)
            elif isinstance(operation, TransactDelete):
                storage.pop(key, None)
        logger.debug(f"Applied transaction with {len(planned)} operations")
