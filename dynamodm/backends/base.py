"""
Base backend interface for dynamodm.

A backend is the store driver boundary: it reads and writes items by table
name using stored attribute names and stored values. It knows nothing about
models, pipelines or relationships; the query layer hands it already
compiled conditions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union

from dynamodm.exceptions import ConfigurationError
from dynamodm.query.expressions import Condition


@dataclass(frozen=True)
class KeySchema:
    """Key attributes of a table."""

    partition_key: str
    sort_key: Optional[str] = None

    @property
    def attributes(self) -> tuple[str, ...]:
        if self.sort_key:
            return (self.partition_key, self.sort_key)
        return (self.partition_key,)

    def key_of(self, item: dict[str, Any]) -> dict[str, Any]:
        """Extract the key attributes from a full item."""
        missing = [name for name in self.attributes if item.get(name) is None]
        if missing:
            raise ConfigurationError(f"Item is missing key attribute(s): {', '.join(missing)}")
        return {name: item[name] for name in self.attributes}


@dataclass
class TransactPut:
    """Queued put inside a transaction batch."""

    table: str
    item: dict[str, Any]
    require_absent: bool = False
    partition_key: Optional[str] = None


@dataclass
class TransactDelete:
    """Queued delete inside a transaction batch."""

    table: str
    key: dict[str, Any] = field(default_factory=dict)


TransactOperation = Union[TransactPut, TransactDelete]


class Backend(ABC):
    """
    Abstract base class for storage backends.

    All operations are coroutines. Backends never retry; store failures
    propagate to the caller unchanged apart from the conditional-check
    failures each backend translates (duplicate inserts, cancelled
    transactions).
    """

    def __init__(self) -> None:
        self._key_schemas: dict[str, KeySchema] = {}

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Backend identifier."""
        pass

    def register_table(self, table: str, partition_key: str, sort_key: Optional[str] = None) -> KeySchema:
        """
        Record the key schema of a table.

        Called by models before their first operation. Tables the store
        already knows (like DynamoDB's) only need this for conditional
        writes; the in-memory backend needs it to index items.
        """
        schema = KeySchema(partition_key, sort_key)
        existing = self._key_schemas.get(table)
        if existing is not None and existing != schema:
            raise ConfigurationError(
                f"Table {table!r} is already registered with key schema {existing}, got {schema}"
            )
        self._key_schemas[table] = schema
        return schema

    def key_schema(self, table: str) -> Optional[KeySchema]:
        return self._key_schemas.get(table)

    @abstractmethod
    async def get_item(self, table: str, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        """
        Fetch one item by key.

        Returns:
            The stored item, or None if absent
        """
        pass

    @abstractmethod
    async def put_item(self, table: str, item: dict[str, Any], *, require_absent: bool = False) -> None:
        """
        Write an item, replacing any item with the same key.

        Raises:
            DuplicateKeyError: If require_absent is set and the key exists
        """
        pass

    @abstractmethod
    async def delete_item(self, table: str, key: dict[str, Any]) -> bool:
        """
        Delete an item by key.

        Returns:
            True if an item was removed
        """
        pass

    @abstractmethod
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
        """
        Key-conditioned query ordered by the table's sort key.

        Args:
            table: Table name
            key_conditions: Partition key equality plus an optional sort key condition
            filter_conditions: Conditions applied after the key lookup
            descending: Return items in descending sort key order
            projection: Attributes to return (all when None)
            limit: Stop after this many matching items
        """
        pass

    @abstractmethod
    async def scan(
        self,
        table: str,
        filter_conditions: Sequence[Condition] = (),
        *,
        projection: Optional[Sequence[str]] = None,
    ) -> list[dict[str, Any]]:
        """Read every item of a table matching the filter conditions."""
        pass

    @abstractmethod
    async def transact_write(self, operations: Sequence[TransactOperation]) -> None:
        """
        Apply puts and deletes atomically.

        Raises:
            TransactionError: If any operation fails; nothing is applied
        """
        pass
