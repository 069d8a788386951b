"""
Bounded atomic transactions for dynamodm.

A TransactionCoordinator accumulates puts and deletes and commits them as
one all-or-nothing request to the backend. It is single-use and holds at
most MAX_TRANSACTION_OPERATIONS operations; exceeding the cap fails before
the backend is contacted.

Example:
    >>> async with transaction(backend) as tx:
    ...     tx.add_save(Order(user_id="u1", total=10))
    ...     tx.add_delete(Cart, {"user_id": "u1"})
    ... # committed here, or discarded if the block raised
"""

import enum
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional, TypeVar, Union, TYPE_CHECKING

from dynamodm.backends.base import Backend, TransactDelete, TransactOperation, TransactPut
from dynamodm.exceptions import TransactionError, TransactionLimitError, TransactionStateError

if TYPE_CHECKING:
    from dynamodm.models.base import Model

logger = logging.getLogger(__name__)

# DynamoDB's TransactWriteItems limit
MAX_TRANSACTION_OPERATIONS = 25

T = TypeVar("T")
Target = Union[str, type["Model"]]


class TransactionState(str, enum.Enum):
    """Lifecycle states of a coordinator."""
    OPEN = "open"
    COMMITTING = "committing"
    CLOSED = "closed"
    FAILED = "failed"


class TransactionCoordinator:
    """
    Collects write operations and commits them atomically.

    Operations must be added from a single task; the coordinator does not
    lock its batch.
    """

    def __init__(self, backend: Backend, max_operations: int = MAX_TRANSACTION_OPERATIONS):
        self.backend = backend
        self.max_operations = max_operations
        self.state = TransactionState.OPEN
        self._operations: list[TransactOperation] = []
        self._saved: list[tuple["Model", bool]] = []

    def __len__(self) -> int:
        return len(self._operations)

    def __repr__(self) -> str:
        return f"TransactionCoordinator(state={self.state.value}, operations={len(self._operations)})"

    @property
    def operations(self) -> list[TransactOperation]:
        return list(self._operations)

    def _ensure_open(self) -> None:
        if self.state is not TransactionState.OPEN:
            raise TransactionStateError(f"Transaction is {self.state.value} and accepts no further operations")

    def _table(self, target: Target) -> tuple[str, Optional[str]]:
        """Table name and partition key attribute for a target."""
        if isinstance(target, str):
            schema = self.backend.key_schema(target)
            return target, schema.partition_key if schema else None
        metadata = target.model_metadata()
        target._get_backend()
        return metadata.storage_name, metadata.partition_key.storage_name

    def add_put(
        self,
        target: Target,
        item: Union["Model", Mapping[str, Any]],
        *,
        require_absent: bool = False,
    ) -> "TransactionCoordinator":
        """
        Queue a put.

        Args:
            target: Model class or table name
            item: Model instance, or a mapping of stored attribute names
            require_absent: Fail the whole transaction if the key exists
        """
        self._ensure_open()
        table, partition_key = self._table(target)
        if isinstance(item, Mapping):
            stored = {name: value for name, value in item.items() if value is not None}
        else:
            stored = item.to_store()
        self._operations.append(TransactPut(table, stored, require_absent, partition_key))
        return self

    def add_save(self, instance: "Model") -> "TransactionCoordinator":
        """
        Queue a model instance the way save() would write it.

        Timestamps are stamped now; new instances are inserted with a
        duplicate-key check and marked persisted once the commit succeeds.
        Lazy validators do not run inside a transaction.
        """
        self._ensure_open()
        inserting = not instance._is_persisted
        instance._touch(inserting)
        self.add_put(type(instance), instance, require_absent=inserting)
        self._saved.append((instance, inserting))
        return self

    def add_delete(self, target: Target, key: Union["Model", Mapping[str, Any]]) -> "TransactionCoordinator":
        """
        Queue a hard delete.

        Args:
            target: Model class or table name
            key: Model instance, or a mapping of key field names to values
        """
        self._ensure_open()
        table, _ = self._table(target)
        if isinstance(key, Mapping):
            if isinstance(target, str):
                stored_key = dict(key)
            else:
                stored_key = target.model_metadata().key_of(dict(key))
        else:
            stored_key = key.key()
        self._operations.append(TransactDelete(table, stored_key))
        return self

    def discard(self) -> None:
        """Drop all queued operations and close the coordinator."""
        if self.state is TransactionState.OPEN:
            logger.debug(f"Discarding transaction with {len(self._operations)} operations")
            self._operations.clear()
            self._saved.clear()
            self.state = TransactionState.CLOSED

    async def commit(self) -> None:
        """
        Commit every queued operation atomically.

        Raises:
            TransactionStateError: If the coordinator was already used
            TransactionLimitError: If more than max_operations are queued;
                raised before contacting the backend
            TransactionError: If the backend rejected the batch
        """
        self._ensure_open()
        count = len(self._operations)
        if count > self.max_operations:
            self.state = TransactionState.FAILED
            raise TransactionLimitError(count, self.max_operations)

        self.state = TransactionState.COMMITTING
        if count == 0:
            self.state = TransactionState.CLOSED
            return
        try:
            await self.backend.transact_write(self._operations)
        except TransactionError:
            self.state = TransactionState.FAILED
            logger.warning(f"Transaction with {count} operations failed to commit")
            raise
        except Exception as e:
            self.state = TransactionState.FAILED
            logger.warning(f"Transaction with {count} operations failed to commit: {e}")
            raise TransactionError(f"Transaction failed: {e}", cause=e) from e

        for instance, _ in self._saved:
            instance._is_persisted = True
        self.state = TransactionState.CLOSED
        logger.debug(f"Committed transaction with {count} operations")


@asynccontextmanager
async def transaction(backend: Backend, max_operations: int = MAX_TRANSACTION_OPERATIONS) -> AsyncIterator[TransactionCoordinator]:
    """
    Open a coordinator, commit it when the block succeeds, discard it otherwise.

    Example:
        >>> async with transaction(backend) as tx:
        ...     tx.add_save(user)
    """
    coordinator = TransactionCoordinator(backend, max_operations)
    try:
        yield coordinator
    except BaseException:
        coordinator.discard()
        raise
    await coordinator.commit()


async def run_transaction(
    backend: Backend,
    work: Callable[[TransactionCoordinator], Awaitable[T]],
    max_operations: int = MAX_TRANSACTION_OPERATIONS,
) -> T:
    """Run ``work`` with a fresh coordinator and commit what it queued."""
    async with transaction(backend, max_operations) as coordinator:
        result = await work(coordinator)
    return result
