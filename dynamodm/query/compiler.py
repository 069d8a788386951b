"""
Filter compiler: turns field-level conditions into store-level conditions.

The compiler decides whether a filter can run as a key-conditioned query
(the partition key is pinned by equality) or has to fall back to a full
scan, renames fields to their stored attribute names, serializes values
through each field's ``to_store`` step and injects the soft-delete
condition.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from dynamodm.models.metadata import EntityTypeMetadata
from dynamodm.query.expressions import Condition

logger = logging.getLogger(__name__)

Trashed = Literal["exclude", "include", "only"]

# Operators DynamoDB accepts on a sort key inside a key condition
SORT_KEY_OPERATORS = ("=", "<", "<=", ">", ">=", "begins-with")

# Operators whose value is compared against stored representations
_SERIALIZED_OPERATORS = ("=", "!=", "<", "<=", ">", ">=")


@dataclass
class CompiledQuery:
    """Store-level plan for one filter."""

    mode: Literal["query", "scan"]
    key_conditions: list[Condition] = field(default_factory=list)
    filter_conditions: list[Condition] = field(default_factory=list)

    @property
    def is_query(self) -> bool:
        return self.mode == "query"


class FilterCompiler:
    """
    Compile AND-combined conditions for one entity type.

    Example:
        >>> compiler = FilterCompiler(Order.model_metadata())
        >>> plan = compiler.compile([Condition("user_id", "=", "u1")])
        >>> plan.mode
        'query'
    """

    def __init__(self, metadata: EntityTypeMetadata):
        self.metadata = metadata

    def _to_store(self, cond: Condition) -> Condition:
        field_meta = self.metadata.field(cond.field)
        storage_name = self.metadata.storage_name_for(cond.field)
        value = cond.value
        if field_meta is not None:
            pipeline = self.metadata.pipeline(field_meta.name)
            if cond.operator in _SERIALIZED_OPERATORS:
                value = pipeline.serialize(value)
            elif cond.operator in ("in", "not-in"):
                value = [pipeline.serialize(item) for item in value]
        return Condition(storage_name, cond.operator, value)

    def _soft_delete_condition(self, trashed: Trashed) -> Optional[Condition]:
        marker = self.metadata.soft_delete_field
        if marker is None or trashed == "include":
            return None
        operator = "exists" if trashed == "only" else "not-exists"
        return Condition(marker.storage_name, operator)

    def compile(self, conditions: list[Condition], trashed: Trashed = "exclude") -> CompiledQuery:
        """
        Build the store plan for ``conditions``.

        Query mode is chosen when an equality condition pins the partition
        key. The first sort-key condition the store can evaluate in a key
        condition joins it; every other condition stays a filter.
        """
        partition_key = self.metadata.partition_key
        sort_key = self.metadata.sort_key

        key_conditions: list[Condition] = []
        remaining: list[Condition] = []
        partition_condition: Optional[Condition] = None
        sort_condition: Optional[Condition] = None

        for cond in conditions:
            if (
                partition_condition is None
                and cond.field == partition_key.name
                and cond.operator == "="
            ):
                partition_condition = cond
            elif (
                sort_condition is None
                and sort_key is not None
                and cond.field == sort_key.name
                and cond.operator in SORT_KEY_OPERATORS
            ):
                sort_condition = cond
            else:
                remaining.append(cond)

        if partition_condition is not None:
            mode: Literal["query", "scan"] = "query"
            key_conditions.append(self._to_store(partition_condition))
            if sort_condition is not None:
                key_conditions.append(self._to_store(sort_condition))
        else:
            mode = "scan"
            if sort_condition is not None:
                remaining.insert(0, sort_condition)

        filter_conditions = [self._to_store(cond) for cond in remaining]
        soft_delete = self._soft_delete_condition(trashed)
        if soft_delete is not None:
            filter_conditions.append(soft_delete)

        logger.debug(
            f"Compiled {self.metadata.type_name} filter as {mode}: "
            f"key={key_conditions} filter={filter_conditions}"
        )
        return CompiledQuery(mode, key_conditions, filter_conditions)
