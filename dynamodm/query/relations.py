"""
Relationship resolution for dynamodm queries.

Given already loaded parent instances and an include specification, the
resolver loads each requested relationship with one batched query per
relationship and level, groups the related rows by key, applies per-parent
``skip``/``limit`` and attaches the result to every parent. Nested includes
recurse on the related instances that were kept.

Recursion depth is bounded only by the include specification itself.
"""

import asyncio
import logging
from typing import Any, Optional, TYPE_CHECKING

from dynamodm.exceptions import ConfigurationError
from dynamodm.models.relations import ManyToMany, Relationship
from dynamodm.query.base import Query
from dynamodm.query.expressions import Condition, merge_filters
from dynamodm.query.options import QueryOptions

if TYPE_CHECKING:
    from dynamodm.models.base import Model

logger = logging.getLogger(__name__)


def _key_condition(field: str, values: list[Any]) -> Condition:
    if len(values) == 1:
        # Lets the compiler pick a key-conditioned query when field is the partition key
        return Condition(field, "=", values[0])
    return Condition(field, "in", values)


def _distinct(values: list[Any]) -> list[Any]:
    seen: list[Any] = []
    for value in values:
        if value is not None and value not in seen:
            seen.append(value)
    return seen


def _paginate(items: list["Model"], options: QueryOptions) -> list["Model"]:
    end = options.skip + options.limit if options.limit is not None else None
    return items[options.skip:end]


class RelationshipResolver:
    """
    Attach related instances to a list of parents of one model class.

    Example:
        >>> users = await User.where({"id": "u1"})
        >>> await RelationshipResolver(User).resolve(users, {"orders": QueryOptions(limit=2)})
        >>> users[0].orders
        [Order(...), Order(...)]
    """

    def __init__(self, model_class: type["Model"]):
        self.model_class = model_class
        self.metadata = model_class.model_metadata()

    def _relationship(self, name: str) -> Relationship:
        relationship = self.metadata.relationships.get(name)
        if relationship is None:
            raise ConfigurationError(f"{self.metadata.type_name} has no relationship named {name!r}")
        return relationship

    async def resolve(self, parents: list["Model"], include: dict[str, QueryOptions]) -> None:
        """Load and attach every relationship named in ``include``."""
        if not parents or not include:
            return
        # Fail on unknown names before issuing any query
        relationships = {name: self._relationship(name) for name in include}
        results = await asyncio.gather(*(
            self._resolve_one(parents, name, relationships[name], options)
            for name, options in include.items()
        ), return_exceptions=True)
        # Every sibling load has finished; surface the first failure
        for result in results:
            if isinstance(result, BaseException):
                raise result

    def _target_options(self, target: type["Model"], target_key: str, options: QueryOptions) -> QueryOptions:
        attributes = None
        if options.attributes is not None:
            attributes = list(options.attributes)
            attributes.append(target_key)
            target_metadata = target.model_metadata()
            for nested in options.include:
                relationship = target_metadata.relationships.get(nested)
                if relationship is not None:
                    attributes.append(relationship.owner_key(target))
        # Pagination applies per parent, nested includes after pagination
        return options.merged(where=None, skip=0, limit=None, include={}, attributes=attributes)

    async def _load(
        self,
        target: type["Model"],
        target_key: str,
        values: list[Any],
        options: QueryOptions,
    ) -> list["Model"]:
        conditions = [_key_condition(target_key, values)] + merge_filters(options.where)
        query = Query(target, conditions, self._target_options(target, target_key, options))
        return await query.all()

    async def _resolve_one(
        self,
        parents: list["Model"],
        name: str,
        relationship: Relationship,
        options: QueryOptions,
    ) -> None:
        target = relationship.target()
        owner_key = relationship.owner_key(self.model_class)
        target_key = relationship.target_key(target)
        values = _distinct([getattr(parent, owner_key, None) for parent in parents])

        if isinstance(relationship, ManyToMany):
            groups = await self._load_through_pivot(relationship, target, target_key, values, options)
        elif values:
            related = await self._load(target, target_key, values, options)
            groups = {}
            for instance in related:
                groups.setdefault(getattr(instance, target_key, None), []).append(instance)
        else:
            groups = {}

        logger.debug(
            f"Resolved {self.metadata.type_name}.{name} for {len(parents)} parent(s), "
            f"{sum(len(group) for group in groups.values())} related row(s)"
        )

        kept: list["Model"] = []
        for parent in parents:
            group = _paginate(groups.get(getattr(parent, owner_key, None), []), options)
            if relationship.many:
                parent._attach(name, group)
                kept.extend(group)
            else:
                value: Optional["Model"] = group[0] if group else None
                parent._attach(name, value)
                if value is not None:
                    kept.append(value)

        if options.include and kept:
            await RelationshipResolver(target).resolve(_unique(kept), options.include)

    async def _load_through_pivot(
        self,
        relationship: ManyToMany,
        target: type["Model"],
        target_key: str,
        values: list[Any],
        options: QueryOptions,
    ) -> dict[Any, list["Model"]]:
        """Two hops: pivot rows for the parents, then the targets they reference."""
        if not values:
            return {}
        backend = self.model_class._get_backend()
        owner_pipeline = self.metadata.pipeline(relationship.owner_key(self.model_class))
        target_pipeline = target.model_metadata().pipeline(target_key)

        stored_values = [owner_pipeline.serialize(value) for value in values]
        pivot_condition = _key_condition(relationship.foreign_key or "", stored_values)
        schema = backend.key_schema(relationship.pivot_table)
        if (
            pivot_condition.operator == "="
            and schema is not None
            and schema.partition_key == relationship.foreign_key
        ):
            pivot_rows = await backend.query(relationship.pivot_table, [pivot_condition])
        else:
            pivot_rows = await backend.scan(relationship.pivot_table, [pivot_condition])

        related_by_owner: dict[Any, list[Any]] = {}
        for row in pivot_rows:
            related_id = row.get(relationship.related_key)
            if related_id is None:
                continue
            related_id = target_pipeline.deserialize(related_id)
            related_by_owner.setdefault(row.get(relationship.foreign_key), []).append(related_id)

        related_ids = _distinct([rid for ids in related_by_owner.values() for rid in ids])
        if not related_ids:
            return {}
        targets = await self._load(target, target_key, related_ids, options)

        groups: dict[Any, list["Model"]] = {}
        for value, stored in zip(values, stored_values):
            wanted = related_by_owner.get(stored, [])
            groups[value] = [
                instance for instance in targets
                if getattr(instance, target_key, None) in wanted
            ]
        return groups


def _unique(instances: list["Model"]) -> list["Model"]:
    seen: set[int] = set()
    result = []
    for instance in instances:
        if id(instance) not in seen:
            seen.add(id(instance))
            result.append(instance)
    return result
