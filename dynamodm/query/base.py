"""
Query execution for dynamodm.

A Query holds normalized conditions and validated options for one model
class. Running it compiles the conditions, issues a single key-conditioned
query or scan, orders and paginates the rows, materializes instances and
finally resolves requested relationships.

Ordering and pagination always run after the soft-delete filter, so
``limit`` counts visible records only.
"""

import logging
from typing import Any, Mapping, Optional, Sequence, TYPE_CHECKING

from dynamodm.exceptions import QueryError
from dynamodm.query.compiler import FilterCompiler, Trashed
from dynamodm.query.expressions import Condition, condition, merge_filters, sort_value
from dynamodm.query.options import OPTION_NAMES, QueryOptions, parse_options

if TYPE_CHECKING:
    from dynamodm.models.base import Model

logger = logging.getLogger(__name__)


def normalize_arguments(args: Sequence[Any], kwargs: dict[str, Any]) -> tuple[list[Condition], QueryOptions]:
    """
    Normalize every ``where``-style call shape to conditions plus options.

    Accepted shapes:
        where("status", "active")
        where("total", ">=", 100)
        where({"status": "active"})
        where({"status": "active"}, {"order": "DESC", "limit": 1})

    Keyword arguments named like an option (``limit=2``) are options; any
    other keyword is an extra equality or lookup filter (``total__gte=100``).
    """
    option_kwargs = {name: kwargs.pop(name) for name in list(kwargs) if name in OPTION_NAMES}

    conditions: list[Condition] = []
    filters: Optional[Mapping[str, Any]] = None
    options: Any = None

    if not args:
        pass
    elif isinstance(args[0], str):
        if len(args) == 2:
            filters = {args[0]: args[1]}
        elif len(args) == 3:
            conditions.append(condition(args[0], args[1], args[2]))
        else:
            raise QueryError(
                f"Expected (field, value) or (field, operator, value), got {len(args)} arguments"
            )
    elif args[0] is None or isinstance(args[0], Mapping):
        if len(args) > 2:
            raise QueryError(f"Expected (filters) or (filters, options), got {len(args)} arguments")
        filters = args[0]
        if len(args) == 2:
            options = args[1]
    else:
        raise QueryError(f"Unsupported filter argument of type {type(args[0]).__name__}")

    parsed = parse_options(options, **option_kwargs)
    conditions.extend(merge_filters(filters, kwargs, parsed.where))
    return conditions, parsed


class Query:
    """
    Executable query for one model class.

    Example:
        >>> query = Query(Order, [Condition("user_id", "=", "u1")], QueryOptions(order="DESC", limit=1))
        >>> latest = await query.first()
    """

    def __init__(
        self,
        model_class: type["Model"],
        conditions: Optional[list[Condition]] = None,
        options: Optional[QueryOptions] = None,
        trashed: Trashed = "exclude",
    ):
        self.model_class = model_class
        self.conditions = list(conditions or [])
        self.options = options or QueryOptions()
        self.trashed = trashed

    def __repr__(self) -> str:
        return f"Query({self.model_class.__name__}, conditions={self.conditions}, trashed={self.trashed!r})"

    def _projection(self, options: QueryOptions) -> Optional[list[str]]:
        """Stored attribute names to fetch, widened with keys and relationship fields."""
        if options.attributes is None:
            return None
        metadata = self.model_class.model_metadata()
        names: list[str] = []

        def add(name: str) -> None:
            if metadata.field(name) is None:
                raise QueryError(f"{metadata.type_name} has no field {name!r}")
            if name not in names:
                names.append(name)

        for name in options.attributes:
            add(name)
        for key in metadata.key_fields:
            add(key.name)
        if options.order_by:
            add(options.order_by)
        for relation_name in options.include:
            relationship = metadata.relationships.get(relation_name)
            if relationship is not None:
                add(relationship.owner_key(self.model_class))
        return [metadata.storage_name_for(name) for name in names]

    async def _rows(self, options: QueryOptions) -> list[dict[str, Any]]:
        metadata = self.model_class.model_metadata()
        backend = self.model_class._get_backend()
        compiled = FilterCompiler(metadata).compile(self.conditions, self.trashed)
        projection = self._projection(options)

        sort_key = metadata.sort_key
        default_order = sort_key or metadata.partition_key
        order_field = options.order_by or default_order.name
        store_ordered = compiled.is_query and (
            sort_key is None or order_field == sort_key.name
        )

        if compiled.is_query:
            fetch_limit = None
            if store_ordered and not compiled.filter_conditions and options.limit is not None:
                fetch_limit = options.skip + options.limit
            logger.debug(f"Querying {metadata.storage_name} by key {compiled.key_conditions}")
            rows = await backend.query(
                metadata.storage_name,
                compiled.key_conditions,
                compiled.filter_conditions,
                descending=options.descending,
                projection=projection,
                limit=fetch_limit,
            )
        else:
            logger.debug(f"Scanning {metadata.storage_name} with {compiled.filter_conditions}")
            rows = await backend.scan(
                metadata.storage_name,
                compiled.filter_conditions,
                projection=projection,
            )

        if not store_ordered:
            order_names = [metadata.storage_name_for(order_field)]
            order_names += [key.storage_name for key in metadata.key_fields if key.storage_name not in order_names]
            rows.sort(
                key=lambda row: tuple(sort_value(row.get(name)) for name in order_names),
                reverse=options.descending,
            )

        start = options.skip
        end = start + options.limit if options.limit is not None else None
        return rows[start:end]

    async def all(self) -> list["Model"]:
        """Execute the query and return every matching instance."""
        options = self.options
        rows = await self._rows(options)
        partial = options.attributes is not None
        instances = [self.model_class._from_store(row, partial=partial) for row in rows]

        if options.include and instances:
            from dynamodm.query.relations import RelationshipResolver

            await RelationshipResolver(self.model_class).resolve(instances, options.include)
        return instances

    async def first(self) -> Optional["Model"]:
        """Get the first result."""
        query = Query(self.model_class, self.conditions, self.options.merged(limit=1), self.trashed)
        results = await query.all()
        return results[0] if results else None

    async def last(self) -> Optional["Model"]:
        """Get the last result by running the query in reverse order."""
        options = self.options.reversed().merged(limit=1)
        results = await Query(self.model_class, self.conditions, options, self.trashed).all()
        return results[0] if results else None

    async def count(self) -> int:
        """Count matching records, ignoring skip and limit."""
        options = self.options.merged(skip=0, limit=None, include={}, attributes=None)
        return len(await self._rows(options))

    async def exists(self) -> bool:
        """Check if any results exist, ignoring skip the way count() does."""
        return bool(await self._rows(self.options.merged(skip=0, limit=1, include={}, attributes=None)))
