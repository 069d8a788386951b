"""
Base model class for dynamodm.

Provides an ActiveRecord-style interface using Pydantic for type validation
and the attribute pipeline for defaults, mutators and validators.
"""

import functools
import logging
import types
from contextvars import ContextVar
from typing import Any, Callable, ClassVar, Mapping, Optional, TYPE_CHECKING

import pydantic
from pydantic import BaseModel, ConfigDict, PrivateAttr

from dynamodm.exceptions import ConfigurationError, NotFoundError, ValidationError
from dynamodm.models.fields import FieldMetadata
from dynamodm.models.metadata import EntityTypeMetadata, MetadataRegistry, default_registry
from dynamodm.models.pipeline import AttributePipeline, utcnow
from dynamodm.models.relations import Relationship
from dynamodm.naming import snake_plural
from dynamodm.query.base import Query, normalize_arguments
from dynamodm.query.compiler import Trashed
from dynamodm.query.expressions import Condition
from dynamodm.query.options import QueryOptions

if TYPE_CHECKING:
    from dynamodm.backends.base import Backend

logger = logging.getLogger(__name__)

# Set while instances are rebuilt from stored items, which skips the pipeline
_materializing: ContextVar[bool] = ContextVar("dynamodm_materializing", default=False)


class hybridmethod:
    """
    Method with separate implementations for class and instance access.

    Example:
        >>> class Thing:
        ...     @hybridmethod
        ...     def describe(self):
        ...         return "instance"
        ...
        ...     @describe.classmethod
        ...     def describe(cls):
        ...         return "class"
    """

    def __init__(self, finstance: Callable[..., Any], fclass: Optional[Callable[..., Any]] = None):
        self.finstance = finstance
        self.fclass = fclass
        functools.update_wrapper(self, finstance)  # type: ignore[arg-type]

    def classmethod(self, fclass: Callable[..., Any]) -> "hybridmethod":
        self.fclass = fclass
        return self

    def __get__(self, instance: Any, owner: type) -> Callable[..., Any]:
        if instance is None:
            if self.fclass is None:
                raise AttributeError(f"{self.finstance.__name__} is only available on instances")
            return types.MethodType(self.fclass, owner)
        return types.MethodType(self.finstance, instance)


def _convert_validation_error(error: pydantic.ValidationError) -> ValidationError:
    errors = error.errors()
    if not errors:
        return ValidationError(None, str(error))
    first = errors[0]
    location = first.get("loc") or ()
    field = str(location[0]) if location else None
    return ValidationError(field, first.get("msg", str(error)))


class Model(BaseModel):
    """
    Base model class for dynamodm.

    Field values run through the attribute pipeline on construction and on
    assignment. Persistence, queries and relationship loading are coroutines.

    Example:
        >>> class User(Model, model_backend=InMemoryBackend()):
        ...     id: str = Field(primary_key=True, default=lambda: uuid4().hex)
        ...     email: str = Field(unique=True, mutators=[str.strip, str.lower])
        ...     name: str
        ...     deleted_at: Optional[datetime] = Field(soft_delete=True)
        ...
        ...     orders = HasMany(lambda: Order, foreign_key="user_id")
        ...
        >>> user = await User.create(email=" Alice@Example.COM ", name="Alice")
        >>> user.email
        'alice@example.com'
        >>> users = await User.where({"name": "Alice"}, {"include": ["orders"]})

        Table name and registry can be passed as class parameters:
        >>> class OrderItem(Model, model_backend=backend, table_name="items"):
        ...     id: str = Field(primary_key=True)
    """

    model_config = ConfigDict(
        validate_assignment=True,
        arbitrary_types_allowed=True,
        from_attributes=True,
        ignored_types=(Relationship, hybridmethod),
    )

    # Backend configuration
    model_backend: ClassVar[Optional["Backend"]] = None
    model_table_name: ClassVar[Optional[str]] = None
    model_registry: ClassVar[MetadataRegistry] = default_registry

    # Track if this is a new record or loaded from the store
    _is_persisted: bool = False
    _attached: dict[str, Any] = PrivateAttr(default_factory=dict)

    def __init_subclass__(
        cls,
        model_backend: Optional["Backend"] = None,
        table_name: Optional[str] = None,
        registry: Optional[MetadataRegistry] = None,
        **kwargs: Any,
    ):
        """
        Apply class parameters.

        Args:
            model_backend: Backend to use for this model (alternative to the ClassVar)
            table_name: Stored table name, defaults to the snake_case plural
                of the class name
            registry: Metadata registry, defaults to ``default_registry``
        """
        super().__init_subclass__(**kwargs)

        if model_backend is not None:
            cls.model_backend = model_backend
        if table_name is not None:
            cls.model_table_name = table_name
        elif "model_table_name" not in cls.__dict__:
            cls.model_table_name = None
        if registry is not None:
            cls.model_registry = registry

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        """Register the class once Pydantic has collected its fields."""
        super().__pydantic_init_subclass__(**kwargs)

        registry = cls.model_registry
        metadata = registry.declare(cls, cls.model_table_name or snake_plural(cls.__name__))

        # Later definitions override earlier ones with the same method name
        hooks: dict[str, Callable[..., Any]] = {}
        relationships: dict[str, Relationship] = {}
        for klass in reversed(cls.__mro__):
            for attr_name, attr in vars(klass).items():
                if isinstance(attr, Relationship):
                    relationships[attr_name] = attr
                elif isinstance(attr, types.FunctionType) and (
                    hasattr(attr, '_mutates_field') or hasattr(attr, '_validates_field')
                ):
                    hooks[attr_name] = attr

        mutators: dict[str, list[Callable[..., Any]]] = {}
        validators: dict[str, list[Callable[..., Any]]] = {}
        lazy_validators: dict[str, list[Callable[..., Any]]] = {}
        for attr_name, func in hooks.items():
            field_name = getattr(func, '_mutates_field', None) or getattr(func, '_validates_field')
            if field_name not in cls.model_fields:
                raise ConfigurationError(f"{cls.__name__}.{attr_name} refers to unknown field {field_name!r}")
            bound = functools.partial(func, cls)
            if getattr(func, '_mutates_field', None):
                mutators.setdefault(field_name, []).append(bound)
            elif getattr(func, '_validates_lazy', False):
                lazy_validators.setdefault(field_name, []).append(bound)
            else:
                validators.setdefault(field_name, []).append(bound)

        for name, field_info in cls.model_fields.items():
            field = FieldMetadata.from_field_info(name, field_info)
            pipeline = AttributePipeline(
                field,
                extra_mutators=mutators.get(name),
                extra_validators=validators.get(name),
                extra_lazy_validators=lazy_validators.get(name),
            )
            registry.register(cls, field, pipeline)

        for name, relationship in relationships.items():
            registry.register_relationship(cls, name, relationship)

        logger.debug(
            f"Registered {cls.__name__} as {metadata.storage_name!r} with "
            f"{len(metadata.fields)} field(s) and {len(metadata.relationships)} relationship(s)"
        )

    def __init__(self, **data: Any):
        if not _materializing.get():
            data = self._prepare_values(data)
        try:
            super().__init__(**data)
        except pydantic.ValidationError as e:
            raise _convert_validation_error(e) from e

    @classmethod
    def _prepare_values(cls, data: dict[str, Any]) -> dict[str, Any]:
        metadata = cls._declared_metadata()
        if metadata is None:
            return data
        prepared = dict(data)
        for name, pipeline in metadata.pipelines.items():
            value = pipeline.prepare(data.get(name))
            field = pipeline.metadata
            if value is None and field.is_timestamp and (field.is_key or cls.model_fields[name].is_required()):
                # Stamped again when the record is first written
                value = utcnow()
            if value is not None:
                prepared[name] = value
            elif cls.model_fields[name].is_required():
                prepared[name] = None
            else:
                prepared.pop(name, None)
        return prepared

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith('_'):
            super().__setattr__(name, value)
            return
        metadata = type(self)._declared_metadata()
        if metadata is not None:
            if name in metadata.relationships:
                self._attach(name, value)
                return
            if name in metadata.pipelines:
                value = metadata.pipeline(name).assign(getattr(self, name, None), value)
        self._set_raw(name, value)

    def _set_raw(self, name: str, value: Any) -> None:
        """Assign a field value with type validation only."""
        try:
            super().__setattr__(name, value)
        except pydantic.ValidationError as e:
            raise _convert_validation_error(e) from e

    def attached(self, name: str, default: Any = None) -> Any:
        """Value attached to a relationship by the last query that loaded it."""
        return self._attached.get(name, default)

    def _attach(self, name: str, value: Any) -> None:
        self._attached[name] = value

    @classmethod
    def _declared_metadata(cls) -> Optional[EntityTypeMetadata]:
        return cls.model_registry.get(cls)

    @classmethod
    def model_metadata(cls) -> EntityTypeMetadata:
        """
        Registered metadata of this model.

        Raises:
            ConfigurationError: If the model declared no partition key
        """
        return cls.model_registry.resolve(cls)

    @classmethod
    def _get_backend(cls) -> "Backend":
        """
        Get the backend for this model, registering its table key schema.

        Raises:
            ConfigurationError: If no backend is configured
        """
        backend = cls.model_backend
        if backend is None:
            raise ConfigurationError(
                f"No backend configured for {cls.__name__}. "
                f"Set {cls.__name__}.model_backend = YourBackend() or pass model_backend=YourBackend() to class definition."
            )
        metadata = cls.model_metadata()
        if backend.key_schema(metadata.storage_name) is None:
            sort_key = metadata.sort_key
            backend.register_table(
                metadata.storage_name,
                metadata.partition_key.storage_name,
                sort_key.storage_name if sort_key else None,
            )
        return backend

    @classmethod
    def _from_store(cls, item: Mapping[str, Any], partial: bool = False) -> "Model":
        """
        Materialize an instance from a stored item.

        Storage names are mapped back and ``from_store`` converters applied;
        defaults, mutators and validators do not run. Partial items (from a
        projection) only set the fields they carry.
        """
        metadata = cls.model_metadata()
        values: dict[str, Any] = {}
        for storage_name, raw in item.items():
            name = metadata.field_for_storage(storage_name)
            if name is not None:
                values[name] = metadata.pipeline(name).deserialize(raw)

        token = _materializing.set(True)
        try:
            if partial:
                instance = cls.model_construct()
                for name, value in values.items():
                    try:
                        cls.__pydantic_validator__.validate_assignment(instance, name, value)
                    except pydantic.ValidationError as e:
                        raise _convert_validation_error(e) from e
            else:
                instance = cls(**values)
        finally:
            _materializing.reset(token)
        instance._is_persisted = True
        return instance

    def _field_values(self) -> dict[str, Any]:
        metadata = self.model_metadata()
        return {name: getattr(self, name, None) for name in metadata.fields}

    def key(self) -> dict[str, Any]:
        """Stored key of this record."""
        return self.model_metadata().key_of(self._field_values())

    def to_store(self) -> dict[str, Any]:
        """Item written to the store: stored names, serialized values, no empty attributes."""
        metadata = self.model_metadata()
        item: dict[str, Any] = {}
        for name, value in self._field_values().items():
            if value is None:
                continue
            if isinstance(value, BaseModel):
                value = value.model_dump()
            stored = metadata.pipeline(name).serialize(value)
            if stored is not None:
                item[metadata.fields[name].storage_name] = stored
        return item

    def to_dict(self, include_relations: bool = False) -> dict[str, Any]:
        """
        Plain record as a dict keyed by field name.

        Args:
            include_relations: Also include relationship values attached by
                the query that loaded this instance
        """
        data = self._field_values()
        if include_relations:
            for name, value in self._attached.items():
                if isinstance(value, list):
                    data[name] = [related.to_dict(include_relations=True) for related in value]
                elif value is not None:
                    data[name] = value.to_dict(include_relations=True)
                else:
                    data[name] = None
        return data

    def _touch(self, inserting: bool) -> None:
        """Stamp timestamp fields for a write."""
        metadata = self.model_metadata()
        now = utcnow()
        fields = list(metadata.updated_at_fields)
        if inserting:
            fields.extend(field for field in metadata.created_at_fields if field not in fields)
        for field in fields:
            self._set_raw(field.name, now)

    async def _validate_lazy(self) -> None:
        """Run deferred validators and unique checks."""
        metadata = self.model_metadata()
        for name, pipeline in metadata.pipelines.items():
            value = getattr(self, name, None)
            if pipeline.has_lazy_validators:
                await pipeline.validate_lazy(value)
            if metadata.fields[name].unique and value is not None:
                await self._check_unique(name, value)

    async def _check_unique(self, name: str, value: Any) -> None:
        query = Query(
            type(self),
            [Condition(name, "=", value)],
            QueryOptions(attributes=[name]),
            trashed="include",
        )
        # A record not yet stored cannot match itself, and its key may still be unstamped
        own_key = self.key() if self._is_persisted else None
        for other in await query.all():
            if own_key is None or other.key() != own_key:
                raise ValidationError(name, f"{name} must be unique")

    async def save(self) -> "Model":
        """
        Validate and save this record.

        Inserts when the record was never persisted (failing with
        DuplicateKeyError if the key is taken), otherwise overwrites it.

        Returns:
            Self for method chaining

        Raises:
            ValidationError: If a lazy validator or unique check fails
            DuplicateKeyError: If inserting over an existing key
        """
        metadata = self.model_metadata()
        backend = self._get_backend()
        await self._validate_lazy()

        inserting = not self._is_persisted
        self._touch(inserting)
        await backend.put_item(metadata.storage_name, self.to_store(), require_absent=inserting)
        self._is_persisted = True
        logger.debug(f"{'Inserted' if inserting else 'Saved'} {metadata.type_name} {self.key()}")
        return self

    @hybridmethod
    async def update(self, patch: Optional[Mapping[str, Any]] = None, **fields: Any) -> "Model":
        """
        Assign the present values of a patch and save.

        Keys mapped to None are skipped. Key fields cannot change.

        Example:
            >>> await user.update({"name": "Alice Smith", "email": None})
        """
        metadata = self.model_metadata()
        values = {**(patch or {}), **fields}
        for name, value in values.items():
            if value is None:
                continue
            field = metadata.field(name)
            if field is None:
                raise ValidationError(name, f"{metadata.type_name} has no field {name!r}")
            if field.is_key and value != getattr(self, name, None):
                raise ValidationError(name, f"{name} is part of the key and cannot be updated")
            setattr(self, name, value)
        return await self.save()

    @update.classmethod
    async def update(cls, patch: Mapping[str, Any], filters: Optional[Mapping[str, Any]] = None) -> int:
        """
        Apply a patch to every record matching ``filters``.

        Returns:
            Number of records updated

        Example:
            >>> await Order.update({"status": "shipped"}, {"user_id": "u1", "status": "paid"})
            2
        """
        records = await cls.where(filters or {})
        for record in records:
            await record.update(patch)
        logger.debug(f"Updated {len(records)} {cls.__name__} record(s)")
        return len(records)

    async def destroy(self, force: bool = False) -> bool:
        """
        Delete this record.

        Soft-deletes by stamping the soft-delete field when the model has one,
        unless ``force`` is set.

        Returns:
            True if a record was removed or marked
        """
        metadata = self.model_metadata()
        backend = self._get_backend()
        marker = metadata.soft_delete_field
        if marker is not None and not force:
            self._set_raw(marker.name, utcnow())
            self._touch(False)
            await backend.put_item(metadata.storage_name, self.to_store())
            logger.debug(f"Soft-deleted {metadata.type_name} {self.key()}")
            return True

        deleted = await backend.delete_item(metadata.storage_name, self.key())
        self._is_persisted = False
        logger.debug(f"Deleted {metadata.type_name} {self.key()}")
        return deleted

    async def restore(self) -> "Model":
        """Clear the soft-delete marker and save."""
        metadata = self.model_metadata()
        marker = metadata.soft_delete_field
        if marker is None:
            raise ConfigurationError(f"{metadata.type_name} does not declare a soft-delete field")
        self._set_raw(marker.name, None)
        return await self.save()

    async def reload(self) -> "Model":
        """
        Refresh field values from the store.

        Raises:
            NotFoundError: If the record no longer exists
        """
        metadata = self.model_metadata()
        item = await self._get_backend().get_item(metadata.storage_name, self.key())
        if item is None:
            raise NotFoundError(f"{metadata.type_name} {self.key()} no longer exists")
        fresh = type(self)._from_store(item)
        self.__dict__.update(fresh.__dict__)
        self._is_persisted = True
        return self

    @classmethod
    async def create(cls, data: Optional[Mapping[str, Any]] = None, **fields: Any) -> "Model":
        """
        Create and save a new record in one operation.

        Raises:
            ValidationError: If field validation fails
            DuplicateKeyError: If the key is already taken

        Example:
            >>> user = await User.create({"email": "alice@example.com"}, name="Alice")
        """
        instance = cls(**{**(data or {}), **fields})
        await instance.save()
        return instance

    @classmethod
    async def upsert(cls, data: Optional[Mapping[str, Any]] = None, **fields: Any) -> "Model":
        """
        Create or overwrite a record.

        Unlike create(), an existing record with the same key is replaced;
        its created_at values are kept.
        """
        instance = cls(**{**(data or {}), **fields})
        metadata = cls.model_metadata()
        existing = await cls._get_backend().get_item(metadata.storage_name, instance.key())
        if existing is not None:
            instance._is_persisted = True
            for field in metadata.created_at_fields:
                stored = existing.get(field.storage_name)
                if stored is not None:
                    instance._set_raw(field.name, metadata.pipeline(field.name).deserialize(stored))
        return await instance.save()

    @classmethod
    async def get(cls, **key: Any) -> Optional["Model"]:
        """
        Get a single record by key.

        Returns:
            Model instance, or None if missing or soft-deleted

        Example:
            >>> order = await Order.get(user_id="u1", number=3)
        """
        metadata = cls.model_metadata()
        item = await cls._get_backend().get_item(metadata.storage_name, metadata.key_of(key))
        if item is None:
            return None
        marker = metadata.soft_delete_field
        if marker is not None and item.get(marker.storage_name) is not None:
            return None
        return cls._from_store(item)

    @classmethod
    def query(cls, *args: Any, trashed: Trashed = "exclude", **kwargs: Any) -> Query:
        """
        Build an executable query without running it.

        Accepts the same arguments as where().
        """
        conditions, options = normalize_arguments(args, kwargs)
        return Query(cls, conditions, options, trashed)

    @classmethod
    async def where(cls, *args: Any, **kwargs: Any) -> list["Model"]:
        """
        Find records matching a filter.

        Examples:
            >>> await User.where("status", "active")
            >>> await Order.where("total", ">=", 100)
            >>> await Order.where({"user_id": "u1", "status": ["paid", "shipped"]})
            >>> await Order.where({"user_id": "u1"}, {"order": "DESC", "limit": 1})
            >>> await User.where({"id": "u1"}, include={"orders": {"limit": 2}})
        """
        return await cls.query(*args, **kwargs).all()

    @classmethod
    async def first(cls, *args: Any, **kwargs: Any) -> Optional["Model"]:
        """First matching record in query order, or None."""
        return await cls.query(*args, **kwargs).first()

    @classmethod
    async def last(cls, *args: Any, **kwargs: Any) -> Optional["Model"]:
        """Last matching record in query order, or None."""
        return await cls.query(*args, **kwargs).last()

    @classmethod
    async def count(cls, *args: Any, **kwargs: Any) -> int:
        return await cls.query(*args, **kwargs).count()

    @classmethod
    async def exists(cls, *args: Any, **kwargs: Any) -> bool:
        return await cls.query(*args, **kwargs).exists()

    @classmethod
    async def all(cls) -> list["Model"]:
        """Get all visible records."""
        return await cls.query().all()

    @classmethod
    async def with_trashed(cls, *args: Any, **kwargs: Any) -> list["Model"]:
        """Like where(), soft-deleted records included."""
        return await cls.query(*args, trashed="include", **kwargs).all()

    @classmethod
    async def only_trashed(cls, *args: Any, **kwargs: Any) -> list["Model"]:
        """Like where(), soft-deleted records only."""
        return await cls.query(*args, trashed="only", **kwargs).all()

    @classmethod
    async def delete(cls, filters: Optional[Mapping[str, Any]] = None, force: bool = False) -> int:
        """
        Delete every record matching ``filters``.

        Soft-deletes when the model has a soft-delete field unless ``force``
        is set; forced deletes also remove already trashed records.

        Returns:
            Number of records deleted
        """
        trashed: Trashed = "include" if force else "exclude"
        records = await cls.query(filters or {}, trashed=trashed).all()
        for record in records:
            await record.destroy(force=force)
        logger.debug(f"Deleted {len(records)} {cls.__name__} record(s)")
        return len(records)
