"""
Field definitions for dynamodm.

Extends Pydantic's field system with ORM-specific metadata: key roles,
timestamp and soft-delete markers, and the per-field pipeline steps
(defaults, mutators, validators and store serializers).
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Optional, Sequence, Union, get_args

from pydantic import Field as PydanticField
from pydantic.fields import FieldInfo
from pydantic_core import PydanticUndefined

Mutator = Callable[..., Any]
Validator = Callable[[Any], Union[bool, str, None]]


def Field(
    default: Any = PydanticUndefined,
    *,
    default_factory: Optional[Callable[[], Any]] = None,
    alias: Optional[str] = None,
    title: Optional[str] = None,
    description: Optional[str] = None,
    examples: Optional[list[Any]] = None,
    gt: Optional[float] = None,
    ge: Optional[float] = None,
    lt: Optional[float] = None,
    le: Optional[float] = None,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
    pattern: Optional[str] = None,
    # ORM-specific options
    primary_key: bool = False,
    partition_key: bool = False,
    sort_key: bool = False,
    nullable: Optional[bool] = None,
    unique: bool = False,
    created_at: bool = False,
    updated_at: bool = False,
    soft_delete: bool = False,
    db_column: Optional[str] = None,
    mutators: Sequence[Mutator] = (),
    validators: Sequence[Validator] = (),
    lazy_validators: Sequence[Callable[[Any], Any]] = (),
    from_store: Optional[Callable[[Any], Any]] = None,
    to_store: Optional[Callable[[Any], Any]] = None,
    **extra: Any,
) -> Any:
    """
    Define a model field with validation and ORM metadata.

    Defaults are handled by the attribute pipeline rather than by Pydantic,
    so callable defaults are evaluated once per instance and before mutators
    and validators run.

    Args:
        default: Default value, or a zero-argument callable producing one
        default_factory: Zero-argument callable producing the default
        primary_key: Field is the partition key (alias of partition_key)
        partition_key: Field is the partition key
        sort_key: Field is the sort key; requires an earlier partition key
        nullable: Whether the field may be left empty. Inferred from the
            annotation (``Optional[...]``) when not given; keys are never
            nullable.
        unique: Reject values already stored on another record (checked
            when saving)
        created_at: Stamp with the current time when the record is inserted
        updated_at: Stamp with the current time on every write
        soft_delete: Marker set by destroy(); records carrying it are hidden
            from queries unless trashed records are requested
        db_column: Attribute name used in the store
        mutators: Callables applied in order on every write. Each takes
            ``(value)`` or ``(previous, value)``.
        validators: Callables returning True to accept, or a message (or
            False) to reject
        lazy_validators: Validators deferred to save time; may be async
        from_store: Converter applied when reading the stored value
        to_store: Converter applied right before the value is written
        **extra: Additional Pydantic field arguments

    Example:
        >>> class User(Model):
        ...     id: str = Field(primary_key=True, default=lambda: uuid4().hex)
        ...     email: str = Field(
        ...         mutators=[str.strip, str.lower],
        ...         validators=[lambda v: "@" in v or "invalid email"],
        ...     )
        ...     deleted_at: Optional[datetime] = Field(soft_delete=True)
    """
    json_schema_extra = extra.pop("json_schema_extra", {})
    json_schema_extra.update({
        "orm": {
            "partition_key": primary_key or partition_key,
            "sort_key": sort_key,
            "nullable": nullable,
            "unique": unique,
            "created_at": created_at,
            "updated_at": updated_at,
            "soft_delete": soft_delete,
            "db_column": db_column,
            "default": default,
            "default_factory": default_factory,
            "mutators": list(mutators),
            "validators": list(validators),
            "lazy_validators": list(lazy_validators),
            "from_store": from_store,
            "to_store": to_store,
        }
    })

    return PydanticField(  # type: ignore[call-overload]
        default=None,
        alias=alias,
        title=title,
        description=description,
        examples=examples,
        gt=gt,
        ge=ge,
        lt=lt,
        le=le,
        min_length=min_length,
        max_length=max_length,
        pattern=pattern,
        json_schema_extra=json_schema_extra,
        **extra,
    )


def get_field_orm_metadata(field_info: FieldInfo) -> dict[str, Any]:
    """
    Extract ORM metadata from a FieldInfo object.

    Example:
        >>> field = Field(primary_key=True)
        >>> assert get_field_orm_metadata(field)["partition_key"] is True
    """
    if hasattr(field_info, "json_schema_extra") and field_info.json_schema_extra:
        extra = field_info.json_schema_extra
        if isinstance(extra, dict):
            orm_data = extra.get("orm", {})
            if isinstance(orm_data, dict):
                return orm_data
    return {}


@dataclass
class FieldMetadata:
    """Resolved ORM description of one declared field."""

    name: str
    storage_name: str
    partition_key: bool = False
    sort_key: bool = False
    nullable: bool = True
    unique: bool = False
    created_at: bool = False
    updated_at: bool = False
    soft_delete: bool = False
    default: Any = None
    mutators: list[Mutator] = dataclass_field(default_factory=list)
    validators: list[Validator] = dataclass_field(default_factory=list)
    lazy_validators: list[Callable[[Any], Any]] = dataclass_field(default_factory=list)
    from_store: Optional[Callable[[Any], Any]] = None
    to_store: Optional[Callable[[Any], Any]] = None

    @property
    def is_key(self) -> bool:
        return self.partition_key or self.sort_key

    @property
    def is_timestamp(self) -> bool:
        return self.created_at or self.updated_at

    @property
    def primary_key(self) -> bool:
        """Alias kept for readability at call sites that talk about primary keys."""
        return self.partition_key

    @classmethod
    def from_field_info(cls, name: str, field_info: FieldInfo) -> "FieldMetadata":
        """Build metadata for a Pydantic field, declared with Field() or not."""
        orm = get_field_orm_metadata(field_info)

        default = orm.get("default", PydanticUndefined)
        if orm.get("default_factory") is not None:
            default = orm["default_factory"]
        if default is PydanticUndefined and not orm:
            # Plain annotations keep their Pydantic default
            if field_info.default_factory is not None:
                default = field_info.default_factory
            else:
                default = field_info.default
        if default is PydanticUndefined:
            default = None

        is_key = bool(orm.get("partition_key") or orm.get("sort_key"))
        nullable = orm.get("nullable")
        if is_key:
            nullable = False
        elif orm.get("soft_delete"):
            nullable = True
        elif nullable is None:
            nullable = _allows_none(field_info.annotation)

        return cls(
            name=name,
            storage_name=orm.get("db_column") or name,
            partition_key=bool(orm.get("partition_key")),
            sort_key=bool(orm.get("sort_key")),
            nullable=bool(nullable),
            unique=bool(orm.get("unique")),
            created_at=bool(orm.get("created_at")),
            updated_at=bool(orm.get("updated_at")),
            soft_delete=bool(orm.get("soft_delete")),
            default=default,
            mutators=list(orm.get("mutators") or []),
            validators=list(orm.get("validators") or []),
            lazy_validators=list(orm.get("lazy_validators") or []),
            from_store=orm.get("from_store"),
            to_store=orm.get("to_store"),
        )


def _allows_none(annotation: Any) -> bool:
    if annotation is None or annotation is Any or annotation is type(None):
        return True
    return type(None) in get_args(annotation)
