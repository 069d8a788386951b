"""
Relationship declarations for dynamodm models.

Relationships are declared as class attributes. Target types are given as
zero-argument providers (usually a lambda) so two models can refer to each
other regardless of definition order; the provider is only called when a
query resolves the relationship.

Example:
    >>> class User(Model):
    ...     id: str = Field(primary_key=True)
    ...     orders = HasMany(lambda: Order, foreign_key="user_id")
    ...
    >>> class Order(Model):
    ...     user_id: str = Field(partition_key=True)
    ...     created_at: datetime = Field(sort_key=True)
    ...     user = BelongsTo(lambda: User, local_key="user_id")
"""

from typing import Any, Callable, Optional, Union, TYPE_CHECKING

from dynamodm.exceptions import ConfigurationError

if TYPE_CHECKING:
    from dynamodm.models.base import Model

TargetProvider = Union[type, Callable[[], type]]


class Relationship:
    """
    Base descriptor for a declared relationship.

    Reading the attribute on an instance returns whatever the last query
    attached (an empty list or None when nothing was loaded). Attached values
    are never persisted.
    """

    kind: str = ""
    many: bool = False

    def __init__(
        self,
        target: TargetProvider,
        *,
        foreign_key: Optional[str] = None,
        local_key: Optional[str] = None,
    ):
        self._target = target
        self.foreign_key = foreign_key
        self.local_key = local_key
        self.name: Optional[str] = None
        self.owner: Optional[type] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name

    def __get__(self, instance: Optional["Model"], owner: type) -> Any:
        if instance is None:
            return self
        return instance.attached(self.name or "", self.empty())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, kind={self.kind!r})"

    def empty(self) -> Any:
        """Value attached when no related record matched."""
        return [] if self.many else None

    def target(self) -> type["Model"]:
        """Resolve the target model class."""
        target = self._target
        if isinstance(target, type):
            return target
        resolved = target()
        if not isinstance(resolved, type):
            raise ConfigurationError(
                f"Relationship {self.name!r} target provider returned {resolved!r}, expected a model class"
            )
        return resolved

    def owner_key(self, owner: type["Model"]) -> str:
        """Field on the owning model whose value drives the lookup."""
        raise NotImplementedError

    def target_key(self, target: type["Model"]) -> str:
        """Field on the target model matched against owner_key values."""
        raise NotImplementedError


class HasMany(Relationship):
    """One-to-many: target rows carry ``foreign_key`` pointing at the owner."""

    kind = "has_many"
    many = True

    def __init__(self, target: TargetProvider, *, foreign_key: str, local_key: Optional[str] = None):
        super().__init__(target, foreign_key=foreign_key, local_key=local_key)

    def owner_key(self, owner: type["Model"]) -> str:
        return self.local_key or owner.model_metadata().partition_key.name

    def target_key(self, target: type["Model"]) -> str:
        return self.foreign_key  # type: ignore[return-value]


class HasOne(HasMany):
    """One-to-one: like HasMany but only the first related row is attached."""

    kind = "has_one"
    many = False


class BelongsTo(Relationship):
    """Many-to-one: the owner carries ``local_key`` pointing at the target."""

    kind = "belongs_to"
    many = False

    def __init__(self, target: TargetProvider, *, local_key: str, foreign_key: Optional[str] = None):
        super().__init__(target, foreign_key=foreign_key, local_key=local_key)

    def owner_key(self, owner: type["Model"]) -> str:
        return self.local_key  # type: ignore[return-value]

    def target_key(self, target: type["Model"]) -> str:
        return self.foreign_key or target.model_metadata().partition_key.name


class ManyToMany(Relationship):
    """
    Many-to-many through a pivot table.

    Pivot rows hold ``foreign_key`` (the owner's ``local_key`` value) and
    ``related_key`` (the target's ``target_field`` value).

    Example:
        >>> class User(Model):
        ...     roles = ManyToMany(
        ...         lambda: Role,
        ...         pivot_table="user_roles",
        ...         foreign_key="user_id",
        ...         related_key="role_id",
        ...     )
    """

    kind = "many_to_many"
    many = True

    def __init__(
        self,
        target: TargetProvider,
        *,
        pivot_table: str,
        foreign_key: str,
        related_key: str,
        local_key: Optional[str] = None,
        target_field: Optional[str] = None,
    ):
        super().__init__(target, foreign_key=foreign_key, local_key=local_key)
        self.pivot_table = pivot_table
        self.related_key = related_key
        self.target_field = target_field

    def owner_key(self, owner: type["Model"]) -> str:
        return self.local_key or owner.model_metadata().partition_key.name

    def target_key(self, target: type["Model"]) -> str:
        return self.target_field or target.model_metadata().partition_key.name
