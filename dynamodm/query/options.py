"""
Query options and include specifications.

Options follow the wire shape::

    {"where": {...}, "order": "ASC" | "DESC", "skip": 0, "limit": 10,
     "attributes": ["id", "name"], "include": {"orders": True | {...}}}

``include`` values are recursively the same shape, so nested relationship
loading is described by the same model. Everything is validated with
Pydantic before the query is compiled.
"""

from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from dynamodm.exceptions import QueryError

OPTION_NAMES = frozenset({"where", "order", "order_by", "skip", "limit", "attributes", "include"})


class QueryOptions(BaseModel):
    """Validated query options; also used for each nested include."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    where: Optional[dict[str, Any]] = None
    order: Literal["ASC", "DESC"] = "ASC"
    order_by: Optional[str] = None
    skip: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=0)
    attributes: Optional[list[str]] = None
    include: dict[str, "QueryOptions"] = Field(default_factory=dict)

    @field_validator("order", mode="before")
    @classmethod
    def _normalize_order(cls, value: Any) -> Any:
        if value is None:
            return "ASC"
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("attributes", mode="before")
    @classmethod
    def _normalize_attributes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("include", mode="before")
    @classmethod
    def _normalize_include(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return {value: {}}
        if isinstance(value, (list, tuple, set)):
            return {name: {} for name in value}
        if isinstance(value, Mapping):
            normalized: dict[str, Any] = {}
            for name, spec in value.items():
                if spec is False or spec is None:
                    continue
                normalized[name] = {} if spec is True else spec
            return normalized
        return value

    @property
    def descending(self) -> bool:
        return self.order == "DESC"

    def reversed(self) -> "QueryOptions":
        """Same options with the opposite order direction."""
        return self.model_copy(update={"order": "ASC" if self.descending else "DESC"})

    def merged(self, **changes: Any) -> "QueryOptions":
        return self.model_copy(update=changes)


IncludeOptions = QueryOptions


def parse_options(
    options: Union[None, Mapping[str, Any], QueryOptions] = None,
    **overrides: Any,
) -> QueryOptions:
    """
    Validate options given as a mapping (or already parsed) plus overrides.

    Raises:
        QueryError: If any option is unknown or invalid
    """
    if isinstance(options, QueryOptions):
        if not overrides:
            return options
        options = options.model_dump(exclude_unset=True)
    data = dict(options or {})
    data.update(overrides)
    try:
        return QueryOptions.model_validate(data)
    except PydanticValidationError as e:
        raise QueryError(f"Invalid query options: {e}") from e
