"""
Attribute pipeline for dynamodm fields.

Each declared field gets one AttributePipeline built from its FieldMetadata.
The pipeline runs the field's steps in a fixed order:

1. default (only when the value is absent on construction)
2. mutators, in declaration order
3. validators, in declaration order; the first failure stops the write
4. created_at / updated_at stamping, performed by the model on write
5. to_store right before writing, from_store right after reading

Lazy validators are kept apart and only run when a record is saved.
"""

import inspect
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from dynamodm.exceptions import ValidationError
from dynamodm.models.fields import FieldMetadata


def utcnow() -> datetime:
    """Current instant used for timestamp fields."""
    return datetime.now(timezone.utc)


def _positional_arity(func: Callable[..., Any]) -> int:
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        # Builtins without signature metadata take the value only
        return 1
    count = 0
    for parameter in signature.parameters.values():
        if parameter.kind == inspect.Parameter.VAR_POSITIONAL:
            return 2
        if parameter.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ) and parameter.default is inspect.Parameter.empty:
            count += 1
    return count


def _check(field: str, result: Any) -> None:
    if result is True or result is None:
        return
    if isinstance(result, str):
        raise ValidationError(field, result)
    if result is False:
        raise ValidationError(field, f"invalid value for {field}")
    # Truthy non-bool results pass, falsy ones fail
    if not result:
        raise ValidationError(field, f"invalid value for {field}")


class AttributePipeline:
    """
    Ordered chain of default, mutate, validate and serialize steps for one field.

    Pipelines hold no per-instance state, so a single pipeline is shared by
    every instance of the entity type and may run concurrently.
    """

    def __init__(
        self,
        metadata: FieldMetadata,
        extra_mutators: Optional[list[Callable[..., Any]]] = None,
        extra_validators: Optional[list[Callable[[Any], Any]]] = None,
        extra_lazy_validators: Optional[list[Callable[[Any], Any]]] = None,
    ):
        self.metadata = metadata
        self.name = metadata.name
        mutators = list(metadata.mutators) + list(extra_mutators or [])
        self._mutators = [(mutator, _positional_arity(mutator)) for mutator in mutators]
        self._validators = list(metadata.validators) + list(extra_validators or [])
        self._lazy_validators = list(metadata.lazy_validators) + list(extra_lazy_validators or [])

    @property
    def has_lazy_validators(self) -> bool:
        return bool(self._lazy_validators)

    def default(self) -> Any:
        """Produce the default value; callables are invoked on every call."""
        provider = self.metadata.default
        if callable(provider):
            return provider()
        return provider

    def mutate(self, previous: Any, value: Any) -> Any:
        """Apply mutators in declaration order."""
        for mutator, arity in self._mutators:
            if arity == 0:
                value = mutator()
            elif arity == 1:
                value = mutator(value)
            else:
                value = mutator(previous, value)
        return value

    def validate(self, value: Any) -> None:
        """Run validators in declaration order, raising on the first failure."""
        for validator in self._validators:
            try:
                result = validator(value)
            except ValidationError:
                raise
            except (ValueError, TypeError) as e:
                raise ValidationError(self.name, str(e)) from e
            _check(self.name, result)

    def _require(self, value: Any) -> None:
        if value is None and not self.metadata.nullable and not self.metadata.is_timestamp:
            raise ValidationError(self.name, f"{self.name} is required")

    def prepare(self, value: Any) -> Any:
        """
        Run the construction steps for a raw input value.

        Absent values (missing or None) take the default. Mutators and
        validators only see present values.
        """
        if value is None:
            value = self.default()
        if value is not None:
            value = self.mutate(None, value)
            self.validate(value)
        self._require(value)
        return value

    def assign(self, previous: Any, value: Any) -> Any:
        """Run mutators and validators for an assignment to a live instance."""
        if value is not None:
            value = self.mutate(previous, value)
            self.validate(value)
        self._require(value)
        return value

    async def validate_lazy(self, value: Any) -> None:
        """Run deferred validators; async validators are awaited."""
        if value is None:
            return
        for validator in self._lazy_validators:
            try:
                result = validator(value)
                if inspect.isawaitable(result):
                    result = await result
            except ValidationError:
                raise
            except (ValueError, TypeError) as e:
                raise ValidationError(self.name, str(e)) from e
            _check(self.name, result)

    def serialize(self, value: Any) -> Any:
        """Convert a value to its stored representation."""
        if value is None or self.metadata.to_store is None:
            return value
        return self.metadata.to_store(value)

    def deserialize(self, value: Any) -> Any:
        """Convert a stored value back to its exposed representation."""
        if value is None or self.metadata.from_store is None:
            return value
        return self.metadata.from_store(value)
