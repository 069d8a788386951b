"""
Hook decorators for declaring field behavior as model methods.

Methods marked here are collected when the model class is defined and
appended to the field's pipeline after the steps declared through Field().
They are called with the model class as first argument, like classmethods.
"""

from typing import Any, Callable, TypeVar

F = TypeVar('F', bound=Callable[..., Any])


def mutates(field: str) -> Callable[[F], F]:
    """
    Mark a method as a mutator for ``field``.

    Example:
        >>> class User(Model):
        ...     email: str = Field()
        ...
        ...     @mutates("email")
        ...     def normalize_email(cls, value):
        ...         return value.strip().lower()
    """
    def decorator(func: F) -> F:
        setattr(func, '_mutates_field', field)  # type: ignore[attr-defined]
        return func
    return decorator


def validates(field: str, lazy: bool = False) -> Callable[[F], F]:
    """
    Mark a method as a validator for ``field``.

    Lazy validators run when the record is saved instead of when values are
    assigned, and may be coroutines.

    Example:
        >>> class User(Model):
        ...     @validates("username", lazy=True)
        ...     async def username_available(cls, value):
        ...         return not await cls.exists({"username": value}) or "taken"
    """
    def decorator(func: F) -> F:
        setattr(func, '_validates_field', field)  # type: ignore[attr-defined]
        setattr(func, '_validates_lazy', lazy)  # type: ignore[attr-defined]
        return func
    return decorator
