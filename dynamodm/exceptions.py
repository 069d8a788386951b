"""
Exceptions raised by dynamodm.

Every error raised by the library derives from DynamODMError so callers can
catch the whole family at once. Failures coming from the store driver itself
(botocore ClientError and friends) are not wrapped and propagate unchanged.
"""

from typing import Any, Optional


class DynamODMError(Exception):
    """Base exception for dynamodm errors."""

    pass


class ConfigurationError(DynamODMError):
    """Entity type or backend is misconfigured.

    Raised for declaration problems (duplicate partition key, sort key
    without a partition key, unknown relationship) and when an operation
    runs against a model that has no backend bound to it.
    """

    pass


class ValidationError(DynamODMError, ValueError):
    """A field value was rejected by the attribute pipeline."""

    def __init__(self, field: Optional[str], message: str):
        self.field = field
        self.message = message
        detail = f"{field}: {message}" if field else message
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Structured form of the error, suitable for API responses."""
        return {"field": self.field, "message": self.message}


class QueryError(DynamODMError, ValueError):
    """A filter, operator or query option could not be understood."""

    pass


class BackendError(DynamODMError):
    """Base exception for backend errors."""

    pass


class NotFoundError(BackendError):
    """Record not found in backend."""

    pass


class DuplicateKeyError(BackendError):
    """An insert collided with an existing record key."""

    pass


class TransactionError(DynamODMError):
    """A transaction batch failed to commit; nothing was applied."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class TransactionLimitError(DynamODMError):
    """Too many operations were queued on a single transaction."""

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(
            f"Transaction has {count} operations, the maximum is {limit}"
        )


class TransactionStateError(DynamODMError):
    """An operation was attempted on a transaction that is no longer open."""

    pass
