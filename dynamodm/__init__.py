"""
dynamodm - async object-document mapper for DynamoDB-style stores.

Declarative models with per-field pipelines, AND-only filters compiled to
key queries or scans, batched relationship loading, soft delete and bounded
atomic transactions.
"""

from dynamodm.models.base import Model
from dynamodm.models.fields import Field
from dynamodm.models.hooks import mutates, validates
from dynamodm.models.metadata import MetadataRegistry, default_registry
from dynamodm.models.relations import BelongsTo, HasMany, HasOne, ManyToMany
from dynamodm.query.options import IncludeOptions, QueryOptions
from dynamodm.backends.base import Backend
from dynamodm.backends.memory import InMemoryBackend
from dynamodm.config import BackendSettings, create_backend, load_settings
from dynamodm.transactions import (
    MAX_TRANSACTION_OPERATIONS,
    TransactionCoordinator,
    run_transaction,
    transaction,
)
from dynamodm.exceptions import (
    ConfigurationError,
    DuplicateKeyError,
    DynamODMError,
    NotFoundError,
    QueryError,
    TransactionError,
    TransactionLimitError,
    TransactionStateError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "Model",
    "Field",
    "mutates",
    "validates",
    "MetadataRegistry",
    "default_registry",
    "HasMany",
    "HasOne",
    "BelongsTo",
    "ManyToMany",
    "QueryOptions",
    "IncludeOptions",
    "Backend",
    "InMemoryBackend",
    "BackendSettings",
    "load_settings",
    "create_backend",
    "MAX_TRANSACTION_OPERATIONS",
    "TransactionCoordinator",
    "transaction",
    "run_transaction",
    "DynamODMError",
    "ConfigurationError",
    "ValidationError",
    "QueryError",
    "NotFoundError",
    "DuplicateKeyError",
    "TransactionError",
    "TransactionLimitError",
    "TransactionStateError",
]
