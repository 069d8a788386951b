"""Backend implementations for dynamodm."""

from dynamodm.backends.base import Backend, KeySchema, TransactDelete, TransactPut
from dynamodm.backends.memory import InMemoryBackend
from dynamodm.backends.dynamodb import DynamoDBBackend

__all__ = [
    "Backend",
    "KeySchema",
    "TransactPut",
    "TransactDelete",
    "InMemoryBackend",
    "DynamoDBBackend",
]
