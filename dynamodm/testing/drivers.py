"""
Driver implementations for different backend environments.

Drivers know how to bind model classes to a backend, provision the tables
they need and reset storage between tests.
"""

import logging
import typing
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional, Type

from botocore.exceptions import ClientError  # type: ignore[import-untyped]

from dynamodm.backends.base import Backend
from dynamodm.backends.dynamodb import DynamoDBBackend
from dynamodm.backends.memory import InMemoryBackend

logger = logging.getLogger(__name__)


class DriverInterface(ABC):
    """Abstract interface for all ORM test drivers."""

    backend: Backend

    @abstractmethod
    def setup_backend(self, model_class: Type) -> None:
        """Bind a model class to the driver's backend and provision its table."""
        pass

    @abstractmethod
    def setup_table(self, table: str, partition_key: str, sort_key: Optional[str] = None) -> None:
        """Provision a table that no model owns, such as a pivot table."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every item the tests wrote."""
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Get the name of the backend being tested."""
        pass


class InMemoryDriver(DriverInterface):
    """Driver that tests against the in-memory backend."""

    def __init__(self) -> None:
        self.backend = InMemoryBackend()

    def setup_backend(self, model_class: Type) -> None:
        model_class.model_backend = self.backend
        model_class._get_backend()

    def setup_table(self, table: str, partition_key: str, sort_key: Optional[str] = None) -> None:
        self.backend.register_table(table, partition_key, sort_key)

    def clear(self) -> None:
        self.backend.clear()

    def get_backend_name(self) -> str:
        return "memory"


def _attribute_type(annotation: Any) -> str:
    """DynamoDB scalar type for a key field annotation."""
    args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
    if args:
        annotation = args[0]
    # bool subclasses int but is not a valid key type; datetimes are stored as ISO strings
    if annotation is bool:
        return "S"
    if isinstance(annotation, type) and issubclass(annotation, (int, float, Decimal)):
        return "N"
    if annotation is bytes:
        return "B"
    return "S"


class DynamoDBDriver(DriverInterface):
    """
    Driver that tests against the DynamoDB backend.

    This driver expects moto's mock_aws to be active; tables are created on
    first use and emptied by clear().
    """

    def __init__(self, region_name: str = "us-east-1", table_prefix: str = "test-"):
        self.backend = DynamoDBBackend(region_name=region_name, table_prefix=table_prefix)
        self.region_name = region_name
        self._tables: dict[str, tuple[str, Optional[str]]] = {}

    def _create_table(self, table: str, keys: list[tuple[str, str, str]]) -> None:
        name = self.backend.physical_name(table)
        try:
            created = self.backend.dynamodb.create_table(
                TableName=name,
                KeySchema=[
                    {"AttributeName": attribute, "KeyType": key_type}
                    for attribute, key_type, _ in keys
                ],
                AttributeDefinitions=[
                    {"AttributeName": attribute, "AttributeType": attribute_type}
                    for attribute, _, attribute_type in keys
                ],
                BillingMode="PAY_PER_REQUEST",
            )
            created.meta.client.get_waiter("table_exists").wait(TableName=name)
            logger.debug(f"Created test table {name}")
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise

    def setup_backend(self, model_class: Type) -> None:
        model_class.model_backend = self.backend
        model_class._get_backend()

        metadata = model_class.model_metadata()
        if metadata.storage_name in self._tables:
            return
        partition_key = metadata.partition_key
        sort_key = metadata.sort_key
        keys = [(
            partition_key.storage_name,
            "HASH",
            _attribute_type(model_class.model_fields[partition_key.name].annotation),
        )]
        if sort_key is not None:
            keys.append((
                sort_key.storage_name,
                "RANGE",
                _attribute_type(model_class.model_fields[sort_key.name].annotation),
            ))
        self._create_table(metadata.storage_name, keys)
        self._tables[metadata.storage_name] = (
            partition_key.storage_name,
            sort_key.storage_name if sort_key else None,
        )

    def setup_table(self, table: str, partition_key: str, sort_key: Optional[str] = None) -> None:
        if self.backend.key_schema(table) is None:
            self.backend.register_table(table, partition_key, sort_key)
        if table in self._tables:
            return
        keys = [(partition_key, "HASH", "S")]
        if sort_key:
            keys.append((sort_key, "RANGE", "S"))
        self._create_table(table, keys)
        self._tables[table] = (partition_key, sort_key)

    def clear(self) -> None:
        """Clear storage for testing - DynamoDB requires table scan and delete."""
        for table, (partition_key, sort_key) in self._tables.items():
            resource = self.backend.table(table)
            key_names = [partition_key] + ([sort_key] if sort_key else [])
            items: list[dict[str, Any]] = []
            kwargs: dict[str, Any] = {}
            while True:
                response = resource.scan(**kwargs)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
            with resource.batch_writer() as batch:
                for item in items:
                    batch.delete_item(Key={name: item[name] for name in key_names})

    def get_backend_name(self) -> str:
        return "dynamodb"
