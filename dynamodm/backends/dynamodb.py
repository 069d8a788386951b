"""
DynamoDB backend for dynamodm.

Each entity type lives in its own table named after the entity's storage
name (optionally prefixed). Conditions are translated to boto3 condition
objects; blocking boto3 calls run in a worker thread so the coroutine API
never blocks the event loop.
"""

import asyncio
import logging
from decimal import Decimal
from datetime import date, datetime
from functools import reduce
from typing import Any, Optional, Sequence, TYPE_CHECKING

import boto3  # type: ignore[import-untyped]
from boto3.dynamodb.conditions import Attr, Key  # type: ignore[import-untyped]
from botocore.exceptions import ClientError  # type: ignore[import-untyped]

from dynamodm.backends.base import Backend, TransactDelete, TransactOperation, TransactPut
from dynamodm.exceptions import DuplicateKeyError, QueryError, TransactionError
from dynamodm.query.expressions import Condition

if TYPE_CHECKING:
    from dynamodm.config import BackendSettings
    Table = Any  # Placeholder for DynamoDB Table type

logger = logging.getLogger(__name__)

# DynamoDB rejects IN lists longer than this
MAX_IN_VALUES = 100


class DynamoDBBackend(Backend):
    """
    DynamoDB storage backend.

    Handles connection management, item reads and writes, key-conditioned
    queries, scans and transactional writes against AWS DynamoDB.

    Example:
        >>> backend = DynamoDBBackend(region_name="us-east-1", table_prefix="dev-")
        >>>
        >>> class User(Model, model_backend=backend):
        ...     id: str = Field(primary_key=True)
        ...     name: str
    """

    def __init__(
        self,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        table_prefix: str = "",
        **boto3_kwargs: Any,
    ):
        """
        Initialize DynamoDB backend.

        Args:
            region_name: AWS region (e.g., 'us-east-1')
            endpoint_url: Custom endpoint URL (for local DynamoDB)
            table_prefix: Prefix prepended to every table name
            **boto3_kwargs: Additional arguments for boto3.resource()
        """
        super().__init__()
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.table_prefix = table_prefix
        self.boto3_kwargs = boto3_kwargs

        # Lazy initialization of DynamoDB resource
        self._dynamodb_resource: Optional[Any] = None
        self._tables: dict[str, "Table"] = {}

    @classmethod
    def from_settings(cls, settings: Optional["BackendSettings"] = None, **boto3_kwargs: Any) -> "DynamoDBBackend":
        """Build a backend from resolved settings (environment when omitted)."""
        from dynamodm.config import load_settings

        settings = settings or load_settings()
        return cls(
            region_name=settings.region_name,
            endpoint_url=settings.endpoint_url,
            table_prefix=settings.table_prefix,
            **boto3_kwargs,
        )

    @property
    def backend_name(self) -> str:
        """Backend identifier."""
        return 'dynamodb'

    @property
    def dynamodb(self) -> Any:
        """Get or create DynamoDB resource."""
        if self._dynamodb_resource is None:
            kwargs = {"region_name": self.region_name, **self.boto3_kwargs}
            if self.endpoint_url:
                kwargs["endpoint_url"] = self.endpoint_url
            self._dynamodb_resource = boto3.resource("dynamodb", **kwargs)
            logger.info(
                f"Initialized DynamoDB resource (region={self.region_name}, endpoint={self.endpoint_url})"
            )
        return self._dynamodb_resource

    def physical_name(self, table: str) -> str:
        """Actual DynamoDB table name for a storage name."""
        return f"{self.table_prefix}{table}"

    def table(self, table: str) -> "Table":
        """Get or create the Table resource for a storage name."""
        if table not in self._tables:
            self._tables[table] = self.dynamodb.Table(self.physical_name(table))
        return self._tables[table]

    def _python_to_dynamodb(self, value: Any) -> Any:
        """
        Convert Python types to DynamoDB-compatible types.

        DynamoDB doesn't support float or datetime, so we convert:
        - float -> Decimal
        - datetime -> ISO format string
        """
        if isinstance(value, datetime):
            return value.isoformat()
        elif isinstance(value, date):
            return value.isoformat()
        elif isinstance(value, float):
            return Decimal(str(value))
        elif isinstance(value, dict):
            return {k: self._python_to_dynamodb(v) for k, v in value.items()}
        elif isinstance(value, (list, tuple)):
            return [self._python_to_dynamodb(v) for v in value]
        return value

    def _dynamodb_to_python(self, value: Any) -> Any:
        """
        Convert DynamoDB types to Python types.

        Converts Decimal back to int or float for numeric values.
        """
        if isinstance(value, Decimal):
            # Convert to int if no decimal places, otherwise float
            if value % 1 == 0:
                return int(value)
            return float(value)
        elif isinstance(value, dict):
            return {k: self._dynamodb_to_python(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._dynamodb_to_python(v) for v in value]
        elif isinstance(value, set):
            return {self._dynamodb_to_python(v) for v in value}
        return value

    def _key_expression(self, conditions: Sequence[Condition]) -> Any:
        expressions = []
        for cond in conditions:
            key = Key(cond.field)
            value = self._python_to_dynamodb(cond.value)
            if cond.operator == "=":
                expressions.append(key.eq(value))
            elif cond.operator == "<":
                expressions.append(key.lt(value))
            elif cond.operator == "<=":
                expressions.append(key.lte(value))
            elif cond.operator == ">":
                expressions.append(key.gt(value))
            elif cond.operator == ">=":
                expressions.append(key.gte(value))
            elif cond.operator == "begins-with":
                expressions.append(key.begins_with(value))
            else:
                raise QueryError(f"Operator {cond.operator!r} cannot be used in a key condition")
        return reduce(lambda left, right: left & right, expressions)

    def _is_in(self, attr: Any, values: list[Any]) -> Any:
        chunks = [values[i:i + MAX_IN_VALUES] for i in range(0, len(values), MAX_IN_VALUES)]
        return reduce(lambda left, right: left | right, [attr.is_in(chunk) for chunk in chunks])

    def _filter_expression(self, conditions: Sequence[Condition]) -> Optional[Any]:
        """Combine stored-level conditions with AND."""
        expressions = []
        for cond in conditions:
            attr = Attr(cond.field)
            value = self._python_to_dynamodb(cond.value)

            if cond.operator == "=":
                expressions.append(attr.eq(value))
            elif cond.operator == "!=":
                expressions.append(attr.ne(value))
            elif cond.operator == "<":
                expressions.append(attr.lt(value))
            elif cond.operator == "<=":
                expressions.append(attr.lte(value))
            elif cond.operator == ">":
                expressions.append(attr.gt(value))
            elif cond.operator == ">=":
                expressions.append(attr.gte(value))
            elif cond.operator == "in":
                expressions.append(self._is_in(attr, value))
            elif cond.operator == "not-in":
                if value:
                    expressions.append(~self._is_in(attr, value))
            elif cond.operator == "contains":
                expressions.append(attr.contains(value))
            elif cond.operator == "begins-with":
                expressions.append(attr.begins_with(value))
            elif cond.operator == "exists":
                expressions.append(attr.exists())
            elif cond.operator == "not-exists":
                expressions.append(attr.not_exists())
            else:
                raise QueryError(f"Unsupported operator {cond.operator!r}")

        if not expressions:
            return None
        return reduce(lambda left, right: left & right, expressions)

    @staticmethod
    def _empty_membership(conditions: Sequence[Condition]) -> bool:
        return any(cond.operator == "in" and not cond.value for cond in conditions)

    @staticmethod
    def _projection_kwargs(projection: Optional[Sequence[str]]) -> dict[str, Any]:
        if not projection:
            return {}
        names = {f"#p{i}": name for i, name in enumerate(projection)}
        return {
            "ProjectionExpression": ", ".join(names),
            "ExpressionAttributeNames": names,
        }

    def _collect(self, operation: Any, kwargs: dict[str, Any], limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Run a query or scan to exhaustion (or until ``limit`` items)."""
        response = operation(**kwargs)
        items = response.get("Items", [])

        # Handle pagination
        while "LastEvaluatedKey" in response and (limit is None or len(items) < limit):
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
            response = operation(**kwargs)
            items.extend(response.get("Items", []))

        if limit is not None:
            items = items[:limit]
        return [self._dynamodb_to_python(item) for item in items]

    async def get_item(self, table: str, key: dict[str, Any]) -> Optional[dict[str, Any]]:
        response = await asyncio.to_thread(
            self.table(table).get_item, Key=self._python_to_dynamodb(key)
        )
        item = response.get("Item")
        return self._dynamodb_to_python(item) if item is not None else None

    async def put_item(self, table: str, item: dict[str, Any], *, require_absent: bool = False) -> None:
        kwargs: dict[str, Any] = {"Item": self._python_to_dynamodb(item)}
        if require_absent:
            schema = self.key_schema(table)
            if schema is not None:
                kwargs["ConditionExpression"] = Attr(schema.partition_key).not_exists()
        try:
            await asyncio.to_thread(self.table(table).put_item, **kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise DuplicateKeyError(f"Item with the same key already exists in {table}") from e
            raise

    async def delete_item(self, table: str, key: dict[str, Any]) -> bool:
        response = await asyncio.to_thread(
            self.table(table).delete_item,
            Key=self._python_to_dynamodb(key),
            ReturnValues="ALL_OLD",
        )
        return "Attributes" in response

    async def query(
        self,
        table: str,
        key_conditions: Sequence[Condition],
        filter_conditions: Sequence[Condition] = (),
        *,
        descending: bool = False,
        projection: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        if self._empty_membership(filter_conditions):
            return []
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": self._key_expression(key_conditions),
            "ScanIndexForward": not descending,
            **self._projection_kwargs(projection),
        }
        filter_expression = self._filter_expression(filter_conditions)
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        return await asyncio.to_thread(self._collect, self.table(table).query, kwargs, limit)

    async def scan(
        self,
        table: str,
        filter_conditions: Sequence[Condition] = (),
        *,
        projection: Optional[Sequence[str]] = None,
    ) -> list[dict[str, Any]]:
        if self._empty_membership(filter_conditions):
            return []
        kwargs: dict[str, Any] = self._projection_kwargs(projection)
        filter_expression = self._filter_expression(filter_conditions)
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        return await asyncio.to_thread(self._collect, self.table(table).scan, kwargs)

    async def transact_write(self, operations: Sequence[TransactOperation]) -> None:
        transact_items: list[dict[str, Any]] = []
        for operation in operations:
            if isinstance(operation, TransactPut):
                req: dict[str, Any] = {
                    "TableName": self.physical_name(operation.table),
                    "Item": self._python_to_dynamodb(operation.item),
                }
                partition_key = operation.partition_key
                if partition_key is None:
                    schema = self.key_schema(operation.table)
                    partition_key = schema.partition_key if schema else None
                if operation.require_absent and partition_key:
                    req["ConditionExpression"] = "attribute_not_exists(#pk)"
                    req["ExpressionAttributeNames"] = {"#pk": partition_key}
                transact_items.append({"Put": req})
            elif isinstance(operation, TransactDelete):
                transact_items.append({
                    "Delete": {
                        "TableName": self.physical_name(operation.table),
                        "Key": self._python_to_dynamodb(operation.key),
                    }
                })

        # The resource client encodes native values itself
        client = self.dynamodb.meta.client
        try:
            await asyncio.to_thread(client.transact_write_items, TransactItems=transact_items)
        except ClientError as e:
            code = e.response["Error"]["Code"]
            if code in ("TransactionCanceledException", "ValidationException"):
                raise TransactionError(f"Transaction cancelled: {e}", cause=e) from e
            raise
