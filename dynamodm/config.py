"""
Backend configuration for dynamodm.

Settings are resolved per value with the priority: explicit argument >
environment variable > default. The library never reads configuration
implicitly; callers build a backend from settings and inject it into their
models.

Environment variables:
    DYNAMODM_BACKEND: ``dynamodb`` (default) or ``memory``
    DYNAMODM_REGION: AWS region, falling back to AWS_REGION then AWS_DEFAULT_REGION
    DYNAMODM_ENDPOINT_URL: Custom endpoint (DynamoDB Local, LocalStack)
    DYNAMODM_TABLE_PREFIX: Prefix for every table name
"""

import logging
import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from dynamodm.backends.base import Backend
from dynamodm.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


class BackendSettings(BaseModel):
    """Resolved backend settings."""

    model_config = ConfigDict(frozen=True)

    backend: Literal["dynamodb", "memory"] = "dynamodb"
    region_name: str = DEFAULT_REGION
    endpoint_url: Optional[str] = None
    table_prefix: str = ""


def _env(*names: str) -> Optional[str]:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def load_settings(
    backend: Optional[str] = None,
    region_name: Optional[str] = None,
    endpoint_url: Optional[str] = None,
    table_prefix: Optional[str] = None,
) -> BackendSettings:
    """
    Resolve backend settings.

    Raises:
        ConfigurationError: If a resolved value is invalid
    """
    # Backend: arg > env > default
    final_backend = backend or _env("DYNAMODM_BACKEND") or "dynamodb"

    # Region: arg > env > default
    final_region = region_name or _env("DYNAMODM_REGION", "AWS_REGION", "AWS_DEFAULT_REGION") or DEFAULT_REGION

    # Endpoint: arg > env > none
    final_endpoint = endpoint_url or _env("DYNAMODM_ENDPOINT_URL")

    # Prefix: arg (even empty) > env > none
    if table_prefix is None:
        table_prefix = _env("DYNAMODM_TABLE_PREFIX") or ""

    try:
        return BackendSettings(
            backend=final_backend.lower(),  # type: ignore[arg-type]
            region_name=final_region,
            endpoint_url=final_endpoint,
            table_prefix=table_prefix,
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid backend settings: {e}") from e


def create_backend(settings: Optional[BackendSettings] = None) -> Backend:
    """Build the backend described by ``settings`` (resolved from the environment when omitted)."""
    settings = settings or load_settings()
    if settings.backend == "memory":
        from dynamodm.backends.memory import InMemoryBackend

        logger.info("Using in-memory backend")
        return InMemoryBackend()

    from dynamodm.backends.dynamodb import DynamoDBBackend

    logger.info(
        f"Using DynamoDB backend (region={settings.region_name}, prefix={settings.table_prefix!r})"
    )
    return DynamoDBBackend.from_settings(settings)
