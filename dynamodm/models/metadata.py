"""
Per-entity-type metadata and the registry that owns it.

Metadata is registered once, when a model class is defined, and only read
afterwards. Lookups therefore need no locking.
"""

import logging
from typing import Any, Optional

from dynamodm.exceptions import ConfigurationError, ValidationError
from dynamodm.models.fields import FieldMetadata
from dynamodm.models.pipeline import AttributePipeline
from dynamodm.models.relations import Relationship

logger = logging.getLogger(__name__)


class EntityTypeMetadata:
    """Fields, pipelines and relationships declared by one model class."""

    def __init__(self, type_name: str, storage_name: str):
        self.type_name = type_name
        self.storage_name = storage_name
        self.fields: dict[str, FieldMetadata] = {}
        self.pipelines: dict[str, AttributePipeline] = {}
        self.relationships: dict[str, Relationship] = {}
        self._by_storage_name: dict[str, str] = {}

    def __repr__(self) -> str:
        return f"EntityTypeMetadata({self.type_name!r}, storage_name={self.storage_name!r})"

    def _first(self, flag: str) -> Optional[FieldMetadata]:
        for field in self.fields.values():
            if getattr(field, flag):
                return field
        return None

    @property
    def partition_key(self) -> FieldMetadata:
        field = self._first("partition_key")
        if field is None:
            raise ConfigurationError(f"{self.type_name} does not declare a partition key")
        return field

    @property
    def sort_key(self) -> Optional[FieldMetadata]:
        return self._first("sort_key")

    @property
    def soft_delete_field(self) -> Optional[FieldMetadata]:
        return self._first("soft_delete")

    @property
    def created_at_fields(self) -> list[FieldMetadata]:
        return [field for field in self.fields.values() if field.created_at]

    @property
    def updated_at_fields(self) -> list[FieldMetadata]:
        return [field for field in self.fields.values() if field.updated_at]

    @property
    def key_fields(self) -> list[FieldMetadata]:
        keys = [self.partition_key]
        if self.sort_key is not None:
            keys.append(self.sort_key)
        return keys

    def has_partition_key(self) -> bool:
        return self._first("partition_key") is not None

    def field(self, name: str) -> Optional[FieldMetadata]:
        return self.fields.get(name)

    def pipeline(self, name: str) -> AttributePipeline:
        return self.pipelines[name]

    def storage_name_for(self, name: str) -> str:
        """Stored attribute name for a field (field names pass through when unknown)."""
        field = self.fields.get(name)
        return field.storage_name if field else name

    def field_for_storage(self, storage_name: str) -> Optional[str]:
        return self._by_storage_name.get(storage_name)

    def key_of(self, values: dict[str, Any]) -> dict[str, Any]:
        """Extract the stored key of a record given by field name."""
        key = {}
        for field in self.key_fields:
            value = values.get(field.name)
            if value is None:
                raise ValidationError(field.name, f"{self.type_name} key requires a value for {field.name!r}")
            key[field.storage_name] = self.pipelines[field.name].serialize(value)
        return key

    def add_field(self, field: FieldMetadata, pipeline: AttributePipeline) -> None:
        if field.partition_key and self.has_partition_key():
            raise ConfigurationError(
                f"{self.type_name} declares more than one partition key "
                f"({self.partition_key.name!r} and {field.name!r})"
            )
        if field.sort_key:
            if not self.has_partition_key():
                raise ConfigurationError(
                    f"{self.type_name}.{field.name} is a sort key but no partition key was declared before it"
                )
            if self.sort_key is not None:
                raise ConfigurationError(
                    f"{self.type_name} declares more than one sort key "
                    f"({self.sort_key.name!r} and {field.name!r})"
                )
        if field.soft_delete and self.soft_delete_field is not None:
            raise ConfigurationError(f"{self.type_name} declares more than one soft-delete field")
        if field.storage_name in self._by_storage_name:
            raise ConfigurationError(
                f"{self.type_name} maps two fields to the stored name {field.storage_name!r}"
            )
        self.fields[field.name] = field
        self.pipelines[field.name] = pipeline
        self._by_storage_name[field.storage_name] = field.name


class MetadataRegistry:
    """
    Registry mapping model classes to their EntityTypeMetadata.

    A process normally uses the module-level ``default_registry``. Models can
    opt into a separate registry with ``class Foo(Model, registry=...)``.
    """

    def __init__(self) -> None:
        self._entities: dict[type, EntityTypeMetadata] = {}

    def __contains__(self, entity_type: type) -> bool:
        return entity_type in self._entities

    def is_registered(self, entity_type: type) -> bool:
        """Whether the type was declared and can be stored."""
        metadata = self._entities.get(entity_type)
        return metadata is not None and metadata.has_partition_key()

    def declare(self, entity_type: type, storage_name: str) -> EntityTypeMetadata:
        """Start the metadata entry for a newly defined entity type."""
        if entity_type in self._entities:
            raise ConfigurationError(f"{entity_type.__name__} is already registered")
        metadata = EntityTypeMetadata(entity_type.__name__, storage_name)
        self._entities[entity_type] = metadata
        logger.debug(f"Declared entity type {entity_type.__name__} stored as {storage_name!r}")
        return metadata

    def register(
        self,
        entity_type: type,
        field: FieldMetadata,
        pipeline: Optional[AttributePipeline] = None,
    ) -> None:
        """
        Register one field of an entity type.

        Raises:
            ConfigurationError: On a second partition key, a sort key without
                a prior partition key, or a second sort key
        """
        metadata = self._entities.get(entity_type)
        if metadata is None:
            raise ConfigurationError(f"{entity_type.__name__} has not been declared")
        metadata.add_field(field, pipeline or AttributePipeline(field))

    def register_relationship(self, entity_type: type, name: str, relationship: Relationship) -> None:
        metadata = self._entities.get(entity_type)
        if metadata is None:
            raise ConfigurationError(f"{entity_type.__name__} has not been declared")
        if name in metadata.fields:
            raise ConfigurationError(f"{entity_type.__name__}.{name} is both a field and a relationship")
        metadata.relationships[name] = relationship

    def get(self, entity_type: type) -> Optional[EntityTypeMetadata]:
        """Metadata for an entity type, whether or not it declared a key."""
        return self._entities.get(entity_type)

    def resolve(self, entity_type: type) -> EntityTypeMetadata:
        """
        Metadata for an entity type that can be stored.

        Raises:
            ConfigurationError: If the type is unknown or never declared a
                partition key
        """
        metadata = self._entities.get(entity_type)
        if metadata is None or not metadata.has_partition_key():
            raise ConfigurationError(
                f"{entity_type.__name__} is not registered: no partition key declared"
            )
        return metadata

    def entity_types(self) -> list[type]:
        return list(self._entities)


default_registry = MetadataRegistry()
