"""Model definitions for dynamodm."""

from dynamodm.models.base import Model
from dynamodm.models.fields import Field, FieldMetadata
from dynamodm.models.hooks import mutates, validates
from dynamodm.models.metadata import EntityTypeMetadata, MetadataRegistry, default_registry
from dynamodm.models.pipeline import AttributePipeline
from dynamodm.models.relations import BelongsTo, HasMany, HasOne, ManyToMany, Relationship

__all__ = [
    "Model",
    "Field",
    "FieldMetadata",
    "mutates",
    "validates",
    "EntityTypeMetadata",
    "MetadataRegistry",
    "default_registry",
    "AttributePipeline",
    "Relationship",
    "HasMany",
    "HasOne",
    "BelongsTo",
    "ManyToMany",
]
