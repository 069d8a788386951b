"""Query compilation and execution for dynamodm."""

from dynamodm.query.base import Query
from dynamodm.query.compiler import CompiledQuery, FilterCompiler
from dynamodm.query.expressions import Condition
from dynamodm.query.options import QueryOptions
from dynamodm.query.relations import RelationshipResolver

__all__ = ["Query", "CompiledQuery", "FilterCompiler", "Condition", "QueryOptions", "RelationshipResolver"]
