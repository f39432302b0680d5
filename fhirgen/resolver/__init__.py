from fhirgen.resolver.base import base_definitions
from fhirgen.resolver.graph import (
    InheritanceChain,
    ResolvedBinding,
    ResolvedGraph,
    ResolvedType,
    TypeCategory,
)
from fhirgen.resolver.resolver import TypeResolver, resolve

__all__ = [
    "base_definitions",
    "InheritanceChain",
    "ResolvedBinding",
    "ResolvedGraph",
    "ResolvedType",
    "TypeCategory",
    "TypeResolver",
    "resolve",
]
