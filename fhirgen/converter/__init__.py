from fhirgen.converter.converter import (
    ConversionResult,
    CrossVersionConverter,
    FallbackHandler,
    check_primitive,
)
from fhirgen.converter.mapping import (
    ElementRule,
    MappingRegistry,
    MappingTable,
    TypeMapping,
    derive_mapping_table,
)

__all__ = [
    "ConversionResult",
    "CrossVersionConverter",
    "FallbackHandler",
    "check_primitive",
    "ElementRule",
    "MappingRegistry",
    "MappingTable",
    "TypeMapping",
    "derive_mapping_table",
]
