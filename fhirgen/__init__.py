"""FHIR structure-definition loader, resolver and multi-language code generator."""

__version__ = "1.0.0"

from fhirgen.context import CodegenContext
from fhirgen.errors import (
    FhirGenError,
    LoadError,
    ConversionError,
    InvalidConfigurationError,
    OperationCancelled,
)

__all__ = [
    "CodegenContext",
    "FhirGenError",
    "LoadError",
    "ConversionError",
    "InvalidConfigurationError",
    "OperationCancelled",
    "__version__",
]
