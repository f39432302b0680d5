"""Exception hierarchy for hard failures.

Expected conditions (a document that does not parse, an unresolved type
reference, a lossy conversion) are reported as diagnostic records from
``fhirgen.diagnostics`` instead. The exceptions below abort the current
operation.
"""

from typing import List, Optional, Sequence


class FhirGenError(Exception):
    """Base class for all code generator errors."""
    pass


class LoadError(FhirGenError):
    """Raised when a package load is aborted (strict mode or nothing acquirable)."""

    def __init__(self, message: str, failures: Optional[Sequence] = None):
        super().__init__(message)
        self.failures: List = list(failures or [])


class PackageNotFoundError(FhirGenError):
    """Raised when a cache cannot resolve a package directive."""

    def __init__(self, directive: str):
        super().__init__(f"Package not found in cache: {directive}")
        self.directive = directive


class DocumentParseError(FhirGenError):
    """Raised by record factories when a document is malformed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.reason = message


class DuplicateDefinitionError(FhirGenError):
    """Raised when the ``reject`` override policy meets an existing canonical URL."""

    def __init__(self, url: str):
        super().__init__(f"Definition already present: {url}")
        self.url = url


class CollectionFrozenError(FhirGenError):
    """Raised when inserting into a collection that has been frozen."""
    pass


class InvalidConfigurationError(FhirGenError):
    """Raised for invalid caller-supplied options."""
    pass


class ConversionError(FhirGenError):
    """Raised (or collected) when a subtree cannot be converted."""

    def __init__(self, path: str, message: str, value=None):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.reason = message
        self.value = value


class OperationCancelled(FhirGenError):
    """Raised at a type boundary when the caller cancelled the operation."""
    pass
