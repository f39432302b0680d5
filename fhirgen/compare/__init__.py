from fhirgen.compare.differ import (
    DiffEntry,
    Differ,
    DifferOptions,
    DiffKind,
    DiffResult,
    compare,
    summarize,
    type_signature,
)

__all__ = [
    "DiffEntry",
    "Differ",
    "DifferOptions",
    "DiffKind",
    "DiffResult",
    "compare",
    "summarize",
    "type_signature",
]
