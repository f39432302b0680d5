"""Language backends that turn a resolved graph into source files."""

from languages.base import (
    ExportOptions,
    ExportResult,
    ExtensionSupport,
    Language,
    Subgraph,
    select_subgraph,
)
from languages.naming import NameSanitizer, NamingConvention, to_convention
from languages.registry import LanguageRegistry, language_registry
from languages.sink import FileSystemSink, MemorySink, OutputSink

__all__ = [
    "ExportOptions",
    "ExportResult",
    "ExtensionSupport",
    "Language",
    "Subgraph",
    "select_subgraph",
    "NameSanitizer",
    "NamingConvention",
    "to_convention",
    "LanguageRegistry",
    "language_registry",
    "FileSystemSink",
    "MemorySink",
    "OutputSink",
]
