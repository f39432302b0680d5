from fhirgen.loader.cache import (
    DirectoryPackageCache,
    DocumentInfo,
    MemoryPackageCache,
    PackageCache,
    PackageCacheEntry,
    PackageManifest,
    parse_directive,
)
from fhirgen.loader.loader import LoaderOptions, LoadResult, PackageLoader, load_packages, resolve_entries
from fhirgen.loader.parsers import StreamingParser, StructuredParser, get_parser
from fhirgen.loader.state import PackageLoadService, PackageLoadState

__all__ = [
    "DirectoryPackageCache",
    "DocumentInfo",
    "MemoryPackageCache",
    "PackageCache",
    "PackageCacheEntry",
    "PackageManifest",
    "parse_directive",
    "LoaderOptions",
    "LoadResult",
    "PackageLoader",
    "load_packages",
    "resolve_entries",
    "StreamingParser",
    "StructuredParser",
    "get_parser",
    "PackageLoadService",
    "PackageLoadState",
]
