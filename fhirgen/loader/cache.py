"""Package cache interface and the directory and in-memory implementations."""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fhirgen.errors import DocumentParseError, PackageNotFoundError

logger = structlog.get_logger(__name__)

MANIFEST_FILENAME = "package.json"
INDEX_FILENAME = ".index.json"

_DIRECTIVE_PATTERN = re.compile(r"^(?P<name>[^#@\s]+)(?:[#@](?P<version>[^#@\s]+))?$")


def parse_directive(directive: str) -> Tuple[str, Optional[str]]:
    """Split ``name#version`` (or ``name@version``) into its parts.

    The version is None when omitted or given as ``latest``.
    """
    match = _DIRECTIVE_PATTERN.match((directive or "").strip())
    if not match:
        raise ValueError(f"Invalid package directive: {directive!r}")
    version = match.group("version")
    if version in ("latest", "current"):
        version = None
    return match.group("name"), version


def _version_key(version: str):
    parts = []
    for piece in re.split(r"[.\-]", version):
        parts.append((0, int(piece), "") if piece.isdigit() else (1, 0, piece))
    return parts


@dataclass(frozen=True)
class PackageCacheEntry:
    """Locator of one cached package: name, version and where its content lives."""
    name: str
    version: str
    location: Optional[str] = None

    @property
    def directive(self) -> str:
        return f"{self.name}#{self.version}"

    def __str__(self) -> str:
        return self.directive


class PackageManifest(BaseModel):
    """The subset of ``package.json`` the loader uses."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    version: str
    canonical: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    fhir_versions: List[str] = Field(default_factory=list, alias="fhirVersions")
    dependencies: Dict[str, str] = Field(default_factory=dict)

    @property
    def directive(self) -> str:
        return f"{self.name}#{self.version}"


@dataclass(frozen=True)
class DocumentInfo:
    """One entry of a package's document index."""
    filename: str
    resource_type: Optional[str] = None
    url: Optional[str] = None
    id: Optional[str] = None
    type: Optional[str] = None


def parse_manifest(content: bytes, source: str = MANIFEST_FILENAME) -> PackageManifest:
    try:
        data = json.loads(content.decode("utf-8-sig"))
        return PackageManifest.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise DocumentParseError(source, f"invalid package manifest: {e}")


class PackageCache(ABC):
    """Byte-providing collaborator the loader awaits for package content."""

    @abstractmethod
    async def resolve(self, directive: str) -> PackageCacheEntry:
        """Resolve a directive to a cache entry or raise ``PackageNotFoundError``."""
        pass

    @abstractmethod
    async def list_documents(self, entry: PackageCacheEntry) -> List[DocumentInfo]:
        """List the definition documents of a package."""
        pass

    @abstractmethod
    async def read_document(self, entry: PackageCacheEntry, filename: str) -> bytes:
        """Read the raw bytes of one document."""
        pass

    async def read_manifest(self, entry: PackageCacheEntry) -> PackageManifest:
        content = await self.read_document(entry, MANIFEST_FILENAME)
        return parse_manifest(content, f"{entry.directive}/{MANIFEST_FILENAME}")

    async def resolve_many(self, directives: List[str]) -> List[PackageCacheEntry]:
        return [await self.resolve(d) for d in directives]


class DirectoryPackageCache(PackageCache):
    """Reads the standard FHIR package cache layout.

    ``<root>/<name>#<version>/package/`` holds ``package.json``, an optional
    ``.index.json`` and the definition documents.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _package_dir(self, entry: PackageCacheEntry) -> Path:
        if entry.location:
            return Path(entry.location)
        return self.root / entry.directive / "package"

    async def resolve(self, directive: str) -> PackageCacheEntry:
        name, version = parse_directive(directive)
        if version is None:
            candidates = [
                p.name.split("#", 1)[1]
                for p in self.root.glob(f"{name}#*")
                if (p / "package").is_dir()
            ]
            if not candidates:
                raise PackageNotFoundError(directive)
            version = max(candidates, key=_version_key)

        package_dir = self.root / f"{name}#{version}" / "package"
        if not package_dir.is_dir():
            raise PackageNotFoundError(directive)
        return PackageCacheEntry(name=name, version=version, location=str(package_dir))

    async def list_documents(self, entry: PackageCacheEntry) -> List[DocumentInfo]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._list_documents_sync, entry)

    def _list_documents_sync(self, entry: PackageCacheEntry) -> List[DocumentInfo]:
        package_dir = self._package_dir(entry)
        index_path = package_dir / INDEX_FILENAME
        if index_path.exists():
            try:
                index = json.loads(index_path.read_text(encoding="utf-8-sig"))
                return [
                    DocumentInfo(
                        filename=item["filename"],
                        resource_type=item.get("resourceType"),
                        url=item.get("url"),
                        id=item.get("id"),
                        type=item.get("type"),
                    )
                    for item in index.get("files", [])
                ]
            except (ValueError, KeyError) as e:
                logger.warning("package_index_unreadable", package=entry.directive, error=str(e))

        return [
            DocumentInfo(filename=path.name)
            for path in sorted(package_dir.glob("*.json"))
            if path.name not in (MANIFEST_FILENAME, INDEX_FILENAME)
        ]

    async def read_document(self, entry: PackageCacheEntry, filename: str) -> bytes:
        path = self._package_dir(entry) / filename
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, path.read_bytes)
        except FileNotFoundError:
            raise DocumentParseError(filename, f"document not found in {entry.directive}")
        except OSError as e:
            raise DocumentParseError(filename, f"cannot read document in {entry.directive}: {e}")


class MemoryPackageCache(PackageCache):
    """Packages held in memory, keyed by directive."""

    def __init__(self):
        self._packages: Dict[str, Dict[str, bytes]] = {}

    def add_package(
        self,
        name: str,
        version: str,
        documents: Dict[str, Any],
        fhir_versions: Optional[List[str]] = None,
        dependencies: Optional[Dict[str, str]] = None,
    ) -> PackageCacheEntry:
        """Register a package. Document values may be bytes, str or JSON-able dicts."""
        files: Dict[str, bytes] = {}
        for filename, content in documents.items():
            if isinstance(content, bytes):
                files[filename] = content
            elif isinstance(content, str):
                files[filename] = content.encode("utf-8")
            else:
                files[filename] = json.dumps(content, indent=2).encode("utf-8")

        manifest = PackageManifest(
            name=name,
            version=version,
            fhir_versions=list(fhir_versions or []),
            dependencies=dict(dependencies or {}),
        )
        files.setdefault(MANIFEST_FILENAME, manifest.model_dump_json(by_alias=True).encode("utf-8"))
        entry = PackageCacheEntry(name=name, version=version, location=f"memory://{name}#{version}")
        self._packages[entry.directive] = files
        return entry

    async def resolve(self, directive: str) -> PackageCacheEntry:
        name, version = parse_directive(directive)
        if version is None:
            versions = [d.split("#", 1)[1] for d in self._packages if d.split("#", 1)[0] == name]
            if not versions:
                raise PackageNotFoundError(directive)
            version = max(versions, key=_version_key)
        key = f"{name}#{version}"
        if key not in self._packages:
            raise PackageNotFoundError(directive)
        return PackageCacheEntry(name=name, version=version, location=f"memory://{key}")

    async def list_documents(self, entry: PackageCacheEntry) -> List[DocumentInfo]:
        files = self._packages.get(entry.directive)
        if files is None:
            raise PackageNotFoundError(entry.directive)
        return [
            DocumentInfo(filename=filename)
            for filename in files
            if filename not in (MANIFEST_FILENAME, INDEX_FILENAME)
        ]

    async def read_document(self, entry: PackageCacheEntry, filename: str) -> bytes:
        files = self._packages.get(entry.directive)
        if files is None:
            raise PackageNotFoundError(entry.directive)
        if filename not in files:
            raise DocumentParseError(filename, f"document not found in {entry.directive}")
        return files[filename]
