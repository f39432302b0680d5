"""
fhirgen.loader.loader
=====================

Loads one or more cached packages into a ``DefinitionCollection``.

Documents of all packages are read and parsed concurrently (parsing runs in
the default executor, bounded by ``LoaderOptions.concurrency``). Insertion
into the collection happens afterwards on a single task, in package order
and then in the fixed resource-type load order, so that a definition from a
later package replaces one with the same canonical name from an earlier
package no matter which parse finished first.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field, field_validator

from fhirgen.config import Settings
from fhirgen.context import CodegenContext
from fhirgen.diagnostics import ParseFailure
from fhirgen.errors import (
    DocumentParseError,
    DuplicateDefinitionError,
    FhirGenError,
    LoadError,
    PackageNotFoundError,
)
from fhirgen.loader.cache import DocumentInfo, PackageCache, PackageCacheEntry, PackageManifest
from fhirgen.loader.parsers import PARSERS, get_parser
from fhirgen.loader.records import LOAD_ORDER
from fhirgen.models.collection import DefinitionCollection, OverridePolicy
from fhirgen.models.definitions import DefinitionKind, DefinitionRecord
from fhirgen.models.releases import detect_release

logger = structlog.get_logger(__name__)

_RESOURCE_TYPE_FOR_KIND = {
    DefinitionKind.CODE_SYSTEM: "CodeSystem",
    DefinitionKind.VALUE_SET: "ValueSet",
    DefinitionKind.SEARCH_PARAMETER: "SearchParameter",
}


class LoaderOptions(BaseModel):
    """Per-call loader configuration."""
    strict: bool = False
    parse_pipeline: str = "structured"
    override_policy: OverridePolicy = OverridePolicy.NEWER_WINS
    concurrency: int = Field(default=8, ge=1)
    load_order: Tuple[str, ...] = LOAD_ORDER

    @field_validator("parse_pipeline")
    @classmethod
    def _known_pipeline(cls, value: str) -> str:
        value = value.lower()
        if value not in PARSERS:
            raise ValueError(f"unknown parse pipeline '{value}'")
        return value

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "LoaderOptions":
        values = {
            "strict": settings.strict_loading,
            "parse_pipeline": settings.parse_pipeline,
            "concurrency": settings.load_concurrency,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class LoadResult:
    collection: DefinitionCollection
    failures: List[ParseFailure] = field(default_factory=list)
    skipped: int = 0
    documents: int = 0
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class _Parsed:
    package_index: int
    filename: str
    record: Optional[DefinitionRecord] = None
    failure: Optional[ParseFailure] = None


class PackageLoader:
    """Reads packages from a ``PackageCache`` and builds a collection."""

    def __init__(
        self,
        cache: PackageCache,
        options: Optional[LoaderOptions] = None,
        context: Optional[CodegenContext] = None,
    ):
        self.cache = cache
        self.context = context
        if options is None:
            options = LoaderOptions.from_settings(context.settings) if context else LoaderOptions()
        self.options = options
        self.parser = get_parser(options.parse_pipeline)

    async def load_packages(
        self, primary_name: str, entries: Sequence[PackageCacheEntry]
    ) -> LoadResult:
        """Load ``entries`` (dependencies first, most specific last) into one collection.

        Raises:
            LoadError: in strict mode on any failure, or when no document
                could be acquired at all.
        """
        if not entries:
            raise LoadError(f"No packages given for '{primary_name}'")

        started = time.monotonic()
        failures: List[ParseFailure] = []
        manifests: List[PackageManifest] = []
        listings: List[Tuple[int, PackageCacheEntry, List[DocumentInfo]]] = []

        for index, entry in enumerate(entries):
            self._check_cancelled()
            try:
                manifests.append(await self.cache.read_manifest(entry))
            except DocumentParseError as e:
                failures.append(ParseFailure(source="package.json", message=e.reason, package=entry.directive))
            try:
                listings.append((index, entry, await self.cache.list_documents(entry)))
            except FhirGenError as e:
                failures.append(ParseFailure(source=entry.directive, message=str(e), package=entry.directive))

        collection = self._new_collection(primary_name, entries, manifests)

        skipped = 0
        jobs = []
        semaphore = asyncio.Semaphore(self.options.concurrency)
        for index, entry, documents in listings:
            for document in documents:
                if document.resource_type and document.resource_type not in self.options.load_order:
                    skipped += 1
                    continue
                jobs.append(self._parse_document(semaphore, index, entry, document))

        parsed: List[_Parsed] = await asyncio.gather(*jobs)

        records = []
        for item in parsed:
            if item.failure is not None:
                failures.append(item.failure)
                logger.warning(
                    "document_parse_failed",
                    source=item.failure.source,
                    package=item.failure.package,
                    error=item.failure.message,
                )
            elif item.record is None:
                skipped += 1
            else:
                records.append(item)

        records.sort(key=lambda p: (p.package_index, self._order_of(p.record), p.filename))
        inserted = 0
        for item in records:
            try:
                if collection.insert(item.record, self.options.override_policy):
                    inserted += 1
            except DuplicateDefinitionError as e:
                failures.append(ParseFailure(source=item.filename, message=str(e), package=item.record.package))

        if self.options.strict and failures:
            logger.error("package_load_aborted", package=primary_name, failures=len(failures))
            raise LoadError(
                f"Strict load of '{primary_name}' failed with {len(failures)} failure(s)",
                failures,
            )
        if not records and (failures or not listings):
            raise LoadError(f"No definitions could be acquired for '{primary_name}'", failures)

        duration = time.monotonic() - started
        logger.info(
            "packages_loaded",
            package=primary_name,
            release=collection.fhir_release.value if collection.fhir_release else None,
            definitions=len(collection),
            inserted=inserted,
            overrides=len(collection.overrides),
            failures=len(failures),
            skipped=skipped,
            duration=round(duration, 3),
        )
        return LoadResult(
            collection=collection,
            failures=failures,
            skipped=skipped,
            documents=len(parsed),
            duration=duration,
        )

    async def _parse_document(
        self,
        semaphore: asyncio.Semaphore,
        index: int,
        entry: PackageCacheEntry,
        document: DocumentInfo,
    ) -> _Parsed:
        async with semaphore:
            self._check_cancelled()
            try:
                content = await self.cache.read_document(entry, document.filename)
                loop = asyncio.get_running_loop()
                record = await loop.run_in_executor(
                    None, self.parser.parse, content, document.filename, entry.directive
                )
                return _Parsed(package_index=index, filename=document.filename, record=record)
            except DocumentParseError as e:
                return _Parsed(
                    package_index=index,
                    filename=document.filename,
                    failure=ParseFailure(source=document.filename, message=e.reason, package=entry.directive),
                )

    def _order_of(self, record: DefinitionRecord) -> int:
        resource_type = _RESOURCE_TYPE_FOR_KIND.get(record.kind, "StructureDefinition")
        try:
            return self.options.load_order.index(resource_type)
        except ValueError:
            return len(self.options.load_order)

    def _new_collection(
        self,
        primary_name: str,
        entries: Sequence[PackageCacheEntry],
        manifests: List[PackageManifest],
    ) -> DefinitionCollection:
        primary = next((e for e in entries if e.name == primary_name), entries[-1])
        release = None
        for manifest in manifests:
            if manifest.fhir_versions:
                release = detect_release(manifest.fhir_versions)
                break
        collection = DefinitionCollection(
            name=primary_name,
            fhir_release=release,
            package_name=primary.name,
            package_version=primary.version,
        )
        collection.manifests.extend(manifests)
        return collection

    def _check_cancelled(self) -> None:
        if self.context is not None:
            self.context.check_cancelled()


async def resolve_entries(
    cache: PackageCache,
    directives: Sequence[str],
    include_dependencies: bool = True,
) -> List[PackageCacheEntry]:
    """Resolve directives to cache entries, dependencies ahead of their dependents.

    Dependencies declared in a manifest that the cache cannot provide are
    logged and skipped; a directive named by the caller must resolve.
    """
    ordered: List[PackageCacheEntry] = []
    seen = set()

    async def visit(directive: str, required: bool) -> None:
        try:
            entry = await cache.resolve(directive)
        except PackageNotFoundError:
            if required:
                raise
            logger.warning("dependency_not_found", directive=directive)
            return
        if entry.directive in seen:
            return
        seen.add(entry.directive)
        if include_dependencies:
            try:
                manifest = await cache.read_manifest(entry)
            except DocumentParseError as e:
                logger.warning("manifest_unreadable", directive=entry.directive, error=e.reason)
            else:
                for name, version in sorted(manifest.dependencies.items()):
                    await visit(f"{name}#{version}", required=False)
        ordered.append(entry)

    for directive in directives:
        await visit(directive, required=True)
    return ordered


async def load_packages(
    cache: PackageCache,
    primary_name: str,
    entries: Sequence[PackageCacheEntry],
    options: Optional[LoaderOptions] = None,
    context: Optional[CodegenContext] = None,
) -> LoadResult:
    """Convenience wrapper around ``PackageLoader.load_packages``."""
    return await PackageLoader(cache, options, context).load_packages(primary_name, entries)
