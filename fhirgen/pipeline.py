"""
fhirgen.pipeline
================

End-to-end operations: load packages, resolve the collection and export it
through one or more language backends.

Every step returns its diagnostics next to its result; ``PipelineResult``
gathers them so a caller can report them after the artifacts are written.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

import structlog

from fhirgen.context import CodegenContext
from fhirgen.errors import InvalidConfigurationError
from fhirgen.loader.cache import PackageCache, parse_directive
from fhirgen.loader.loader import LoaderOptions, LoadResult, load_packages, resolve_entries
from fhirgen.models.collection import DefinitionCollection
from fhirgen.resolver.graph import ResolvedGraph
from fhirgen.resolver.resolver import TypeResolver
from languages.base import ExportOptions, ExportResult, select_subgraph
from languages.registry import language_registry
from languages.sink import OutputSink

logger = structlog.get_logger(__name__)

OptionsLike = Union[ExportOptions, Mapping[str, Any], None]


@dataclass
class PipelineResult:
    load: LoadResult
    graph: ResolvedGraph
    exports: List[ExportResult] = field(default_factory=list)

    @property
    def collection(self) -> DefinitionCollection:
        return self.load.collection

    @property
    def export(self) -> Optional[ExportResult]:
        return self.exports[0] if self.exports else None

    @property
    def diagnostics(self) -> List[Any]:
        """Parse failures, resolution diagnostics and emission placeholders, in that order."""
        diagnostics: List[Any] = list(self.load.failures)
        diagnostics.extend(self.graph.diagnostics)
        for result in self.exports:
            diagnostics.extend(result.diagnostics)
        return diagnostics


async def load_and_resolve(
    context: CodegenContext,
    cache: PackageCache,
    directives: Sequence[str],
    loader_options: Optional[LoaderOptions] = None,
    include_dependencies: bool = True,
) -> Tuple[LoadResult, ResolvedGraph]:
    """Load ``directives`` (and their dependencies) into one collection and resolve it.

    The first directive names the collection and is the key it is registered
    under in ``context``.
    """
    if not directives:
        raise InvalidConfigurationError("At least one package directive is required")

    entries = await resolve_entries(cache, directives, include_dependencies)
    primary_name, _ = parse_directive(directives[0])
    result = await load_packages(cache, primary_name, entries, loader_options, context)
    context.register_collection(directives[0], result.collection)

    resolver = TypeResolver(result.collection, context)
    loop = asyncio.get_running_loop()
    graph = await loop.run_in_executor(None, resolver.resolve)
    return result, graph


def build_options(language_name: str, options: OptionsLike = None) -> ExportOptions:
    """Validate caller options against the backend's options model."""
    language = language_registry.get(language_name)
    if isinstance(options, language.options_class):
        return options
    if isinstance(options, ExportOptions):
        options = options.model_dump(exclude_unset=True)
    return language.options_class.build(options)


def export(
    context: CodegenContext,
    graph: ResolvedGraph,
    language_name: str,
    sink: OutputSink,
    options: OptionsLike = None,
) -> ExportResult:
    """Export the selected subgraph through one backend.

    Raises:
        InvalidConfigurationError: unknown language, invalid options or unknown types to include.
        OperationCancelled: when the context was cancelled.
    """
    context.check_cancelled()
    language = language_registry.get(language_name)
    export_options = build_options(language_name, options)
    subgraph = select_subgraph(graph, export_options.include, export_options.include_dependencies)
    result = language.export(graph, subgraph, sink, export_options)
    for diagnostic in result.diagnostics:
        logger.warning("emission_diagnostic", language=result.language, path=diagnostic.path, message=diagnostic.message)
    return result


async def export_many(
    context: CodegenContext,
    graph: ResolvedGraph,
    jobs: Sequence[Tuple[str, OutputSink, OptionsLike]],
    workers: Optional[int] = None,
) -> List[ExportResult]:
    """Run several exports in parallel; results come back in job order."""
    workers = workers or context.settings.emit_workers
    loop = asyncio.get_running_loop()
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            loop.run_in_executor(pool, export, context, graph, language_name, sink, options)
            for language_name, sink, options in jobs
        ]
        results = await asyncio.gather(*futures)
    logger.info("exports_completed", languages=[r.language for r in results])
    return list(results)


async def generate(
    context: CodegenContext,
    cache: PackageCache,
    directives: Sequence[str],
    language_name: str,
    sink: OutputSink,
    options: OptionsLike = None,
    loader_options: Optional[LoaderOptions] = None,
) -> PipelineResult:
    """Load, resolve and export with one backend."""
    # Fail on bad options before spending time on loading
    export_options = build_options(language_name, options)
    load_result, graph = await load_and_resolve(context, cache, directives, loader_options)
    result = export(context, graph, language_name, sink, export_options)
    logger.info(
        "generation_completed",
        directives=list(directives),
        language=result.language,
        files=len(result.paths),
        failures=len(load_result.failures),
        resolution_errors=len(graph.errors),
    )
    return PipelineResult(load=load_result, graph=graph, exports=[result])
