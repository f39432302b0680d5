"""
Test coverage for fhirgen.pipeline.

Tests cover:
- Load, resolve and export in one call
- Option validation before loading
- Parallel exports
- Diagnostics gathered across steps
- Cancellation
"""

import pytest

from fhirgen.errors import InvalidConfigurationError, OperationCancelled
from fhirgen.loader.cache import MemoryPackageCache
from fhirgen.pipeline import build_options, export, export_many, generate, load_and_resolve
from languages import ExportOptions, MemorySink
from languages.ruby import RubyOptions

DIRECTIVE = "hl7.fhir.r4.core#4.0.1"


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def messy_cache(core_docs, fhir):
    """Core package with one unreadable document and one unresolved type."""
    documents = dict(core_docs)
    documents["StructureDefinition-Broken.json"] = '{"resourceType": "StructureDefinition", "url": '
    documents.update(fhir.package(fhir.resource("Practitioner", [
        fhir.element("Practitioner.photo", "Attachment"),
    ])))
    cache = MemoryPackageCache()
    cache.add_package("hl7.fhir.r4.core", "4.0.1", documents, fhir_versions=["4.0.1"])
    return cache


# ============================================================================
# GENERATE TESTS
# ============================================================================

class TestGenerate:
    """End-to-end generation."""

    @pytest.mark.asyncio
    async def test_generate_typescript(self, context, memory_cache):
        sink = MemorySink()
        result = await generate(context, memory_cache, [DIRECTIVE], "ts", sink)

        assert result.export.language == "typescript"
        assert result.export.paths == ["fhir.ts"]
        assert "export interface Patient {" in sink.read("fhir.ts")
        assert result.diagnostics == []
        assert context.collection_for(DIRECTIVE) is result.collection
        assert result.collection.frozen

    @pytest.mark.asyncio
    async def test_generate_with_include(self, context, memory_cache):
        sink = MemorySink()
        result = await generate(context, memory_cache, [DIRECTIVE], "info", sink, {"include": ["Organization"]})

        content = sink.read("fhir-info.txt")
        assert "Resources: 1" in content
        assert "- Organization : DomainResource" in content
        assert result.export.paths == ["fhir-info.txt"]

    @pytest.mark.asyncio
    async def test_bad_options_fail_before_loading(self, context):
        # An empty cache would raise PackageNotFoundError if loading started
        with pytest.raises(InvalidConfigurationError):
            await generate(context, MemoryPackageCache(), [DIRECTIVE], "ruby", MemorySink(), {"module": "lower"})

    @pytest.mark.asyncio
    async def test_unknown_language(self, context, memory_cache):
        with pytest.raises(InvalidConfigurationError):
            await generate(context, memory_cache, [DIRECTIVE], "cobol", MemorySink())

    @pytest.mark.asyncio
    async def test_diagnostics_from_every_step(self, context, messy_cache):
        result = await generate(context, messy_cache, [DIRECTIVE], "typescript", MemorySink())
        diagnostics = result.diagnostics

        assert len(diagnostics) == 3
        assert diagnostics[0].source == "StructureDefinition-Broken.json"
        assert diagnostics[1].code == "unresolved-type"
        assert diagnostics[2].language == "typescript"
        assert result.export.placeholders == 1


# ============================================================================
# STEP TESTS
# ============================================================================

class TestSteps:
    """The individual pipeline steps."""

    @pytest.mark.asyncio
    async def test_empty_directives(self, context, memory_cache):
        with pytest.raises(InvalidConfigurationError):
            await load_and_resolve(context, memory_cache, [])

    @pytest.mark.asyncio
    async def test_load_and_resolve(self, context, memory_cache):
        load, graph = await load_and_resolve(context, memory_cache, [DIRECTIVE])

        assert load.ok
        assert graph.collection is load.collection
        assert load.collection.resolved_graph is graph
        assert graph.diagnostics == []

    def test_build_options(self):
        assert isinstance(build_options("ruby"), RubyOptions)
        assert build_options("ruby").module == "FHIR"

        converted = build_options("ruby", ExportOptions(module="Acme"))
        assert isinstance(converted, RubyOptions)
        assert converted.module == "Acme"

        options = RubyOptions(module="Acme")
        assert build_options("rb", options) is options

    def test_export_is_cancellable(self, context, core_graph):
        context.cancel()
        with pytest.raises(OperationCancelled):
            export(context, core_graph, "ruby", MemorySink())

    def test_export_rejects_unknown_include(self, context, core_graph):
        with pytest.raises(InvalidConfigurationError):
            export(context, core_graph, "ruby", MemorySink(), {"include": ["Observation"]})

    @pytest.mark.asyncio
    async def test_export_many_keeps_job_order(self, context, core_graph):
        sinks = [MemorySink(), MemorySink(), MemorySink()]
        jobs = [
            ("ruby", sinks[0], None),
            ("typescript", sinks[1], {"file_format": "declaration"}),
            ("openapi", sinks[2], {"file_format": "yaml"}),
        ]

        results = await export_many(context, core_graph, jobs, workers=2)

        assert [r.language for r in results] == ["ruby", "typescript", "openapi"]
        assert "metadata.rb" in sinks[0]
        assert "fhir.d.ts" in sinks[1]
        assert "openapi.yaml" in sinks[2]

    @pytest.mark.asyncio
    async def test_export_many_matches_single_exports(self, context, core_graph):
        parallel = MemorySink()
        single = MemorySink()

        await export_many(context, core_graph, [("ruby", parallel, None)])
        export(context, core_graph, "ruby", single)

        assert parallel.files == single.files
