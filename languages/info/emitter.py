"""Writes a human-readable inventory of a resolved collection."""

import json
from typing import Any, Dict, List, Literal

import structlog

from fhirgen.models.definitions import DefinitionRecord, Element
from fhirgen.models.structure import direct_children
from fhirgen.resolver.graph import ResolvedGraph, TypeCategory
from languages.base import (
    EmissionLog,
    ExportOptions,
    ExportResult,
    Subgraph,
    keep_element,
)
from languages.naming import NameSanitizer, NamingConvention
from languages.sink import OutputSink
from languages.writer import CodeWriter

logger = structlog.get_logger(__name__)


class InfoOptions(ExportOptions):
    file_format: Literal["text", "json"] = "text"
    filename: str = "fhir-info"
    show_elements: bool = True


class InfoLanguage:
    name = "info"
    description = "Plain-text inventory of the loaded definitions"
    options_class = InfoOptions
    primitive_type_map = {
        "boolean": "boolean",
        "integer": "integer",
        "integer64": "integer",
        "positiveInt": "integer",
        "unsignedInt": "integer",
        "decimal": "decimal",
    }

    def create_sanitizer(self) -> NameSanitizer:
        return NameSanitizer(NamingConvention.FHIR)

    def export(self, graph: ResolvedGraph, subgraph: Subgraph, sink: OutputSink, options: InfoOptions) -> ExportResult:
        log = EmissionLog(self.name)
        inventory = _Inventory(graph, options, log)

        if options.file_format == "json":
            content = json.dumps(inventory.as_dict(subgraph), indent=2, ensure_ascii=False) + "\n"
            path = sink.write(f"{options.filename}.json", content)
        else:
            path = sink.write(f"{options.filename}.txt", inventory.as_text(subgraph))

        logger.info("info_exported", path=path, types=len(subgraph), placeholders=len(log.diagnostics))
        return ExportResult(language=self.name, paths=[path], diagnostics=log.diagnostics)


class _Inventory:
    def __init__(self, graph: ResolvedGraph, options: InfoOptions, log: EmissionLog):
        self.graph = graph
        self.options = options
        self.log = log

    def type_text(self, record: DefinitionRecord, element: Element) -> str:
        parts = []
        for resolved in self.graph.types_for(record, element):
            if not resolved.resolved:
                parts.append(self.log.placeholder(record, element, resolved, f"?{resolved.code}"))
            elif resolved.category == TypeCategory.GENERIC:
                parts.append(f"{resolved.code}({'|'.join(p.name for p in resolved.parameters)})")
            elif resolved.category == TypeCategory.BACKBONE:
                parts.append(f"{resolved.code}<{resolved.name}>")
            else:
                parts.append(resolved.name)
        return "|".join(parts)

    def element_line(self, record: DefinitionRecord, element: Element) -> str:
        line = f"{element.path} {element.cardinality} {self.type_text(record, element)}".rstrip()
        binding = self.graph.binding_for(record, element)
        if binding is not None and binding.value_set_url:
            line += f" [{binding.strength}: {binding.value_set_name or binding.value_set_url}]"
        if element.is_modifier:
            line += " ?!"
        return line

    def write_elements(self, writer: CodeWriter, record: DefinitionRecord, path=None) -> None:
        for element in direct_children(record, path):
            if not keep_element(element, self.options):
                continue
            writer.line(self.element_line(record, element))
            with writer.indented():
                self.write_elements(writer, record, element.path)

    def heading(self, record: DefinitionRecord) -> str:
        base = record.base_name
        text = f"- {record.name}"
        if base:
            text += f" : {base}"
        if record.abstract:
            text += " (abstract)"
        return text

    def as_text(self, subgraph: Subgraph) -> str:
        collection = self.graph.collection
        writer = CodeWriter(indent="  ")
        release = collection.fhir_release.value if collection.fhir_release else "unknown"
        writer.line(f"Collection: {collection.name} (FHIR {release})")

        writer.line(f"Primitive types: {len(subgraph.primitives)}")
        with writer.indented():
            for record in subgraph.primitives:
                writer.line(f"- {record.name}" + (f" /{record.regex}/" if record.regex else ""))

        for title, records in (("Complex types", subgraph.complex_types), ("Resources", subgraph.resources)):
            writer.line(f"{title}: {len(records)}")
            with writer.indented():
                for record in records:
                    writer.line(self.heading(record))
                    if self.options.show_elements:
                        with writer.indented():
                            self.write_elements(writer, record)
                    for parameter in collection.search_parameters_for(record.name):
                        with writer.indented():
                            writer.line(f"search {parameter.search_code} ({parameter.search_type})")

        writer.line(f"Value sets: {len(subgraph.value_sets)}")
        with writer.indented():
            for record in subgraph.value_sets:
                codes = collection.expand_value_set(record.url)
                writer.line(f"- {record.name} ({record.url}) codes: {len(codes)}")
        return writer.getvalue()

    def record_dict(self, record: DefinitionRecord) -> Dict[str, Any]:
        elements: List[Dict[str, Any]] = []
        if self.options.show_elements:
            for element in record.child_elements:
                if not keep_element(element, self.options):
                    continue
                elements.append({
                    "path": element.path,
                    "cardinality": element.cardinality,
                    "type": self.type_text(record, element),
                })
        return {
            "name": record.name,
            "url": record.url,
            "base": record.base_name,
            "abstract": record.abstract,
            "elements": elements,
        }

    def as_dict(self, subgraph: Subgraph) -> Dict[str, Any]:
        collection = self.graph.collection
        return {
            "collection": collection.name,
            "fhirRelease": collection.fhir_release.value if collection.fhir_release else None,
            "primitives": [{"name": r.name, "regex": r.regex} for r in subgraph.primitives],
            "complexTypes": [self.record_dict(r) for r in subgraph.complex_types],
            "resources": [self.record_dict(r) for r in subgraph.resources],
            "valueSets": [
                {"name": r.name, "url": r.url, "codes": len(collection.expand_value_set(r.url))}
                for r in subgraph.value_sets
            ],
        }
