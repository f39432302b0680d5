"""Generates TypeScript interfaces for complex types and resources.

Everything goes into one file. Backbone components become their own
interfaces named after their path (``Patient.contact`` -> ``PatientContact``)
and are written right after the type that owns them. Resources that are not
abstract carry a literal ``resourceType`` and are collected into the
``FhirResource`` union.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import structlog
from pydantic import field_validator

from fhirgen.models.definitions import DefinitionKind, DefinitionRecord
from fhirgen.models.structure import component_name, components
from fhirgen.resolver.graph import ResolvedGraph, ResolvedType, TypeCategory
from languages.base import (
    EmissionLog,
    ExportOptions,
    ExportResult,
    ExtensionSupport,
    FieldInfo,
    Subgraph,
    element_fields,
    keep_element,
)
from languages.naming import NameSanitizer, NamingConvention
from languages.sink import OutputSink
from languages.templating import create_environment

logger = structlog.get_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

TS_RESERVED = (
    "any", "boolean", "break", "case", "catch", "class", "const", "continue",
    "debugger", "default", "delete", "do", "else", "enum", "export", "extends",
    "false", "finally", "for", "function", "if", "import", "in", "instanceof",
    "interface", "let", "never", "new", "null", "number", "object", "package",
    "private", "protected", "public", "return", "static", "string", "super",
    "switch", "symbol", "this", "throw", "true", "try", "type", "typeof",
    "undefined", "unknown", "var", "void", "while", "with", "yield",
)

SYSTEM_TYPES = {
    "Boolean": "boolean",
    "Integer": "number",
    "Decimal": "number",
    "String": "string",
    "Date": "string",
    "DateTime": "string",
    "Time": "string",
}

PLACEHOLDER_TYPE = "any"

_NAMESPACE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*(\.[A-Za-z_$][A-Za-z0-9_$]*)*$")


class TypeScriptOptions(ExportOptions):
    file_format: Literal["module", "declaration"] = "module"
    filename: str = "fhir"

    @field_validator("module")
    @classmethod
    def _namespace(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _NAMESPACE.match(value):
            raise ValueError(f"'{value}' is not a TypeScript namespace")
        return value


def _doc(text: Optional[str]) -> str:
    return " ".join((text or "").split()).replace("*/", "*\\/")


class TypeScriptLanguage:
    name = "typescript"
    description = "TypeScript interfaces in a single declaration file"
    options_class = TypeScriptOptions
    primitive_type_map = {
        "base64Binary": "string",
        "boolean": "boolean",
        "canonical": "string",
        "code": "string",
        "date": "string",
        "dateTime": "string",
        "decimal": "number",
        "id": "string",
        "instant": "string",
        "integer": "number",
        "integer64": "string",
        "markdown": "string",
        "oid": "string",
        "positiveInt": "number",
        "string": "string",
        "time": "string",
        "unsignedInt": "number",
        "uri": "string",
        "url": "string",
        "uuid": "string",
        "xhtml": "string",
    }

    def __init__(self):
        self.env = create_environment(TEMPLATES_DIR)

    def create_sanitizer(self) -> NameSanitizer:
        return NameSanitizer(NamingConvention.PASCAL, TS_RESERVED, reserved_suffix="_")

    def export(
        self,
        graph: ResolvedGraph,
        subgraph: Subgraph,
        sink: OutputSink,
        options: TypeScriptOptions,
    ) -> ExportResult:
        log = EmissionLog(self.name)
        names = self.create_sanitizer()
        names.prime(r.name for r in subgraph.complex_types + subgraph.resources)

        interfaces: List[Dict[str, Any]] = []
        union: List[str] = []
        for record in subgraph.complex_types + subgraph.resources:
            interfaces.extend(self._interfaces(graph, record, subgraph, names, options, log))
            if record.kind == DefinitionKind.RESOURCE and not record.abstract:
                union.append(names.sanitize(record.name))

        collection = graph.collection
        content = self.env.get_template("fhir.ts.j2").render(
            release=collection.fhir_release.value if collection.fhir_release else "unknown",
            collection=collection.name,
            namespace=options.module,
            declaration=options.file_format == "declaration",
            pad="  " if options.module else "",
            interfaces=interfaces,
            resources=sorted(union),
        )
        suffix = ".d.ts" if options.file_format == "declaration" else ".ts"
        path = sink.write(options.filename + suffix, content)

        logger.info("typescript_exported", path=path, interfaces=len(interfaces), placeholders=len(log.diagnostics))
        return ExportResult(language=self.name, paths=[path], diagnostics=log.diagnostics)

    def _interfaces(
        self,
        graph: ResolvedGraph,
        record: DefinitionRecord,
        subgraph: Subgraph,
        names: NameSanitizer,
        options: TypeScriptOptions,
        log: EmissionLog,
    ) -> List[Dict[str, Any]]:
        # Only extend interfaces written to the same file
        base = record.base_name if record.base_name in subgraph else None

        properties: List[Dict[str, Any]] = []
        if record.kind == DefinitionKind.RESOURCE:
            if record.abstract:
                properties.append({"name": "resourceType", "required": False, "type": "string", "doc": ""})
            else:
                properties.append({
                    "name": "resourceType",
                    "required": True,
                    "type": f"'{record.name}'",
                    "doc": "Resource Type Name (for serialization)",
                })
        properties.extend(self._properties(graph, record, None, names, options, log))

        root = record.root
        result = [{
            "name": names.sanitize(record.name),
            "base": names.sanitize(base) if base else None,
            "description": _doc(record.description or (root.short if root else None)),
            "properties": properties,
        }]

        for element in components(record):
            if not keep_element(element, options):
                continue
            resolved = graph.representative_type(record, element)
            component_base = resolved.code if resolved is not None and resolved.resolved else "BackboneElement"
            result.append({
                "name": names.sanitize(component_name(record, element)),
                "base": names.sanitize(component_base) if component_base in subgraph else None,
                "description": _doc(element.short),
                "properties": self._properties(graph, record, element.path, names, options, log),
            })
        return result

    def _properties(
        self,
        graph: ResolvedGraph,
        record: DefinitionRecord,
        path: Optional[str],
        names: NameSanitizer,
        options: TypeScriptOptions,
        log: EmissionLog,
    ) -> List[Dict[str, Any]]:
        properties = []
        for field in element_fields(graph, record, options, path):
            ts_type = self._type(record, field, names, log)
            if field.is_array:
                ts_type += "[]"
            properties.append({
                "name": field.name,
                "required": field.is_required,
                "type": ts_type,
                "doc": _doc(field.element.short),
            })
            if options.extension_support == ExtensionSupport.FULL and field.is_primitive:
                properties.append({
                    "name": "_" + field.name,
                    "required": False,
                    "type": "Element[]" if field.is_array else "Element",
                    "doc": f"Extensions for {field.name}",
                })
        return properties

    def _type(self, record: DefinitionRecord, field: FieldInfo, names: NameSanitizer, log: EmissionLog) -> str:
        resolved: ResolvedType = field.type
        if not resolved.resolved:
            return log.placeholder(record, field.element, resolved, PLACEHOLDER_TYPE)
        if resolved.category == TypeCategory.SYSTEM:
            return SYSTEM_TYPES.get(resolved.code, "string")
        if resolved.category == TypeCategory.PRIMITIVE:
            return self.primitive_type_map.get(resolved.name, "string")
        if resolved.name == "Resource":
            return "FhirResource"
        return names.sanitize(resolved.name)
