"""Generates an OpenAPI document whose ``components.schemas`` describe every type."""

import json
from typing import Any, Dict, List, Literal, Optional

import structlog
import yaml

from fhirgen.models.definitions import DefinitionKind, DefinitionRecord
from fhirgen.models.structure import component_name, components
from fhirgen.resolver.graph import ResolvedGraph, TypeCategory
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

logger = structlog.get_logger(__name__)

SYSTEM_TYPES = {
    "Boolean": "boolean",
    "Integer": "integer",
    "Decimal": "number",
}


class OpenApiOptions(ExportOptions):
    file_format: Literal["json", "yaml"] = "json"
    filename: str = "openapi"
    openapi_version: str = "3.0.3"


class OpenApiLanguage:
    name = "openapi"
    description = "OpenAPI components.schemas document"
    options_class = OpenApiOptions
    primitive_type_map = {
        "boolean": "boolean",
        "decimal": "number",
        "integer": "integer",
        "positiveInt": "integer",
        "unsignedInt": "integer",
    }

    def create_sanitizer(self) -> NameSanitizer:
        return NameSanitizer(NamingConvention.PASCAL)

    def export(self, graph: ResolvedGraph, subgraph: Subgraph, sink: OutputSink, options: OpenApiOptions) -> ExportResult:
        run = _SchemaRun(self, graph, subgraph, options)
        schemas: Dict[str, Any] = {}
        for record in subgraph.complex_types + subgraph.resources:
            schemas.update(run.schemas_for(record))

        collection = graph.collection
        release = collection.fhir_release.value if collection.fhir_release else "unknown"
        document = {
            "openapi": options.openapi_version,
            "info": {
                "title": f"FHIR {release} definitions ({collection.name})",
                "version": collection.package_version or "0.0.0",
            },
            "paths": {},
            "components": {"schemas": schemas},
        }

        if options.file_format == "yaml":
            content = yaml.safe_dump(document, sort_keys=False, allow_unicode=True, default_flow_style=False)
            path = sink.write(f"{options.filename}.yaml", content)
        else:
            content = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
            path = sink.write(f"{options.filename}.json", content)

        logger.info("openapi_exported", path=path, schemas=len(schemas), placeholders=len(run.log.diagnostics))
        return ExportResult(language=self.name, paths=[path], diagnostics=run.log.diagnostics)


class _SchemaRun:
    def __init__(self, language: OpenApiLanguage, graph: ResolvedGraph, subgraph: Subgraph, options: OpenApiOptions):
        self.language = language
        self.graph = graph
        self.subgraph = subgraph
        self.options = options
        self.log = EmissionLog(language.name)
        self.names = language.create_sanitizer()
        self.names.prime(r.name for r in subgraph.complex_types + subgraph.resources)

    def schema_name(self, name: str) -> str:
        sanitized = self.names.sanitize(name)
        return f"{self.options.module}.{sanitized}" if self.options.module else sanitized

    def ref(self, name: str) -> Dict[str, Any]:
        return {"$ref": f"#/components/schemas/{self.schema_name(name)}"}

    def schemas_for(self, record: DefinitionRecord) -> Dict[str, Any]:
        schemas = {self.schema_name(record.name): self.object_schema(record, None, record.description)}
        for element in components(record):
            if keep_element(element, self.options):
                schemas[self.schema_name(component_name(record, element))] = self.object_schema(
                    record, element.path, element.short
                )
        return schemas

    def object_schema(self, record: DefinitionRecord, path: Optional[str], description: Optional[str]) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        required: List[str] = []
        if path is None and record.kind == DefinitionKind.RESOURCE and not record.abstract:
            properties["resourceType"] = {"type": "string", "enum": [record.name]}
            required.append("resourceType")

        for field in element_fields(self.graph, record, self.options, path):
            schema = self.value_schema(record, field)
            if field.element.short:
                schema = dict(schema, description=" ".join(field.element.short.split()))
            properties[field.name] = schema
            if field.is_required:
                required.append(field.name)
            if self.options.extension_support == ExtensionSupport.FULL and field.is_primitive:
                shadow = self.ref("Element") if "Element" in self.subgraph else {"type": "object"}
                properties["_" + field.name] = {"type": "array", "items": shadow} if field.is_array else shadow

        schema: Dict[str, Any] = {"type": "object"}
        if description:
            schema["description"] = " ".join(description.split())
        schema["properties"] = properties
        if required:
            schema["required"] = required
        return schema

    def value_schema(self, record: DefinitionRecord, field: FieldInfo) -> Dict[str, Any]:
        item = self.item_schema(record, field)
        if field.is_array:
            return {"type": "array", "items": item}
        return item

    def item_schema(self, record: DefinitionRecord, field: FieldInfo) -> Dict[str, Any]:
        resolved = field.type
        if not resolved.resolved:
            self.log.placeholder(record, field.element, resolved, "{}")
            return {}
        if resolved.category == TypeCategory.SYSTEM:
            return {"type": SYSTEM_TYPES.get(resolved.code, "string")}
        if resolved.category == TypeCategory.PRIMITIVE:
            schema: Dict[str, Any] = {"type": self.language.primitive_type_map.get(resolved.name, "string")}
            primitive = self.graph.lookup(resolved.target_url or resolved.name)
            if primitive is not None and primitive.regex and schema["type"] == "string":
                schema["pattern"] = f"^{primitive.regex}$"
            codes = self.enum_codes(field)
            if codes:
                schema["enum"] = codes
            return schema
        if resolved.name in self.subgraph or resolved.category == TypeCategory.BACKBONE:
            return self.ref(resolved.name)
        return {"type": "object"}

    def enum_codes(self, field: FieldInfo) -> List[str]:
        binding = field.binding
        if binding is None or not binding.resolved or binding.strength != "required":
            return []
        codes = []
        for entry in self.graph.collection.expand_value_set(binding.value_set_url):
            if entry.code not in codes:
                codes.append(entry.code)
        return codes
