"""Generates Ruby model classes.

Output layout::

    metadata.rb             PRIMITIVES hash, TYPES and RESOURCES lists
    types/<Type>.rb         one class per complex type
    resources/<Name>.rb     one class per resource

``TYPES`` lists ``Element`` and ``BackboneElement`` first and ``RESOURCES``
lists ``Resource`` first, everything else follows in name order. Backbone
components become nested classes (``Patient::Contact``). Attribute names
that are Ruby keywords get a ``local_`` prefix and the METADATA entry keeps
the FHIR name with a ``local_name`` pointer.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import field_validator

from fhirgen.models.definitions import DefinitionKind, DefinitionRecord
from fhirgen.models.structure import direct_children, is_backbone
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
    ordered_names,
)
from languages.naming import NameSanitizer, NamingConvention
from languages.sink import OutputSink
from languages.templating import create_environment

logger = structlog.get_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

RUBY_KEYWORDS = (
    "BEGIN", "END", "alias", "and", "begin", "break", "case", "class", "def",
    "defined?", "do", "else", "elsif", "end", "ensure", "false", "for", "if",
    "in", "method", "module", "next", "nil", "not", "or", "redo", "rescue",
    "retry", "return", "self", "super", "then", "true", "undef", "unless",
    "until", "when", "while", "yield",
)

# Constants the generated classes rely on
RUBY_RESERVED_CONSTANTS = ("Model", "Hashable", "Json", "Xml")

TYPES_FIRST = ("Element", "BackboneElement")
RESOURCES_FIRST = ("Resource",)

PLACEHOLDER_TYPE = "Element"

_MODULE_NAME = re.compile(r"^[A-Z][A-Za-z0-9_]*(::[A-Z][A-Za-z0-9_]*)*$")


class RubyOptions(ExportOptions):
    module: str = "FHIR"

    @field_validator("module")
    @classmethod
    def _ruby_constant(cls, value: str) -> str:
        if not _MODULE_NAME.match(value):
            raise ValueError(f"'{value}' is not a Ruby module name")
        return value


class _Infinity:
    def __repr__(self) -> str:
        return "Float::INFINITY"


INFINITY = _Infinity()


def ruby_literal(value: Any) -> str:
    if isinstance(value, _Infinity):
        return repr(value)
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(ruby_literal(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{ruby_literal(k)}=>{ruby_literal(v)}" for k, v in value.items()) + "}"
    raise TypeError(f"No Ruby literal for {type(value).__name__}")


def _one_line(text: Optional[str]) -> str:
    return " ".join((text or "").split())


class RubyLanguage:
    name = "ruby"
    description = "Ruby model classes with METADATA hashes"
    options_class = RubyOptions
    primitive_type_map = {
        "boolean": "boolean",
        "date": "date",
        "dateTime": "datetime",
        "instant": "datetime",
        "decimal": "decimal",
        "integer": "integer",
        "time": "time",
    }

    def __init__(self):
        self.env = create_environment(TEMPLATES_DIR)

    def create_sanitizer(self) -> NameSanitizer:
        return NameSanitizer(NamingConvention.FHIR, RUBY_KEYWORDS, reserved_prefix="local_")

    def create_class_sanitizer(self) -> NameSanitizer:
        return NameSanitizer(NamingConvention.PASCAL, RUBY_RESERVED_CONSTANTS, reserved_suffix="_")

    def export(self, graph: ResolvedGraph, subgraph: Subgraph, sink: OutputSink, options: RubyOptions) -> ExportResult:
        run = _RubyRun(self, graph, options)
        result = ExportResult(language=self.name)

        class_names = run.classes.prime(r.name for r in subgraph.complex_types + subgraph.resources)
        for folder, records in (("types", subgraph.complex_types), ("resources", subgraph.resources)):
            for record in records:
                class_name = class_names[record.name]
                body = run.render_class(record, None, class_name, class_name, run.component_paths(record, class_name))
                content = self.env.get_template("file.rb.j2").render(module=options.module, body=body)
                result.paths.append(sink.write(f"{folder}/{class_name}.rb", content))

        primitives = [
            {
                "name": record.name,
                "description": _one_line(record.description),
                "hash": ruby_literal(run.primitive_entry(record)),
            }
            for record in subgraph.primitives
        ]
        metadata = self.env.get_template("metadata.rb.j2").render(
            module=options.module,
            primitives=primitives,
            types=ordered_names((class_names[r.name] for r in subgraph.complex_types), TYPES_FIRST),
            resources=ordered_names((class_names[r.name] for r in subgraph.resources), RESOURCES_FIRST),
        )
        result.paths.append(sink.write("metadata.rb", metadata))

        result.diagnostics = run.log.diagnostics
        logger.info(
            "ruby_exported",
            files=len(result.paths),
            module=options.module,
            placeholders=len(result.diagnostics),
        )
        return result


class _RubyRun:
    def __init__(self, language: RubyLanguage, graph: ResolvedGraph, options: RubyOptions):
        self.language = language
        self.graph = graph
        self.options = options
        self.log = EmissionLog(language.name)
        self.classes = language.create_class_sanitizer()

    def primitive_entry(self, record: DefinitionRecord) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"type": self.language.primitive_type_map.get(record.name, "string")}
        if record.regex:
            entry["regex"] = record.regex
        return entry

    def component_paths(self, record: DefinitionRecord, class_name: str) -> Dict[str, str]:
        """Nested Ruby class of every backbone component, keyed by element path."""
        paths: Dict[str, str] = {}

        def walk(parent_path: Optional[str], parent_class: str) -> None:
            sanitizer = self.language.create_class_sanitizer()
            for element in direct_children(record, parent_path):
                if keep_element(element, self.options) and is_backbone(record, element):
                    paths[element.path] = f"{parent_class}::{sanitizer.sanitize(element.name)}"
                    walk(element.path, paths[element.path])

        walk(None, class_name)
        return paths

    def type_of(self, record: DefinitionRecord, field: FieldInfo, paths: Dict[str, str]) -> Tuple[str, List[str]]:
        """Ruby METADATA type and type profiles of a field."""
        resolved = field.type
        if not resolved.resolved:
            return self.log.placeholder(record, field.element, resolved, PLACEHOLDER_TYPE), []
        if resolved.category == TypeCategory.BACKBONE:
            path = field.element.content_reference or field.element.path
            return paths.get(path, resolved.name), []
        if resolved.category == TypeCategory.GENERIC:
            profiles = [p.target_url or p.code for p in resolved.parameters]
            return resolved.code, profiles
        return resolved.name, []

    def valid_codes(self, field: FieldInfo) -> Optional[Dict[str, List[str]]]:
        binding = field.binding
        if binding is None or not binding.resolved or binding.strength != "required":
            return None
        codes: Dict[str, List[str]] = {}
        for entry in self.graph.collection.expand_value_set(binding.value_set_url):
            codes.setdefault(entry.system or "", []).append(entry.code)
        return codes or None

    def render_class(
        self,
        record: DefinitionRecord,
        path: Optional[str],
        class_name: str,
        qualified_name: str,
        paths: Dict[str, str],
    ) -> str:
        fields = element_fields(self.graph, record, self.options, path)
        attribute_names = self.language.create_sanitizer()
        attribute_names.prime(f.name for f in fields)

        metadata: List[Dict[str, str]] = []
        attributes: List[Dict[str, str]] = []
        for field in fields:
            local_name = attribute_names.sanitize(field.name)
            type_name, profiles = self.type_of(record, field, paths)

            entry: Dict[str, Any] = {}
            if local_name != field.name:
                entry["local_name"] = local_name
            codes = self.valid_codes(field)
            if codes:
                entry["valid_codes"] = codes
            entry["type"] = type_name
            if profiles:
                entry["type_profiles"] = profiles
            entry["path"] = field.element.path
            entry["min"] = field.element.min
            entry["max"] = INFINITY if field.element.max is None else field.element.max
            if field.binding is not None and field.binding.value_set_url:
                entry["binding"] = {"strength": field.binding.strength, "uri": field.binding.value_set_url}
            metadata.append({"key": field.name, "hash": ruby_literal(entry)})

            shown = f"{type_name}({'|'.join(profiles)})" if profiles else type_name
            upper = "*" if field.element.max is None else str(field.element.max)
            attributes.append({
                "name": local_name,
                "short": _one_line(field.element.short),
                "comment": f"{field.element.min}-{upper} " + (f"[ {shown} ]" if field.is_array else shown),
            })

            if self.options.extension_support == ExtensionSupport.FULL and field.is_primitive:
                shadow = attribute_names.sanitize("_" + field.name)
                attributes.append({"name": shadow, "short": "", "comment": f"0-1 Element ({field.name} extensions)"})

        components = []
        for element in direct_children(record, path):
            if element.path in paths and keep_element(element, self.options):
                nested = paths[element.path]
                components.append(
                    self.render_class(record, element.path, nested.rsplit("::", 1)[-1], nested, paths).rstrip("\n")
                )

        if path is None:
            description = _one_line(record.description or (record.root.definition if record.root else None))
        else:
            element = record.element(path)
            description = _one_line(element.short if element else None)

        is_resource = path is None and record.kind == DefinitionKind.RESOURCE
        search_params = []
        if path is None:
            search_params = sorted({p.search_code for p in self.graph.collection.search_parameters_for(record.name) if p.search_code})

        model = {
            "class_name": class_name,
            "qualified_name": qualified_name,
            "description": description,
            "search_params": search_params,
            "metadata": metadata,
            "components": components,
            "attributes": attributes,
            "resource_type": record.name if is_resource else None,
        }
        return self.language.env.get_template("model.rb.j2").render(module=self.options.module, model=model).rstrip("\n")
