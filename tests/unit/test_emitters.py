"""
Test coverage for the language backends.

Tests cover:
- Language registry discovery, aliases and listing
- Deterministic output for every backend
- Ruby, TypeScript, OpenAPI and info output details
- Placeholders for unresolved types
- Export options and subgraph selection
- Output sinks
"""

import json

import pytest
import yaml

from fhirgen.errors import InvalidConfigurationError
from fhirgen.resolver import resolve
from languages import (
    ExportOptions,
    ExtensionSupport,
    FileSystemSink,
    LanguageRegistry,
    MemorySink,
    language_registry,
    select_subgraph,
)
from languages.ruby import RubyOptions
from languages.typescript import TypeScriptOptions

LANGUAGES = ["info", "openapi", "ruby", "typescript"]


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def export(core_graph):
    """Run one backend over the whole core graph into a memory sink."""
    def run(language_name, graph=None, **options):
        graph = graph or core_graph
        language = language_registry.get(language_name)
        sink = MemorySink()
        result = language.export(graph, select_subgraph(graph), sink, language.options_class.build(options))
        return sink, result
    return run


@pytest.fixture
def unresolved_graph(collection_from, core_docs, fhir):
    """Core package plus a resource whose photo element has an unknown type."""
    documents = dict(core_docs)
    documents.update(fhir.package(fhir.resource("Practitioner", [
        fhir.element("Practitioner.active", "boolean"),
        fhir.element("Practitioner.photo", "Attachment", max="*"),
    ])))
    return resolve(collection_from(documents))


# ============================================================================
# REGISTRY TESTS
# ============================================================================

class TestLanguageRegistry:
    """Discovery and lookup of backends."""

    @pytest.mark.parametrize("name,expected", [
        ("ruby", "ruby"),
        ("RB", "ruby"),
        ("ts", "typescript"),
        ("oas", "openapi"),
        ("json-schema", "openapi"),
        ("text", "info"),
    ])
    def test_get_by_name_or_alias(self, name, expected):
        assert language_registry.get(name).name == expected
        assert name in language_registry

    def test_unknown_language(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            language_registry.get("cobol")
        assert "ruby" in str(exc_info.value)

    def test_list_languages(self):
        listing = language_registry.list_languages()

        assert [entry["name"] for entry in listing] == LANGUAGES
        ruby = listing[LANGUAGES.index("ruby")]
        assert ruby["aliases"] == ["rb"]
        assert ruby["version"] == "1.0.0"
        assert "module" in ruby["options"]
        assert language_registry.errors == {}

    def test_register_rejects_non_languages(self):
        registry = LanguageRegistry(language_dirs=[])
        with pytest.raises(InvalidConfigurationError):
            registry.register(object())

    def test_empty_registry(self, tmp_path):
        registry = LanguageRegistry(language_dirs=[tmp_path])
        assert registry.list_languages() == []
        with pytest.raises(InvalidConfigurationError):
            registry.get("ruby")


# ============================================================================
# DETERMINISM AND PLACEHOLDER TESTS
# ============================================================================

class TestAllLanguages:
    """Properties every backend shares."""

    @pytest.mark.parametrize("name", LANGUAGES)
    def test_output_is_byte_identical_across_runs(self, export, name):
        first, first_result = export(name)
        second, second_result = export(name)

        assert first.files == second.files
        assert first_result.paths == second_result.paths
        assert first_result.diagnostics == []

    @pytest.mark.parametrize("name", LANGUAGES)
    def test_unresolved_type_gets_a_placeholder(self, export, unresolved_graph, name):
        sink, result = export(name, graph=unresolved_graph)

        assert result.placeholders == 1
        diagnostic = result.diagnostics[0]
        assert diagnostic.language == name
        assert diagnostic.definition == "Practitioner"
        assert diagnostic.path == "Practitioner.photo"
        assert len(sink) == len(result.paths)

    @pytest.mark.parametrize("name", LANGUAGES)
    def test_unknown_option_is_rejected(self, name):
        language = language_registry.get(name)
        with pytest.raises(InvalidConfigurationError):
            language.options_class.build({"colour": "blue"})


# ============================================================================
# RUBY TESTS
# ============================================================================

class TestRuby:
    """Ruby model classes and metadata."""

    def test_layout(self, export):
        sink, result = export("ruby")

        assert sorted(result.paths) == [
            "metadata.rb",
            "resources/Organization.rb",
            "resources/Patient.rb",
            "types/Address.rb",
            "types/HumanName.rb",
            "types/Reference.rb",
        ]

    def test_patient_class(self, export):
        sink, _ = export("ruby")
        patient = sink.read("resources/Patient.rb")

        assert patient.startswith("module FHIR\n")
        assert "  ##\n  # Demographics about a patient\n" in patient
        assert "class Patient < FHIR::Model" in patient
        assert "SEARCH_PARAMS = ['birthdate', 'gender']" in patient
        assert "class Contact < FHIR::Model" in patient
        assert "'contact' => {'type'=>'Patient::Contact'" in patient
        assert "'max'=>Float::INFINITY" in patient
        assert "'type_profiles'=>['http://hl7.org/fhir/StructureDefinition/Organization']" in patient
        assert "'valid_codes'=>{'http://hl7.org/fhir/administrative-gender'=>['male', 'female', 'other', 'unknown']}" in patient
        assert "'deceasedBoolean' => {'type'=>'boolean'" in patient
        assert "'deceasedDateTime' => {'type'=>'dateTime'" in patient
        assert "def resourceType" in patient
        assert patient.endswith("end\n")

    def test_complex_type_has_no_resource_type(self, export):
        sink, _ = export("ruby")
        human_name = sink.read("types/HumanName.rb")

        assert "class HumanName < FHIR::Model" in human_name
        assert "def resourceType" not in human_name
        assert "SEARCH_PARAMS = []" in human_name

    def test_metadata(self, export):
        sink, _ = export("ruby")
        metadata = sink.read("metadata.rb")

        assert "'boolean' => {'type'=>'boolean', 'regex'=>'true|false'}" in metadata
        assert "'string' => {'type'=>'string'}" in metadata
        assert "TYPES = [ 'Address', 'HumanName', 'Reference' ]" in metadata
        assert "RESOURCES = [ 'Organization', 'Patient' ]" in metadata

    def test_keyword_attribute_gets_local_prefix(self, export, collection_from, fhir):
        graph = resolve(collection_from(fhir.package(
            fhir.primitive("code"),
            fhir.resource("Encounter", [fhir.element("Encounter.class", "code")]),
        )))
        sink, _ = export("ruby", graph=graph)
        encounter = sink.read("resources/Encounter.rb")

        assert "'class' => {'local_name'=>'local_class', 'type'=>'code'" in encounter
        assert "attr_accessor :local_class" in encounter

    def test_module_option(self, export):
        sink, _ = export("ruby", module="Acme::Fhir")
        assert sink.read("metadata.rb").startswith("module Acme::Fhir\n")
        assert "class Patient < Acme::Fhir::Model" in sink.read("resources/Patient.rb")

    def test_invalid_module(self):
        with pytest.raises(InvalidConfigurationError):
            RubyOptions.build({"module": "acme"})

    def test_file_format_is_ignored(self, export):
        default, _ = export("ruby")
        yaml_format, _ = export("ruby", file_format="yaml")
        assert default.files == yaml_format.files

    def test_extension_support(self, export):
        none, _ = export("ruby", extension_support="none")
        full, _ = export("ruby", extension_support="full")

        assert "'extension'" not in none.read("resources/Patient.rb")
        assert "attr_accessor :_active" in full.read("resources/Patient.rb")

    def test_placeholder_type(self, export, unresolved_graph):
        sink, _ = export("ruby", graph=unresolved_graph)
        assert "'photo' => {'type'=>'Element'" in sink.read("resources/Practitioner.rb")


# ============================================================================
# TYPESCRIPT TESTS
# ============================================================================

class TestTypeScript:
    """TypeScript interfaces."""

    def test_interfaces(self, export):
        sink, result = export("typescript")
        content = sink.read("fhir.ts")

        assert result.paths == ["fhir.ts"]
        assert content.startswith("/**\n * FHIR R4 definitions generated from hl7.fhir.r4.core\n */\n")
        assert "export interface Patient {" in content
        assert "  resourceType: 'Patient';" in content
        assert "  /** Whether this patient's record is in active use */\n  active?: boolean;" in content
        assert "  name?: HumanName[];" in content
        assert "  gender?: string;" in content
        assert "  deceasedBoolean?: boolean;" in content
        assert "  deceasedDateTime?: string;" in content
        assert "  contact?: PatientContact[];" in content
        assert "  managingOrganization?: Reference;" in content
        assert "export interface PatientContact {" in content
        assert "  name: string;" in content
        assert "export type FhirResource = Organization | Patient;" in content

    def test_component_follows_its_owner(self, export):
        sink, _ = export("typescript")
        content = sink.read("fhir.ts")
        assert content.index("interface Patient {") < content.index("interface PatientContact {")

    def test_declaration_in_namespace(self, export):
        sink, result = export("typescript", module="fhir", file_format="declaration")
        content = sink.read("fhir.d.ts")

        assert result.paths == ["fhir.d.ts"]
        assert "declare namespace fhir {" in content
        assert "  export interface Patient {" in content
        assert content.endswith("}\n")

    def test_invalid_namespace(self):
        with pytest.raises(InvalidConfigurationError):
            TypeScriptOptions.build({"module": "1fhir"})

    def test_extension_support(self, export):
        none, _ = export("typescript", extension_support=ExtensionSupport.NONE)
        full, _ = export("typescript", extension_support="full")

        assert "extension?:" not in none.read("fhir.ts")
        assert "  extension?: Extension[];" in full.read("fhir.ts")
        assert "  _active?: Element;" in full.read("fhir.ts")
        assert "  _given?: Element[];" in full.read("fhir.ts")

    def test_placeholder_type(self, export, unresolved_graph):
        sink, _ = export("typescript", graph=unresolved_graph)
        assert "  photo?: any[];" in sink.read("fhir.ts")


# ============================================================================
# OPENAPI TESTS
# ============================================================================

class TestOpenApi:
    """OpenAPI component schemas."""

    def test_schemas(self, export):
        sink, result = export("openapi")
        document = json.loads(sink.read("openapi.json"))
        schemas = document["components"]["schemas"]

        assert result.paths == ["openapi.json"]
        assert document["info"]["title"] == "FHIR R4 definitions (hl7.fhir.r4.core)"
        assert sorted(schemas) == ["Address", "HumanName", "Organization", "Patient", "PatientContact", "Reference"]

        patient = schemas["Patient"]
        assert patient["properties"]["resourceType"] == {"type": "string", "enum": ["Patient"]}
        assert patient["required"] == ["resourceType"]
        assert patient["properties"]["name"] == {"type": "array", "items": {"$ref": "#/components/schemas/HumanName"}}
        assert patient["properties"]["contact"]["items"] == {"$ref": "#/components/schemas/PatientContact"}
        assert patient["properties"]["managingOrganization"] == {"$ref": "#/components/schemas/Reference"}
        assert patient["properties"]["gender"]["enum"] == ["male", "female", "other", "unknown"]
        assert patient["properties"]["birthDate"]["pattern"].startswith("^[0-9]{4}")
        assert patient["properties"]["active"]["type"] == "boolean"
        assert schemas["Organization"]["required"] == ["resourceType", "name"]

    def test_yaml_matches_json(self, export):
        as_json, _ = export("openapi")
        as_yaml, result = export("openapi", file_format="yaml")

        assert result.paths == ["openapi.yaml"]
        assert yaml.safe_load(as_yaml.read("openapi.yaml")) == json.loads(as_json.read("openapi.json"))

    def test_module_prefixes_schema_names(self, export):
        sink, _ = export("openapi", module="fhir")
        schemas = json.loads(sink.read("openapi.json"))["components"]["schemas"]

        assert "fhir.Patient" in schemas
        assert schemas["fhir.Patient"]["properties"]["name"]["items"] == {"$ref": "#/components/schemas/fhir.HumanName"}

    def test_placeholder_schema(self, export, unresolved_graph):
        sink, _ = export("openapi", graph=unresolved_graph)
        schemas = json.loads(sink.read("openapi.json"))["components"]["schemas"]
        assert schemas["Practitioner"]["properties"]["photo"] == {"type": "array", "items": {}}


# ============================================================================
# INFO TESTS
# ============================================================================

class TestInfo:
    """Plain-text and JSON inventory."""

    def test_text_inventory(self, export):
        sink, result = export("info")
        content = sink.read("fhir-info.txt")

        assert result.paths == ["fhir-info.txt"]
        assert content.startswith("Collection: hl7.fhir.r4.core (FHIR R4)\n")
        assert "Primitive types: 5" in content
        assert "- boolean /true|false/" in content
        assert "- Patient : DomainResource" in content
        assert "Patient.active 0..1 boolean ?!" in content
        assert "Patient.gender 0..1 code [required: AdministrativeGender]" in content
        assert "Patient.deceased[x] 0..1 boolean|dateTime" in content
        assert "Patient.contact 0..* BackboneElement<PatientContact>" in content
        assert "Patient.managingOrganization 0..1 Reference(Organization)" in content
        assert "search birthdate (date)" in content
        assert "- AdministrativeGender (http://hl7.org/fhir/ValueSet/administrative-gender) codes: 4" in content

    def test_nested_elements_are_indented(self, export):
        sink, _ = export("info")
        lines = sink.read("fhir-info.txt").splitlines()
        contact = next(line for line in lines if line.strip().startswith("Patient.contact "))
        nested = next(line for line in lines if line.strip().startswith("Patient.contact.name "))

        assert len(nested) - len(nested.lstrip()) == len(contact) - len(contact.lstrip()) + 2

    def test_json_inventory(self, export):
        sink, _ = export("info", file_format="json", show_elements=False)
        data = json.loads(sink.read("fhir-info.json"))

        assert data["fhirRelease"] == "R4"
        assert [r["name"] for r in data["resources"]] == ["Organization", "Patient"]
        assert data["resources"][1]["elements"] == []
        assert data["valueSets"] == [{
            "name": "AdministrativeGender",
            "url": "http://hl7.org/fhir/ValueSet/administrative-gender",
            "codes": 4,
        }]

    def test_placeholder_text(self, export, unresolved_graph):
        sink, _ = export("info", graph=unresolved_graph)
        assert "Practitioner.photo 0..* ?Attachment" in sink.read("fhir-info.txt")


# ============================================================================
# SUBGRAPH AND OPTION TESTS
# ============================================================================

class TestSubgraphSelection:
    """Selecting the definitions an export covers."""

    def test_everything_by_default(self, core_graph):
        subgraph = select_subgraph(core_graph)

        assert [r.name for r in subgraph.resources] == ["Organization", "Patient"]
        assert len(subgraph) == 10
        assert [r.name for r in subgraph.value_sets] == ["AdministrativeGender"]

    def test_dependencies_are_followed(self, core_graph):
        subgraph = select_subgraph(core_graph, ["Patient"])

        assert [r.name for r in subgraph.resources] == ["Patient"]
        assert [r.name for r in subgraph.complex_types] == ["Address", "HumanName", "Reference"]
        assert [r.name for r in subgraph.primitives] == ["boolean", "code", "date", "dateTime", "string"]
        assert [r.name for r in subgraph.value_sets] == ["AdministrativeGender"]
        # Reference targets are not followed
        assert "Organization" not in subgraph

    def test_without_dependencies(self, core_graph):
        subgraph = select_subgraph(core_graph, ["Patient"], include_dependencies=False)
        assert subgraph.names == ["Patient"]
        assert subgraph.value_sets == ()

    @pytest.mark.parametrize("name", ["Observation", "AdministrativeGender"])
    def test_unknown_or_non_structural_name(self, core_graph, name):
        with pytest.raises(InvalidConfigurationError):
            select_subgraph(core_graph, [name])

    def test_export_options_defaults(self):
        options = ExportOptions.build()
        assert options.extension_support == ExtensionSupport.NONPRIMITIVE
        assert options.include is None
        assert options.include_dependencies


# ============================================================================
# SINK TESTS
# ============================================================================

class TestSinks:
    """Memory and file system sinks."""

    @pytest.mark.parametrize("path", ["../escape.rb", "/etc/passwd", ""])
    def test_invalid_paths(self, path):
        with pytest.raises(InvalidConfigurationError):
            MemorySink().write(path, "x")

    def test_memory_sink_normalizes_separators(self):
        sink = MemorySink()
        assert sink.write("types\\Patient.rb", "class Patient\n") == "types/Patient.rb"
        assert "types/Patient.rb" in sink
        assert sink.read("types/Patient.rb") == "class Patient\n"
        assert sink.written == ["types/Patient.rb"]

    def test_file_system_sink(self, tmp_path):
        sink = FileSystemSink(tmp_path / "out")
        sink.write("types/HumanName.rb", "line one\nline two\n")

        assert (tmp_path / "out" / "types" / "HumanName.rb").read_bytes() == b"line one\nline two\n"
