"""
Pytest configuration and fixtures for the FHIR code generator.

The fixtures build small FHIR R4-shaped packages in memory: a handful of
primitives, HumanName, Address and Reference, the Patient and Organization
resources, the administrative-gender value set and two search parameters.
"""

import sys
import json
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from fhirgen.config import Settings
from fhirgen.context import CodegenContext
from fhirgen.loader.cache import DirectoryPackageCache, MemoryPackageCache
from fhirgen.loader.records import REGEX_EXTENSION_URL, record_from_resource
from fhirgen.models.collection import DefinitionCollection
from fhirgen.models.releases import FhirRelease
from fhirgen.resolver import TypeResolver

CORE = "http://hl7.org/fhir/StructureDefinition/"
SYSTEM_STRING = "http://hl7.org/fhirpath/System.String"
GENDER_VS = "http://hl7.org/fhir/ValueSet/administrative-gender"
GENDER_CS = "http://hl7.org/fhir/administrative-gender"

CORE_PACKAGE = "hl7.fhir.r4.core"
CORE_VERSION = "4.0.1"


# ============================================================================
# DOCUMENT BUILDERS
# ============================================================================

class FhirDocs:
    """Builders for the JSON documents a FHIR package contains."""

    @staticmethod
    def element(path, *types, min=0, max="1", binding=None, targets=None, short=None,
                content_reference=None, modifier=False, element_id=None):
        item = {"id": element_id or path, "path": path, "min": min, "max": max}
        if targets:
            item["type"] = [{"code": "Reference", "targetProfile": [CORE + t for t in targets]}]
        elif types:
            item["type"] = [{"code": t} for t in types]
        if binding:
            strength, value_set = binding
            item["binding"] = {"strength": strength, "valueSet": value_set}
        if short:
            item["short"] = short
        if content_reference:
            item["contentReference"] = "#" + content_reference
        if modifier:
            item["isModifier"] = True
        return item

    @staticmethod
    def structure(name, kind, elements=(), base="DomainResource", abstract=False, url=None,
                  description=None, derivation="specialization", type_name=None):
        root = {"id": name, "path": name, "min": 0, "max": "*"}
        document = {
            "resourceType": "StructureDefinition",
            "id": name,
            "url": url or CORE + name,
            "name": name,
            "status": "active",
            "kind": kind,
            "abstract": abstract,
            "type": type_name or name,
            "derivation": derivation,
            "snapshot": {"element": [root] + list(elements)},
        }
        if base:
            document["baseDefinition"] = base if "/" in base else CORE + base
        if description:
            document["description"] = description
        return document

    @classmethod
    def resource(cls, name, elements=(), **kwargs):
        return cls.structure(name, "resource", elements, **kwargs)

    @classmethod
    def complex_type(cls, name, elements=(), base="Element", **kwargs):
        return cls.structure(name, "complex-type", elements, base=base, **kwargs)

    @classmethod
    def primitive(cls, name, regex=None, base="Element"):
        value_type = {"code": SYSTEM_STRING}
        if regex:
            value_type["extension"] = [{"url": REGEX_EXTENSION_URL, "valueString": regex}]
        value = {"id": f"{name}.value", "path": f"{name}.value", "min": 0, "max": "1", "type": [value_type]}
        return cls.structure(name, "primitive-type", [value], base=base)

    @staticmethod
    def value_set(name, url, system, codes):
        return {
            "resourceType": "ValueSet",
            "id": name,
            "url": url,
            "name": name,
            "status": "active",
            "compose": {"include": [{"system": system, "concept": [{"code": c} for c in codes]}]},
        }

    @staticmethod
    def code_system(name, url, codes):
        return {
            "resourceType": "CodeSystem",
            "id": name,
            "url": url,
            "name": name,
            "concept": [{"code": c} for c in codes],
        }

    @staticmethod
    def search_parameter(id, code, base, type="token", expression=None):
        return {
            "resourceType": "SearchParameter",
            "id": id,
            "url": f"http://hl7.org/fhir/SearchParameter/{id}",
            "name": code,
            "code": code,
            "base": [base],
            "type": type,
            "expression": expression or f"{base}.{code}",
        }

    @staticmethod
    def filename(document):
        return f"{document['resourceType']}-{document['id']}.json"

    @classmethod
    def package(cls, *documents):
        """Documents keyed by their conventional file name."""
        return {cls.filename(d): d for d in documents}


def core_documents():
    """The sample R4 core package."""
    e = FhirDocs.element
    return FhirDocs.package(
        FhirDocs.primitive("boolean", "true|false"),
        FhirDocs.primitive("string"),
        FhirDocs.primitive("code", "[^\\s]+( [^\\s]+)*", base="string"),
        FhirDocs.primitive("date", "[0-9]{4}(-[0-9]{2}(-[0-9]{2})?)?"),
        FhirDocs.primitive("dateTime"),
        FhirDocs.complex_type("HumanName", [
            e("HumanName.family", "string", short="Family name"),
            e("HumanName.given", "string", max="*", short="Given names"),
        ], description="Name of a human"),
        FhirDocs.complex_type("Address", [
            e("Address.line", "string", max="*"),
            e("Address.city", "string"),
        ], description="An address"),
        FhirDocs.complex_type("Reference", [
            e("Reference.reference", "string"),
            e("Reference.display", "string"),
        ]),
        FhirDocs.resource("Patient", [
            e("Patient.extension", "Extension", max="*"),
            e("Patient.active", "boolean", short="Whether this patient's record is in active use", modifier=True),
            e("Patient.name", "HumanName", max="*"),
            e("Patient.gender", "code", binding=("required", GENDER_VS)),
            e("Patient.birthDate", "date"),
            e("Patient.deceased[x]", "boolean", "dateTime"),
            e("Patient.address", "Address", max="*"),
            e("Patient.contact", "BackboneElement", max="*", short="A contact party"),
            e("Patient.contact.name", "HumanName"),
            e("Patient.contact.gender", "code", binding=("required", GENDER_VS)),
            e("Patient.managingOrganization", targets=["Organization"]),
        ], description="Demographics about a patient"),
        FhirDocs.resource("Organization", [
            e("Organization.active", "boolean"),
            e("Organization.name", "string", min=1),
        ]),
        FhirDocs.code_system("AdministrativeGender", GENDER_CS, ["male", "female", "other", "unknown"]),
        FhirDocs.value_set("AdministrativeGender", GENDER_VS, GENDER_CS, ["male", "female", "other", "unknown"]),
        FhirDocs.search_parameter("Patient-gender", "gender", "Patient"),
        FhirDocs.search_parameter("Patient-birthdate", "birthdate", "Patient", type="date",
                                  expression="Patient.birthDate"),
    )


def build_collection(documents, name=CORE_PACKAGE, release=FhirRelease.R4):
    """Collection built straight from documents, bypassing the package loader."""
    collection = DefinitionCollection(name=name, fhir_release=release, package_name=name)
    for filename, document in sorted(documents.items()):
        record = record_from_resource(document, filename, name)
        if record is not None:
            collection.insert(record)
    return collection


def write_package(root, name, version, documents, fhir_versions=("4.0.1",), dependencies=None):
    """Write a package in the on-disk FHIR package cache layout."""
    package_dir = Path(root) / f"{name}#{version}" / "package"
    package_dir.mkdir(parents=True)
    manifest = {
        "name": name,
        "version": version,
        "fhirVersions": list(fhir_versions),
        "dependencies": dict(dependencies or {}),
    }
    (package_dir / "package.json").write_text(json.dumps(manifest), encoding="utf-8")
    for filename, document in documents.items():
        content = document if isinstance(document, str) else json.dumps(document, indent=2)
        (package_dir / filename).write_text(content, encoding="utf-8")
    return package_dir


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def fhir():
    """Document builders."""
    return FhirDocs


@pytest.fixture
def settings():
    """Settings that ignore any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def context(settings):
    return CodegenContext(settings, name="test")


@pytest.fixture
def memory_cache():
    """In-memory cache holding the sample core package."""
    cache = MemoryPackageCache()
    cache.add_package(CORE_PACKAGE, CORE_VERSION, core_documents(), fhir_versions=["4.0.1"])
    return cache


@pytest.fixture
def directory_cache(tmp_path):
    """On-disk cache holding the sample core package."""
    write_package(tmp_path, CORE_PACKAGE, CORE_VERSION, core_documents())
    return DirectoryPackageCache(tmp_path)


@pytest.fixture
def core_docs():
    """Documents of the sample core package keyed by file name."""
    return core_documents()


@pytest.fixture
def collection_from():
    """Factory building a collection directly from documents."""
    return build_collection


@pytest.fixture
def package_writer():
    """Factory writing a package into an on-disk cache root."""
    return write_package


@pytest.fixture
def core_collection():
    return build_collection(core_documents())


@pytest.fixture
def core_graph(core_collection):
    return TypeResolver(core_collection).resolve()
