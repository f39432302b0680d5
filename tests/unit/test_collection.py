"""
Test coverage for fhirgen.models.collection and fhirgen.models.structure.

Tests cover:
- Lookup by name and canonical URL (with and without |version)
- Per-kind name namespaces
- Partitioned views and their invalidation
- Override policies and the override audit trail
- Frozen collections
- Search parameter index and value set expansion
- Element tree helpers
"""

import pytest

from fhirgen.errors import CollectionFrozenError, DuplicateDefinitionError
from fhirgen.loader.records import record_from_resource
from fhirgen.models.collection import DefinitionCollection, OverridePolicy
from fhirgen.models.definitions import DefinitionKind
from fhirgen.models.structure import component_name, components, direct_children, is_backbone


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def record(fhir):
    """Build a record from a document."""
    def build(document, package="test#1.0.0"):
        return record_from_resource(document, fhir.filename(document), package)
    return build


# ============================================================================
# LOOKUP TESTS
# ============================================================================

class TestLookup:
    """Lookups by name, URL and kind."""

    def test_lookup_by_name_and_url(self, core_collection):
        by_name = core_collection.by_canonical_name("Patient")
        by_url = core_collection.by_canonical_name("http://hl7.org/fhir/StructureDefinition/Patient")

        assert by_name is not None
        assert by_name is by_url
        assert by_name.kind == DefinitionKind.RESOURCE

    def test_lookup_ignores_version_suffix(self, core_collection):
        record = core_collection.by_url("http://hl7.org/fhir/StructureDefinition/Address|4.0.1")
        assert record is not None
        assert record.name == "Address"

    def test_unknown_name_returns_none(self, core_collection):
        assert core_collection.by_canonical_name("Observation") is None
        assert core_collection.by_canonical_name("") is None
        assert "Observation" not in core_collection
        assert "Patient" in core_collection

    def test_value_set_and_code_system_share_a_name(self, core_collection):
        value_set = core_collection.by_canonical_name("AdministrativeGender")
        code_system = core_collection.by_canonical_name("AdministrativeGender", DefinitionKind.CODE_SYSTEM)

        assert value_set.kind == DefinitionKind.VALUE_SET
        assert code_system.kind == DefinitionKind.CODE_SYSTEM
        assert value_set.url != code_system.url

    def test_kind_narrows_url_lookup(self, core_collection):
        url = "http://hl7.org/fhir/StructureDefinition/Patient"
        assert core_collection.by_canonical_name(url, DefinitionKind.RESOURCE) is not None
        assert core_collection.by_canonical_name(url, DefinitionKind.COMPLEX_TYPE) is None

    def test_all_of_kind_is_sorted_by_name(self, core_collection):
        names = [r.name for r in core_collection.all_of_kind(DefinitionKind.PRIMITIVE_TYPE)]
        assert names == ["boolean", "code", "date", "dateTime", "string"]

    def test_summary_counts_kinds(self, core_collection):
        summary = core_collection.summary()
        assert summary["resource"] == 2
        assert summary["complex-type"] == 3
        assert summary["search-parameter"] == 2


# ============================================================================
# VIEW TESTS
# ============================================================================

class TestViews:
    """Partitioned read-only views."""

    def test_views_partition_by_kind(self, core_collection):
        assert sorted(core_collection.resources) == ["Organization", "Patient"]
        assert sorted(core_collection.complex_types) == ["Address", "HumanName", "Reference"]
        assert list(core_collection.value_sets) == ["AdministrativeGender"]
        assert "boolean" in core_collection.primitive_types

    def test_views_are_cached(self, core_collection):
        assert core_collection.resources is core_collection.resources

    def test_views_are_read_only(self, core_collection):
        with pytest.raises(TypeError):
            core_collection.resources["Observation"] = None

    def test_insert_invalidates_views(self, core_collection, fhir, record):
        before = core_collection.resources
        core_collection.insert(record(fhir.resource("Observation")))

        after = core_collection.resources
        assert after is not before
        assert "Observation" in after
        assert "Observation" not in before


# ============================================================================
# OVERRIDE POLICY TESTS
# ============================================================================

class TestOverridePolicy:
    """Insertion of a name or URL that is already present."""

    def test_newer_wins_replaces_and_audits(self, fhir, record):
        collection = DefinitionCollection(name="test")
        first = record(fhir.complex_type("Address"), package="core#1")
        second = record(fhir.complex_type("Address", description="profiled"), package="ig#1")

        assert collection.insert(first) is True
        assert collection.insert(second) is True

        assert collection.by_canonical_name("Address").package == "ig#1"
        assert len(collection) == 1
        assert len(collection.overrides) == 1
        audit = collection.overrides[0]
        assert audit.previous is first
        assert audit.incoming is second
        assert audit.replaced is True
        assert audit.policy == OverridePolicy.NEWER_WINS

    def test_same_name_with_new_url_replaces(self, fhir, record):
        collection = DefinitionCollection(name="test")
        collection.insert(record(fhir.complex_type("Address")))
        collection.insert(record(fhir.complex_type("Address", url="http://example.org/StructureDefinition/Address")))

        assert len(collection) == 1
        assert collection.by_canonical_name("Address").url == "http://example.org/StructureDefinition/Address"
        assert collection.by_url("http://hl7.org/fhir/StructureDefinition/Address") is None

    def test_reused_url_with_a_name_held_by_another_record(self, fhir, record):
        address_url = "http://hl7.org/fhir/StructureDefinition/Address"
        collection = DefinitionCollection(name="test")
        address = record(fhir.complex_type("Address"))
        period = record(fhir.complex_type("Period"))
        collection.insert(address)
        collection.insert(period)

        renamed = record(fhir.complex_type("Period", url=address_url))
        assert collection.insert(renamed) is True

        assert len(collection) == 1
        assert collection.by_canonical_name("Period") is renamed
        assert collection.by_canonical_name("Address") is None
        assert collection.by_url(period.url) is None
        assert list(collection.complex_types) == ["Period"]
        assert [audit.previous for audit in collection.overrides] == [address, period]

    def test_reused_url_with_a_taken_name_is_kept_out(self, fhir, record):
        collection = DefinitionCollection(name="test")
        address = record(fhir.complex_type("Address"))
        period = record(fhir.complex_type("Period"))
        collection.insert_many([address, period])

        renamed = record(fhir.complex_type("Period", url=address.url))
        assert collection.insert(renamed, OverridePolicy.KEEP_EXISTING) is False

        assert len(collection) == 2
        assert collection.by_canonical_name("Address") is address
        assert collection.by_canonical_name("Period") is period

    def test_keep_existing(self, fhir, record):
        collection = DefinitionCollection(name="test")
        first = record(fhir.complex_type("Address"), package="core#1")
        collection.insert(first)

        inserted = collection.insert(record(fhir.complex_type("Address"), package="ig#1"), OverridePolicy.KEEP_EXISTING)

        assert inserted is False
        assert collection.by_canonical_name("Address") is first
        assert collection.overrides[0].replaced is False

    def test_reject(self, fhir, record):
        collection = DefinitionCollection(name="test")
        collection.insert(record(fhir.complex_type("Address")))

        with pytest.raises(DuplicateDefinitionError):
            collection.insert(record(fhir.complex_type("Address")), OverridePolicy.REJECT)

    def test_frozen_collection_rejects_inserts(self, fhir, record):
        collection = DefinitionCollection(name="test")
        collection.freeze()

        with pytest.raises(CollectionFrozenError):
            collection.insert(record(fhir.complex_type("Address")))

    def test_insert_many_counts_inserted(self, fhir, record):
        collection = DefinitionCollection(name="test")
        records = [record(fhir.complex_type(n)) for n in ("Address", "HumanName", "Period")]
        assert collection.insert_many(records) == 3


# ============================================================================
# QUERY TESTS
# ============================================================================

class TestQueries:
    """Search parameters, value sets and element helpers."""

    def test_search_parameters_for_resource(self, core_collection):
        params = core_collection.search_parameters_for("Patient")
        assert [p.search_code for p in params] == ["birthdate", "gender"]
        assert core_collection.search_parameters_for("Organization") == []

    def test_expand_explicit_concepts(self, core_collection):
        codes = core_collection.expand_value_set("http://hl7.org/fhir/ValueSet/administrative-gender")
        assert [c.code for c in codes] == ["male", "female", "other", "unknown"]

    def test_expand_whole_code_system_include(self, fhir, record):
        collection = DefinitionCollection(name="test")
        collection.insert(record(fhir.code_system("Status", "http://example.org/cs/status", ["a", "b"])))
        value_set = fhir.value_set("Status", "http://example.org/vs/status", "http://example.org/cs/status", [])
        value_set["compose"]["include"][0].pop("concept")
        collection.insert(record(value_set))

        codes = collection.expand_value_set("http://example.org/vs/status")
        assert [(c.system, c.code) for c in codes] == [
            ("http://example.org/cs/status", "a"),
            ("http://example.org/cs/status", "b"),
        ]

    def test_expand_unknown_value_set(self, core_collection):
        assert core_collection.expand_value_set("http://example.org/missing") == []

    def test_direct_children_and_components(self, core_collection):
        patient = core_collection.by_canonical_name("Patient")

        top = [e.name for e in direct_children(patient)]
        assert top[:3] == ["extension", "active", "name"]
        assert [e.path for e in core_collection.children_of(patient, "Patient.contact")] == [
            "Patient.contact.name",
            "Patient.contact.gender",
        ]

        backbones = components(patient)
        assert [e.path for e in backbones] == ["Patient.contact"]
        assert is_backbone(patient, backbones[0])
        assert component_name(patient, backbones[0]) == "PatientContact"

    def test_element_properties(self, core_collection):
        patient = core_collection.by_canonical_name("Patient")
        deceased = patient.element("deceased[x]")

        assert deceased.is_choice
        assert deceased.base_name == "deceased"
        assert deceased.type_codes == ("boolean", "dateTime")
        assert deceased.representative_type.code == "boolean"
        assert patient.element("Patient.address").cardinality == "0..*"
        assert patient.element("active").is_modifier
