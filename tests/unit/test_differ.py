"""
Test coverage for fhirgen.compare.

Tests cover:
- Cardinality changes (min and max reported separately)
- Added and removed definitions and elements
- Type and binding changes
- Value set code comparison
- Result helpers and summaries
"""

import copy

import pytest

from fhirgen.compare import DiffKind, DifferOptions, compare, summarize
from fhirgen.errors import OperationCancelled
from fhirgen.models.definitions import DefinitionKind


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def pair(collection_from, fhir):
    """Build collections ``a`` and ``b`` from two document lists."""
    def build(docs_a, docs_b):
        return (
            collection_from(fhir.package(*docs_a), name="a"),
            collection_from(fhir.package(*docs_b), name="b"),
        )
    return build


def _address(fhir, line_max="1", line_min=0, line_type="string", extra=()):
    return fhir.complex_type("Address", [
        fhir.element("Address.line", line_type, min=line_min, max=line_max),
        fhir.element("Address.city", "string"),
        *extra,
    ])


# ============================================================================
# CARDINALITY TESTS
# ============================================================================

class TestCardinality:
    """Changes of min and max."""

    def test_identical_collections(self, collection_from, core_docs):
        a = collection_from(core_docs, name="a")
        b = collection_from(copy.deepcopy(core_docs), name="b")
        result = compare(a, b)

        assert result.is_empty
        assert len(result) == 0

    def test_max_widened_is_one_entry(self, pair, fhir):
        a, b = pair([_address(fhir, line_max="1")], [_address(fhir, line_max="*")])
        result = compare(a, b)

        assert len(result) == 1
        entry = result.entries[0]
        assert entry.kind == DiffKind.WIDENED
        assert entry.path == "Address.line"
        assert entry.definition == "Address"
        assert entry.definition_kind == DefinitionKind.COMPLEX_TYPE
        assert (entry.before, entry.after) == ("1", "*")
        assert entry.aspect == "max"

    def test_max_narrowed(self, pair, fhir):
        a, b = pair([_address(fhir, line_max="*")], [_address(fhir, line_max="1")])
        assert [e.kind for e in compare(a, b)] == [DiffKind.NARROWED]

    @pytest.mark.parametrize("before,after,kind", [
        (0, 1, DiffKind.NARROWED),
        (1, 0, DiffKind.WIDENED),
    ])
    def test_min_changes(self, pair, fhir, before, after, kind):
        a, b = pair([_address(fhir, line_min=before)], [_address(fhir, line_min=after)])
        result = compare(a, b)

        assert [(e.kind, e.aspect) for e in result] == [(kind, "min")]

    def test_min_and_max_are_separate_entries(self, pair, fhir):
        a, b = pair([_address(fhir, line_min=0, line_max="*")], [_address(fhir, line_min=1, line_max="1")])
        result = compare(a, b)

        assert [(e.aspect, e.kind) for e in result.at_path("Address.line")] == [
            ("min", DiffKind.NARROWED),
            ("max", DiffKind.NARROWED),
        ]


# ============================================================================
# STRUCTURE TESTS
# ============================================================================

class TestStructure:
    """Added and removed definitions and elements."""

    def test_definitions_added_and_removed(self, pair, fhir):
        a, b = pair(
            [fhir.resource("Patient"), fhir.resource("Encounter")],
            [fhir.resource("Patient"), fhir.resource("Observation")],
        )
        result = compare(a, b)

        assert [(e.kind, e.definition) for e in result] == [
            (DiffKind.REMOVED, "Encounter"),
            (DiffKind.ADDED, "Observation"),
        ]
        assert all(e.path is None for e in result)

    def test_elements_added_and_removed(self, pair, fhir):
        district = fhir.element("Address.district", "string")
        a = _address(fhir)
        b = fhir.complex_type("Address", [fhir.element("Address.line", "string"), district])
        collection_a, collection_b = pair([a], [b])
        result = compare(collection_a, collection_b)

        assert [(e.kind, e.path) for e in result] == [
            (DiffKind.REMOVED, "Address.city"),
            (DiffKind.ADDED, "Address.district"),
        ]
        assert result.entries[1].after == "0..1"

    def test_only_requested_kinds_are_compared(self, pair, fhir):
        a, b = pair([_address(fhir, line_max="1")], [_address(fhir, line_max="*")])
        options = DifferOptions(kinds=[DefinitionKind.RESOURCE])
        assert compare(a, b, options).is_empty


# ============================================================================
# TYPE AND BINDING TESTS
# ============================================================================

class TestTypesAndBindings:
    """Retyped elements and binding changes."""

    def test_retyped(self, pair, fhir):
        a, b = pair([_address(fhir, line_type="string")], [_address(fhir, line_type="markdown")])
        result = compare(a, b)

        assert [(e.kind, e.before, e.after) for e in result] == [(DiffKind.RETYPED, "string", "markdown")]

    def test_choice_order_is_not_a_change(self, pair, fhir):
        a, b = pair(
            [fhir.resource("Patient", [fhir.element("Patient.deceased[x]", "boolean", "dateTime")])],
            [fhir.resource("Patient", [fhir.element("Patient.deceased[x]", "dateTime", "boolean")])],
        )
        assert compare(a, b).is_empty

    def test_reference_targets_are_part_of_the_type(self, pair, fhir):
        a, b = pair(
            [fhir.resource("Patient", [fhir.element("Patient.link", targets=["Patient"])])],
            [fhir.resource("Patient", [fhir.element("Patient.link", targets=["RelatedPerson", "Patient"])])],
        )
        entry = compare(a, b).entries[0]

        assert entry.kind == DiffKind.RETYPED
        assert entry.before == "Reference(Patient)"
        assert entry.after == "Reference(Patient|RelatedPerson)"

    def test_binding_strength_change(self, pair, fhir):
        url = "http://example.org/vs/gender"
        a, b = pair(
            [fhir.resource("Patient", [fhir.element("Patient.gender", "code", binding=("required", url))])],
            [fhir.resource("Patient", [fhir.element("Patient.gender", "code", binding=("extensible", url))])],
        )
        result = compare(a, b)

        assert [e.kind for e in result] == [DiffKind.BINDING_CHANGED]
        assert result.entries[0].before == f"required/{url}"
        assert compare(a, b, DifferOptions(compare_bindings=False)).is_empty


# ============================================================================
# VALUE SET TESTS
# ============================================================================

class TestValueSets:
    """Value set code comparison."""

    @pytest.fixture
    def value_sets(self, pair, fhir):
        url, system = "http://example.org/vs/status", "http://example.org/cs/status"
        return pair(
            [fhir.value_set("Status", url, system, ["active", "inactive", "unknown"])],
            [fhir.value_set("Status", url, system, ["active", "inactive", "entered-in-error"])],
        )

    def test_codes_are_ignored_by_default(self, value_sets):
        assert compare(*value_sets).is_empty

    def test_code_differences(self, value_sets):
        result = compare(*value_sets, DifferOptions(compare_value_set_codes=True))

        assert [(e.kind, e.path, e.aspect) for e in result] == [
            (DiffKind.REMOVED, "unknown", "code"),
            (DiffKind.ADDED, "entered-in-error", "code"),
        ]


# ============================================================================
# RESULT TESTS
# ============================================================================

class TestResult:
    """Result helpers, serialization and cancellation."""

    @pytest.fixture
    def result(self, pair, fhir):
        a, b = pair(
            [_address(fhir, line_max="1"), fhir.resource("Encounter")],
            [_address(fhir, line_max="*", line_type="markdown")],
        )
        return compare(a, b)

    def test_counts_and_filters(self, result):
        assert result.counts() == {"removed": 1, "retyped": 1, "widened": 1}
        assert len(result.for_definition("Address")) == 2
        assert result.of_kind(DiffKind.REMOVED)[0].definition == "Encounter"

    def test_to_dict(self, result):
        data = result.to_dict()

        assert data["a"] == "a"
        assert data["b"] == "b"
        assert data["entries"][0] == {
            "kind": "widened",
            "definition": "Address",
            "definitionKind": "complex-type",
            "path": "Address.line",
            "before": "1",
            "after": "*",
            "message": "max 1 -> *",
            "aspect": "max",
        }

    def test_summarize_filters_kinds(self, result):
        lines = summarize(result, [DiffKind.WIDENED])

        assert len(lines) == 1
        assert lines[0].startswith("widened")
        assert "Address.line" in lines[0]

    def test_cancellation(self, pair, fhir, context):
        a, b = pair([_address(fhir)], [_address(fhir)])
        context.cancel()
        with pytest.raises(OperationCancelled):
            compare(a, b, context=context)
