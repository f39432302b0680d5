from fhirgen.models.definitions import (
    Binding,
    CodeEntry,
    DefinitionKind,
    DefinitionRecord,
    Element,
    TypeReference,
)
from fhirgen.models.collection import DefinitionCollection, OverridePolicy, OverrideRecord
from fhirgen.models.releases import FhirRelease, detect_release, release_for_version

__all__ = [
    "Binding",
    "CodeEntry",
    "DefinitionKind",
    "DefinitionRecord",
    "Element",
    "TypeReference",
    "DefinitionCollection",
    "OverridePolicy",
    "OverrideRecord",
    "FhirRelease",
    "detect_release",
    "release_for_version",
]
