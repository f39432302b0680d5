"""Results of type resolution: resolved element types, bindings and inheritance chains."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from fhirgen.diagnostics import ResolutionError, Severity
from fhirgen.models.collection import DefinitionCollection
from fhirgen.models.definitions import DefinitionKind, DefinitionRecord, Element


class TypeCategory(str, Enum):
    PRIMITIVE = "primitive"
    COMPLEX = "complex"
    RESOURCE = "resource"
    BACKBONE = "backbone"
    GENERIC = "generic"
    SYSTEM = "system"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ResolvedType:
    """One allowed type of an element after lookup.

    ``target_url`` points at the definition in the collection (or the
    fallback base definitions). For a backbone component ``target_name``
    is the generated component name and ``target_url`` the owning type.
    ``parameters`` are the resolved targets of a parametrized type such as
    ``Reference(Patient|Group)``.
    """
    category: TypeCategory
    code: str
    target_url: Optional[str] = None
    target_name: Optional[str] = None
    parameters: Tuple["ResolvedType", ...] = ()

    @property
    def resolved(self) -> bool:
        return self.category != TypeCategory.UNRESOLVED

    @property
    def name(self) -> str:
        return self.target_name or self.code


@dataclass(frozen=True)
class ResolvedBinding:
    strength: str
    value_set_url: Optional[str]
    value_set_name: Optional[str] = None
    resolved: bool = False


@dataclass(frozen=True)
class InheritanceChain:
    """A type followed by its ancestors up to the root base type."""
    urls: Tuple[str, ...]
    names: Tuple[str, ...]

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, name: str) -> bool:
        return name in self.names or name in self.urls

    @property
    def root(self) -> str:
        return self.names[-1]

    @property
    def ancestors(self) -> Tuple[str, ...]:
        return self.names[1:]


class ResolvedGraph:
    """Resolution results over one collection; read-only once built."""

    def __init__(self, collection: DefinitionCollection, fallback: Dict[str, DefinitionRecord]):
        self.collection = collection
        self.fallback = fallback
        self._fallback_names = {r.name: r for r in fallback.values()}
        self.diagnostics: List[ResolutionError] = []
        self._types: Dict[Tuple[str, str], Tuple[ResolvedType, ...]] = {}
        self._bindings: Dict[Tuple[str, str], ResolvedBinding] = {}
        self._chains: Dict[str, Optional[InheritanceChain]] = {}

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def lookup(self, name_or_url: str) -> Optional[DefinitionRecord]:
        """A structural definition from the collection, falling back to base definitions."""
        record = self.collection.by_canonical_name(name_or_url)
        if record is not None and record.kind.is_structure:
            return record
        if name_or_url in self.fallback:
            return self.fallback[name_or_url]
        return self._fallback_names.get(name_or_url)

    def types_for(self, record: DefinitionRecord, element: Element) -> Tuple[ResolvedType, ...]:
        """Resolved types of an element in declaration order."""
        return self._types.get((record.url, element.path), ())

    def representative_type(self, record: DefinitionRecord, element: Element) -> Optional[ResolvedType]:
        """The first declared type of an element, standing in for a choice."""
        types = self.types_for(record, element)
        return types[0] if types else None

    def binding_for(self, record: DefinitionRecord, element: Element) -> Optional[ResolvedBinding]:
        return self._bindings.get((record.url, element.path))

    def chain_for(self, record_or_name) -> Optional[InheritanceChain]:
        """Inheritance chain of a type; None when it could not be built (cycle)."""
        if isinstance(record_or_name, DefinitionRecord):
            url = record_or_name.url
        else:
            record = self.lookup(record_or_name)
            if record is None:
                return None
            url = record.url
        return self._chains.get(url)

    def ancestors(self, record: DefinitionRecord) -> List[DefinitionRecord]:
        chain = self.chain_for(record)
        if chain is None:
            return []
        return [r for r in (self.lookup(url) for url in chain.urls[1:]) if r is not None]

    def is_a(self, record: DefinitionRecord, ancestor_name: str) -> bool:
        chain = self.chain_for(record)
        return chain is not None and ancestor_name in chain

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #

    @property
    def errors(self) -> List[ResolutionError]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ResolutionError]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    def errors_for(self, name: str) -> List[ResolutionError]:
        return [d for d in self.errors if d.definition == name or name in d.members]

    @property
    def unresolved_count(self) -> int:
        return sum(1 for types in self._types.values() for t in types if not t.resolved)

    # ------------------------------------------------------------------ #
    # Enumeration
    # ------------------------------------------------------------------ #

    def structures(self, *kinds: DefinitionKind) -> List[DefinitionRecord]:
        kinds = kinds or (DefinitionKind.PRIMITIVE_TYPE, DefinitionKind.COMPLEX_TYPE, DefinitionKind.RESOURCE)
        records: List[DefinitionRecord] = []
        for kind in kinds:
            records.extend(self.collection.all_of_kind(kind))
        return records

    def __repr__(self) -> str:
        return (
            f"ResolvedGraph(collection={self.collection.name!r}, "
            f"errors={len(self.errors)}, warnings={len(self.warnings)})"
        )
