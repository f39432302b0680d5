"""
fhirgen.compare.differ
======================

Structural comparison of two definition collections.

Definitions are matched by name, elements by path. Every difference is
classified as added, removed, narrowed, widened, retyped or binding-changed.
A change of the lower and of the upper cardinality bound are reported as
separate entries so that each entry has a single direction.

Entries for one definition follow the declaration order of the first
collection, followed by elements that only exist in the second.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field

from fhirgen.context import CodegenContext
from fhirgen.models.collection import DefinitionCollection
from fhirgen.models.definitions import DefinitionKind, DefinitionRecord, Element

logger = structlog.get_logger(__name__)


class DiffKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    NARROWED = "narrowed"
    WIDENED = "widened"
    RETYPED = "retyped"
    BINDING_CHANGED = "binding-changed"


class DifferOptions(BaseModel):
    compare_bindings: bool = True
    compare_value_set_codes: bool = False
    kinds: List[DefinitionKind] = Field(default_factory=lambda: [
        DefinitionKind.PRIMITIVE_TYPE,
        DefinitionKind.COMPLEX_TYPE,
        DefinitionKind.RESOURCE,
        DefinitionKind.VALUE_SET,
    ])


@dataclass(frozen=True)
class DiffEntry:
    kind: DiffKind
    definition: str
    definition_kind: DefinitionKind
    path: Optional[str] = None
    before: Optional[str] = None
    after: Optional[str] = None
    message: str = ""
    aspect: str = "definition"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "definition": self.definition,
            "definitionKind": self.definition_kind.value,
            "path": self.path,
            "before": self.before,
            "after": self.after,
            "message": self.message,
            "aspect": self.aspect,
        }

    def __str__(self) -> str:
        where = self.path or self.definition
        return f"{self.kind.value:<16} {where}: {self.message}"


@dataclass(frozen=True)
class DiffResult:
    """Ordered differences between collection ``a`` and collection ``b``."""
    a: str
    b: str
    entries: Tuple[DiffEntry, ...] = ()

    def __iter__(self) -> Iterator[DiffEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def for_definition(self, name: str) -> List[DiffEntry]:
        return [e for e in self.entries if e.definition == name]

    def of_kind(self, kind: DiffKind) -> List[DiffEntry]:
        return [e for e in self.entries if e.kind == kind]

    def at_path(self, path: str) -> List[DiffEntry]:
        return [e for e in self.entries if e.path == path]

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self.entries:
            counts[entry.kind.value] = counts.get(entry.kind.value, 0) + 1
        return dict(sorted(counts.items()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "a": self.a,
            "b": self.b,
            "counts": self.counts(),
            "entries": [e.to_dict() for e in self.entries],
        }


def _max_text(value: Optional[int]) -> str:
    return "*" if value is None else str(value)


def _upper(value: Optional[int]) -> float:
    return float("inf") if value is None else value


def type_signature(element: Element) -> Tuple[str, ...]:
    """Order-independent description of an element's allowed types."""
    signatures = []
    for type_ref in element.types:
        if type_ref.target_names:
            signatures.append(f"{type_ref.name}({'|'.join(sorted(type_ref.target_names))})")
        else:
            signatures.append(type_ref.name)
    return tuple(sorted(signatures))


class Differ:
    """Compares two collections."""

    def __init__(self, options: Optional[DifferOptions] = None, context: Optional[CodegenContext] = None):
        self.options = options or DifferOptions()
        self.context = context

    def compare(self, a: DefinitionCollection, b: DefinitionCollection) -> DiffResult:
        entries: List[DiffEntry] = []
        for kind in self.options.kinds:
            records_a = {r.name: r for r in a.all_of_kind(kind)}
            records_b = {r.name: r for r in b.all_of_kind(kind)}
            for name in sorted(set(records_a) | set(records_b)):
                if self.context is not None:
                    self.context.check_cancelled()
                record_a = records_a.get(name)
                record_b = records_b.get(name)
                if record_b is None:
                    entries.append(DiffEntry(DiffKind.REMOVED, name, kind, message=f"{kind.value} removed"))
                elif record_a is None:
                    entries.append(DiffEntry(DiffKind.ADDED, name, kind, message=f"{kind.value} added"))
                elif kind == DefinitionKind.VALUE_SET:
                    entries.extend(self._compare_value_sets(a, b, record_a, record_b))
                else:
                    entries.extend(self.compare_definitions(record_a, record_b))

        result = DiffResult(a=a.name, b=b.name, entries=tuple(entries))
        logger.info("collections_compared", a=a.name, b=b.name, differences=len(result), **result.counts())
        return result

    def compare_definitions(self, a: DefinitionRecord, b: DefinitionRecord) -> List[DiffEntry]:
        """Element-level differences between two versions of one definition."""
        entries: List[DiffEntry] = []
        elements_b = {e.path: e for e in b.elements}
        paths_a = set()

        for element_a in a.elements:
            paths_a.add(element_a.path)
            if element_a.is_root:
                continue
            element_b = elements_b.get(element_a.path)
            if element_b is None:
                entries.append(DiffEntry(
                    DiffKind.REMOVED, a.name, a.kind, path=element_a.path,
                    before=element_a.cardinality, message="element removed", aspect="element",
                ))
                continue
            entries.extend(self._compare_elements(a, element_a, element_b))

        for element_b in b.elements:
            if element_b.is_root or element_b.path in paths_a:
                continue
            entries.append(DiffEntry(
                DiffKind.ADDED, b.name, b.kind, path=element_b.path,
                after=element_b.cardinality, message="element added", aspect="element",
            ))
        return entries

    def _compare_elements(self, record: DefinitionRecord, a: Element, b: Element) -> List[DiffEntry]:
        entries: List[DiffEntry] = []

        def add(kind: DiffKind, aspect: str, before: str, after: str, message: str) -> None:
            entries.append(DiffEntry(kind, record.name, record.kind, path=a.path, before=before,
                                     after=after, message=message, aspect=aspect))

        if a.min != b.min:
            kind = DiffKind.WIDENED if b.min < a.min else DiffKind.NARROWED
            add(kind, "min", str(a.min), str(b.min), f"min {a.min} -> {b.min}")
        if a.max != b.max:
            kind = DiffKind.WIDENED if _upper(b.max) > _upper(a.max) else DiffKind.NARROWED
            add(kind, "max", _max_text(a.max), _max_text(b.max), f"max {_max_text(a.max)} -> {_max_text(b.max)}")

        types_a = type_signature(a)
        types_b = type_signature(b)
        if types_a != types_b:
            before, after = "|".join(types_a), "|".join(types_b)
            add(DiffKind.RETYPED, "types", before, after, f"types {before or '-'} -> {after or '-'}")

        if self.options.compare_bindings:
            binding_a = (a.binding.strength, a.binding.value_set_url) if a.binding else None
            binding_b = (b.binding.strength, b.binding.value_set_url) if b.binding else None
            if binding_a != binding_b:
                before = "/".join(v or "" for v in binding_a) if binding_a else ""
                after = "/".join(v or "" for v in binding_b) if binding_b else ""
                add(DiffKind.BINDING_CHANGED, "binding", before, after, f"binding {before or '-'} -> {after or '-'}")
        return entries

    def _compare_value_sets(
        self,
        collection_a: DefinitionCollection,
        collection_b: DefinitionCollection,
        a: DefinitionRecord,
        b: DefinitionRecord,
    ) -> List[DiffEntry]:
        if not self.options.compare_value_set_codes:
            return []
        codes_a = [(c.system, c.code) for c in collection_a.expand_value_set(a.url)]
        codes_b = [(c.system, c.code) for c in collection_b.expand_value_set(b.url)]
        set_a, set_b = set(codes_a), set(codes_b)
        entries = [
            DiffEntry(DiffKind.REMOVED, a.name, a.kind, path=code, before=system, message="code removed", aspect="code")
            for system, code in codes_a if (system, code) not in set_b
        ]
        entries.extend(
            DiffEntry(DiffKind.ADDED, b.name, b.kind, path=code, after=system, message="code added", aspect="code")
            for system, code in codes_b if (system, code) not in set_a
        )
        return entries


def compare(
    a: DefinitionCollection,
    b: DefinitionCollection,
    options: Optional[DifferOptions] = None,
    context: Optional[CodegenContext] = None,
) -> DiffResult:
    """Compare two collections."""
    return Differ(options, context).compare(a, b)


def summarize(result: DiffResult, kinds: Sequence[DiffKind] = tuple(DiffKind)) -> List[str]:
    """Text lines for review tooling."""
    return [str(e) for e in result.entries if e.kind in kinds]
