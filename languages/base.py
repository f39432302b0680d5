# languages/base.py
"""Contract shared by all language backends.

A backend is any object that satisfies ``Language``: a name, a primitive type
map, a name sanitizer factory and ``export(graph, subgraph, sink, options)``.
Backends do not inherit from a common class; the helpers in this module are
plain functions they may call.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Type,
    runtime_checkable,
)

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from fhirgen.diagnostics import EmissionDiagnostic
from fhirgen.errors import InvalidConfigurationError
from fhirgen.models.definitions import DefinitionKind, DefinitionRecord, Element
from fhirgen.models.structure import direct_children
from fhirgen.resolver.graph import ResolvedBinding, ResolvedGraph, ResolvedType, TypeCategory
from languages.naming import NameSanitizer
from languages.sink import OutputSink

logger = structlog.get_logger(__name__)

EXTENSION_ELEMENTS = ("extension", "modifierExtension")


class ExtensionSupport(str, Enum):
    NONE = "none"
    NONPRIMITIVE = "nonprimitive"
    FULL = "full"


class ExportOptions(BaseModel):
    """Options understood by every backend.

    ``module`` is the root namespace wrapping the emitted declarations,
    ``file_format`` picks the serialization of schema/metadata artifacts and
    ``extension_support`` controls extension elements: ``none`` omits
    ``extension``/``modifierExtension``, ``nonprimitive`` keeps them on
    complex types and resources, ``full`` additionally emits the ``_field``
    shadows that carry extensions of primitive values.
    """
    model_config = ConfigDict(extra="forbid")

    module: Optional[str] = None
    file_format: Optional[str] = None
    extension_support: ExtensionSupport = ExtensionSupport.NONPRIMITIVE
    include: Optional[List[str]] = None
    include_dependencies: bool = True

    @classmethod
    def build(cls, values: Optional[Mapping[str, Any]] = None) -> "ExportOptions":
        try:
            return cls.model_validate(dict(values or {}))
        except ValidationError as e:
            raise InvalidConfigurationError(f"Invalid options for {cls.__name__}: {e}")


@dataclass
class ExportResult:
    language: str
    paths: List[str] = field(default_factory=list)
    diagnostics: List[EmissionDiagnostic] = field(default_factory=list)

    @property
    def placeholders(self) -> int:
        return len(self.diagnostics)


@runtime_checkable
class Language(Protocol):
    name: str
    description: str
    options_class: Type[ExportOptions]
    primitive_type_map: Mapping[str, str]

    def create_sanitizer(self) -> NameSanitizer:
        ...

    def export(
        self,
        graph: ResolvedGraph,
        subgraph: "Subgraph",
        sink: OutputSink,
        options: ExportOptions,
    ) -> ExportResult:
        ...


# ---------------------------------------------------------------------- #
# Subgraph selection
# ---------------------------------------------------------------------- #

_EXPORTED_KINDS = (
    DefinitionKind.PRIMITIVE_TYPE,
    DefinitionKind.COMPLEX_TYPE,
    DefinitionKind.RESOURCE,
)

_DEPENDENCY_CATEGORIES = (
    TypeCategory.PRIMITIVE,
    TypeCategory.COMPLEX,
    TypeCategory.RESOURCE,
    TypeCategory.GENERIC,
)


@dataclass(frozen=True)
class Subgraph:
    """The definitions one export covers, each group sorted by name."""
    primitives: Tuple[DefinitionRecord, ...] = ()
    complex_types: Tuple[DefinitionRecord, ...] = ()
    resources: Tuple[DefinitionRecord, ...] = ()
    value_sets: Tuple[DefinitionRecord, ...] = ()

    @property
    def structures(self) -> Tuple[DefinitionRecord, ...]:
        return self.primitives + self.complex_types + self.resources

    @property
    def names(self) -> List[str]:
        return [r.name for r in self.structures]

    def __contains__(self, name: str) -> bool:
        return any(r.name == name for r in self.structures)

    def __len__(self) -> int:
        return len(self.structures)


def _sorted(records: Iterable[DefinitionRecord]) -> Tuple[DefinitionRecord, ...]:
    return tuple(sorted(records, key=lambda r: (r.name, r.url)))


def select_subgraph(
    graph: ResolvedGraph,
    names: Optional[Sequence[str]] = None,
    include_dependencies: bool = True,
) -> Subgraph:
    """Definitions to export: everything, or ``names`` plus what they depend on.

    Dependencies are the base chain, the types of every element and the
    value sets of resolved bindings. Targets of references are not followed.

    Raises:
        InvalidConfigurationError: when a requested name is not a type of the collection.
    """
    collection = graph.collection
    if names is None:
        return Subgraph(
            primitives=_sorted(collection.all_of_kind(DefinitionKind.PRIMITIVE_TYPE)),
            complex_types=_sorted(collection.all_of_kind(DefinitionKind.COMPLEX_TYPE)),
            resources=_sorted(collection.all_of_kind(DefinitionKind.RESOURCE)),
            value_sets=_sorted(collection.all_of_kind(DefinitionKind.VALUE_SET)),
        )

    pending: List[DefinitionRecord] = []
    for name in names:
        record = collection.by_canonical_name(name)
        if record is None or record.kind not in _EXPORTED_KINDS:
            raise InvalidConfigurationError(f"Unknown type to export: '{name}'")
        pending.append(record)

    selected: Dict[str, DefinitionRecord] = {}
    value_sets: Dict[str, DefinitionRecord] = {}
    while pending:
        record = pending.pop()
        if record.url in selected:
            continue
        selected[record.url] = record
        if not include_dependencies:
            continue

        for ancestor in graph.ancestors(record):
            if collection.by_url(ancestor.url) is not None:
                pending.append(ancestor)
        for element in record.child_elements:
            for resolved in graph.types_for(record, element):
                if resolved.category not in _DEPENDENCY_CATEGORIES or not resolved.target_url:
                    continue
                dependency = collection.by_url(resolved.target_url)
                if dependency is not None and dependency.kind in _EXPORTED_KINDS:
                    pending.append(dependency)
            binding = graph.binding_for(record, element)
            if binding is not None and binding.resolved:
                value_set = collection.by_url(binding.value_set_url)
                if value_set is not None:
                    value_sets[value_set.url] = value_set

    by_kind: Dict[DefinitionKind, List[DefinitionRecord]] = {}
    for record in selected.values():
        by_kind.setdefault(record.kind, []).append(record)
    subgraph = Subgraph(
        primitives=_sorted(by_kind.get(DefinitionKind.PRIMITIVE_TYPE, [])),
        complex_types=_sorted(by_kind.get(DefinitionKind.COMPLEX_TYPE, [])),
        resources=_sorted(by_kind.get(DefinitionKind.RESOURCE, [])),
        value_sets=_sorted(value_sets.values()),
    )
    logger.debug("subgraph_selected", requested=list(names), types=len(subgraph))
    return subgraph


def ordered_names(names: Iterable[str], first: Sequence[str] = ()) -> List[str]:
    """Sorted names with ``first`` (those present) moved to the front in the given order."""
    remaining = sorted(set(names))
    head = [n for n in first if n in remaining]
    return head + [n for n in remaining if n not in head]


# ---------------------------------------------------------------------- #
# Element walking
# ---------------------------------------------------------------------- #

@dataclass(frozen=True)
class FieldInfo:
    """One emitted property: a plain element, or one arm of a choice element."""
    element: Element
    name: str
    type: ResolvedType
    binding: Optional[ResolvedBinding] = None
    choice_of: Optional[str] = None

    @property
    def is_array(self) -> bool:
        return self.element.is_array

    @property
    def is_required(self) -> bool:
        # One arm of a choice is never required on its own
        return self.element.is_required and self.choice_of is None

    @property
    def is_primitive(self) -> bool:
        return self.type.category in (TypeCategory.PRIMITIVE, TypeCategory.SYSTEM)


def choice_field_name(base: str, type_name: str) -> str:
    return base + type_name[:1].upper() + type_name[1:]


def keep_element(element: Element, options: ExportOptions) -> bool:
    if element.name in EXTENSION_ELEMENTS:
        return options.extension_support != ExtensionSupport.NONE
    return True


def element_fields(
    graph: ResolvedGraph,
    record: DefinitionRecord,
    options: ExportOptions,
    path: Optional[str] = None,
) -> List[FieldInfo]:
    """Emitted properties directly below ``path`` (the type itself when omitted).

    Choice elements expand into one property per allowed type, in the
    declared type order. Elements without a resolved type yield a property
    whose type is ``UNRESOLVED``; callers emit a placeholder for it.
    """
    fields: List[FieldInfo] = []
    for element in direct_children(record, path):
        if not keep_element(element, options):
            continue
        binding = graph.binding_for(record, element)
        types = graph.types_for(record, element)
        if not types:
            types = (ResolvedType(TypeCategory.UNRESOLVED, code=""),)
        if element.is_choice:
            for resolved in types:
                fields.append(FieldInfo(
                    element=element,
                    name=choice_field_name(element.base_name, resolved.code),
                    type=resolved,
                    binding=binding,
                    choice_of=element.base_name,
                ))
        else:
            fields.append(FieldInfo(element=element, name=element.name, type=types[0], binding=binding))
    return fields


class EmissionLog:
    """Collects the placeholders a backend had to emit."""

    def __init__(self, language: str):
        self.language = language
        self.diagnostics: List[EmissionDiagnostic] = []

    def placeholder(self, record: DefinitionRecord, element: Element, resolved: ResolvedType, used: str) -> str:
        message = f"type '{resolved.code or '?'}' is unresolved; emitted '{used}'"
        self.diagnostics.append(EmissionDiagnostic(
            language=self.language,
            definition=record.name,
            path=element.path,
            message=message,
        ))
        logger.warning(
            "placeholder_emitted",
            language=self.language,
            definition=record.name,
            path=element.path,
            type=resolved.code,
        )
        return used
