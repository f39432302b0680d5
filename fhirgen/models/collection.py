"""
fhirgen.models.collection
=========================

The normalized in-memory model of one FHIR release.

Records are indexed by canonical URL and by name. Names are unique within a
namespace: structural types (primitive, complex, resource, logical model),
value sets, code systems, extensions, profiles and search parameters each
have their own namespace because FHIR reuses names across them (the
``AdministrativeGender`` value set and code system, for instance).

Insertion of a record whose URL, or whose name within its namespace, is
already present applies an explicit ``OverridePolicy`` and records the
outcome in ``overrides``.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from fhirgen.errors import CollectionFrozenError, DuplicateDefinitionError
from fhirgen.models.definitions import CodeEntry, DefinitionKind, DefinitionRecord, Element
from fhirgen.models.releases import FhirRelease
from fhirgen.models import structure

logger = structlog.get_logger(__name__)


class OverridePolicy(str, Enum):
    NEWER_WINS = "newer-wins"
    KEEP_EXISTING = "keep-existing"
    REJECT = "reject"


@dataclass(frozen=True)
class OverrideRecord:
    """Audit entry written whenever an insert meets an existing definition."""
    url: str
    name: str
    previous: DefinitionRecord
    incoming: DefinitionRecord
    policy: OverridePolicy
    replaced: bool


_TYPE_NAMESPACE = "type"

_NAMESPACES = {
    DefinitionKind.PRIMITIVE_TYPE: _TYPE_NAMESPACE,
    DefinitionKind.COMPLEX_TYPE: _TYPE_NAMESPACE,
    DefinitionKind.RESOURCE: _TYPE_NAMESPACE,
    DefinitionKind.LOGICAL_MODEL: _TYPE_NAMESPACE,
    DefinitionKind.VALUE_SET: "value-set",
    DefinitionKind.CODE_SYSTEM: "code-system",
    DefinitionKind.EXTENSION: "extension",
    DefinitionKind.PROFILE: "profile",
    DefinitionKind.SEARCH_PARAMETER: "search-parameter",
}

# Order in which namespaces are consulted for a bare name
_NAME_LOOKUP_ORDER = (
    _TYPE_NAMESPACE,
    "value-set",
    "code-system",
    "extension",
    "profile",
    "search-parameter",
)


def namespace_for(kind: DefinitionKind) -> str:
    return _NAMESPACES[kind]


class DefinitionCollection:
    """All definitions loaded for one FHIR release."""

    def __init__(
        self,
        name: str = "",
        fhir_release: Optional[FhirRelease] = None,
        package_name: Optional[str] = None,
        package_version: Optional[str] = None,
    ):
        self.name = name
        self.fhir_release = fhir_release
        self.package_name = package_name
        self.package_version = package_version
        self.manifests: List[Any] = []
        self.overrides: List[OverrideRecord] = []

        self._by_url: Dict[str, DefinitionRecord] = {}
        self._names: Dict[str, Dict[str, str]] = {ns: {} for ns in _NAME_LOOKUP_ORDER}
        self._lock = threading.RLock()
        self._frozen = False
        self._views: Dict[Any, Any] = {}
        self._resolved_graph = None

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self._by_url)

    def __contains__(self, name_or_url: str) -> bool:
        return self.by_canonical_name(name_or_url) is not None

    def __iter__(self):
        return iter(self.all_records())

    def by_url(self, url: str) -> Optional[DefinitionRecord]:
        if not url:
            return None
        return self._by_url.get(url.split("|", 1)[0])

    def by_canonical_name(
        self, name: str, kind: Optional[DefinitionKind] = None
    ) -> Optional[DefinitionRecord]:
        """Look a definition up by canonical URL or by name.

        A bare name is searched in the structural-type namespace first, then
        value sets, code systems, extensions, profiles and search parameters,
        unless ``kind`` narrows the search to one namespace.
        """
        if not name:
            return None
        if "/" in name:
            record = self.by_url(name)
            if record is not None and kind is not None and record.kind != kind:
                return None
            return record

        namespaces = (namespace_for(kind),) if kind is not None else _NAME_LOOKUP_ORDER
        for namespace in namespaces:
            url = self._names[namespace].get(name)
            if url is None:
                continue
            record = self._by_url[url]
            if kind is None or record.kind == kind:
                return record
        return None

    def all_of_kind(self, kind: DefinitionKind) -> List[DefinitionRecord]:
        """Records of one kind ordered by name then URL."""
        key = ("kind", kind)
        cached = self._views.get(key)
        if cached is None:
            cached = tuple(sorted(
                (r for r in self._by_url.values() if r.kind == kind),
                key=lambda r: (r.name, r.url),
            ))
            self._views[key] = cached
        return list(cached)

    def all_records(self) -> List[DefinitionRecord]:
        return sorted(self._by_url.values(), key=lambda r: (r.kind.value, r.name, r.url))

    # ------------------------------------------------------------------ #
    # Partitioned views
    # ------------------------------------------------------------------ #

    def _view(self, kind: DefinitionKind) -> Mapping[str, DefinitionRecord]:
        key = ("view", kind)
        view = self._views.get(key)
        if view is None:
            view = MappingProxyType({r.name: r for r in self.all_of_kind(kind)})
            self._views[key] = view
        return view

    @property
    def primitive_types(self) -> Mapping[str, DefinitionRecord]:
        return self._view(DefinitionKind.PRIMITIVE_TYPE)

    @property
    def complex_types(self) -> Mapping[str, DefinitionRecord]:
        return self._view(DefinitionKind.COMPLEX_TYPE)

    @property
    def resources(self) -> Mapping[str, DefinitionRecord]:
        return self._view(DefinitionKind.RESOURCE)

    @property
    def value_sets(self) -> Mapping[str, DefinitionRecord]:
        return self._view(DefinitionKind.VALUE_SET)

    @property
    def extensions(self) -> Mapping[str, DefinitionRecord]:
        return self._view(DefinitionKind.EXTENSION)

    @property
    def profiles(self) -> Mapping[str, DefinitionRecord]:
        return self._view(DefinitionKind.PROFILE)

    @property
    def code_systems(self) -> Mapping[str, DefinitionRecord]:
        return self._view(DefinitionKind.CODE_SYSTEM)

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Make the collection read-only."""
        self._frozen = True

    def insert(
        self,
        record: DefinitionRecord,
        policy: OverridePolicy = OverridePolicy.NEWER_WINS,
    ) -> bool:
        """Add a record, applying ``policy`` when its URL or name is taken.

        Returns True when ``record`` is in the collection afterwards.
        """
        with self._lock:
            if self._frozen:
                raise CollectionFrozenError(
                    f"Collection '{self.name}' is frozen; cannot insert {record.url}"
                )

            namespace = namespace_for(record.kind)
            conflicts: List[DefinitionRecord] = []
            by_url = self._by_url.get(record.url)
            if by_url is not None:
                conflicts.append(by_url)
            taken = self._names[namespace].get(record.name)
            if taken is not None and taken != record.url:
                # A different record may already hold the name
                conflicts.append(self._by_url[taken])

            if conflicts:
                if policy == OverridePolicy.REJECT:
                    raise DuplicateDefinitionError(record.url)
                replaced = policy == OverridePolicy.NEWER_WINS
                for existing in conflicts:
                    self.overrides.append(OverrideRecord(
                        url=record.url,
                        name=record.name,
                        previous=existing,
                        incoming=record,
                        policy=policy,
                        replaced=replaced,
                    ))
                    logger.debug(
                        "definition_override",
                        name=record.name,
                        url=record.url,
                        previous_package=existing.package,
                        package=record.package,
                        replaced=replaced,
                    )
                if not replaced:
                    return False
                for existing in conflicts:
                    self._remove(existing)

            self._by_url[record.url] = record
            self._names[namespace][record.name] = record.url
            self._views.clear()
            self._resolved_graph = None
            return True

    def insert_many(
        self,
        records: Iterable[DefinitionRecord],
        policy: OverridePolicy = OverridePolicy.NEWER_WINS,
    ) -> int:
        return sum(1 for record in records if self.insert(record, policy))

    def _remove(self, record: DefinitionRecord) -> None:
        self._by_url.pop(record.url, None)
        names = self._names[namespace_for(record.kind)]
        if names.get(record.name) == record.url:
            del names[record.name]

    # ------------------------------------------------------------------ #
    # Resolution results
    # ------------------------------------------------------------------ #

    def attach_resolution(self, graph) -> None:
        """Store the resolver's derived indices on the collection."""
        self._resolved_graph = graph

    @property
    def resolved_graph(self):
        return self._resolved_graph

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def children_of(self, record: DefinitionRecord, path: Optional[str] = None) -> List[Element]:
        return structure.direct_children(record, path)

    def components(self, record: DefinitionRecord) -> List[Element]:
        return structure.components(record)

    def search_parameters_for(self, base_name: str) -> List[DefinitionRecord]:
        """Search parameters declared on a resource (or on ``Resource``/``DomainResource``)."""
        index = self._views.get("search-index")
        if index is None:
            built: Dict[str, List[DefinitionRecord]] = {}
            for param in self.all_of_kind(DefinitionKind.SEARCH_PARAMETER):
                for base in param.search_bases:
                    built.setdefault(base, []).append(param)
            index = {base: tuple(sorted(params, key=lambda p: (p.search_code or p.name, p.url)))
                     for base, params in built.items()}
            self._views["search-index"] = index
        return list(index.get(base_name, ()))

    def expand_value_set(self, url: str) -> List[CodeEntry]:
        """Codes of a value set, including whole code systems it includes.

        Returns an empty list when the value set is unknown. Included code
        systems that are not loaded contribute nothing.
        """
        value_set = self.by_url(url)
        if value_set is None or value_set.kind != DefinitionKind.VALUE_SET:
            return []

        seen: Dict[Tuple[Optional[str], str], CodeEntry] = {}
        for entry in value_set.codes:
            seen.setdefault((entry.system, entry.code), entry)
        for system in value_set.systems:
            code_system = self.by_url(system)
            if code_system is None:
                continue
            for entry in code_system.codes:
                seen.setdefault((entry.system, entry.code), entry)
        return list(seen.values())

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self._by_url.values():
            counts[record.kind.value] = counts.get(record.kind.value, 0) + 1
        return dict(sorted(counts.items()))

    def __repr__(self) -> str:
        release = self.fhir_release.value if self.fhir_release else "?"
        return f"DefinitionCollection(name={self.name!r}, release={release}, definitions={len(self)})"
