"""
fhirgen.resolver.resolver
=========================

Resolves the references inside a ``DefinitionCollection``.

For every structural definition the resolver

* looks up each element type (collection first, then the shipped base
  definitions), keeping choice types in declaration order,
* resolves value set bindings whose strength requires it,
* builds the inheritance chain by walking base definitions, memoized per
  type and guarded by a per-walk visiting list so that a cycle is reported
  once, naming all of its members, instead of recursing forever.

Problems are collected as ``ResolutionError`` records; the resolver always
finishes the pass so callers get every error at once. Cancellation is
checked between top-level types.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import structlog

from fhirgen.context import CodegenContext
from fhirgen.diagnostics import ResolutionError, Severity
from fhirgen.models.collection import DefinitionCollection
from fhirgen.models.definitions import DefinitionKind, DefinitionRecord, Element, TypeReference
from fhirgen.models.structure import BACKBONE_TYPES, component_name, element_index, has_children
from fhirgen.resolver.base import base_definitions
from fhirgen.resolver.graph import (
    InheritanceChain,
    ResolvedBinding,
    ResolvedGraph,
    ResolvedType,
    TypeCategory,
)

logger = structlog.get_logger(__name__)

_CATEGORY_FOR_KIND = {
    DefinitionKind.PRIMITIVE_TYPE: TypeCategory.PRIMITIVE,
    DefinitionKind.COMPLEX_TYPE: TypeCategory.COMPLEX,
    DefinitionKind.RESOURCE: TypeCategory.RESOURCE,
    DefinitionKind.LOGICAL_MODEL: TypeCategory.COMPLEX,
    DefinitionKind.PROFILE: TypeCategory.COMPLEX,
    DefinitionKind.EXTENSION: TypeCategory.COMPLEX,
}

# Kinds whose elements and chains are resolved
RESOLVED_KINDS = (
    DefinitionKind.PRIMITIVE_TYPE,
    DefinitionKind.COMPLEX_TYPE,
    DefinitionKind.RESOURCE,
    DefinitionKind.LOGICAL_MODEL,
    DefinitionKind.EXTENSION,
    DefinitionKind.PROFILE,
)

_CHAIN_FAILED = object()


class TypeResolver:
    """Resolves one collection into a ``ResolvedGraph``."""

    def __init__(
        self,
        collection: DefinitionCollection,
        context: Optional[CodegenContext] = None,
        required_strengths: Optional[Iterable[str]] = None,
        use_base_definitions: bool = True,
        workers: int = 1,
    ):
        self.collection = collection
        self.context = context
        if required_strengths is None:
            required_strengths = context.settings.required_binding_strengths if context else ("required",)
        self.required_strengths: FrozenSet[str] = frozenset(s.lower() for s in required_strengths)
        self.workers = max(1, workers)
        fallback = base_definitions() if use_base_definitions else {}
        self.graph = ResolvedGraph(collection, fallback)

        self._memo: Dict[str, object] = {}
        self._reported_cycles: Set[FrozenSet[str]] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    def resolve(self) -> ResolvedGraph:
        """Resolve every structural definition and attach the graph to the collection.

        Raises:
            OperationCancelled: when the context is cancelled between types.
        """
        records: List[DefinitionRecord] = []
        for kind in RESOLVED_KINDS:
            records.extend(self.collection.all_of_kind(kind))

        if self.workers > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                list(pool.map(self._resolve_record, records))
        else:
            for record in records:
                self._resolve_record(record)

        self.graph.diagnostics.sort(key=lambda d: (d.definition, d.path or "", d.code, d.target or ""))
        self.collection.attach_resolution(self.graph)
        self.collection.freeze()

        logger.info(
            "collection_resolved",
            collection=self.collection.name,
            types=len(records),
            errors=len(self.graph.errors),
            warnings=len(self.graph.warnings),
        )
        for diagnostic in self.graph.errors:
            logger.warning(
                "resolution_error",
                code=diagnostic.code,
                definition=diagnostic.definition,
                path=diagnostic.path,
                target=diagnostic.target,
            )
        return self.graph

    def _resolve_record(self, record: DefinitionRecord) -> None:
        if self.context is not None:
            self.context.check_cancelled()
        self.chain_for(record)
        by_path = element_index(record)
        for element in record.elements:
            if element.is_root:
                continue
            self._resolve_element(record, element, by_path)

    # ------------------------------------------------------------------ #
    # Elements
    # ------------------------------------------------------------------ #

    def _report(self, diagnostic: ResolutionError) -> None:
        with self._lock:
            self.graph.diagnostics.append(diagnostic)

    def _resolve_element(self, record: DefinitionRecord, element: Element, by_path: Dict[str, Element]) -> None:
        key = (record.url, element.path)

        if element.content_reference:
            target = by_path.get(element.content_reference)
            if target is None:
                self._report(ResolutionError(
                    code="unresolved-content-reference",
                    message=f"content reference '#{element.content_reference}' does not exist",
                    definition=record.name,
                    path=element.path,
                    target=element.content_reference,
                    members=(record.name,),
                ))
                resolved = (ResolvedType(TypeCategory.UNRESOLVED, element.content_reference),)
            else:
                resolved = (ResolvedType(
                    TypeCategory.BACKBONE,
                    code="BackboneElement",
                    target_url=record.url,
                    target_name=component_name(record, target),
                ),)
            with self._lock:
                self.graph._types[key] = resolved
            return

        resolved_types = []
        for type_ref in element.types:
            resolved_types.append(self._resolve_type(record, element, type_ref))
        with self._lock:
            self.graph._types[key] = tuple(resolved_types)

        if element.binding is not None:
            self._resolve_binding(record, element)

    def _resolve_type(self, record: DefinitionRecord, element: Element, type_ref: TypeReference) -> ResolvedType:
        if type_ref.is_system:
            return ResolvedType(TypeCategory.SYSTEM, code=type_ref.name, target_name=type_ref.name)

        if type_ref.name in BACKBONE_TYPES and has_children(record, element):
            return ResolvedType(
                TypeCategory.BACKBONE,
                code=type_ref.name,
                target_url=record.url,
                target_name=component_name(record, element),
            )

        target = self.graph.lookup(type_ref.code)
        if target is None:
            self._report(ResolutionError(
                code="unresolved-type",
                message=f"type '{type_ref.code}' is not defined",
                definition=record.name,
                path=element.path,
                target=type_ref.code,
                members=(record.name,),
            ))
            return ResolvedType(TypeCategory.UNRESOLVED, code=type_ref.code)

        parameters = tuple(self._resolve_target(record, element, url) for url in type_ref.target_profiles)
        parameters += tuple(self._resolve_type(record, element, p) for p in type_ref.parameters)
        category = TypeCategory.GENERIC if parameters else _CATEGORY_FOR_KIND[target.kind]
        return ResolvedType(
            category,
            code=type_ref.code,
            target_url=target.url,
            target_name=target.name,
            parameters=parameters,
        )

    def _resolve_target(self, record: DefinitionRecord, element: Element, url: str) -> ResolvedType:
        """Target profile of a Reference or canonical; missing ones are only warnings."""
        target = self.graph.lookup(url.split("|", 1)[0])
        if target is None:
            name = url.rstrip("/").rsplit("/", 1)[-1]
            self._report(ResolutionError(
                code="unresolved-target-profile",
                message=f"target profile '{url}' is not loaded",
                definition=record.name,
                path=element.path,
                target=url,
                members=(record.name,),
                severity=Severity.WARNING,
            ))
            return ResolvedType(TypeCategory.UNRESOLVED, code=name)
        return ResolvedType(
            _CATEGORY_FOR_KIND[target.kind],
            code=target.name,
            target_url=target.url,
            target_name=target.name,
        )

    def _resolve_binding(self, record: DefinitionRecord, element: Element) -> None:
        binding = element.binding
        url = binding.value_set_url
        value_set = self.collection.by_url(url) if url else None
        if value_set is not None and value_set.kind != DefinitionKind.VALUE_SET:
            value_set = None

        if value_set is None and url and binding.strength.lower() in self.required_strengths:
            self._report(ResolutionError(
                code="unresolved-value-set",
                message=f"{binding.strength} binding to value set '{url}' which is not loaded",
                definition=record.name,
                path=element.path,
                target=url,
                members=(record.name,),
            ))

        resolved = ResolvedBinding(
            strength=binding.strength,
            value_set_url=url,
            value_set_name=value_set.name if value_set else None,
            resolved=value_set is not None,
        )
        with self._lock:
            self.graph._bindings[(record.url, element.path)] = resolved

    # ------------------------------------------------------------------ #
    # Inheritance chains
    # ------------------------------------------------------------------ #

    def chain_for(self, record: DefinitionRecord) -> Optional[InheritanceChain]:
        """Build (or fetch the memoized) chain for ``record``; None on a cycle."""
        with self._lock:
            memo = self._memo.get(record.url)
        if memo is not None:
            return None if memo is _CHAIN_FAILED else memo

        path: List[DefinitionRecord] = []
        visiting: List[str] = []
        tail: Optional[InheritanceChain] = None
        failed = False
        current: Optional[DefinitionRecord] = record

        while current is not None:
            with self._lock:
                known = self._memo.get(current.url)
            if known is not None:
                if known is _CHAIN_FAILED:
                    failed = True
                else:
                    tail = known
                break

            if current.url in visiting:
                members = tuple(r.name for r in path[visiting.index(current.url):])
                self._report_cycle(members)
                failed = True
                break

            visiting.append(current.url)
            path.append(current)
            if not current.base_url:
                break

            base = self.graph.lookup(current.base_url)
            if base is None:
                self._report(ResolutionError(
                    code="unresolved-base",
                    message=f"base definition '{current.base_url}' is not defined",
                    definition=current.name,
                    target=current.base_url,
                    members=(current.name,),
                ))
                break
            current = base

        with self._lock:
            if failed:
                for item in path:
                    self._memo[item.url] = _CHAIN_FAILED
                    self.graph._chains[item.url] = None
                return None

            # Each type on the walked path gets the suffix of the chain that starts at it
            tail_urls: Tuple[str, ...] = tail.urls if tail else ()
            tail_names: Tuple[str, ...] = tail.names if tail else ()
            result = None
            for i in range(len(path) - 1, -1, -1):
                urls = tuple(r.url for r in path[i:]) + tail_urls
                names = tuple(r.name for r in path[i:]) + tail_names
                chain = InheritanceChain(urls=urls, names=names)
                self._memo[path[i].url] = chain
                self.graph._chains[path[i].url] = chain
                result = chain
            return result

    def _report_cycle(self, members: Tuple[str, ...]) -> None:
        key = frozenset(members)
        with self._lock:
            if key in self._reported_cycles:
                return
            self._reported_cycles.add(key)
        ordered = tuple(sorted(members))
        self._report(ResolutionError(
            code="inheritance-cycle",
            message=f"inheritance cycle between {', '.join(ordered)}",
            definition=ordered[0],
            members=ordered,
        ))


def resolve(collection: DefinitionCollection, context: Optional[CodegenContext] = None, **kwargs) -> ResolvedGraph:
    """Resolve ``collection`` and return its graph."""
    return TypeResolver(collection, context=context, **kwargs).resolve()
