"""
fhirgen.loader.records
======================

Factories that turn a decoded FHIR resource (plain dicts and lists) into a
``DefinitionRecord``. Both parse pipelines feed these functions, so the
records they produce are identical by construction as long as the decoded
input is.

Malformed content raises ``DocumentParseError``; the loader turns that into a
``ParseFailure`` for the document.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

from fhirgen.errors import DocumentParseError
from fhirgen.models.definitions import (
    Binding,
    CodeEntry,
    DefinitionKind,
    DefinitionRecord,
    Element,
    TypeReference,
)

REGEX_EXTENSION_URL = "http://hl7.org/fhir/StructureDefinition/regex"

_NAMED_BY_NAME = (DefinitionKind.EXTENSION, DefinitionKind.PROFILE, DefinitionKind.LOGICAL_MODEL)

# Documents are inserted in this resource-type order; others are skipped
LOAD_ORDER = ("CodeSystem", "ValueSet", "StructureDefinition", "SearchParameter")

# Top-level keys any factory below reads. The streaming parser discards
# everything else without materializing it.
CONSUMED_FIELDS = frozenset({
    "resourceType",
    "id",
    "url",
    "name",
    "title",
    "version",
    "status",
    "description",
    "purpose",
    "kind",
    "abstract",
    "type",
    "baseDefinition",
    "base",
    "derivation",
    "constrainedType",
    "snapshot",
    "differential",
    "expansion",
    "compose",
    "concept",
    "code",
    "codeSystem",
    "expression",
})


def _require(resource: Dict[str, Any], key: str, source: str) -> str:
    value = resource.get(key)
    if value is None or value == "":
        raise DocumentParseError(source, f"missing required field '{key}'")
    if not isinstance(value, str):
        raise DocumentParseError(source, f"field '{key}' is not a string")
    return value


def _optional(resource: Dict[str, Any], key: str, source: str) -> Optional[str]:
    """Value of an optional string field; a present value of another type is malformed."""
    value = resource.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise DocumentParseError(source, f"field '{key}' is not a string")
    return value


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


# ---------------------------------------------------------------------- #
# StructureDefinition
# ---------------------------------------------------------------------- #

def classify_structure(resource: Dict[str, Any]) -> DefinitionKind:
    """Kind of a StructureDefinition across DSTU2 to R5 field conventions."""
    kind = resource.get("kind")
    type_name = resource.get("type") or resource.get("constrainedType")
    derivation = resource.get("derivation")
    if derivation is None and resource.get("constrainedType"):
        derivation = "constraint"

    if derivation == "constraint":
        if type_name == "Extension":
            return DefinitionKind.EXTENSION
        return DefinitionKind.PROFILE
    if kind == "primitive-type":
        return DefinitionKind.PRIMITIVE_TYPE
    if kind == "complex-type":
        return DefinitionKind.COMPLEX_TYPE
    if kind == "resource":
        return DefinitionKind.RESOURCE
    if kind == "logical":
        return DefinitionKind.LOGICAL_MODEL
    if kind == "datatype":
        # DSTU2 does not separate primitive and complex data types
        name = resource.get("name")
        name = name if isinstance(name, str) else ""
        return DefinitionKind.PRIMITIVE_TYPE if name[:1].islower() else DefinitionKind.COMPLEX_TYPE
    raise DocumentParseError(resource.get("url") or resource.get("id") or "?", f"unknown structure kind '{kind}'")


def _parse_max(value: Any, path: str, source: str) -> Optional[int]:
    if value is None:
        return 1
    if value == "*":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DocumentParseError(source, f"invalid max cardinality '{value}' at {path}")


def _parse_type(entry: Dict[str, Any], path: str, source: str) -> TypeReference:
    if not isinstance(entry, dict):
        raise DocumentParseError(source, f"invalid type entry at {path}")
    code = entry.get("code")
    if not code:
        raise DocumentParseError(source, f"type without code at {path}")
    if not isinstance(code, str):
        raise DocumentParseError(source, f"type code is not a string at {path}")

    target_profiles = _as_list(entry.get("targetProfile"))
    profiles = _as_list(entry.get("profile"))
    if code == "Reference" and not target_profiles and profiles:
        # DSTU2 puts reference targets in profile
        target_profiles, profiles = profiles, []
    return TypeReference(
        code=code,
        target_profiles=tuple(str(p) for p in target_profiles),
        profiles=tuple(str(p) for p in profiles),
    )


def _type_regex(entry: Dict[str, Any]) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    for extension in _as_list(entry.get("extension")):
        if isinstance(extension, dict) and extension.get("url") == REGEX_EXTENSION_URL:
            return extension.get("valueString")
    for extension in _as_list((entry.get("_code") or {}).get("extension")):
        if isinstance(extension, dict) and extension.get("url") == REGEX_EXTENSION_URL:
            return extension.get("valueString")
    return None


def _parse_binding(binding: Any, path: str, source: str) -> Optional[Binding]:
    if not isinstance(binding, dict):
        return None
    value_set = binding.get("valueSet")
    if value_set is None:
        value_set = binding.get("valueSetUri")
    if value_set is None:
        reference = binding.get("valueSetReference") or {}
        value_set = reference.get("reference") if isinstance(reference, dict) else None
    if not binding.get("strength") and not value_set:
        return None
    if not isinstance(value_set, (str, type(None))) or not isinstance(binding.get("strength"), (str, type(None))):
        raise DocumentParseError(source, f"malformed binding at {path}")
    return Binding(
        strength=binding.get("strength") or "example",
        value_set=value_set,
        description=_text(binding.get("description")),
    )


def _content_reference(value: Any) -> Optional[str]:
    if not value:
        return None
    return str(value).split("#", 1)[-1]


def parse_elements(raw: List[Any], owner: str, source: str) -> Tuple[Tuple[Element, ...], Optional[str]]:
    """Build the element tuple of a structure; also returns the primitive regex if any."""
    elements: List[Element] = []
    seen = set()
    regex = None

    for item in raw:
        if not isinstance(item, dict):
            raise DocumentParseError(source, "element entry is not an object")
        path = item.get("path")
        if not path:
            raise DocumentParseError(source, "element without path")
        if not isinstance(path, str):
            raise DocumentParseError(source, "element path is not a string")
        element_id = item.get("id") or path
        if not isinstance(element_id, str):
            raise DocumentParseError(source, f"element id is not a string at {path}")
        if ":" in element_id or item.get("sliceName"):
            continue
        if path in seen:
            raise DocumentParseError(source, f"duplicate element path '{path}'")
        seen.add(path)

        try:
            minimum = int(item.get("min", 0) or 0)
        except (TypeError, ValueError):
            raise DocumentParseError(source, f"invalid min cardinality '{item.get('min')}' at {path}")
        maximum = _parse_max(item.get("max"), path, source)
        if maximum is not None and minimum > maximum:
            raise DocumentParseError(source, f"min {minimum} exceeds max {maximum} at {path}")

        raw_types = _as_list(item.get("type"))
        types = tuple(_parse_type(t, path, source) for t in raw_types)
        if regex is None and path.endswith(".value"):
            for t in raw_types:
                regex = _type_regex(t) or regex

        elements.append(Element(
            path=path,
            element_id=element_id,
            min=minimum,
            max=maximum,
            types=types,
            binding=_parse_binding(item.get("binding"), path, source),
            short=_text(item.get("short")),
            definition=_text(item.get("definition")),
            comment=_text(item.get("comment") or item.get("comments")),
            is_modifier=bool(item.get("isModifier", False)),
            is_summary=bool(item.get("isSummary", False)),
            must_support=bool(item.get("mustSupport", False)),
            content_reference=_content_reference(item.get("contentReference")),
            owner=owner,
        ))
    return tuple(elements), regex


def structure_record(resource: Dict[str, Any], source: str, package: Optional[str] = None) -> DefinitionRecord:
    url = _require(resource, "url", source)
    name = _require(resource, "name", source)
    kind = classify_structure(resource)
    type_name = (
        _optional(resource, "type", source)
        or _optional(resource, "constrainedType", source)
        or _optional(resource, "id", source)
        or name
    )

    container = resource.get("snapshot") or resource.get("differential") or {}
    raw_elements = _as_list(container.get("element")) if isinstance(container, dict) else []

    # Types and resources are addressed by their type name, everything else by its own name
    by_own_name = kind in _NAMED_BY_NAME or "/" in type_name
    owner = name if by_own_name else type_name
    elements, regex = parse_elements(raw_elements, owner, source)

    base_url = _optional(resource, "baseDefinition", source)
    if base_url is None and isinstance(resource.get("base"), str):
        base_url = resource["base"]

    return DefinitionRecord(
        kind=kind,
        url=url,
        name=owner,
        elements=elements,
        base_url=base_url,
        type_name=type_name,
        version=_text(resource.get("version")),
        status=_text(resource.get("status")),
        title=_text(resource.get("title")),
        description=_text(resource.get("description")),
        purpose=_text(resource.get("purpose")),
        abstract=bool(resource.get("abstract", False)),
        derivation=_text(resource.get("derivation")),
        regex=regex,
        source=source,
        package=package,
    )


# ---------------------------------------------------------------------- #
# ValueSet / CodeSystem
# ---------------------------------------------------------------------- #

def _walk_concepts(concepts: Any, system: Optional[str], out: List[CodeEntry]) -> None:
    for concept in _as_list(concepts):
        if not isinstance(concept, dict):
            continue
        code = concept.get("code")
        if code:
            out.append(CodeEntry(system=_text(concept.get("system")) or system, code=str(code),
                                 display=_text(concept.get("display"))))
        _walk_concepts(concept.get("concept"), system, out)
        _walk_concepts(concept.get("contains"), system, out)


def value_set_record(resource: Dict[str, Any], source: str, package: Optional[str] = None) -> DefinitionRecord:
    url = _require(resource, "url", source)
    name = _optional(resource, "name", source) or _optional(resource, "id", source) or url.rsplit("/", 1)[-1]

    codes: List[CodeEntry] = []
    systems: List[str] = []
    expansion = resource.get("expansion")
    if isinstance(expansion, dict) and expansion.get("contains"):
        _walk_concepts(expansion.get("contains"), None, codes)
    else:
        compose = resource.get("compose") or {}
        for include in _as_list(compose.get("include") if isinstance(compose, dict) else None):
            if not isinstance(include, dict):
                continue
            system = _text(include.get("system"))
            if include.get("concept"):
                _walk_concepts(include.get("concept"), system, codes)
            elif system and not include.get("filter"):
                systems.append(system)
        # DSTU2 value sets may define their own code system inline
        inline = resource.get("codeSystem")
        if isinstance(inline, dict):
            _walk_concepts(inline.get("concept"), _text(inline.get("system")), codes)

    return DefinitionRecord(
        kind=DefinitionKind.VALUE_SET,
        url=url,
        name=name,
        version=_text(resource.get("version")),
        status=_text(resource.get("status")),
        title=_text(resource.get("title")),
        description=_text(resource.get("description")),
        purpose=_text(resource.get("purpose")),
        codes=tuple(codes),
        systems=tuple(systems),
        source=source,
        package=package,
    )


def code_system_record(resource: Dict[str, Any], source: str, package: Optional[str] = None) -> DefinitionRecord:
    url = _require(resource, "url", source)
    name = _optional(resource, "name", source) or _optional(resource, "id", source) or url.rsplit("/", 1)[-1]
    codes: List[CodeEntry] = []
    _walk_concepts(resource.get("concept"), url, codes)
    return DefinitionRecord(
        kind=DefinitionKind.CODE_SYSTEM,
        url=url,
        name=name,
        version=_text(resource.get("version")),
        status=_text(resource.get("status")),
        title=_text(resource.get("title")),
        description=_text(resource.get("description")),
        purpose=_text(resource.get("purpose")),
        codes=tuple(codes),
        source=source,
        package=package,
    )


# ---------------------------------------------------------------------- #
# SearchParameter
# ---------------------------------------------------------------------- #

def search_parameter_record(resource: Dict[str, Any], source: str, package: Optional[str] = None) -> DefinitionRecord:
    url = _require(resource, "url", source)
    code = _require(resource, "code", source)
    return DefinitionRecord(
        kind=DefinitionKind.SEARCH_PARAMETER,
        url=url,
        name=_optional(resource, "id", source) or _optional(resource, "name", source) or code,
        version=_text(resource.get("version")),
        status=_text(resource.get("status")),
        description=_text(resource.get("description")),
        purpose=_text(resource.get("purpose")),
        search_code=str(code),
        search_bases=tuple(str(b) for b in _as_list(resource.get("base"))),
        search_type=_text(resource.get("type")),
        search_expression=_text(resource.get("expression")),
        source=source,
        package=package,
    )


RecordFactory = Callable[[Dict[str, Any], str, Optional[str]], DefinitionRecord]

FACTORIES: Dict[str, RecordFactory] = {
    "StructureDefinition": structure_record,
    "ValueSet": value_set_record,
    "CodeSystem": code_system_record,
    "SearchParameter": search_parameter_record,
}


def record_from_resource(
    resource: Any, source: str, package: Optional[str] = None
) -> Optional[DefinitionRecord]:
    """Dispatch on ``resourceType``. Returns None for resource types that are not loaded."""
    if not isinstance(resource, dict):
        raise DocumentParseError(source, "document root is not an object")
    resource_type = resource.get("resourceType")
    if not resource_type:
        raise DocumentParseError(source, "missing resourceType")
    if not isinstance(resource_type, str):
        raise DocumentParseError(source, "resourceType is not a string")
    factory = FACTORIES.get(resource_type)
    if factory is None:
        return None
    return factory(resource, source, package)
