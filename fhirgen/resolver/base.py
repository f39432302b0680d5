"""Fallback core FHIR definitions shipped with the tool."""

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml

from fhirgen.models.definitions import DefinitionKind, DefinitionRecord, Element, TypeReference

BASE_DEFINITIONS_PATH = Path(__file__).parent / "base_definitions.yaml"

_SOURCE = "base_definitions.yaml"


def _parse_max(value) -> Optional[int]:
    if value is None:
        return 1
    if value == "*":
        return None
    return int(value)


def _structure(name: str, spec: Dict, kind: DefinitionKind, canonical_base: str) -> DefinitionRecord:
    spec = spec or {}
    elements = [Element(path=name, element_id=name, min=0, max=None, owner=name)]
    for element_name, element_spec in (spec.get("elements") or {}).items():
        path = f"{name}.{element_name}"
        elements.append(Element(
            path=path,
            element_id=path,
            min=int(element_spec.get("min", 0)),
            max=_parse_max(element_spec.get("max")),
            types=(TypeReference(code=element_spec["type"]),),
            owner=name,
        ))

    base = spec.get("base")
    if base is None and kind == DefinitionKind.PRIMITIVE_TYPE:
        base = "Element"
    return DefinitionRecord(
        kind=kind,
        url=canonical_base + name,
        name=name,
        type_name=name,
        elements=tuple(elements),
        base_url=canonical_base + base if base else None,
        abstract=bool(spec.get("abstract", False)),
        derivation="specialization",
        regex=spec.get("regex"),
        status="active",
        source=_SOURCE,
    )


def load_base_definitions(path: Path = BASE_DEFINITIONS_PATH) -> Dict[str, DefinitionRecord]:
    """Read fallback definitions keyed by canonical URL."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    canonical_base = data["canonical_base"]
    sections = (
        ("primitives", DefinitionKind.PRIMITIVE_TYPE),
        ("complex_types", DefinitionKind.COMPLEX_TYPE),
        ("resources", DefinitionKind.RESOURCE),
    )
    records: Dict[str, DefinitionRecord] = {}
    for section, kind in sections:
        for name, spec in (data.get(section) or {}).items():
            record = _structure(name, spec, kind, canonical_base)
            records[record.url] = record
    return records


@lru_cache()
def base_definitions() -> Dict[str, DefinitionRecord]:
    return load_base_definitions()
