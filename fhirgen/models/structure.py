"""Helpers for walking the element tree of a structure definition."""

from typing import Dict, List, Optional

from fhirgen.models.definitions import DefinitionRecord, Element

BACKBONE_TYPES = ("BackboneElement", "Element")


def direct_children(record: DefinitionRecord, path: Optional[str] = None) -> List[Element]:
    """Elements one level below ``path`` (the root when omitted), in declaration order."""
    parent = path or (record.root.path if record.root else record.type_name or record.name)
    prefix = parent + "."
    depth = parent.count(".") + 1
    return [e for e in record.elements if e.path.startswith(prefix) and e.depth == depth]


def has_children(record: DefinitionRecord, element: Element) -> bool:
    prefix = element.path + "."
    return any(e.path.startswith(prefix) for e in record.elements)


def is_backbone(record: DefinitionRecord, element: Element) -> bool:
    """True for a non-root element that declares its own nested elements."""
    if element.is_root or element.content_reference:
        return False
    return has_children(record, element)


def components(record: DefinitionRecord) -> List[Element]:
    """Backbone components of a type in declaration order."""
    return [e for e in record.elements if is_backbone(record, e)]


def component_name(record: DefinitionRecord, element: Element) -> str:
    """Generated type name of a backbone component: ``Patient.contact`` -> ``PatientContact``."""
    parts = element.path.split(".")
    return parts[0] + "".join(p[:1].upper() + p[1:] for p in parts[1:])


def element_index(record: DefinitionRecord) -> Dict[str, Element]:
    return {e.path: e for e in record.elements}
