"""
fhirgen.converter.mapping
=========================

Declarative mapping tables between two FHIR releases.

A table lists, per type, how each element (addressed by its path relative
to the type, ``contact.name``) carries over::

    source: R4
    target: R5
    types:
      Encounter:
        elements:
          status: {}                          # same name, same shape
          hospitalization: {rename: admission}
          class: {array: true}                # 0..1 became 0..*
          period: {rename: actualPeriod}
          classHistory: {drop: true}
      Patient:
        elements:
          name: {element_type: HumanName}     # nested values use HumanName's rules

Element rules:

``rename``         new element name at the same level
``drop``           intentionally not carried over
``type``           target primitive type; the value must satisfy its constraints
``array``          true wraps a single value in a list, false unwraps a list
``collapse_into``  place the value inside the named object element
``split``          distribute the keys of an object value to sibling elements
``element_type``   convert nested values with that type's rules
``same_as``        nested values follow the rules below another path (recursive elements)
"""

from copy import deepcopy
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from fhirgen.compare.differ import Differ
from fhirgen.errors import InvalidConfigurationError
from fhirgen.models.collection import DefinitionCollection
from fhirgen.models.definitions import DefinitionKind, DefinitionRecord
from fhirgen.models.releases import FhirRelease, parse_release
from fhirgen.models.structure import has_children

logger = structlog.get_logger(__name__)


class ElementRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rename: Optional[str] = None
    drop: bool = False
    type: Optional[str] = None
    array: Optional[bool] = None
    collapse_into: Optional[str] = None
    split: Optional[Dict[str, str]] = None
    element_type: Optional[str] = None
    same_as: Optional[str] = None

    def overlay(self, other: "ElementRule") -> "ElementRule":
        """Fields set on ``other`` win."""
        values = self.model_dump()
        values.update(other.model_dump(exclude_unset=True))
        return ElementRule(**values)


class TypeMapping(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rename: Optional[str] = None
    elements: Dict[str, ElementRule] = Field(default_factory=dict)

    @field_validator("elements", mode="before")
    @classmethod
    def _empty_rules(cls, value):
        # ``path:`` with no value in YAML means identity
        if isinstance(value, dict):
            return {k: (v if v is not None else {}) for k, v in value.items()}
        return value

    def choice_bases(self) -> Dict[str, List[Tuple[str, str]]]:
        """Choice elements grouped by parent path: ``{"": [("value", "value[x]")]}``."""
        bases: Dict[str, List[Tuple[str, str]]] = {}
        for path in self.elements:
            if path.endswith("[x]"):
                parent, _, name = path.rpartition(".")
                bases.setdefault(parent, []).append((name[:-3], path))
        return bases


class MappingTable(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: FhirRelease
    target: FhirRelease
    description: Optional[str] = None
    types: Dict[str, TypeMapping] = Field(default_factory=dict)

    @field_validator("source", "target", mode="before")
    @classmethod
    def _release(cls, value):
        return parse_release(value)

    @field_validator("types", mode="before")
    @classmethod
    def _empty_types(cls, value):
        if isinstance(value, dict):
            return {k: (v if v is not None else {}) for k, v in value.items()}
        return value

    @classmethod
    def from_yaml(cls, source: Union[str, Path]) -> "MappingTable":
        """Load a table from a YAML file (``Path``) or from YAML text."""
        if isinstance(source, Path):
            with open(source, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        else:
            data = yaml.safe_load(source)
        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict) -> "MappingTable":
        try:
            return cls.model_validate(data)
        except (ValidationError, ValueError) as e:
            raise InvalidConfigurationError(f"Invalid mapping table: {e}")

    @property
    def key(self) -> Tuple[FhirRelease, FhirRelease]:
        return (self.source, self.target)

    def type_mapping(self, type_name: str) -> Optional[TypeMapping]:
        return self.types.get(type_name)

    def target_type(self, type_name: str) -> str:
        mapping = self.types.get(type_name)
        return mapping.rename if mapping and mapping.rename else type_name

    def rule_for(self, type_name: str, path: str) -> Optional[ElementRule]:
        mapping = self.types.get(type_name)
        if mapping is None:
            return None
        return mapping.elements.get(path)

    def overlay(self, declared: "MappingTable") -> "MappingTable":
        """A copy of this table with ``declared`` rules layered on top."""
        merged = self.model_copy(deep=True)
        for type_name, declared_mapping in declared.types.items():
            current = merged.types.get(type_name)
            if current is None:
                merged.types[type_name] = declared_mapping.model_copy(deep=True)
                continue
            if declared_mapping.rename:
                current.rename = declared_mapping.rename
            for path, rule in declared_mapping.elements.items():
                existing = current.elements.get(path)
                current.elements[path] = existing.overlay(rule) if existing else rule.model_copy()
        return merged


def _single_type(record: DefinitionRecord, path: str) -> Optional[str]:
    element = record.element(path)
    if element is None or len(element.types) != 1:
        return None
    return element.types[0].name


def derive_mapping_table(
    source: DefinitionCollection,
    target: DefinitionCollection,
    declared: Optional[MappingTable] = None,
) -> MappingTable:
    """Identity mapping for every element present in both releases, plus ``declared``.

    Cardinality and primitive type changes found by the comparison engine
    become ``array`` and ``type`` rules. Complex-typed elements name their
    datatype so nested values are converted with that type's rules.
    """
    if source.fhir_release is None or target.fhir_release is None:
        if declared is None:
            raise InvalidConfigurationError(
                "Cannot derive a mapping table: collections do not declare their FHIR release"
            )
    source_release = source.fhir_release or declared.source
    target_release = target.fhir_release or declared.target

    differ = Differ()
    table = MappingTable(source=source_release, target=target_release)
    for kind in (DefinitionKind.COMPLEX_TYPE, DefinitionKind.RESOURCE):
        for record in source.all_of_kind(kind):
            target_name = declared.target_type(record.name) if declared else record.name
            target_record = target.by_canonical_name(target_name, kind)
            if target_record is None:
                continue

            mapping = TypeMapping(rename=target_name if target_name != record.name else None)
            declared_mapping = declared.type_mapping(record.name) if declared else None
            target_paths = {e.relative_path for e in target_record.elements}
            for element in record.child_elements:
                relative = element.relative_path
                if _target_path(declared_mapping, relative) not in target_paths:
                    continue
                rule = ElementRule()
                if element.content_reference:
                    rule.same_as = element.content_reference.split(".", 1)[-1]
                elif not has_children(record, element):
                    complex_type = _single_type(record, relative)
                    if complex_type in source.complex_types:
                        rule.element_type = complex_type
                mapping.elements[relative] = rule

            for entry in differ.compare_definitions(record, _renamed(target_record, record.name)):
                if not entry.path or "." not in entry.path:
                    continue
                rule = mapping.elements.get(entry.path.split(".", 1)[1])
                if rule is None:
                    continue
                if entry.aspect == "types":
                    new_type = _single_type(target_record, entry.path.split(".", 1)[1])
                    if new_type in target.primitive_types:
                        rule.type = new_type
                elif entry.aspect == "max":
                    if entry.before == "1":
                        rule.array = True
                    elif entry.after == "1":
                        rule.array = False
            table.types[record.name] = mapping

    if declared is not None:
        table = table.overlay(declared)
    logger.info(
        "mapping_table_derived",
        source=table.source.value,
        target=table.target.value,
        types=len(table.types),
    )
    return table


def _target_path(mapping: Optional[TypeMapping], relative: str) -> str:
    """Relative path in the target release after the renames declared along it."""
    if mapping is None:
        return relative
    parts = relative.split(".")
    renamed = []
    for i, part in enumerate(parts):
        rule = mapping.elements.get(".".join(parts[:i + 1]))
        renamed.append(rule.rename if rule is not None and rule.rename else part)
    return ".".join(renamed)


def _renamed(record: DefinitionRecord, name: str) -> DefinitionRecord:
    """Copy of ``record`` whose element paths are rooted at ``name``."""
    if record.name == name:
        return record
    elements = tuple(
        replace(e, path=name + e.path[len(record.name):] if e.path.startswith(record.name) else e.path)
        for e in record.elements
    )
    return replace(record, name=name, elements=elements)


MAPS_DIR = Path(__file__).parent / "maps"


class MappingRegistry:
    """Mapping tables keyed by ``(source release, target release)``."""

    def __init__(self, maps_dir: Optional[Path] = MAPS_DIR):
        self._tables: Dict[Tuple[FhirRelease, FhirRelease], MappingTable] = {}
        if maps_dir is not None:
            self.load_directory(maps_dir)

    def load_directory(self, maps_dir: Path) -> int:
        count = 0
        for path in sorted(Path(maps_dir).glob("*.yaml")):
            self.register(MappingTable.from_yaml(path))
            count += 1
        logger.debug("mapping_tables_loaded", directory=str(maps_dir), tables=count)
        return count

    def register(self, table: MappingTable) -> None:
        self._tables[table.key] = table

    def get(self, source, target) -> Optional[MappingTable]:
        return self._tables.get((parse_release(source), parse_release(target)))

    def derive(
        self,
        source: DefinitionCollection,
        target: DefinitionCollection,
    ) -> MappingTable:
        """Derive a table from two collections, overlay any registered one, and register it."""
        declared = None
        if source.fhir_release and target.fhir_release:
            declared = self.get(source.fhir_release, target.fhir_release)
        table = derive_mapping_table(source, target, declared)
        self.register(table)
        return table

    @property
    def keys(self) -> List[Tuple[FhirRelease, FhirRelease]]:
        return sorted(self._tables, key=lambda k: (k[0].value, k[1].value))

    def copy(self) -> "MappingRegistry":
        registry = MappingRegistry(maps_dir=None)
        registry._tables = deepcopy(self._tables)
        return registry
