"""
fhirgen.models.definitions
==========================

Immutable records produced by the package loader.

``DefinitionRecord`` is the unit stored in a ``DefinitionCollection``. Structure
definitions carry their element list; value sets and code systems carry
codes; search parameters carry their code, bases and expression. Records are
frozen once built, the resolver attaches its results to the collection rather
than to the records themselves.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

FHIRPATH_SYSTEM_PREFIX = "http://hl7.org/fhirpath/System."
CORE_STRUCTURE_PREFIX = "http://hl7.org/fhir/StructureDefinition/"


class DefinitionKind(str, Enum):
    PRIMITIVE_TYPE = "primitive-type"
    COMPLEX_TYPE = "complex-type"
    RESOURCE = "resource"
    VALUE_SET = "value-set"
    EXTENSION = "extension"
    CODE_SYSTEM = "code-system"
    SEARCH_PARAMETER = "search-parameter"
    PROFILE = "profile"
    LOGICAL_MODEL = "logical-model"

    @property
    def is_structure(self) -> bool:
        return self in (
            DefinitionKind.PRIMITIVE_TYPE,
            DefinitionKind.COMPLEX_TYPE,
            DefinitionKind.RESOURCE,
            DefinitionKind.EXTENSION,
            DefinitionKind.PROFILE,
            DefinitionKind.LOGICAL_MODEL,
        )


@dataclass(frozen=True)
class TypeReference:
    """A reference to a type by code, optionally parametrized.

    ``parameters`` holds the argument types of a generic wrapper (for a
    ``Reference`` the targets are kept in ``target_profiles`` instead).
    """
    code: str
    target_profiles: Tuple[str, ...] = ()
    profiles: Tuple[str, ...] = ()
    parameters: Tuple["TypeReference", ...] = ()

    @property
    def is_generic(self) -> bool:
        return bool(self.parameters)

    @property
    def is_system(self) -> bool:
        return self.code.startswith(FHIRPATH_SYSTEM_PREFIX)

    @property
    def name(self) -> str:
        """Short type name: ``System.String`` becomes ``String``, URLs lose their prefix."""
        if self.is_system:
            return self.code[len(FHIRPATH_SYSTEM_PREFIX):]
        if "/" in self.code:
            return self.code.rstrip("/").rsplit("/", 1)[-1]
        return self.code

    @property
    def target_names(self) -> Tuple[str, ...]:
        return tuple(p.rstrip("/").rsplit("/", 1)[-1].split("|")[0] for p in self.target_profiles)


@dataclass(frozen=True)
class Binding:
    strength: str
    value_set: Optional[str] = None
    description: Optional[str] = None

    @property
    def value_set_url(self) -> Optional[str]:
        """The bound value set without a ``|version`` suffix."""
        if not self.value_set:
            return None
        return self.value_set.split("|", 1)[0]


@dataclass(frozen=True)
class Element:
    """A named structural field of a type, addressed by its dotted path."""
    path: str
    element_id: str
    min: int = 0
    max: Optional[int] = 1          # None means unbounded ("*")
    types: Tuple[TypeReference, ...] = ()
    binding: Optional[Binding] = None
    short: Optional[str] = None
    definition: Optional[str] = None
    comment: Optional[str] = None
    is_modifier: bool = False
    is_summary: bool = False
    must_support: bool = False
    content_reference: Optional[str] = None
    owner: str = ""

    @property
    def name(self) -> str:
        return self.path.rsplit(".", 1)[-1]

    @property
    def base_name(self) -> str:
        """Element name without a choice ``[x]`` suffix."""
        name = self.name
        return name[:-3] if name.endswith("[x]") else name

    @property
    def relative_path(self) -> str:
        """Path below the owning type (``Patient.contact.name`` -> ``contact.name``)."""
        return self.path.split(".", 1)[1] if "." in self.path else ""

    @property
    def depth(self) -> int:
        return self.path.count(".")

    @property
    def is_root(self) -> bool:
        return "." not in self.path

    @property
    def is_choice(self) -> bool:
        return self.path.endswith("[x]")

    @property
    def is_array(self) -> bool:
        return self.max is None or self.max > 1

    @property
    def is_required(self) -> bool:
        return self.min > 0

    @property
    def cardinality(self) -> str:
        upper = "*" if self.max is None else str(self.max)
        return f"{self.min}..{upper}"

    @property
    def type_codes(self) -> Tuple[str, ...]:
        return tuple(t.name for t in self.types)

    @property
    def representative_type(self) -> Optional[TypeReference]:
        """First declared type; used wherever a single type has to stand for a choice."""
        return self.types[0] if self.types else None


@dataclass(frozen=True)
class CodeEntry:
    system: Optional[str]
    code: str
    display: Optional[str] = None


@dataclass(frozen=True)
class DefinitionRecord:
    kind: DefinitionKind
    url: str
    name: str
    elements: Tuple[Element, ...] = ()
    base_url: Optional[str] = None
    type_name: Optional[str] = None
    version: Optional[str] = None
    status: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    purpose: Optional[str] = None
    abstract: bool = False
    derivation: Optional[str] = None
    regex: Optional[str] = None
    codes: Tuple[CodeEntry, ...] = ()
    systems: Tuple[str, ...] = ()
    search_code: Optional[str] = None
    search_bases: Tuple[str, ...] = ()
    search_type: Optional[str] = None
    search_expression: Optional[str] = None
    source: Optional[str] = field(default=None, compare=False)
    package: Optional[str] = field(default=None, compare=False)

    @property
    def base_name(self) -> Optional[str]:
        if not self.base_url:
            return None
        return self.base_url.rstrip("/").rsplit("/", 1)[-1]

    @property
    def root(self) -> Optional[Element]:
        for element in self.elements:
            if element.is_root:
                return element
        return None

    def element(self, path: str) -> Optional[Element]:
        """Element by full (``Patient.name``) or relative (``name``) path."""
        for element in self.elements:
            if element.path == path or element.relative_path == path:
                return element
        return None

    @property
    def child_elements(self) -> Tuple[Element, ...]:
        """All elements except the root element."""
        return tuple(e for e in self.elements if not e.is_root)

    def describe(self) -> str:
        return f"{self.kind.value} {self.name} ({self.url})"
