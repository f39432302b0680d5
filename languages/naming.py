# languages/naming.py
"""Naming conventions and identifier sanitization for emitted code.

Every backend converts canonical FHIR names (``Patient``, ``birthDate``,
``value[x]``, ``Patient.contact``) into identifiers of its target language
through a ``NameSanitizer``. The sanitizer applies a ``NamingConvention``,
then a reserved-word rule, then the collision rule:

* a reserved word gets the backend's reserved prefix and/or suffix
  (``end`` -> ``local_end`` in Ruby, ``class`` -> ``class_`` in TypeScript);
* an identifier that starts with a digit gets a leading ``_``;
* when two distinct canonical names produce the same identifier, the name
  seen first keeps it and every later one gets ``_2``, ``_3``, ... .
  ``prime()`` registers a batch of names in sorted order, which makes the
  outcome independent of the order names are later requested in.

The sanitizer remembers what it produced so ``lookup()`` maps an identifier
back to its canonical name.
"""

import re
from enum import Enum
from typing import Dict, Iterable, List, Optional

_WORDS = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z0-9]+|[A-Z]+|[0-9]+")
_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


class NamingConvention(str, Enum):
    FHIR = "fhir"                       # unchanged: Patient.contact, birthDate
    PASCAL = "pascal"                   # PatientContact
    CAMEL = "camel"                     # patientContact
    SNAKE = "snake"                     # patient_contact
    UPPER_SNAKE = "upper-snake"         # PATIENT_CONTACT
    KEBAB = "kebab"                     # patient-contact
    PASCAL_DELIMITED = "pascal-delimited"  # Patient_Contact


def split_words(name: str) -> List[str]:
    """Words of a FHIR name; ``[x]`` and punctuation are dropped."""
    if name.endswith("[x]"):
        name = name[:-3]
    return _WORDS.findall(name)


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:]


def to_convention(name: str, convention: NamingConvention) -> str:
    if convention == NamingConvention.FHIR:
        return name
    if convention == NamingConvention.PASCAL:
        return "".join(_capitalize(w) for w in split_words(name))
    if convention == NamingConvention.CAMEL:
        words = split_words(name)
        if not words:
            return ""
        return words[0][:1].lower() + words[0][1:] + "".join(_capitalize(w) for w in words[1:])
    if convention == NamingConvention.SNAKE:
        return "_".join(w.lower() for w in split_words(name))
    if convention == NamingConvention.UPPER_SNAKE:
        return "_".join(w.upper() for w in split_words(name))
    if convention == NamingConvention.KEBAB:
        return "-".join(w.lower() for w in split_words(name))
    if convention == NamingConvention.PASCAL_DELIMITED:
        parts = [p for p in re.split(r"[.\-_ ]", name) if p]
        return "_".join("".join(_capitalize(w) for w in split_words(p)) for p in parts)
    raise ValueError(f"Unknown naming convention: {convention}")


class NameSanitizer:
    """Maps canonical names to unique, valid identifiers for one emission run."""

    def __init__(
        self,
        convention: NamingConvention,
        reserved_words: Iterable[str] = (),
        reserved_prefix: str = "",
        reserved_suffix: str = "",
        case_sensitive: bool = True,
    ):
        if not reserved_prefix and not reserved_suffix:
            reserved_suffix = "_"
        self.convention = convention
        self.reserved_prefix = reserved_prefix
        self.reserved_suffix = reserved_suffix
        self.case_sensitive = case_sensitive
        self.reserved_words = frozenset(self._fold(w) for w in reserved_words)
        self._forward: Dict[str, str] = {}
        self._reverse: Dict[str, str] = {}

    def _fold(self, value: str) -> str:
        return value if self.case_sensitive else value.lower()

    def prime(self, names: Iterable[str]) -> Dict[str, str]:
        """Sanitize ``names`` in sorted order and return the mapping."""
        return {name: self.sanitize(name) for name in sorted(set(names))}

    def sanitize(self, name: str) -> str:
        existing = self._forward.get(name)
        if existing is not None:
            return existing

        candidate = to_convention(name, self.convention) or "_"
        if self._fold(candidate) in self.reserved_words:
            candidate = f"{self.reserved_prefix}{candidate}{self.reserved_suffix}"
        if candidate[:1].isdigit():
            candidate = "_" + candidate

        identifier = candidate
        counter = 2
        while self._fold(identifier) in self._reverse:
            identifier = f"{candidate}_{counter}"
            counter += 1

        self._forward[name] = identifier
        self._reverse[self._fold(identifier)] = name
        return identifier

    def lookup(self, identifier: str) -> Optional[str]:
        """The canonical name an identifier was produced for."""
        return self._reverse.get(self._fold(identifier))

    def is_valid(self, identifier: str) -> bool:
        return bool(_IDENTIFIER.match(identifier)) and self._fold(identifier) not in self.reserved_words

    @property
    def mapping(self) -> Dict[str, str]:
        return dict(self._forward)

    def __len__(self) -> int:
        return len(self._forward)
