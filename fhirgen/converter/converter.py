"""
fhirgen.converter.converter
===========================

Converts FHIR instances (decoded JSON) between releases.

The converter walks the instance tree and looks every key up in the mapping
table of the owning type. Keys without a rule are dropped and reported as a
lossy-conversion diagnostic. A value that does not satisfy the target
primitive of a narrowing rule is handed to the caller's fallback handler; if
there is none, that subtree is omitted and a ``ConversionError`` recorded
while its siblings keep converting.

A fallback handler is called as ``fallback(path, value, target_type)`` and
returns the replacement value (None omits the element). It may raise
``ConversionError`` to fail the subtree itself.
"""

import re
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from fhirgen.context import CodegenContext
from fhirgen.converter.mapping import ElementRule, MappingRegistry, MappingTable, TypeMapping
from fhirgen.diagnostics import ConversionDiagnostic, Severity
from fhirgen.errors import ConversionError
from fhirgen.models.collection import DefinitionCollection
from fhirgen.models.releases import FhirRelease, parse_release
from fhirgen.resolver.base import base_definitions

logger = structlog.get_logger(__name__)

FallbackHandler = Callable[[str, Any, str], Any]

_INT_MAX = 2 ** 31 - 1
_INTEGER_RANGES = {
    "integer": (-_INT_MAX - 1, _INT_MAX),
    "positiveInt": (1, _INT_MAX),
    "unsignedInt": (0, _INT_MAX),
}

_OMIT = object()


@dataclass
class ConversionResult:
    entity: Any
    source: FhirRelease
    target: FhirRelease
    diagnostics: List[ConversionDiagnostic] = field(default_factory=list)
    errors: List[ConversionError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def lossy(self) -> bool:
        return any(d.severity != Severity.INFO for d in self.diagnostics)


class _Run:
    """State of one ``convert`` call."""

    def __init__(self, table: MappingTable, fallback: Optional[FallbackHandler], regexes: Dict[str, str], context):
        self.table = table
        self.fallback = fallback
        self.regexes = regexes
        self.context = context
        self.diagnostics: List[ConversionDiagnostic] = []
        self.errors: List[ConversionError] = []
        self._choice_cache: Dict[str, Dict[str, List[Tuple[str, str]]]] = {}

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def note(self, code: str, path: str, message: str, severity: Severity = Severity.WARNING) -> None:
        self.diagnostics.append(ConversionDiagnostic(code=code, path=path, message=message, severity=severity))

    def fail(self, path: str, message: str, value: Any = None) -> None:
        self.errors.append(ConversionError(path, message, value))

    # ------------------------------------------------------------------ #
    # Tree walk
    # ------------------------------------------------------------------ #

    def resource(self, resource: Dict[str, Any], label: str) -> Any:
        if self.context is not None:
            self.context.check_cancelled()
        type_name = resource.get("resourceType")
        mapping = self.table.type_mapping(type_name) if type_name else None
        if mapping is None:
            self.fail(label, f"no mapping for resource type '{type_name}'")
            return _OMIT
        return self.object(resource, type_name, mapping, "", label)

    def object(self, obj: Dict[str, Any], type_name: str, mapping: TypeMapping, prefix: str, label: str) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in obj.items():
            if key == "resourceType" and not prefix:
                out["resourceType"] = self.table.target_type(type_name)
                continue

            shadow = key.startswith("_")
            name = key[1:] if shadow else key
            child_label = f"{label}.{key}"
            rule, target_name = self.lookup(type_name, mapping, prefix, name)

            if rule is None:
                # A primitive extension shadow is reported together with its value
                if not (shadow and name in obj):
                    self.note("unmapped", child_label, f"no mapping for '{name}' in {type_name}; dropped")
                continue
            if rule.drop:
                if not shadow:
                    self.note("dropped", child_label, "removed in target release", Severity.INFO)
                continue

            if shadow:
                self.place(out, rule, "_" + target_name, deepcopy(value), child_label)
                continue

            relative = f"{prefix}.{name}" if prefix else name
            converted = self.value(value, rule, type_name, mapping, relative, child_label)
            if converted is _OMIT:
                continue
            if rule.split:
                self.split(out, rule, converted, child_label)
            else:
                self.place(out, rule, target_name, converted, child_label)
        return out

    def lookup(self, type_name: str, mapping: TypeMapping, prefix: str, name: str) -> Tuple[Optional[ElementRule], str]:
        relative = f"{prefix}.{name}" if prefix else name
        rule = mapping.elements.get(relative)
        if rule is not None:
            return rule, rule.rename or name

        bases = self._choice_cache.get(type_name)
        if bases is None:
            bases = mapping.choice_bases()
            self._choice_cache[type_name] = bases
        for base, path in bases.get(prefix, []):
            suffix = name[len(base):]
            if name.startswith(base) and suffix[:1].isupper():
                rule = mapping.elements[path]
                new_base = rule.rename[:-3] if rule.rename and rule.rename.endswith("[x]") else (rule.rename or base)
                return rule, new_base + suffix
        return None, name

    def value(self, value: Any, rule: ElementRule, type_name: str, mapping: TypeMapping, relative: str, label: str) -> Any:
        if isinstance(value, list):
            items = []
            for index, item in enumerate(value):
                converted = self.value(item, rule, type_name, mapping, relative, f"{label}[{index}]")
                if converted is not _OMIT:
                    items.append(converted)
            return items

        if isinstance(value, dict):
            if "resourceType" in value:
                return self.resource(value, label)
            if rule.element_type:
                nested = self.table.type_mapping(rule.element_type)
                if nested is None:
                    self.note("unmapped", label, f"no mapping for type '{rule.element_type}'; dropped")
                    return _OMIT
                return self.object(value, rule.element_type, nested, "", label)
            if rule.same_as:
                return self.object(value, type_name, mapping, rule.same_as, label)
            return self.object(value, type_name, mapping, relative, label)

        if rule.type:
            return self.narrow(value, rule.type, label)
        return value

    def narrow(self, value: Any, target_type: str, label: str) -> Any:
        ok, converted = check_primitive(value, target_type, self.regexes.get(target_type))
        if ok:
            return converted
        if self.fallback is None:
            self.fail(label, f"value does not fit target type '{target_type}'", value)
            return _OMIT
        try:
            replacement = self.fallback(label, value, target_type)
        except ConversionError as e:
            self.errors.append(e)
            return _OMIT
        self.note("fallback-applied", label, f"value replaced to fit '{target_type}'")
        return _OMIT if replacement is None else replacement

    def place(self, out: Dict[str, Any], rule: ElementRule, name: str, value: Any, label: str) -> None:
        if rule.array is True and not isinstance(value, list):
            value = [value]
        elif rule.array is False and isinstance(value, list):
            if len(value) > 1:
                self.note("truncated", label, f"{len(value)} values reduced to the first")
            if not value:
                return
            value = value[0]

        if rule.collapse_into:
            container = out.setdefault(rule.collapse_into, {})
            container[name] = value
        else:
            out[name] = value

    def split(self, out: Dict[str, Any], rule: ElementRule, value: Any, label: str) -> None:
        if not isinstance(value, dict):
            self.fail(label, "split requires an object value", value)
            return
        for key, item in value.items():
            target = rule.split.get(key)
            if target is None:
                self.note("unmapped", f"{label}.{key}", "no split target; dropped")
                continue
            out[target] = item


def check_primitive(value: Any, target_type: str, regex: Optional[str] = None) -> Tuple[bool, Any]:
    """Whether ``value`` fits primitive ``target_type``; returns the (possibly cast) value."""
    if target_type in _INTEGER_RANGES:
        if isinstance(value, bool) or not isinstance(value, int):
            return False, value
        low, high = _INTEGER_RANGES[target_type]
        return low <= value <= high, value
    if target_type == "integer64":
        if isinstance(value, int) and not isinstance(value, bool):
            return True, str(value)
        return isinstance(value, str) and re.fullmatch(r"-?([0]|([1-9][0-9]*))", value) is not None, value
    if target_type == "decimal":
        return isinstance(value, (int, float)) and not isinstance(value, bool), value
    if target_type == "boolean":
        return isinstance(value, bool), value
    if not isinstance(value, str):
        return False, value
    if regex:
        return re.fullmatch(regex, value) is not None, value
    return True, value


class CrossVersionConverter:
    """Converts instances between FHIR releases using registered mapping tables."""

    def __init__(
        self,
        registry: Optional[MappingRegistry] = None,
        context: Optional[CodegenContext] = None,
        target_collection: Optional[DefinitionCollection] = None,
    ):
        self.registry = registry or MappingRegistry()
        self.context = context
        self.regexes: Dict[str, str] = {
            r.name: r.regex for r in base_definitions().values() if r.regex
        }
        if target_collection is not None:
            self.regexes.update({
                name: record.regex
                for name, record in target_collection.primitive_types.items()
                if record.regex
            })

    def convert(
        self,
        node: Any,
        from_version,
        to_version,
        fallback: Optional[FallbackHandler] = None,
    ) -> ConversionResult:
        """Convert ``node`` (a resource as decoded JSON) from one release to another.

        Raises:
            ConversionError: when no mapping table exists for the release pair.
        """
        source = parse_release(from_version)
        target = parse_release(to_version)
        if source == target:
            return ConversionResult(entity=deepcopy(node), source=source, target=target)

        table = self.registry.get(source, target)
        if table is None:
            raise ConversionError("", f"no mapping table for {source.value} -> {target.value}")

        if not isinstance(node, dict) or "resourceType" not in node:
            raise ConversionError("", "conversion input must be a resource object")

        run = _Run(table, fallback, self.regexes, self.context)
        label = node["resourceType"]
        entity = run.resource(node, label)
        result = ConversionResult(
            entity=None if entity is _OMIT else entity,
            source=source,
            target=target,
            diagnostics=run.diagnostics,
            errors=run.errors,
        )
        logger.info(
            "instance_converted",
            resource_type=label,
            source=source.value,
            target=target.value,
            diagnostics=len(result.diagnostics),
            errors=len(result.errors),
        )
        for error in result.errors:
            logger.warning("conversion_error", path=error.path, error=error.reason)
        return result
