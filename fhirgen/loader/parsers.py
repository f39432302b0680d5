"""
fhirgen.loader.parsers
======================

The two document parse pipelines.

``StructuredParser`` decodes the whole JSON document into Python objects and
hands it to the record factories.

``StreamingParser`` walks the YAML event stream of the same text (JSON is a
subset of YAML flow syntax) and only materializes the top-level fields the
factories consume, skipping narrative, mappings and the like without
building them. Both pipelines must yield equal records for every document.
"""

import io
import json
from typing import Any, Dict, Iterator, Optional, Type

import structlog
import yaml
from yaml.events import (
    AliasEvent,
    DocumentEndEvent,
    DocumentStartEvent,
    MappingEndEvent,
    MappingStartEvent,
    ScalarEvent,
    SequenceEndEvent,
    SequenceStartEvent,
    StreamEndEvent,
    StreamStartEvent,
)

from fhirgen.errors import DocumentParseError, InvalidConfigurationError
from fhirgen.loader.records import CONSUMED_FIELDS, record_from_resource
from fhirgen.models.definitions import DefinitionRecord

logger = structlog.get_logger(__name__)


def _decode_text(content: bytes, source: str) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise DocumentParseError(source, f"not valid UTF-8: {e}")


def _build_record(resource: Any, source: str, package: Optional[str]) -> Optional[DefinitionRecord]:
    try:
        return record_from_resource(resource, source, package)
    except (TypeError, ValueError, AttributeError) as e:
        raise DocumentParseError(source, f"malformed content: {e}")


class StructuredParser:
    """Decode the full document with ``json`` and build the record."""

    name = "structured"

    def decode(self, content: bytes, source: str) -> Any:
        text = _decode_text(content, source)
        try:
            return json.loads(text)
        except ValueError as e:
            raise DocumentParseError(source, f"invalid JSON: {e}")

    def parse(self, content: bytes, source: str, package: Optional[str] = None) -> Optional[DefinitionRecord]:
        return _build_record(self.decode(content, source), source, package)


_YAML_SAFE_TEXT = str.maketrans({
    "\t": " ",
    "\x85": "\\u0085",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
})


class _JsonTextReader(io.TextIOBase):
    """Text stream that rewrites characters the YAML scanner reads differently from JSON.

    Raw tabs are only legal between JSON tokens, never inside strings, and
    become spaces. YAML folds a raw NEL, LS or PS inside a quoted string into
    a line break, so those are replaced by their ``\\uXXXX`` escape text. They
    cannot appear outside strings in valid JSON, so neither substitution
    changes any value.
    """

    def __init__(self, text: str):
        super().__init__()
        self._inner = io.StringIO(text)

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> str:
        return self._inner.read(size).translate(_YAML_SAFE_TEXT)


def _join_surrogates(value: str) -> str:
    """Combine UTF-16 surrogate pairs left behind by ``\\uXXXX`` escapes."""
    if any("\ud800" <= ch <= "\udfff" for ch in value):
        return value.encode("utf-16", "surrogatepass").decode("utf-16")
    return value


def _scalar_value(event: ScalarEvent) -> Any:
    if event.style:
        return _join_surrogates(event.value)
    # Plain scalars in JSON text are literals: numbers, true, false, null
    return json.loads(event.value)


class StreamingParser:
    """Build records from the YAML event stream, skipping unused subtrees."""

    name = "streaming"

    def __init__(self, fields=CONSUMED_FIELDS):
        self.fields = frozenset(fields)

    def decode(self, content: bytes, source: str) -> Any:
        text = _decode_text(content, source)
        try:
            events = yaml.parse(_JsonTextReader(text), Loader=yaml.SafeLoader)
            return self._document(events, source)
        except yaml.YAMLError as e:
            raise DocumentParseError(source, f"invalid JSON: {e}")
        except ValueError as e:
            raise DocumentParseError(source, f"invalid literal: {e}")

    def parse(self, content: bytes, source: str, package: Optional[str] = None) -> Optional[DefinitionRecord]:
        return _build_record(self.decode(content, source), source, package)

    def _document(self, events: Iterator, source: str) -> Any:
        result = None
        for event in events:
            if isinstance(event, (StreamStartEvent, DocumentStartEvent, DocumentEndEvent)):
                continue
            if isinstance(event, StreamEndEvent):
                break
            if result is not None:
                raise DocumentParseError(source, "more than one document in stream")
            if isinstance(event, MappingStartEvent):
                result = self._top_level(events, source)
            else:
                result = self._node(event, events, source)
        if result is None:
            raise DocumentParseError(source, "empty document")
        return result

    def _top_level(self, events: Iterator, source: str) -> Dict[str, Any]:
        resource: Dict[str, Any] = {}
        for event in events:
            if isinstance(event, MappingEndEvent):
                return resource
            key = self._key(event, source)
            if key in self.fields:
                resource[key] = self._node(next(events), events, source)
            else:
                self._skip(next(events), events)
        raise DocumentParseError(source, "unterminated object")

    def _key(self, event, source: str) -> str:
        if not isinstance(event, ScalarEvent) or not event.style:
            raise DocumentParseError(source, "object key is not a string")
        return _join_surrogates(event.value)

    def _node(self, event, events: Iterator, source: str) -> Any:
        if isinstance(event, ScalarEvent):
            return _scalar_value(event)
        if isinstance(event, MappingStartEvent):
            mapping: Dict[str, Any] = {}
            for item in events:
                if isinstance(item, MappingEndEvent):
                    return mapping
                key = self._key(item, source)
                mapping[key] = self._node(next(events), events, source)
        elif isinstance(event, SequenceStartEvent):
            sequence = []
            for item in events:
                if isinstance(item, SequenceEndEvent):
                    return sequence
                sequence.append(self._node(item, events, source))
        elif isinstance(event, AliasEvent):
            raise DocumentParseError(source, "aliases are not valid JSON")
        raise DocumentParseError(source, "unexpected end of document")

    @staticmethod
    def _skip(event, events: Iterator) -> None:
        if not isinstance(event, (MappingStartEvent, SequenceStartEvent)):
            return
        depth = 1
        for item in events:
            if isinstance(item, (MappingStartEvent, SequenceStartEvent)):
                depth += 1
            elif isinstance(item, (MappingEndEvent, SequenceEndEvent)):
                depth -= 1
                if depth == 0:
                    return


PARSERS: Dict[str, Type] = {
    StructuredParser.name: StructuredParser,
    StreamingParser.name: StreamingParser,
}


def get_parser(name: str):
    """Parser instance for a pipeline name (``structured`` or ``streaming``)."""
    parser_class = PARSERS.get((name or "").lower())
    if parser_class is None:
        raise InvalidConfigurationError(
            f"Unknown parse pipeline '{name}'. Available: {', '.join(sorted(PARSERS))}"
        )
    return parser_class()
