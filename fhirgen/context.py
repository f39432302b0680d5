"""
fhirgen.context
===============

Explicit session object passed to load, resolve and emit.

A context owns the settings in force, a cancellation flag checked by the
long-running algorithms between top-level types, and the collections that
were loaded during the session keyed by package directive. Several
contexts may coexist (for example one per FHIR release being compared).
"""

import threading
from typing import TYPE_CHECKING, Dict, List, Optional

import structlog

from fhirgen.config import Settings, get_settings
from fhirgen.errors import OperationCancelled

if TYPE_CHECKING:
    from fhirgen.models.collection import DefinitionCollection

logger = structlog.get_logger(__name__)


class CodegenContext:
    """Per-session state for the code generator."""

    def __init__(self, settings: Optional[Settings] = None, name: str = "default"):
        self.name = name
        self.settings = settings or get_settings()
        self._cancel_event = threading.Event()
        self._collections: Dict[str, "DefinitionCollection"] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #

    def cancel(self) -> None:
        logger.info("context_cancelled", context=self.name)
        self._cancel_event.set()

    def reset_cancellation(self) -> None:
        self._cancel_event.clear()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise ``OperationCancelled`` if ``cancel()`` has been called."""
        if self._cancel_event.is_set():
            raise OperationCancelled(f"Operation cancelled in context '{self.name}'")

    # ------------------------------------------------------------------ #
    # Loaded collections
    # ------------------------------------------------------------------ #

    def register_collection(self, directive: str, collection: "DefinitionCollection") -> None:
        with self._lock:
            self._collections[directive] = collection
        logger.debug("collection_registered", context=self.name, directive=directive)

    def collection_for(self, directive: str) -> Optional["DefinitionCollection"]:
        with self._lock:
            return self._collections.get(directive)

    @property
    def directives(self) -> List[str]:
        with self._lock:
            return sorted(self._collections)
