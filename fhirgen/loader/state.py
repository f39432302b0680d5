"""
fhirgen.loader.state
====================

Load-state tracking for long-running sessions.

Each package directive moves through

    UNKNOWN -> QUEUED -> IN_PROGRESS -> LOADED -> PARSED
                                     \\-> FAILED

``LOADED`` means the collection is populated, ``PARSED`` that the type
resolver has run over it. Requests for a directive that is already queued,
in progress or done return the current state and never start a second load.
A failed directive may be requested again.
"""

import asyncio
from enum import Enum
from typing import Callable, Dict, Optional

import structlog

from fhirgen.context import CodegenContext
from fhirgen.errors import FhirGenError
from fhirgen.loader.cache import PackageCache, parse_directive
from fhirgen.loader.loader import LoaderOptions, LoadResult, PackageLoader, resolve_entries
from fhirgen.resolver import TypeResolver

logger = structlog.get_logger(__name__)


class PackageLoadState(str, Enum):
    UNKNOWN = "unknown"
    QUEUED = "queued"
    IN_PROGRESS = "in-progress"
    LOADED = "loaded"
    PARSED = "parsed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (PackageLoadState.QUEUED, PackageLoadState.IN_PROGRESS)

    @property
    def is_done(self) -> bool:
        return self in (PackageLoadState.LOADED, PackageLoadState.PARSED, PackageLoadState.FAILED)


_NO_RESTART = (
    PackageLoadState.QUEUED,
    PackageLoadState.IN_PROGRESS,
    PackageLoadState.LOADED,
    PackageLoadState.PARSED,
)


def _normalize(directive: str) -> str:
    name, version = parse_directive(directive)
    return f"{name}#{version or 'latest'}"


class PackageLoadService:
    """Coalescing, asynchronous package loader keyed by directive."""

    def __init__(
        self,
        cache: PackageCache,
        context: Optional[CodegenContext] = None,
        options: Optional[LoaderOptions] = None,
        resolve: bool = True,
        loader_factory: Optional[Callable[..., PackageLoader]] = None,
    ):
        self.cache = cache
        self.context = context or CodegenContext(name="load-service")
        self.options = options
        self.resolve = resolve
        self._loader_factory = loader_factory or PackageLoader
        self._states: Dict[str, PackageLoadState] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._results: Dict[str, LoadResult] = {}
        self._errors: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self.load_starts = 0

    def state_for_directive(self, directive: str) -> PackageLoadState:
        return self._states.get(_normalize(directive), PackageLoadState.UNKNOWN)

    async def request_load(self, directive: str) -> PackageLoadState:
        """Start loading ``directive`` unless a load is queued, running or done.

        Returns the state after the request: ``QUEUED`` for a newly started
        load, otherwise the existing state. A load counts as in flight from
        the moment it is queued, so a request that arrives before the load
        task has started also gets ``QUEUED`` back and starts nothing.
        """
        key = _normalize(directive)
        async with self._lock:
            current = self._states.get(key, PackageLoadState.UNKNOWN)
            if current in _NO_RESTART:
                logger.debug("load_request_coalesced", directive=key, state=current.value)
                return current

            self._states[key] = PackageLoadState.QUEUED
            self._errors.pop(key, None)
            self.load_starts += 1
            self._tasks[key] = asyncio.create_task(self._run(key, directive))
            logger.info("load_queued", directive=key)
            return PackageLoadState.QUEUED

    async def wait_for(self, directive: str) -> PackageLoadState:
        """Wait for a started load to settle and return its final state."""
        key = _normalize(directive)
        task = self._tasks.get(key)
        if task is not None:
            await asyncio.shield(task)
        return self._states.get(key, PackageLoadState.UNKNOWN)

    def result_for(self, directive: str) -> Optional[LoadResult]:
        return self._results.get(_normalize(directive))

    def error_for(self, directive: str) -> Optional[str]:
        return self._errors.get(_normalize(directive))

    @property
    def states(self) -> Dict[str, PackageLoadState]:
        return dict(sorted(self._states.items()))

    async def _run(self, key: str, directive: str) -> None:
        self._states[key] = PackageLoadState.IN_PROGRESS
        logger.info("load_started", directive=key)
        try:
            entries = await resolve_entries(self.cache, [directive])
            loader = self._loader_factory(self.cache, self.options, self.context)
            name, _ = parse_directive(directive)
            result = await loader.load_packages(name, entries)
            self._results[key] = result
            self.context.register_collection(key, result.collection)
            self._states[key] = PackageLoadState.LOADED
            logger.info("load_finished", directive=key, definitions=len(result.collection))

            if self.resolve:
                loop = asyncio.get_running_loop()
                resolver = TypeResolver(result.collection, context=self.context)
                await loop.run_in_executor(None, resolver.resolve)
                self._states[key] = PackageLoadState.PARSED
                logger.info("load_resolved", directive=key)
        except FhirGenError as e:
            self._states[key] = PackageLoadState.FAILED
            self._errors[key] = str(e)
            logger.warning("load_failed", directive=key, error=str(e))
        except Exception as e:
            self._states[key] = PackageLoadState.FAILED
            self._errors[key] = f"{type(e).__name__}: {e}"
            logger.error("load_crashed", directive=key, error=str(e), exc_info=True)
