# languages/registry.py
"""Registry of language backends, keyed by name.

Backends are discovered like plugins: every sub-directory of ``languages/``
that contains a ``manifest.yaml`` is a backend. The manifest names the class
exported by the package's ``__init__.py``::

    name: ruby
    version: 1.0.0
    description: Ruby models with metadata hashes
    class: RubyLanguage
    aliases: [rb]

Lookups are case-insensitive over names and aliases.
"""

import importlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml

from fhirgen.errors import InvalidConfigurationError
from languages.base import Language

logger = structlog.get_logger(__name__)

MANIFEST_FILENAME = "manifest.yaml"


@dataclass
class LanguageManifest:
    name: str
    version: str
    description: str
    class_name: str
    aliases: List[str] = field(default_factory=list)
    options: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, path: Path) -> "LanguageManifest":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        try:
            return cls(
                name=data["name"],
                version=str(data.get("version", "0.0.0")),
                description=data.get("description", ""),
                class_name=data["class"],
                aliases=list(data.get("aliases", [])),
                options=dict(data.get("options", {})),
            )
        except KeyError as e:
            raise InvalidConfigurationError(f"Manifest {path} is missing {e}")


class LanguageRegistry:
    """Discovers backends from manifest directories and hands out instances."""

    def __init__(self, language_dirs: Optional[List[Path]] = None):
        self._language_dirs = language_dirs or [Path(__file__).parent]
        self._languages: Dict[str, Language] = {}
        self._manifests: Dict[str, LanguageManifest] = {}
        self._aliases: Dict[str, str] = {}
        self._errors: Dict[str, str] = {}
        self._loaded = False

    def load_languages(self) -> None:
        if self._loaded:
            return
        for language_dir in self._language_dirs:
            for path in sorted(Path(language_dir).iterdir()):
                if path.is_dir() and (path / MANIFEST_FILENAME).exists():
                    try:
                        self._load_language(path)
                    except (ImportError, AttributeError, InvalidConfigurationError, yaml.YAMLError) as e:
                        self._errors[path.name] = str(e)
                        logger.warning("language_load_failed", directory=str(path), error=str(e))
        self._loaded = True
        logger.debug("languages_loaded", languages=sorted(self._languages))

    def _load_language(self, path: Path) -> None:
        manifest = LanguageManifest.from_yaml(path / MANIFEST_FILENAME)
        module = importlib.import_module(f"{path.parent.name}.{path.name}")
        language_class = getattr(module, manifest.class_name)
        self.register(language_class(), manifest)

    def register(self, language: Language, manifest: Optional[LanguageManifest] = None) -> None:
        if not isinstance(language, Language):
            raise InvalidConfigurationError(f"{type(language).__name__} does not implement the language contract")
        key = language.name.lower()
        self._languages[key] = language
        if manifest is not None:
            self._manifests[key] = manifest
            for alias in manifest.aliases:
                self._aliases[alias.lower()] = key

    def get(self, name: str) -> Language:
        """Backend by name or alias.

        Raises:
            InvalidConfigurationError: when no backend has that name.
        """
        self.load_languages()
        key = name.lower()
        key = self._aliases.get(key, key)
        language = self._languages.get(key)
        if language is None:
            known = ", ".join(sorted(self._languages)) or "none"
            raise InvalidConfigurationError(f"Unknown language '{name}' (available: {known})")
        return language

    def __contains__(self, name: str) -> bool:
        self.load_languages()
        key = name.lower()
        return key in self._languages or key in self._aliases

    def list_languages(self) -> List[Dict[str, Any]]:
        self.load_languages()
        listing = []
        for key in sorted(self._languages):
            language = self._languages[key]
            manifest = self._manifests.get(key)
            listing.append({
                "name": language.name,
                "description": language.description,
                "version": manifest.version if manifest else None,
                "aliases": manifest.aliases if manifest else [],
                "options": manifest.options if manifest else {},
            })
        return listing

    @property
    def errors(self) -> Dict[str, str]:
        return dict(self._errors)


language_registry = LanguageRegistry()
