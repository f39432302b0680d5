"""TypeScript interface backend."""

from languages.typescript.emitter import TypeScriptLanguage, TypeScriptOptions

__all__ = ["TypeScriptLanguage", "TypeScriptOptions"]
