"""Ruby model backend."""

from languages.ruby.emitter import RubyLanguage, RubyOptions

__all__ = ["RubyLanguage", "RubyOptions"]
