"""Plain-text inventory backend."""

from languages.info.emitter import InfoLanguage, InfoOptions

__all__ = ["InfoLanguage", "InfoOptions"]
