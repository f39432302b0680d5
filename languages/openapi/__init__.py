"""OpenAPI schema backend."""

from languages.openapi.emitter import OpenApiLanguage, OpenApiOptions

__all__ = ["OpenApiLanguage", "OpenApiOptions"]
