# cli/commands/common.py
"""Helpers shared by the CLI commands."""

import asyncio
import functools
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

import click
import yaml

from fhirgen.config import Settings, get_settings
from fhirgen.context import CodegenContext
from fhirgen.errors import FhirGenError
from fhirgen.loader.cache import DirectoryPackageCache
from fhirgen.loader.loader import LoaderOptions


def async_command(f):
    """Decorator to run async functions with Click."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def hard_failures(f):
    """Turn library errors into a click error (exit code 1) with the message only."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except FhirGenError as e:
            raise click.ClickException(str(e))
    return wrapper


def settings_from(ctx: click.Context) -> Settings:
    obj = ctx.find_root().obj or {}
    return obj.get("settings") or get_settings()


def make_context(ctx: click.Context, name: str) -> CodegenContext:
    return CodegenContext(settings_from(ctx), name=name)


def make_cache(ctx: click.Context, cache_dir: Optional[str]) -> DirectoryPackageCache:
    root = Path(cache_dir) if cache_dir else settings_from(ctx).package_cache_dir
    return DirectoryPackageCache(root)


def loader_options(ctx: click.Context, strict: Optional[bool], pipeline: Optional[str]) -> LoaderOptions:
    overrides: Dict[str, Any] = {}
    if strict is not None:
        overrides["strict"] = strict
    if pipeline:
        overrides["parse_pipeline"] = pipeline
    return LoaderOptions.from_settings(settings_from(ctx), **overrides)


def parse_option_pairs(pairs: Iterable[str]) -> Dict[str, Any]:
    """``key=value`` pairs; values are read as YAML scalars (``true``, ``3``)."""
    options: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got '{pair}'", param_hint="--option")
        options[key.strip().replace("-", "_")] = yaml.safe_load(value) if value else ""
    return options


def print_diagnostics(diagnostics: Sequence[Any], title: str = "Diagnostics") -> None:
    if not diagnostics:
        return
    click.echo(f"{title} ({len(diagnostics)}):", err=True)
    for diagnostic in diagnostics:
        click.echo(f"  {diagnostic}", err=True)


def split_counts(diagnostics: Sequence[Any]) -> Tuple[int, int]:
    errors = sum(1 for d in diagnostics if getattr(getattr(d, "severity", None), "value", "error") == "error")
    return errors, len(diagnostics) - errors
