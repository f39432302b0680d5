# languages/templating.py
"""Jinja2 environment shared by the template-driven backends."""

import json
from pathlib import Path
from typing import Any

import jinja2

from languages.naming import NamingConvention, to_convention


def _snake_case(text: str) -> str:
    return to_convention(text, NamingConvention.SNAKE)


def _camel_case(text: str) -> str:
    return to_convention(text, NamingConvention.CAMEL)


def _pascal_case(text: str) -> str:
    return to_convention(text, NamingConvention.PASCAL)


def _single_quote(value: Any) -> str:
    """Single-quoted literal with backslashes and quotes escaped."""
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def _json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _one_line(text: Any) -> str:
    return " ".join(str(text or "").split())


def create_environment(templates_dir: Path) -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(templates_dir)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=jinja2.StrictUndefined,
        autoescape=False,
    )
    env.filters["snake_case"] = _snake_case
    env.filters["camel_case"] = _camel_case
    env.filters["pascal_case"] = _pascal_case
    env.filters["quote"] = _single_quote
    env.filters["json"] = _json
    env.filters["one_line"] = _one_line
    return env
