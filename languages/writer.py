# languages/writer.py
"""Indentation-aware text builder for backends that do not use templates."""

from contextlib import contextmanager
from typing import Iterator, List, Optional


class CodeWriter:
    def __init__(self, indent: str = "  "):
        self.indent_text = indent
        self.level = 0
        self._lines: List[str] = []

    def line(self, text: str = "") -> "CodeWriter":
        if text:
            self._lines.append(self.indent_text * self.level + text)
        else:
            self._lines.append("")
        return self

    def lines(self, texts) -> "CodeWriter":
        for text in texts:
            self.line(text)
        return self

    @contextmanager
    def indented(self) -> Iterator["CodeWriter"]:
        self.level += 1
        try:
            yield self
        finally:
            self.level -= 1

    @contextmanager
    def block(self, opening: str, closing: Optional[str] = None) -> Iterator["CodeWriter"]:
        self.line(opening)
        with self.indented():
            yield self
        if closing is not None:
            self.line(closing)

    def getvalue(self) -> str:
        return "\n".join(self._lines) + "\n"
