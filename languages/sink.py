# languages/sink.py
"""Output sinks that emitters write generated files to.

Emitters never open files themselves; everything goes through a sink so
tests can capture output in memory.
"""

from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Dict, List, Union

import structlog

from fhirgen.errors import InvalidConfigurationError

logger = structlog.get_logger(__name__)


def _normalize(relative_path: str) -> str:
    path = PurePosixPath(relative_path.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise InvalidConfigurationError(f"Invalid output path: {relative_path!r}")
    return str(path)


class OutputSink(ABC):
    """Destination for generated files addressed by relative POSIX path."""

    def __init__(self):
        self.written: List[str] = []

    def write(self, relative_path: str, content: Union[str, bytes]) -> str:
        path = _normalize(relative_path)
        data = content.encode("utf-8") if isinstance(content, str) else content
        self._write(path, data)
        self.written.append(path)
        return path

    @abstractmethod
    def _write(self, path: str, data: bytes) -> None:
        pass


class FileSystemSink(OutputSink):
    """Writes files below a root directory, creating directories as needed."""

    def __init__(self, root: Union[str, Path]):
        super().__init__()
        self.root = Path(root)

    def _write(self, path: str, data: bytes) -> None:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        # Bytes keep "\n" line endings on every platform
        with open(target, "wb") as f:
            f.write(data)
        logger.debug("file_written", path=str(target), size=len(data))


class MemorySink(OutputSink):
    """Keeps generated files in memory."""

    def __init__(self):
        super().__init__()
        self.files: Dict[str, bytes] = {}

    def _write(self, path: str, data: bytes) -> None:
        self.files[path] = data

    def read(self, path: str) -> str:
        return self.files[_normalize(path)].decode("utf-8")

    def __contains__(self, path: str) -> bool:
        return path in self.files

    def __len__(self) -> int:
        return len(self.files)
