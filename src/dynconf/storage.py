"""Byte-level storage for dynamic configuration files.

The storage backend knows nothing about routers or services. It reads a YAML
file into plain Python data and writes plain data back. The rest of the
package depends on the :class:`StorageBackend` protocol so tests (or future
remote stores) can swap the filesystem out.

Failure modes are classified here: a missing or unreadable file raises
:class:`StorageReadError`, malformed YAML raises :class:`StorageParseError`,
and any failure to create directories or replace a file raises
:class:`PersistenceError`.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage dynconf storage. Install with `pip install dynconf`."
    ) from exc


DEFAULT_FILE_MODE = 0o644


class StorageError(RuntimeError):
    """Base class for storage backend failures."""


class StorageReadError(StorageError):
    """Raised when a file is missing or cannot be read."""


class StorageParseError(StorageError):
    """Raised when a file does not contain valid YAML."""


class PersistenceError(StorageError):
    """Raised when a directory or file cannot be written."""


class StorageBackend(Protocol):
    """Capability required by :class:`dynconf.store.ConfigStore`."""

    def exists(self, path: Path) -> bool:
        """Return ``True`` when *path* is an existing file."""
        ...

    def read(self, path: Path) -> object | None:
        """Return the parsed YAML content of *path*."""
        ...

    def write(self, path: Path, payload: Mapping[str, object]) -> None:
        """Replace *path* with the YAML rendering of *payload*."""
        ...

    def ensure_dir(self, path: Path) -> None:
        """Create *path* (and parents) when missing."""
        ...


def dump_yaml(payload: Mapping[str, object]) -> str:
    """Render *payload* the way every dynconf file is written.

    Key order is preserved and block style is forced so the same document
    always produces the same bytes.
    """
    return yaml.safe_dump(
        dict(payload),
        sort_keys=False,
        indent=2,
        default_flow_style=False,
        allow_unicode=True,
    )


@dataclass(frozen=True)
class FileBackend:
    """Local filesystem implementation of :class:`StorageBackend`."""

    file_mode: int = DEFAULT_FILE_MODE

    def exists(self, path: Path) -> bool:
        return path.expanduser().is_file()

    def read(self, path: Path) -> object | None:
        """Read and parse *path*; empty files parse to ``None``."""
        path = path.expanduser()
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise StorageReadError(f"File {path} does not exist.") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageReadError(f"Failed to read {path}: {exc}") from exc
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise StorageParseError(f"Failed to parse {path}: {exc}") from exc

    def write(self, path: Path, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to *path*.

        The content lands in a temporary sibling first and is moved over the
        target with :func:`os.replace`, so readers see either the old file or
        the new one.
        """
        path = path.expanduser()
        try:
            content = dump_yaml(payload)
        except yaml.YAMLError as exc:
            raise PersistenceError(f"Failed to serialise {path}: {exc}") from exc

        self.ensure_dir(path.parent)
        try:
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        except OSError as exc:
            raise PersistenceError(f"Failed to write {path}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.chmod(tmp_path, self.file_mode)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise PersistenceError(f"Failed to write {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def ensure_dir(self, path: Path) -> None:
        try:
            path.expanduser().mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to create directory {path}: {exc}") from exc


__all__ = [
    "DEFAULT_FILE_MODE",
    "FileBackend",
    "PersistenceError",
    "StorageBackend",
    "StorageError",
    "StorageParseError",
    "StorageReadError",
    "dump_yaml",
]
