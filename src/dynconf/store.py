"""Load and persist the dynamic configuration in monolithic or split layout.

Two physical layouts are supported:

* **monolithic**: the whole document lives in one file (``dynamic.yml``).
* **split**: ``routers.yml``, ``services.yml`` and ``middlewares.yml`` inside
  the split directory each hold one section under the usual ``http``
  envelope; ``services.yml`` also carries ``serversTransports`` and any
  other non-entity ``http`` keys.

The active layout is never stored. :meth:`ConfigStore.detect_mode` looks at
the filesystem on every call, and the presence of any split file selects
split mode. When both layouts exist on disk the split files win and the
monolithic file is left untouched.

Loading is fail-soft: unreadable or unparseable files degrade to empty
sections and are reported through the module logger. Entries that do not
fit the typed models are kept as :class:`~dynconf.models.UnmodelledEntity`
and written back unchanged.

Writing is strict: any write failure surfaces as
:class:`~dynconf.storage.PersistenceError`.
Split writes are independent per file with no rollback across files.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .models import (
    KINDS,
    DocumentError,
    DynamicConfig,
    http_extras,
    parse_http,
    parse_section,
    parse_transports,
    section_to_dict,
)
from .storage import FileBackend, StorageBackend, StorageError

LOGGER = logging.getLogger(__name__)

ROUTERS_FILE = "routers.yml"
SERVICES_FILE = "services.yml"
MIDDLEWARES_FILE = "middlewares.yml"
SPLIT_FILES: tuple[str, ...] = (ROUTERS_FILE, SERVICES_FILE, MIDDLEWARES_FILE)


class StorageMode(str, Enum):
    """Physical layout currently selected by the files on disk."""

    MONOLITHIC = "monolithic"
    SPLIT = "split"


@dataclass(frozen=True)
class ConfigStore:
    """Single entry point for reading and writing the dynamic configuration."""

    dynamic_file: Path
    config_dir: Path
    backend: StorageBackend = field(default_factory=FileBackend)

    def __post_init__(self) -> None:
        """Normalise paths after initialisation."""
        object.__setattr__(self, "dynamic_file", Path(self.dynamic_file).expanduser())
        object.__setattr__(self, "config_dir", Path(self.config_dir).expanduser())

    # ------------------------------------------------------------------
    # Mode detection
    # ------------------------------------------------------------------
    def split_path(self, name: str) -> Path:
        """Return the path of a split file inside the split directory."""
        return self.config_dir / name

    def detect_mode(self) -> StorageMode:
        """Return the layout selected by the split files present right now."""
        if any(self.backend.exists(self.split_path(name)) for name in SPLIT_FILES):
            return StorageMode.SPLIT
        return StorageMode.MONOLITHIC

    def describe(self) -> dict[str, Any]:
        """Summarise the storage layout for display."""
        mode = self.detect_mode()
        return {
            "mode": mode.value,
            "dynamic_file": str(self.dynamic_file),
            "dynamic_file_exists": self.backend.exists(self.dynamic_file),
            "config_dir": str(self.config_dir),
            "split_files": {
                name: self.backend.exists(self.split_path(name)) for name in SPLIT_FILES
            },
        }

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------
    def load(self) -> DynamicConfig:
        """Return the current document; never raises for read or parse problems."""
        if self.detect_mode() is StorageMode.SPLIT:
            doc = self._load_split()
        else:
            doc = self._load_monolithic()
        for kind, name, entity in doc.unmodelled():
            LOGGER.info("Keeping %s '%s' verbatim: %s", kind, name, entity.reason)
        return doc

    def _load_monolithic(self) -> DynamicConfig:
        path = self.dynamic_file
        if not self.backend.exists(path):
            LOGGER.debug("No configuration at %s yet", path)
            return DynamicConfig.empty()
        try:
            top, http = self._read_document(path)
        except (StorageError, DocumentError) as exc:
            LOGGER.warning("Using an empty configuration: %s", exc)
            return DynamicConfig.empty()

        doc = DynamicConfig(
            http_extras=http_extras(http),
            extras={key: value for key, value in top.items() if key != "http"},
        )
        for kind in KINDS:
            setattr(doc, kind, self._parse_section(path, kind, http))
        doc.servers_transports = self._parse_transports(path, http)
        return doc

    def _load_split(self) -> DynamicConfig:
        doc = DynamicConfig.empty()
        for name, kind in ((ROUTERS_FILE, "routers"), (MIDDLEWARES_FILE, "middlewares")):
            path = self.split_path(name)
            http = self._read_split_http(path)
            setattr(doc, kind, self._parse_section(path, kind, http))
            doc.http_extras.update(http_extras(http))

        # services.yml goes last so its transports and extra keys take precedence.
        path = self.split_path(SERVICES_FILE)
        http = self._read_split_http(path)
        doc.services = self._parse_section(path, "services", http)
        doc.servers_transports = self._parse_transports(path, http)
        doc.http_extras.update(http_extras(http))
        return doc

    def _read_document(self, path: Path) -> tuple[dict[str, Any], dict[str, object]]:
        """Return the top-level mapping of *path* and its ``http`` envelope."""
        raw = self.backend.read(path)
        if raw is None:
            return {}, {}
        if not isinstance(raw, Mapping):
            raise DocumentError(str(path), "expected a mapping at the top level.")
        return dict(raw), parse_http(raw.get("http"), f"{path}.http")

    def _read_split_http(self, path: Path) -> dict[str, object]:
        """Return the ``http`` mapping of a split file, or ``{}`` when unusable."""
        if not self.backend.exists(path):
            return {}
        try:
            _, http = self._read_document(path)
        except (StorageError, DocumentError) as exc:
            LOGGER.warning("Ignoring split file %s: %s", path, exc)
            return {}
        return http

    def _parse_section(
        self,
        path: Path,
        kind: str,
        http: Mapping[str, object],
    ) -> dict[str, Any]:
        try:
            return parse_section(kind, http.get(kind), f"{path}.http.{kind}", strict=False)
        except DocumentError as exc:
            LOGGER.warning("Ignoring %s from %s: %s", kind, path, exc)
            return {}

    def _parse_transports(self, path: Path, http: Mapping[str, object]) -> dict[str, Any] | None:
        try:
            return parse_transports(
                http.get("serversTransports"), f"{path}.http.serversTransports"
            )
        except DocumentError as exc:
            LOGGER.warning("Ignoring serversTransports from %s: %s", path, exc)
            return None

    # ------------------------------------------------------------------
    # Save / split
    # ------------------------------------------------------------------
    def save(self, doc: DynamicConfig) -> StorageMode:
        """Write *doc* using whichever layout is active at call time."""
        mode = self.detect_mode()
        if mode is StorageMode.SPLIT:
            self._write_split(doc)
        else:
            self.backend.write(self.dynamic_file, doc.to_dict())
            LOGGER.info("Wrote configuration to %s", self.dynamic_file)
        return mode

    def split(self, doc: DynamicConfig) -> None:
        """Write *doc* as split files, switching the store to split mode."""
        self.backend.ensure_dir(self.config_dir)
        self._write_split(doc)

    def _write_split(self, doc: DynamicConfig) -> None:
        if doc.extras:
            LOGGER.warning(
                "Split layout has no file for top-level section(s) %s; they are not written.",
                ", ".join(sorted(doc.extras)),
            )
        for name, payload in partition(doc).items():
            path = self.split_path(name)
            self.backend.write(path, payload)
            LOGGER.info("Wrote %s", path)


def partition(doc: DynamicConfig) -> dict[str, dict[str, Any]]:
    """Return the per-file payloads for split storage, keyed by file name."""
    services_http: dict[str, Any] = {"services": section_to_dict(doc.services)}
    if doc.servers_transports is not None:
        services_http["serversTransports"] = dict(doc.servers_transports)
    services_http.update(doc.http_extras)
    return {
        ROUTERS_FILE: {"http": {"routers": section_to_dict(doc.routers)}},
        SERVICES_FILE: {"http": services_http},
        MIDDLEWARES_FILE: {"http": {"middlewares": section_to_dict(doc.middlewares)}},
    }


__all__ = [
    "ConfigStore",
    "MIDDLEWARES_FILE",
    "ROUTERS_FILE",
    "SERVICES_FILE",
    "SPLIT_FILES",
    "StorageMode",
    "partition",
]
