"""Config store tests: mode detection, fail-soft loading, save routing and split."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

import pytest
from payloads import (
    FULL_DOCUMENT,
    MIDDLEWARE_RATE,
    ROUTER_B,
    SERVICE_B,
    read_yaml,
    write_yaml,
)

from dynconf.models import DynamicConfig, Router, UnmodelledEntity
from dynconf.storage import FileBackend, PersistenceError
from dynconf.store import SPLIT_FILES, ConfigStore, StorageMode, partition


def _split_contents(store: ConfigStore) -> dict[str, bytes]:
    return {name: store.split_path(name).read_bytes() for name in SPLIT_FILES}


def test_load_with_no_files_returns_empty_document(store: ConfigStore) -> None:
    """Nothing on disk means an empty but fully shaped document."""
    doc = store.load()

    assert store.detect_mode() is StorageMode.MONOLITHIC
    assert doc.routers == {}
    assert doc.services == {}
    assert doc.middlewares == {}


def test_malformed_monolithic_file_degrades_to_empty(
    store: ConfigStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Unparseable or mis-shaped monolithic files load as an empty document."""
    store.dynamic_file.write_text("http: [unclosed\n", encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="dynconf.store"):
        assert store.load() == DynamicConfig.empty()
    assert "empty configuration" in caplog.text

    store.dynamic_file.write_text("- just\n- a list\n", encoding="utf-8")
    assert store.load() == DynamicConfig.empty()


def test_monolithic_save_round_trips_and_preserves_extras(store: ConfigStore) -> None:
    """Saving a loaded document keeps unknown keys and other top-level sections."""
    raw = {
        "http": {
            "routers": {"r": {**ROUTER_B, "priority": 5}},
            "services": {},
            "middlewares": {},
        },
        "tcp": {"routers": {"db": {"rule": "HostSNI(`*`)"}}},
    }
    write_yaml(store.dynamic_file, raw)

    mode = store.save(store.load())

    assert mode is StorageMode.MONOLITHIC
    assert read_yaml(store.dynamic_file) == raw
    assert not store.config_dir.exists()


def test_detect_mode_follows_any_split_file(store: ConfigStore) -> None:
    """A single split file is enough to switch to split mode, re-checked per call."""
    assert store.detect_mode() is StorageMode.MONOLITHIC

    write_yaml(store.split_path("middlewares.yml"), {"http": {"middlewares": {}}})
    assert store.detect_mode() is StorageMode.SPLIT

    store.split_path("middlewares.yml").unlink()
    assert store.detect_mode() is StorageMode.MONOLITHIC


def test_split_switches_mode_and_reloads_equal_document(store: ConfigStore) -> None:
    """After split the store reads the same document back from the split files."""
    doc = DynamicConfig.from_dict(FULL_DOCUMENT)

    store.split(doc)

    assert store.detect_mode() is StorageMode.SPLIT
    assert all(store.split_path(name).exists() for name in SPLIT_FILES)
    assert store.load() == doc


def test_split_file_layout(store: ConfigStore) -> None:
    """Each split file holds its own section; services carry serversTransports."""
    store.split(DynamicConfig.from_dict(FULL_DOCUMENT))
    http = FULL_DOCUMENT["http"]

    assert read_yaml(store.split_path("routers.yml")) == {"http": {"routers": http["routers"]}}
    assert read_yaml(store.split_path("services.yml")) == {
        "http": {"services": http["services"], "serversTransports": http["serversTransports"]}
    }
    assert read_yaml(store.split_path("middlewares.yml")) == {
        "http": {"middlewares": http["middlewares"]}
    }


def test_split_is_idempotent(store: ConfigStore) -> None:
    """Splitting the same document twice produces identical bytes."""
    doc = DynamicConfig.from_dict(FULL_DOCUMENT)

    store.split(doc)
    first = _split_contents(store)
    store.split(doc)

    assert _split_contents(store) == first


def test_split_drops_top_level_extras_with_warning(
    store: ConfigStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Sections outside http have no split file and are reported."""
    doc = DynamicConfig.from_dict({**FULL_DOCUMENT, "tcp": {"routers": {}}})

    with caplog.at_level(logging.WARNING, logger="dynconf.store"):
        store.split(doc)

    assert "tcp" in caplog.text
    assert store.load().extras == {}


def test_partial_parse_failure_is_isolated(store: ConfigStore) -> None:
    """A malformed split file only empties its own section."""
    store.split(DynamicConfig.from_dict(FULL_DOCUMENT))
    store.split_path("routers.yml").write_text("http: {routers: [oops\n", encoding="utf-8")

    doc = store.load()

    assert doc.routers == {}
    assert set(doc.services) == {"svc-a"}
    assert set(doc.middlewares) == {"rate"}
    assert doc.servers_transports == {"insecure": {"insecureSkipVerify": True}}


def test_unmodelled_entry_in_split_file_is_kept(
    store: ConfigStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """An entry the models do not cover loads as-is and is written back unchanged."""
    store.split(DynamicConfig.from_dict(FULL_DOCUMENT))
    middlewares = {
        "rate": MIDDLEWARE_RATE,
        "strip": {"stripPrefix": {"prefixes": ["/x"]}},
    }
    write_yaml(store.split_path("middlewares.yml"), {"http": {"middlewares": middlewares}})

    with caplog.at_level(logging.INFO, logger="dynconf.store"):
        doc = store.load()

    assert isinstance(doc.middlewares["strip"], UnmodelledEntity)
    assert set(doc.routers) == {"router-a"}
    assert "Keeping middlewares 'strip' verbatim" in caplog.text

    store.save(doc)
    assert read_yaml(store.split_path("middlewares.yml")) == {"http": {"middlewares": middlewares}}


def test_monolithic_save_keeps_unmodelled_entries(store: ConfigStore) -> None:
    """Loading and saving a file with unsupported entries does not drop them."""
    raw = {
        "http": {
            "routers": {"keep": {**ROUTER_B, "service": "canary"}},
            "services": {
                "svc-b": SERVICE_B,
                "canary": {"weighted": {"services": [{"name": "svc-b", "weight": 1}]}},
            },
            "middlewares": {
                "strip": {"stripPrefix": {"prefixes": ["/api"]}},
                "auth": {"basicAuth": {"users": ["admin:$apr1$x"]}},
            },
        }
    }
    write_yaml(store.dynamic_file, raw)

    store.save(store.load())

    assert read_yaml(store.dynamic_file) == raw


def test_non_mapping_section_degrades_only_that_section(store: ConfigStore) -> None:
    """A section of the wrong type is emptied; the rest of the file still loads."""
    raw = {
        "http": {
            "routers": "oops",
            "services": {"svc-b": SERVICE_B},
            "middlewares": {"rate": MIDDLEWARE_RATE},
        }
    }
    write_yaml(store.dynamic_file, raw)

    doc = store.load()

    assert doc.routers == {}
    assert set(doc.services) == {"svc-b"}
    assert set(doc.middlewares) == {"rate"}


def test_unknown_http_keys_survive_split(store: ConfigStore) -> None:
    """Non-entity http keys move into services.yml and load back."""
    write_yaml(
        store.dynamic_file,
        {"http": {**FULL_DOCUMENT["http"], "experimental": {"plugin": True}}},
    )

    store.split(store.load())

    services_file = read_yaml(store.split_path("services.yml"))
    assert services_file["http"]["experimental"] == {"plugin": True}
    assert store.load().http_extras == {"experimental": {"plugin": True}}


def test_missing_split_files_load_as_empty_sections(store: ConfigStore) -> None:
    """Only the present split files contribute; the rest are empty."""
    write_yaml(store.split_path("services.yml"), {"http": {"services": {"svc-b": SERVICE_B}}})

    doc = store.load()

    assert doc.routers == {}
    assert doc.middlewares == {}
    assert doc.services["svc-b"].to_dict() == SERVICE_B
    assert doc.servers_transports is None


def test_save_follows_mode_at_save_time(store: ConfigStore) -> None:
    """Split files appearing between load and save redirect the save."""
    write_yaml(store.dynamic_file, FULL_DOCUMENT)
    doc = store.load()
    doc.routers["r-b"] = Router.from_dict(ROUTER_B)
    monolithic_before = store.dynamic_file.read_bytes()

    write_yaml(store.split_path("routers.yml"), {"http": {"routers": {}}})
    mode = store.save(doc)

    assert mode is StorageMode.SPLIT
    assert store.dynamic_file.read_bytes() == monolithic_before
    routers = read_yaml(store.split_path("routers.yml"))["http"]["routers"]
    assert set(routers) == {"router-a", "r-b"}
    assert store.split_path("services.yml").exists()
    assert store.split_path("middlewares.yml").exists()


def test_split_files_win_over_monolithic(store: ConfigStore) -> None:
    """When both layouts exist the split files are authoritative."""
    write_yaml(store.dynamic_file, FULL_DOCUMENT)
    write_yaml(store.split_path("routers.yml"), {"http": {"routers": {"only": ROUTER_B}}})

    doc = store.load()

    assert set(doc.routers) == {"only"}
    assert doc.services == {}


def test_save_write_failure_raises(tmp_path: Path) -> None:
    """Write failures propagate as PersistenceError."""
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = ConfigStore(dynamic_file=blocker / "dynamic.yml", config_dir=tmp_path / "config")

    assert store.load() == DynamicConfig.empty()
    with pytest.raises(PersistenceError):
        store.save(DynamicConfig.empty())


def test_split_directory_creation_failure_raises(tmp_path: Path) -> None:
    """split() fails loudly when the directory cannot be created."""
    blocker = tmp_path / "config"
    blocker.write_text("", encoding="utf-8")
    store = ConfigStore(dynamic_file=tmp_path / "dynamic.yml", config_dir=blocker)

    with pytest.raises(PersistenceError):
        store.split(DynamicConfig.empty())


class _FlakyBackend:
    """Filesystem backend that fails every write to one named file."""

    def __init__(self, failing: str) -> None:
        self.failing = failing
        self._inner = FileBackend()

    def exists(self, path: Path) -> bool:
        return self._inner.exists(path)

    def read(self, path: Path) -> object | None:
        return self._inner.read(path)

    def write(self, path: Path, payload: Mapping[str, object]) -> None:
        if path.name == self.failing:
            raise PersistenceError(f"cannot write {path}")
        self._inner.write(path, payload)

    def ensure_dir(self, path: Path) -> None:
        self._inner.ensure_dir(path)


def test_split_writes_are_not_rolled_back(tmp_path: Path) -> None:
    """A failure on one split file leaves earlier files written."""
    store = ConfigStore(
        dynamic_file=tmp_path / "dynamic.yml",
        config_dir=tmp_path / "config",
        backend=_FlakyBackend("services.yml"),
    )

    with pytest.raises(PersistenceError):
        store.split(DynamicConfig.from_dict(FULL_DOCUMENT))

    assert store.split_path("routers.yml").exists()
    assert not store.split_path("services.yml").exists()
    assert not store.split_path("middlewares.yml").exists()


def test_partition_without_transports() -> None:
    """serversTransports is omitted from services.yml when absent."""
    files = partition(DynamicConfig.empty())

    assert files["services.yml"] == {"http": {"services": {}}}
    assert list(files) == list(SPLIT_FILES)


def test_describe_reports_layout(store: ConfigStore) -> None:
    """describe() lists the mode and which files exist."""
    store.split(DynamicConfig.empty())

    info = store.describe()

    assert info["mode"] == "split"
    assert info["dynamic_file_exists"] is False
    assert info["split_files"] == {name: True for name in SPLIT_FILES}
