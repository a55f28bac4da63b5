"""Filesystem storage backend tests."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from dynconf.storage import (
    FileBackend,
    PersistenceError,
    StorageParseError,
    StorageReadError,
    dump_yaml,
)


def test_write_and_read_roundtrip(tmp_path: Path) -> None:
    """Writing a file and reading it back succeeds with the configured mode."""
    backend = FileBackend(file_mode=0o640)
    path = tmp_path / "nested" / "dynamic.yml"
    payload = {"http": {"routers": {"a": {"rule": "Path(`/`)"}}}}

    backend.write(path, payload)

    assert path.exists()
    assert (path.stat().st_mode & 0o777) == 0o640
    assert backend.read(path) == payload
    assert backend.exists(path)
    assert not list(path.parent.glob(".dynamic.yml.*"))


def test_read_missing_file_raises_read_error(tmp_path: Path) -> None:
    """Missing files are reported as StorageReadError."""
    backend = FileBackend()

    with pytest.raises(StorageReadError):
        backend.read(tmp_path / "missing.yml")
    assert backend.exists(tmp_path / "missing.yml") is False


def test_invalid_yaml_raises_parse_error(tmp_path: Path) -> None:
    """Invalid YAML raises StorageParseError."""
    path = tmp_path / "bad.yml"
    path.write_text("http: [unclosed\n", encoding="utf-8")

    with pytest.raises(StorageParseError):
        FileBackend().read(path)


def test_directories_are_not_files(tmp_path: Path) -> None:
    """exists() only reports regular files."""
    (tmp_path / "routers.yml").mkdir()

    assert FileBackend().exists(tmp_path / "routers.yml") is False


def test_write_failure_raises_persistence_error(tmp_path: Path) -> None:
    """A parent that is a file cannot hold the target."""
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(PersistenceError):
        FileBackend().write(blocker / "dynamic.yml", {"http": {}})


def test_replace_failure_cleans_up_temp_file(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed rename surfaces PersistenceError and leaves no temp file behind."""
    path = tmp_path / "dynamic.yml"
    path.write_text("http: {}\n", encoding="utf-8")

    def fail_replace(src: object, dst: object) -> None:
        raise OSError("read-only filesystem")

    monkeypatch.setattr(os, "replace", fail_replace)

    with pytest.raises(PersistenceError, match="read-only"):
        FileBackend().write(path, {"http": {"routers": {}}})

    assert path.read_text(encoding="utf-8") == "http: {}\n"
    assert [entry.name for entry in tmp_path.iterdir()] == ["dynamic.yml"]


def test_dump_yaml_is_deterministic_and_ordered() -> None:
    """Rendering keeps insertion order and is stable between calls."""
    payload = {"http": {"services": {"b": {}, "a": {}}}}

    first = dump_yaml(payload)

    assert first == dump_yaml(payload)
    assert first.index("b:") < first.index("a:")
    assert first.startswith("http:\n  services:\n")
