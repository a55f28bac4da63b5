"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from dynconf.store import ConfigStore


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    """Store rooted in a temporary directory with no files yet."""
    return ConfigStore(dynamic_file=tmp_path / "dynamic.yml", config_dir=tmp_path / "config")
