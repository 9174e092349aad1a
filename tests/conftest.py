# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.20
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/conftest.py

"""
Shared test fixtures for the greycrypt test suite.
"""

import sys
from pathlib import Path

import pytest
import yaml
from loguru import logger

from greycrypt.config.manager import SyncConfig
from tests.fixtures.machines import TEST_KEY, make_machine


@pytest.fixture(autouse=True)
def reset_loguru():
    """CliRunner swaps stderr; keep loguru from holding on to a closed stream."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="WARNING")


@pytest.fixture
def key() -> bytes:
    return TEST_KEY


@pytest.fixture
def sync_dir(tmp_path) -> Path:
    path = tmp_path / "shared" / "greycrypt"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def alice(tmp_path, sync_dir) -> SyncConfig:
    return make_machine(tmp_path, sync_dir, "alice")


@pytest.fixture
def bob(tmp_path, sync_dir) -> SyncConfig:
    return make_machine(tmp_path, sync_dir, "bob")


@pytest.fixture
def write_yaml_config(tmp_path):
    """Write greycrypt.yml for one machine; returns (config path, native home)."""

    def _write(name: str = "alice", key_hex: str | None = TEST_KEY.hex(), **overrides) -> tuple[Path, Path]:
        home = tmp_path / name / "home"
        home.mkdir(parents=True, exist_ok=True)
        sync = tmp_path / "shared" / "greycrypt"
        sync.mkdir(parents=True, exist_ok=True)
        data = {
            "host_name": name,
            "native_paths": [str(home)],
            "syncdb_dir": str(tmp_path / name / "syncdb"),
            "machines": {
                name: {"sync_dir": str(sync), "mapping": {"HOME": str(home)}},
            },
        }
        if key_hex is not None:
            data["encryption_key"] = key_hex
        data.update(overrides)
        cfg_path = tmp_path / name / "greycrypt.yml"
        cfg_path.write_text(yaml.safe_dump(data))
        return cfg_path, home

    return _write
