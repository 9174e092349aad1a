# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.20
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/fixtures/machines.py

"""
Simulated machines for sync tests.

Each machine has its own native tree and ledger under tmp_path/<name>; all
machines share one sync directory, the way a cloud-drive folder would be
shared in real use.
"""

import os
from pathlib import Path

from greycrypt.config.manager import SyncConfig
from greycrypt.config.mapping import PathMapping
from greycrypt.core.engine import SyncEngine, SyncReport
from greycrypt.data.syncdb import RevisionLedger
from greycrypt.system.logging_setup import SyncLog

TEST_KEY = bytes(range(32))


def make_machine(tmp_path: Path, sync_dir: Path, name: str, key: bytes = TEST_KEY,
                 native_subdirs: tuple[str, ...] = ()) -> SyncConfig:
    home = tmp_path / name / "home"
    home.mkdir(parents=True, exist_ok=True)
    native_paths = [home / sub for sub in native_subdirs] if native_subdirs else [home]
    return SyncConfig(
        sync_dir=sync_dir,
        mapping=PathMapping({"HOME": str(home)}),
        native_paths=native_paths,
        host_name=name,
        encryption_key=key,
        syncdb_dir=tmp_path / name / "syncdb",
    )


def home_of(config: SyncConfig) -> Path:
    return Path(config.mapping.lookup_dir("HOME"))


def write_native(config: SyncConfig, relpath: str, content: str | bytes) -> Path:
    path = home_of(config) / relpath
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content)
    return path


def bump_mtime(path: Path, seconds: int = 10) -> int:
    """Move mtime forward so whole-second comparisons see a change."""
    st = path.stat()
    new_mtime = int(st.st_mtime) + seconds
    os.utime(path, (st.st_atime, new_mtime))
    return new_mtime


def run_pass(config: SyncConfig, dry_run: bool = False) -> SyncReport:
    engine = SyncEngine(config, RevisionLedger.from_config(config), SyncLog())
    return engine.run(dry_run=dry_run)
