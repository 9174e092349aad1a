# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.17
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/data/syncdb.py

"""
Per-machine revision ledger ("syncdb").

One small text record per sync id, sharded into a two character prefix
directory under the ledger root:

    <root>/ab/abcdef...
        revguid: 3f1c...-...
        native_mtime: 1718000000

The ledger is never shared between machines. It records what this machine
last pushed or materialized, which is how the engine tells a local edit from
a remote one.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from greycrypt.config.manager import SyncConfig
from greycrypt.system.exceptions import LedgerIOError


@dataclass(frozen=True)
class RevisionLedgerEntry:
    revguid: uuid.UUID
    native_mtime: int


class RevisionLedger:
    """Sharded on-disk records with an in-memory cache in front."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._cache: dict[str, RevisionLedgerEntry] = {}
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LedgerIOError(f"Cannot create ledger directory {self.root}: {e}", path=str(self.root)) from e

    @classmethod
    def from_config(cls, config: SyncConfig) -> RevisionLedger:
        return cls(config.ledger_dir())

    def record_path(self, syncid: str) -> Path:
        return self.root / syncid[:2] / syncid

    def get(self, syncid: str) -> Optional[RevisionLedgerEntry]:
        """Entry for syncid, or None if this machine has never synced it.

        Raises:
            LedgerIOError: If the record exists but cannot be read or parsed
        """
        cached = self._cache.get(syncid)
        if cached is not None:
            return cached

        path = self.record_path(syncid)
        if not path.is_file():
            return None

        entry = self._load(syncid, path)
        self._cache[syncid] = entry
        return entry

    def _load(self, syncid: str, path: Path) -> RevisionLedgerEntry:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise LedgerIOError(f"Cannot read ledger record {path}: {e}", path=str(path), syncid=syncid) from e

        fields = {}
        for line in text.splitlines():
            if not line.strip():
                continue
            key, sep, value = line.partition(":")
            if not sep:
                raise LedgerIOError(f"Malformed ledger line {line!r} in {path}", path=str(path), syncid=syncid)
            fields[key.strip()] = value.strip()

        try:
            revguid = uuid.UUID(fields["revguid"])
            native_mtime = int(fields["native_mtime"])
        except (KeyError, ValueError) as e:
            raise LedgerIOError(f"Malformed ledger record {path}: {e!r}", path=str(path), syncid=syncid) from e
        return RevisionLedgerEntry(revguid=revguid, native_mtime=native_mtime)

    def update(self, syncid: str, revguid: uuid.UUID, native_mtime: int) -> RevisionLedgerEntry:
        """Persist the entry for syncid, then refresh the cache.

        Call only after the matching syncfile or native write has completed.
        """
        entry = RevisionLedgerEntry(revguid=revguid, native_mtime=int(native_mtime))
        path = self.record_path(syncid)
        tmp_path = path.with_name(path.name + ".gc_tmp")
        body = f"revguid: {entry.revguid}\nnative_mtime: {entry.native_mtime}\n"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(body, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise LedgerIOError(f"Cannot write ledger record {path}: {e}", path=str(path), syncid=syncid) from e

        self._cache[syncid] = entry
        logger.debug(f"Ledger {syncid[:12]}: rev {entry.revguid} mtime {entry.native_mtime}")
        return entry

    def flush_cache(self) -> None:
        """Forget cached entries; disk records are untouched."""
        self._cache.clear()
