# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.18
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/core/scanner.py

from __future__ import annotations

import os
from collections import defaultdict
from pathlib import Path
from typing import Iterator

import loguru
from pydantic import BaseModel, ConfigDict, Field

from greycrypt.config.manager import SyncConfig
from greycrypt.data.syncfile import SYNC_EXT, TEMP_SUFFIX, derive_identity_and_path, read_clear_header
from greycrypt.system.exceptions import MappingError
from greycrypt.system.logging_setup import SyncLog

logger = loguru.logger


class DiscoveryResult(BaseModel):
    """Everything Stage 0 found, keyed by sync id."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    native: dict[str, Path] = Field(default_factory=dict)
    syncfiles: dict[str, Path] = Field(default_factory=dict)
    conflicted: set[str] = Field(default_factory=set)
    skipped: list[str] = Field(default_factory=list)


def is_duplicate_marker(path: Path) -> bool:
    """Storage providers name their conflict copies "<name> (1).dat" and the like.

    A space never appears in a syncfile name we write, so any name with one
    is treated as a provider copy. This is a heuristic, not conflict handling.
    """
    return " " in path.name


def _norm(path: Path) -> str:
    return os.path.normcase(os.path.normpath(os.path.abspath(path)))


def is_under(path: Path, root: Path) -> bool:
    target, base = _norm(path), _norm(root)
    return target == base or target.startswith(base.rstrip(os.sep) + os.sep)


def _should_ignore_native(config: SyncConfig, path: Path) -> bool:
    if path.name.endswith(TEMP_SUFFIX):
        return True
    if config.ignore.matches(path):
        return True
    # never sync the sync dir into itself
    return is_under(path, config.sync_dir)


def iter_native_files(root: Path) -> Iterator[Path]:
    """Files under a native root in sorted order; a root may itself be a file."""
    if root.is_file():
        yield root
        return
    for path in sorted(root.rglob("*")):
        if path.is_file():
            yield path


def scan_native(config: SyncConfig, log: SyncLog, result: DiscoveryResult) -> None:
    for root in config.native_paths:
        if not root.exists():
            log.warn_once(f"Native path does not exist, skipping: {root}")
            continue

        for path in iter_native_files(root):
            if _should_ignore_native(config, path):
                logger.debug(f"Ignoring {path}")
                continue
            try:
                syncid, _ = derive_identity_and_path(config, path)
            except MappingError as e:
                log.warning(f"Skipping unmapped native file: {e}")
                result.skipped.append(str(path))
                continue

            seen = result.native.get(syncid)
            if seen is None:
                result.native[syncid] = path
            elif _norm(seen) != _norm(path):
                # two native files collapse to one identity (names differing only in case)
                log.warning(f"Native files {seen} and {path} share sync id {syncid[:12]}; skipping both")
                result.conflicted.add(syncid)


def _syncfile_in_native_roots(config: SyncConfig, log: SyncLog, fields: dict[str, str], path: Path) -> bool:
    keyword = fields["kw"]
    try:
        native = config.mapping.native_path_for(keyword, fields["relpath"])
    except MappingError as e:
        log.warn_once(f"Skipping syncfiles that cannot be placed on this machine: {e}")
        return False
    if any(is_under(native, root) for root in config.native_paths):
        return True
    log.warn_once(f"Syncfiles for {keyword} outside configured native paths are skipped (e.g. {native})")
    logger.debug(f"Skipping {path}: {native} is outside native paths")
    return False


def scan_syncfiles(config: SyncConfig, log: SyncLog, result: DiscoveryResult) -> None:
    """Group syncfiles by the sync id in their header; more than one per id is a conflict."""
    by_id: dict[str, list[Path]] = defaultdict(list)
    for path in sorted(config.sync_dir.rglob(f"*{SYNC_EXT}")):
        if not path.is_file():
            continue
        if is_duplicate_marker(path):
            log.warn_once(f"Ignoring storage provider duplicate: {path.name}")
            result.skipped.append(str(path))
            continue

        fields = read_clear_header(path)
        if not _syncfile_in_native_roots(config, log, fields, path):
            result.skipped.append(str(path))
            continue
        by_id[fields["syncid"]].append(path)

    for syncid, paths in by_id.items():
        if len(paths) > 1:
            log.warning(f"Sync id {syncid[:12]} has {len(paths)} syncfiles ({', '.join(p.name for p in paths)}); skipping")
            result.conflicted.add(syncid)
            continue
        result.syncfiles[syncid] = paths[0]


def discover(config: SyncConfig, log: SyncLog) -> DiscoveryResult:
    """Stage 0: walk native roots and the sync dir."""
    result = DiscoveryResult()
    scan_native(config, log, result)
    scan_syncfiles(config, log, result)

    for syncid in sorted(result.conflicted):
        result.native.pop(syncid, None)
        result.syncfiles.pop(syncid, None)
        result.skipped.append(syncid)

    logger.debug(
        f"Discovered {len(result.native)} native files, {len(result.syncfiles)} syncfiles, "
        f"{len(result.conflicted)} conflicted ids"
    )
    return result
