# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.18
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/core/engine.py
"""
SyncEngine: one reconciliation pass between native files and syncfiles.

A pass runs four strictly ordered stages over the same list of work items:

    0. discover  - walk native roots and the sync dir (core.scanner)
    1. classify  - resolve COMPARE and CHECK_REVISION items into a concrete action
    2. verify    - no unresolved item may survive past classification
    3. commit    - perform pushes and materializations, updating the ledger
                   immediately after each filesystem write

Classification for an item with both a native file and a syncfile:

    revision changed | native newer | action
    -----------------+--------------+------------------------------------------
    yes              | yes          | ConflictError, the pass aborts
    yes              | no           | nothing (remote change; pull not performed)
    no               | yes          | PUSH
    no               | no           | nothing

For a syncfile with no native file: no ledger entry, or a different revision,
means a file new to this machine (MATERIALIZE); a matching revision means
the file was deleted here and the syncfile stays as a marker.

Any error other than MappingError aborts the rest of the pass. Commits made
before the failure are complete and safe to resume from.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import loguru
from pydantic import BaseModel, Field

from greycrypt.config.manager import SyncConfig
from greycrypt.core.scanner import DiscoveryResult, discover
from greycrypt.data.syncdb import RevisionLedger
from greycrypt.data.syncfile import create_syncfile, from_syncfile, syncfile_path_for
from greycrypt.system.exceptions import ConflictError, ConsistencyError, IoError
from greycrypt.system.host_utils import get_file_mtime
from greycrypt.system.logging_setup import SyncLog

logger = loguru.logger


def _native_mtime(path: Path, syncid: str) -> int:
    try:
        return get_file_mtime(path)
    except OSError as e:
        raise IoError(f"Cannot stat native file {path}: {e}", path=str(path), syncid=syncid) from e


class ActionKind(Enum):
    NOTHING        = "nothing"
    COMPARE        = "compare"
    CHECK_REVISION = "check_revision"
    PUSH           = "push"
    MATERIALIZE    = "materialize"

    def __str__(self) -> str:
        return self.value


UNRESOLVED = frozenset({ActionKind.COMPARE, ActionKind.CHECK_REVISION})


class Outcome(Enum):
    """Why an item ended up where it did; selects the report bucket."""
    PUSHED         = "pushed"
    MATERIALIZED   = "materialized"
    UNCHANGED      = "unchanged"
    REMOTE_CHANGED = "remote_changed"
    LOCAL_DELETION = "local_deletions"


@dataclass
class SyncWorkItem:
    syncid: str
    syncfile: Path
    nativefile: Optional[Path] = None


@dataclass
class PendingAction:
    kind: ActionKind
    item: SyncWorkItem
    outcome: Optional[Outcome] = None


class SyncReport(BaseModel):
    """Sync ids per outcome for one pass."""
    dry_run: bool = False
    pushed: list[str] = Field(default_factory=list)
    materialized: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    remote_changed: list[str] = Field(default_factory=list)
    local_deletions: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)

    def record(self, action: PendingAction) -> None:
        getattr(self, action.outcome.value).append(action.item.syncid)

    @property
    def changes(self) -> int:
        return len(self.pushed) + len(self.materialized)


class SyncEngine:
    def __init__(self, config: SyncConfig, ledger: RevisionLedger, log: Optional[SyncLog] = None):
        self.config = config
        self.ledger = ledger
        self.log = log or SyncLog()

    # ---- Stage 0 ----

    def build_work_items(self, discovery: DiscoveryResult) -> list[PendingAction]:
        """One action per sync id, in sorted id order."""
        actions = []
        for syncid in sorted(set(discovery.native) | set(discovery.syncfiles)):
            native = discovery.native.get(syncid)
            syncfile = discovery.syncfiles.get(syncid)
            if native is not None and syncfile is not None:
                actions.append(PendingAction(ActionKind.COMPARE, SyncWorkItem(syncid, syncfile, native)))
            elif native is not None:
                target = syncfile_path_for(self.config.sync_dir, syncid)
                actions.append(PendingAction(ActionKind.PUSH, SyncWorkItem(syncid, target, native), Outcome.PUSHED))
            else:
                actions.append(PendingAction(ActionKind.CHECK_REVISION, SyncWorkItem(syncid, syncfile)))
        return actions

    # ---- Stage 1 ----

    def classify(self, action: PendingAction) -> PendingAction:
        if action.kind == ActionKind.COMPARE:
            return self._compare(action.item)
        if action.kind == ActionKind.CHECK_REVISION:
            return self._check_revision(action.item)
        return action

    def _compare(self, item: SyncWorkItem) -> PendingAction:
        if item.nativefile is None:
            raise ConsistencyError(f"Compare requires a native file for {item.syncid}", syncid=item.syncid)

        sf = from_syncfile(self.config, item.syncfile)
        entry = self.ledger.get(item.syncid)
        if entry is None:
            raise ConsistencyError(
                f"No ledger entry for {item.nativefile}, which already has a syncfile; "
                f"rename the local file and resync to restore the remote copy",
                path=str(item.nativefile), syncid=item.syncid,
            )

        revision_changed = sf.revguid != entry.revguid
        native_newer = _native_mtime(item.nativefile, item.syncid) > entry.native_mtime

        if revision_changed and native_newer:
            raise ConflictError(
                f"Conflict on {item.nativefile} ({item.syncfile.name}): changed here and on another machine",
                path=str(item.nativefile), syncid=item.syncid,
            )
        if revision_changed:
            self.log.warn_once(
                "Remote changes to files that also exist here are not pulled yet; "
                "move the local copy aside to receive them"
            )
            self.log.info(f"Remote change not applied to {item.nativefile}")
            return PendingAction(ActionKind.NOTHING, item, Outcome.REMOTE_CHANGED)
        if native_newer:
            return PendingAction(ActionKind.PUSH, item, Outcome.PUSHED)
        return PendingAction(ActionKind.NOTHING, item, Outcome.UNCHANGED)

    def _check_revision(self, item: SyncWorkItem) -> PendingAction:
        if item.nativefile is not None:
            raise ConsistencyError(
                f"Revision check got a native file: {item.nativefile}", path=str(item.nativefile), syncid=item.syncid
            )

        sf = from_syncfile(self.config, item.syncfile)
        entry = self.ledger.get(item.syncid)
        if entry is None or entry.revguid != sf.revguid:
            return PendingAction(ActionKind.MATERIALIZE, item, Outcome.MATERIALIZED)

        # we synced this revision and the native file is gone: deleted here
        self.log.info(f"Stale syncfile (revision matches), local file was deleted: {sf.keyword}{sf.relpath}")
        return PendingAction(ActionKind.NOTHING, item, Outcome.LOCAL_DELETION)

    # ---- Stage 2 ----

    def verify(self, actions: list[PendingAction]) -> None:
        for action in actions:
            if action.kind in UNRESOLVED or action.outcome is None:
                raise ConsistencyError(
                    f"Cannot process unresolved {action.kind} action for {action.item.syncid}",
                    syncid=action.item.syncid,
                )

    # ---- Stage 3 ----

    def commit(self, action: PendingAction) -> None:
        item = action.item
        if action.kind in UNRESOLVED:
            raise ConsistencyError(f"Cannot commit unresolved {action.kind} action", syncid=item.syncid)

        if action.kind == ActionKind.PUSH:
            # mtime first: an edit made while reading shows up as newer next pass
            mtime = _native_mtime(item.nativefile, item.syncid)
            sf = create_syncfile(self.config, item.nativefile, override_path=item.syncfile)
            self.ledger.update(item.syncid, sf.revguid, mtime)
            self.log.info(f"Pushed {item.nativefile}")

        elif action.kind == ActionKind.MATERIALIZE:
            sf = from_syncfile(self.config, item.syncfile)
            native = sf.restore_native(self.config)
            self.ledger.update(item.syncid, sf.revguid, _native_mtime(native, item.syncid))
            self.log.info(f"Materialized {native}")

    # ---- Pass ----

    def run(self, dry_run: bool = False) -> SyncReport:
        """One full pass. With dry_run, stops after verification and mutates nothing."""
        report = SyncReport(dry_run=dry_run)

        discovery = discover(self.config, self.log)
        report.skipped.extend(discovery.skipped)

        actions = self.build_work_items(discovery)
        actions = [self.classify(action) for action in actions]
        self.verify(actions)

        for action in actions:
            if not dry_run:
                self.commit(action)
            report.record(action)

        logger.info(
            f"Sync pass done{' (dry run)' if dry_run else ''}: {len(report.pushed)} pushed, "
            f"{len(report.materialized)} materialized, {len(report.unchanged)} unchanged"
        )
        return report
