# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.15
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/system/locking.py

"""
Single-instance process lock.

Two greycrypt processes running a pass against the same sync directory would
race on syncfile writes and corrupt the revision ledger. Before a pass the CLI
acquires an OS advisory lock on a file derived from the sync directory name and
holds it until the pass ends. The lock file body records who holds it, for the
error message the second process prints.

This is the only module that branches on platform.
"""

import os
import re
import socket
import sys
import tempfile
import uuid
from datetime import datetime, UTC
from pathlib import Path

import loguru
import orjson

from greycrypt.system.exceptions import LockError, LockConflictError

logger = loguru.logger

if sys.platform.startswith("win"):
    import msvcrt
else:
    import fcntl


class LockInfo:
    """Information about an active lock."""

    def __init__(self, operation: str, timestamp: str, pid: int,
                 hostname: str, lock_id: str):
        self.operation = operation
        self.timestamp = timestamp
        self.pid = pid
        self.hostname = hostname
        self.lock_id = lock_id

    def to_dict(self) -> dict[str, str | int]:
        return {
            "operation": self.operation,
            "timestamp": self.timestamp,
            "pid": self.pid,
            "hostname": self.hostname,
            "lock_id": self.lock_id
        }

    @classmethod
    def from_dict(cls, data: dict[str, str | int]) -> "LockInfo":
        return cls(
            operation=str(data["operation"]),
            timestamp=str(data["timestamp"]),
            pid=int(data["pid"]),
            hostname=str(data["hostname"]),
            lock_id=str(data["lock_id"])
        )


def lock_file_name(name: str) -> str:
    """Turn an arbitrary lock name (usually a sync dir path) into a file name."""
    canon = name.replace("\\", "/").rstrip("/")
    return "greycrypt_mutex_" + re.sub(r"[/: ]", "_", canon)


def _try_os_lock(fd: int) -> bool:
    try:
        if sys.platform.startswith("win"):
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        return True
    except OSError:
        return False


def _os_unlock(fd: int) -> None:
    if sys.platform.startswith("win"):
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


class ProcessLock:
    """
    Advisory lock held for the duration of one sync pass.

    Usage as context manager:
        with ProcessLock(str(config.sync_dir), operation="sync"):
            engine.run()
    """

    def __init__(self, name: str, operation: str = "sync", lock_dir: Path | None = None):
        self.name = name
        self.operation = operation
        self.path = Path(lock_dir or tempfile.gettempdir()) / lock_file_name(name)
        self._fd: int | None = None
        self._lock_id: str | None = None

    def __enter__(self) -> "ProcessLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    @property
    def acquired(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Acquire the lock without waiting.

        Raises:
            LockConflictError: If another process holds the lock
            LockError: If the lock file cannot be opened
        """
        if self.acquired:
            logger.warning("Lock already acquired by this instance")
            return

        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise LockError(f"Failed to open lock file {self.path}: {e}", path=str(self.path)) from e

        if not _try_os_lock(fd):
            os.close(fd)
            holder = self.read_holder()
            who = (f"pid {holder.pid} on {holder.hostname} since {holder.timestamp}"
                   if holder else "unknown process")
            raise LockConflictError(
                f"Failed to lock '{self.path}', another greycrypt instance may be running ({who})",
                holder=holder.to_dict() if holder else None,
                path=str(self.path)
            )

        self._fd = fd
        self._lock_id = str(uuid.uuid4())
        info = LockInfo(
            operation=self.operation,
            timestamp=datetime.now(UTC).isoformat(),
            pid=os.getpid(),
            hostname=socket.gethostname(),
            lock_id=self._lock_id
        )
        # Windows locks byte 0, so the body starts after a one-byte pad there
        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, b"\n" + orjson.dumps(info.to_dict()))
        os.fsync(fd)
        logger.debug(f"Acquired {self.operation} lock {self.path} (lock_id: {self._lock_id})")

    def release(self) -> None:
        """Release the lock if held by this instance."""
        if not self.acquired:
            logger.debug("No lock to release")
            return
        try:
            os.ftruncate(self._fd, 0)
            _os_unlock(self._fd)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug(f"Released lock {self._lock_id}")
        self._lock_id = None

    def read_holder(self) -> LockInfo | None:
        """Read the current holder's info from the lock file, if any."""
        try:
            raw = self.path.read_bytes().strip()
            if not raw:
                return None
            return LockInfo.from_dict(orjson.loads(raw))
        except (OSError, ValueError, KeyError) as e:
            logger.debug(f"Could not read lock holder from {self.path}: {e}")
            return None
