# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_locking.py

"""
Tests for the single-instance process lock.

Two ProcessLock objects open the lock file separately, so they conflict the
same way two processes would.
"""

import os
from datetime import datetime, UTC

import orjson
import pytest

from greycrypt.system.locking import (
    LockInfo, LockConflictError, ProcessLock, lock_file_name
)


@pytest.fixture
def sample_lock_info():
    return LockInfo(
        operation="sync",
        timestamp=datetime.now(UTC).isoformat(),
        pid=12345,
        hostname="testhost",
        lock_id="test-lock-123"
    )


class TestLockInfo:
    def test_round_trip(self, sample_lock_info):
        restored = LockInfo.from_dict(sample_lock_info.to_dict())
        assert restored.to_dict() == sample_lock_info.to_dict()

    def test_from_dict_coerces_pid(self):
        info = LockInfo.from_dict({
            "operation": "sync", "timestamp": "t", "pid": "77",
            "hostname": "h", "lock_id": "x"
        })
        assert info.pid == 77


class TestLockFileName:
    def test_sanitizes_path_separators(self):
        assert lock_file_name("/mnt/drive/greycrypt/") == "greycrypt_mutex__mnt_drive_greycrypt"
        assert lock_file_name("C:\\Users\\me\\sync") == "greycrypt_mutex_C__Users_me_sync"
        assert lock_file_name("My Drive") == "greycrypt_mutex_My_Drive"


class TestProcessLock:
    def test_acquire_writes_holder(self, tmp_path):
        lock = ProcessLock("/some/sync", lock_dir=tmp_path)
        lock.acquire()
        try:
            assert lock.acquired
            body = orjson.loads(lock.path.read_bytes().strip())
            assert body["pid"] == os.getpid()
            assert body["operation"] == "sync"
            assert lock.read_holder().pid == os.getpid()
        finally:
            lock.release()
        assert not lock.acquired

    def test_second_lock_conflicts(self, tmp_path):
        with ProcessLock("/some/sync", lock_dir=tmp_path):
            other = ProcessLock("/some/sync", operation="change-password", lock_dir=tmp_path)
            with pytest.raises(LockConflictError) as exc_info:
                other.acquire()
            assert exc_info.value.holder["pid"] == os.getpid()
            assert "another greycrypt instance" in str(exc_info.value)
            assert not other.acquired

    def test_released_lock_can_be_reacquired(self, tmp_path):
        with ProcessLock("/some/sync", lock_dir=tmp_path):
            pass
        with ProcessLock("/some/sync", lock_dir=tmp_path) as again:
            assert again.acquired

    def test_different_names_do_not_conflict(self, tmp_path):
        with ProcessLock("/sync/one", lock_dir=tmp_path):
            with ProcessLock("/sync/two", lock_dir=tmp_path) as two:
                assert two.acquired

    def test_release_without_acquire(self, tmp_path):
        ProcessLock("/some/sync", lock_dir=tmp_path).release()

    def test_read_holder_of_empty_file(self, tmp_path):
        lock = ProcessLock("/some/sync", lock_dir=tmp_path)
        lock.path.write_bytes(b"")
        assert lock.read_holder() is None

    def test_default_lock_dir_is_tempdir(self, tmp_path, monkeypatch):
        monkeypatch.setattr("tempfile.gettempdir", lambda: str(tmp_path))
        lock = ProcessLock("/default/sync")
        lock.acquire()
        try:
            assert lock.acquired
            assert lock.path.parent == tmp_path
        finally:
            lock.release()
