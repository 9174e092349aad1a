# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_logging_setup.py

from loguru import logger

from greycrypt.system.logging_setup import SyncLog, setup_logging


class TestSetupLogging:
    def test_console_only_without_local_log(self, tmp_path):
        setup_logging()
        logger.warning("console only")
        assert not list(tmp_path.iterdir())

    def test_file_sink_created(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(local_log=log_dir)
        logger.debug("debug line for file")
        logger.remove()

        log_file = log_dir / "greycrypt.log"
        assert log_file.exists()
        assert "debug line for file" in log_file.read_text()

    def test_unwritable_log_dir_does_not_raise(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a dir")
        setup_logging(local_log=blocker / "logs")


class TestSyncLog:
    def test_warn_once(self):
        messages = []
        setup_logging()
        logger.add(messages.append, level="WARNING", format="{message}")

        log = SyncLog()
        assert log.warn_once("keyword X not mapped") is True
        assert log.warn_once("keyword X not mapped") is False
        assert log.warn_once("something else") is True
        assert [m.strip() for m in messages] == ["keyword X not mapped", "something else"]

    def test_scope_is_per_instance(self):
        first = SyncLog()
        first.warn_once("same message")
        second = SyncLog()
        assert second.warn_once("same message") is True
        assert second.warned == {"same message"}
