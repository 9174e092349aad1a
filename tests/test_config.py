# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_config.py

from pathlib import Path

import pytest
import yaml

from greycrypt.config.manager import SyncConfig, validate_config
from greycrypt.system.exceptions import ConfigError
from tests.fixtures.machines import TEST_KEY


def test_config_load_success(write_yaml_config, tmp_path):
    cfg_path, home = write_yaml_config("alice")
    cfg = SyncConfig.load(cfg_path)

    assert cfg.host_name == "alice"
    assert cfg.sync_dir == tmp_path / "shared" / "greycrypt"
    assert cfg.native_paths == [home]
    assert cfg.mapping.lookup_dir("home") == str(home)
    assert cfg.encryption_key == TEST_KEY
    assert cfg.ledger_dir() == tmp_path / "alice" / "syncdb"
    assert ".DS_Store" in cfg.ignore.names


def test_missing_host_section(write_yaml_config):
    cfg_path, _ = write_yaml_config("alice", host_name="mac.local")
    with pytest.raises(ConfigError, match="mac_local"):
        SyncConfig.load(cfg_path)


def test_dotted_host_name_uses_underscore_key(write_yaml_config, tmp_path):
    cfg_path, _ = write_yaml_config("mac_local", host_name="mac.local")
    cfg = SyncConfig.load(cfg_path)
    assert cfg.host_name == "mac.local"


def test_hostname_detection(write_yaml_config):
    cfg_path, _ = write_yaml_config("alice")
    data = yaml.safe_load(cfg_path.read_text())
    del data["host_name"]
    cfg_path.write_text(yaml.safe_dump(data))
    assert SyncConfig.load(cfg_path, hostname="alice").host_name == "alice"


def test_missing_sync_dir(write_yaml_config, tmp_path):
    cfg_path, home = write_yaml_config("alice")
    data = yaml.safe_load(cfg_path.read_text())
    data["machines"]["alice"]["sync_dir"] = str(tmp_path / "nope")
    cfg_path.write_text(yaml.safe_dump(data))
    with pytest.raises(ConfigError, match="Sync directory does not exist"):
        SyncConfig.load(cfg_path)


@pytest.mark.parametrize("bad_key", ["abc", "zz" * 32, "00" * 16])
def test_bad_encryption_key(write_yaml_config, bad_key):
    cfg_path, _ = write_yaml_config("alice", key_hex=bad_key)
    with pytest.raises(ConfigError, match="encryption_key"):
        SyncConfig.load(cfg_path)


def test_empty_native_paths(write_yaml_config):
    cfg_path, _ = write_yaml_config("alice", native_paths=[])
    with pytest.raises(ConfigError, match="native_paths"):
        SyncConfig.load(cfg_path)


def test_invalid_yaml(tmp_path):
    cfg_path = tmp_path / "greycrypt.yml"
    cfg_path.write_text("machines: [unclosed\n")
    with pytest.raises(ConfigError, match="Failed to load"):
        SyncConfig.load(cfg_path)


class TestKeyHandling:
    def test_key_optional(self, write_yaml_config):
        cfg_path, _ = write_yaml_config("alice", key_hex=None)
        cfg = SyncConfig.load(cfg_path)
        assert cfg.encryption_key is None
        with pytest.raises(ConfigError):
            cfg.require_key()

    def test_with_key(self, write_yaml_config):
        cfg_path, _ = write_yaml_config("alice", key_hex=None)
        cfg = SyncConfig.load(cfg_path).with_key(b"k" * 32)
        assert cfg.require_key() == b"k" * 32
        with pytest.raises(ConfigError):
            cfg.with_key(b"short")


class TestSearchPaths:
    @pytest.fixture
    def isolated_env(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "fakehome"))
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.delenv("GREYCRYPT_CONFIG_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path / "fakehome"))

    def test_no_config_anywhere(self, isolated_env):
        with pytest.raises(ConfigError, match="No greycrypt.yml"):
            SyncConfig.load()

    def test_override_wins(self, isolated_env, write_yaml_config, tmp_path, monkeypatch):
        cfg_path, _ = write_yaml_config("alice")
        xdg = tmp_path / "xdg" / "greycrypt"
        xdg.mkdir(parents=True)
        (xdg / "greycrypt.yml").write_text(cfg_path.read_text())
        override = tmp_path / "override"
        override.mkdir()
        (override / "greycrypt.yml").write_text(yaml.safe_dump({"syncdb_dir": str(tmp_path / "custom")}))
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        monkeypatch.setenv("GREYCRYPT_CONFIG_HOME", str(override))

        cfg = SyncConfig.load()
        assert cfg.ledger_dir() == tmp_path / "custom"
        assert cfg.host_name == "alice"

    def test_default_ledger_dir(self, write_yaml_config, tmp_path, monkeypatch):
        cfg_path, _ = write_yaml_config("alice", syncdb_dir=None)
        monkeypatch.setattr("greycrypt.config.manager.get_appdata_dir", lambda: tmp_path / "appdata")
        cfg = SyncConfig.load(cfg_path)
        assert cfg.ledger_dir() == tmp_path / "appdata" / "greycrypt" / "syncdb"


class TestValidateConfig:
    def test_valid(self, write_yaml_config):
        cfg_path, _ = write_yaml_config("alice")
        assert validate_config(cfg_path) == []

    def test_missing_native_path(self, write_yaml_config, tmp_path):
        cfg_path, home = write_yaml_config("alice", native_paths=[str(tmp_path / "missing")])
        errors = validate_config(cfg_path)
        assert any("does not exist" in e for e in errors)

    def test_unmapped_native_path(self, write_yaml_config, tmp_path):
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        cfg_path, _ = write_yaml_config("alice", native_paths=[str(elsewhere)])
        errors = validate_config(cfg_path)
        assert any("not under any mapped directory" in e for e in errors)

    def test_load_error_reported(self, tmp_path):
        errors = validate_config(tmp_path / "absent.yml")
        assert len(errors) == 1
        assert errors[0].startswith("Error loading config")
