# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.15
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/config/manager.py

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Final

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from greycrypt.config.mapping import PathMapping
from greycrypt.system.exceptions import ConfigError, MappingError
from greycrypt.system.host_utils import config_host_key, get_appdata_dir, get_hostname


# ---- Constants ----

USER_CFG: Final = "greycrypt.yml"
APP_NAME: Final = "greycrypt"
KEY_SIZE: Final = 32


def _get_config_search_paths() -> tuple[Path, ...]:
    """Get config file search paths (ordered by priority: lowest to highest).

    Evaluated at call time so environment overrides set by tests are honored.
    """
    return (
        Path("/etc/greycrypt") / USER_CFG,  # System defaults
        Path.home() / ".config" / "greycrypt" / USER_CFG,  # User config
        Path(os.getenv("XDG_CONFIG_HOME", "")) / "greycrypt" / USER_CFG,  # XDG override
        Path(os.getenv("GREYCRYPT_CONFIG_HOME", "")) / USER_CFG,  # Explicit override (highest priority)
    )


def _load_merged_config_data(candidates: tuple[Path, ...]) -> dict:
    """Load and merge config data from candidate paths.

    Later files override earlier ones key by key.

    Raises:
        ConfigError: If no config files found, or a file is not valid YAML
    """
    merged_data = {}
    found_configs = []

    for candidate in candidates:
        if candidate.exists() and candidate != Path("") / USER_CFG:  # Skip empty env vars
            merged_data.update(_read_yaml(candidate))
            found_configs.append(str(candidate))
            logger.debug(f"Loaded config from {candidate}")

    if not found_configs:
        raise ConfigError(
            f"No {USER_CFG} found in /etc/greycrypt/, ~/.config/greycrypt/, "
            f"XDG_CONFIG_HOME, or GREYCRYPT_CONFIG_HOME"
        )

    logger.debug(f"Merged config from: {', '.join(found_configs)}")
    return merged_data


def _read_yaml(path: Path) -> dict:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config from {path}: {e}", path=str(path)) from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at top level", path=str(path))
    return data


# ---- Settings models (file contents) ----

class IgnoreSettings(BaseModel):
    """Native files that are never synced."""
    names: set[str] = Field(default_factory=lambda: {".DS_Store", "Thumbs.db"})
    suffixes: set[str] = Field(default_factory=lambda: {".gc_tmp", ".tmp"})

    def matches(self, path: Path) -> bool:
        return path.name in self.names or path.suffix in self.suffixes


class MachineSettings(BaseModel):
    """Per-host settings: where the shared sync dir lives and how keywords map here."""
    sync_dir: Path
    mapping: dict[str, str]


class GreyCryptSettings(BaseModel):
    """Raw contents of greycrypt.yml."""
    native_paths: list[str]
    machines: dict[str, MachineSettings]
    host_name: Optional[str] = None
    syncdb_dir: Optional[Path] = None
    encryption_key: Optional[str] = None
    local_log: Optional[Path] = None
    ignore: IgnoreSettings = Field(default_factory=IgnoreSettings)

    @field_validator("native_paths")
    @classmethod
    def native_paths_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("No native_paths are configured, cannot continue")
        return v

    @field_validator("encryption_key")
    @classmethod
    def key_is_hex(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            raw = bytes.fromhex(v)
        except ValueError as e:
            raise ValueError("encryption_key must be hex encoded") from e
        if len(raw) != KEY_SIZE:
            raise ValueError(f"encryption_key must be {KEY_SIZE} bytes ({KEY_SIZE * 2} hex chars)")
        return v


# ---- Resolved config used by the sync core ----

class SyncConfig(BaseModel):
    """Configuration for one machine, resolved from GreyCryptSettings."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    sync_dir: Path
    mapping: PathMapping
    native_paths: list[Path]
    host_name: str
    encryption_key: Optional[bytes] = None
    syncdb_dir: Optional[Path] = None
    local_log: Optional[Path] = None
    ignore: IgnoreSettings = Field(default_factory=IgnoreSettings)

    @field_validator("encryption_key")
    @classmethod
    def key_size(cls, v: Optional[bytes]) -> Optional[bytes]:
        if v is not None and len(v) != KEY_SIZE:
            raise ValueError(f"encryption key must be {KEY_SIZE} bytes, got {len(v)}")
        return v

    @classmethod
    def from_settings(cls, settings: GreyCryptSettings, hostname: Optional[str] = None) -> SyncConfig:
        """Select this host's machine section and build the runtime config."""
        host = settings.host_name or hostname or get_hostname()
        host_key = config_host_key(host)
        machine = settings.machines.get(host_key) or settings.machines.get(host)
        if machine is None:
            hint = ""
            if "." in host:
                hint = f" (try replacing '.' in your hostname with '_': {host_key})"
            raise ConfigError(f"No machine config found for host '{host}'{hint}")

        if not machine.sync_dir.is_dir():
            raise ConfigError(f"Sync directory does not exist: {machine.sync_dir}", path=str(machine.sync_dir))
        if not machine.mapping:
            raise ConfigError(f"No mapping entries found for host '{host}'")
        try:
            mapping = PathMapping(machine.mapping)
        except MappingError as e:
            raise ConfigError(str(e)) from e

        key = bytes.fromhex(settings.encryption_key) if settings.encryption_key else None

        return cls(
            sync_dir=machine.sync_dir,
            mapping=mapping,
            native_paths=[Path(p) for p in settings.native_paths],
            host_name=host,
            encryption_key=key,
            syncdb_dir=settings.syncdb_dir,
            local_log=settings.local_log,
            ignore=settings.ignore,
        )

    @classmethod
    def load(cls, config_path: Path | None = None, hostname: Optional[str] = None) -> SyncConfig:
        """Load from an explicit file, or merge the standard search locations."""
        if config_path is not None:
            data = _read_yaml(Path(config_path))
        else:
            data = _load_merged_config_data(_get_config_search_paths())
        try:
            settings = GreyCryptSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigError(str(e)) from e
        return cls.from_settings(settings, hostname)

    def with_key(self, key: bytes) -> SyncConfig:
        """Copy of this config using a different symmetric key (e.g. for password rotation)."""
        if len(key) != KEY_SIZE:
            raise ConfigError(f"encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        return self.model_copy(update={"encryption_key": key})

    def require_key(self) -> bytes:
        if self.encryption_key is None:
            raise ConfigError("No encryption key configured")
        return self.encryption_key

    def ledger_dir(self) -> Path:
        """Root of the revision ledger; defaults to the platform app data dir."""
        if self.syncdb_dir is not None:
            return self.syncdb_dir
        return get_appdata_dir() / APP_NAME / "syncdb"


# ---- Validation Function ----

def validate_config(config_path: Path | None = None, hostname: Optional[str] = None) -> list[str]:
    """Return a list of validation errors. Empty list means config is valid."""
    errors = []

    try:
        cfg = SyncConfig.load(config_path, hostname)
    except ConfigError as e:
        errors.append(f"Error loading config: {e}")
        return errors

    for native in cfg.native_paths:
        if not native.exists():
            errors.append(f"Native path does not exist: {native}")
        elif cfg.mapping.get_keyword_and_relpath(native / "x") is None:
            errors.append(f"Native path is not under any mapped directory: {native}")

    if cfg.local_log and not cfg.local_log.is_absolute():
        errors.append(f"local_log path must be absolute: {cfg.local_log}")

    return errors
