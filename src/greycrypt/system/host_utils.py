# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.14
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/system/host_utils.py

"""Host and filesystem helpers shared by the config, codec and engine layers."""

import os
import socket
import sys
from pathlib import Path

BINARY_SNIFF_BYTES = 8000


def get_hostname() -> str:
    """Short host name, as used to select the per-machine config section."""
    return socket.gethostname()


def config_host_key(hostname: str) -> str:
    """Host names with '.' (common on macs) are stored with '_' in config keys."""
    return hostname.replace(".", "_")


def get_appdata_dir() -> Path:
    """Per-user application data directory for the current platform."""
    if sys.platform.startswith("win"):
        base = os.getenv("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base)
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    return Path(os.getenv("XDG_DATA_HOME") or Path.home() / ".local" / "share")


def get_file_mtime(path: Path) -> int:
    """Modification time in whole seconds."""
    return int(os.stat(path).st_mtime)


def file_is_binary(path: Path) -> bool:
    """Heuristic: a NUL byte in the first block, or undecodable UTF-8, means binary."""
    with open(path, "rb") as f:
        head = f.read(BINARY_SNIFF_BYTES)
    if b"\x00" in head:
        return True
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as e:
        # a multibyte sequence cut at the sniff boundary is still text
        if e.start < len(head) - 3:
            return True
    return False


def canon_lines(text: str) -> str:
    """Normalize line endings to '\\n' so syncfile plaintext is identical on every platform."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def decanon_lines(text: str) -> str:
    """Restore platform line endings."""
    if os.linesep == "\n":
        return text
    return text.replace("\n", os.linesep)
