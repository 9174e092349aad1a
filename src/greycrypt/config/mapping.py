# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.15
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/config/mapping.py

"""
Keyword <-> directory mapping.

Each machine maps its own local directories to shared keywords, e.g.
HOME -> /home/alice on one machine and HOME -> C:\\Users\\Alice on another.
A native file is identified across machines by its keyword plus its path
relative to the mapped directory, never by its absolute path.
"""

from __future__ import annotations

import ntpath
import os
from pathlib import Path, PurePosixPath
from typing import Optional

from greycrypt.system.exceptions import MappingError


def canon_relpath(parts: tuple[str, ...]) -> str:
    """Canonical relpath: forward slashes with a leading '/'."""
    return "/" + "/".join(parts)


def _norm_dir(path: str) -> str:
    """Normalized, upper-cased directory string used as the case-insensitive lookup key."""
    normed = ntpath.normpath(path) if "\\" in path else os.path.normpath(path)
    return normed.rstrip("/\\").upper() or normed.upper()


class PathMapping:
    """Bidirectional, case-insensitive keyword/directory mapping."""

    def __init__(self, keyword_to_dir: dict[str, str]):
        self.keyword_to_dir: dict[str, str] = {}
        self.dir_to_keyword: dict[str, str] = {}
        for keyword, directory in keyword_to_dir.items():
            if not isinstance(directory, str) or not directory:
                raise MappingError(
                    f"Invalid mapping value for keyword {keyword}; value {directory!r} should be a directory"
                )
            kw = keyword.upper()
            # the dir need not exist yet; it may not have been synced here
            self.keyword_to_dir[kw] = directory
            self.dir_to_keyword[_norm_dir(directory)] = kw

    def lookup_keyword(self, directory: str | Path) -> Optional[str]:
        return self.dir_to_keyword.get(_norm_dir(str(directory)))

    def lookup_dir(self, keyword: str) -> Optional[str]:
        return self.keyword_to_dir.get(keyword.upper())

    def get_keyword_and_relpath(self, native_path: str | Path) -> Optional[tuple[str, str]]:
        """
        Find the most specific mapped ancestor of native_path.

        Returns:
            (KEYWORD, "/rel/path") or None if no mapped directory contains the path.
            The relpath keeps the case of native_path.
        """
        native = Path(native_path)
        parts = native.parts
        # walk from the deepest ancestor up, so the longest match wins
        for cut in range(len(parts) - 1, 0, -1):
            ancestor = str(Path(*parts[:cut]))
            kw = self.lookup_keyword(ancestor)
            if kw is not None:
                return kw, canon_relpath(parts[cut:])
        return None

    def native_path_for(self, keyword: str, relpath: str) -> Path:
        """Inverse of get_keyword_and_relpath: build the local path for keyword + relpath."""
        base = self.lookup_dir(keyword)
        if base is None:
            raise MappingError(f"Keyword {keyword} not found in mapping")
        rel = PurePosixPath(relpath.lstrip("/"))
        if ".." in rel.parts or not rel.parts:
            raise MappingError(f"Refusing unsafe relative path {relpath!r} for keyword {keyword}")
        return Path(base).joinpath(*rel.parts)
