# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.14
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/system/exceptions.py

"""
GreyCrypt-specific exception classes.

Every error raised by the sync core derives from GreyCryptError so the CLI
layer can decide exit behavior in one place. Almost all of these abort the
current sync pass; MappingError is the exception, the engine skips the
offending native file and keeps going.
"""


class GreyCryptError(Exception):
    """Base exception for all GreyCrypt errors."""

    def __init__(self, message: str, path: str = None, syncid: str = None):
        self.path = path
        self.syncid = syncid
        super().__init__(message)


class ConfigError(GreyCryptError):
    """Raised when configuration is missing, malformed or inconsistent."""
    pass


class MappingError(GreyCryptError):
    """Raised when a native path is not under any mapped directory."""
    pass


class DecodeError(GreyCryptError):
    """Raised when a syncfile header or framing cannot be parsed."""
    pass


class CryptoError(GreyCryptError):
    """Raised on wrong key, misuse of a cipher stream, or ciphertext the cipher rejects."""
    pass


class IntegrityError(CryptoError):
    """Raised when an authentication tag does not match the recomputed value.

    Indicates tampering or corruption. Never suppress this one.
    """
    pass


class ConflictError(GreyCryptError):
    """Raised when both the remote revision and the native file changed,
    or when a materialize would overwrite an existing native file."""
    pass


class ConsistencyError(GreyCryptError):
    """Raised when the engine reaches a stage with an unclassified work item.

    This is a bug in the engine, not a filesystem condition.
    """
    pass


class IoError(GreyCryptError):
    """Raised when a syncfile, native file or key file cannot be read or written."""
    pass


class LedgerIOError(IoError):
    """Raised when a revision ledger record cannot be read, parsed or written."""
    pass


# === PROCESS LOCK ===

class LockError(GreyCryptError):
    """Base exception for process lock errors."""
    pass


class LockConflictError(LockError):
    """Raised when the lock is held by another process."""

    def __init__(self, message: str, holder: dict = None, **kwargs):
        self.holder = holder
        super().__init__(message, **kwargs)
