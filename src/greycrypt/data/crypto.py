# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.16
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/data/crypto.py

"""
Streaming authenticated encryption for syncfile payloads.

CryptoEnvelope wraps AES-256-CBC with PKCS7 padding plus a running
HMAC-SHA256 on each side. Both HMACs are keyed with the symmetric key and
cover IV || ciphertext: the encrypt side feeds in the ciphertext it
produces, the decrypt side the ciphertext it consumes. The tag written at
encryption time therefore equals the tag recomputed at decryption time, and
a flipped bit anywhere in IV, ciphertext or tag is caught.

Input is processed in BUFFER_SIZE slices, so a caller streaming a large file
through encrypt()/decrypt() never hands the cipher more than one buffer at a
time.
"""

import os
import random
import secrets
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from loguru import logger

from greycrypt.system.exceptions import CryptoError, IntegrityError, IoError

KEY_SIZE = 32
IV_SIZE = 16
TAG_SIZE = 32
BUFFER_SIZE = 4096
BLOCK_BITS = 128

SALT_FILE = "greycrypt.salt"
SALT_SIZE = 16
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1

KEYCHECK_FILE = "greycrypt.keycheck"
KEYCHECK_LABEL = b"greycrypt key check v1"


def make_iv() -> bytes:
    """Random IV drawn from two independent sources.

    The first half comes from the OS CSPRNG, the second from a separate PRNG
    seeded with OS entropy plus two extra random 64-bit values. Predicting the
    IV requires predicting both.
    """
    half = IV_SIZE // 2
    head = os.urandom(half)
    seed = os.urandom(32) + secrets.randbits(64).to_bytes(8, "big") + secrets.randbits(64).to_bytes(8, "big")
    rng = random.Random(seed)
    tail = rng.getrandbits(8 * (IV_SIZE - half)).to_bytes(IV_SIZE - half, "big")
    return head + tail


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(data)
    return h.finalize()


def hmac_matches(key: bytes, data: bytes, expected: bytes) -> bool:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(data)
    try:
        h.verify(expected)
    except InvalidSignature:
        return False
    return True


class CryptoEnvelope:
    """One encrypt stream and one decrypt stream under a single key and IV.

    Each direction can be used once: after the chunk flagged is_final has been
    processed, a further call raises CryptoError; build a new envelope instead.
    """

    def __init__(self, key: bytes, iv: bytes):
        if len(key) != KEY_SIZE:
            raise CryptoError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        if len(iv) != IV_SIZE:
            raise CryptoError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
        self.iv = bytes(iv)

        cipher = Cipher(algorithms.AES(key), modes.CBC(self.iv))
        self._encryptor = cipher.encryptor()
        self._padder = padding.PKCS7(BLOCK_BITS).padder()
        self._decryptor = cipher.decryptor()
        self._unpadder = padding.PKCS7(BLOCK_BITS).unpadder()

        self.encrypt_hmac = hmac.HMAC(key, hashes.SHA256())
        self.encrypt_hmac.update(self.iv)
        self.decrypt_hmac = hmac.HMAC(key, hashes.SHA256())
        self.decrypt_hmac.update(self.iv)

        self._got_eof_on_encrypt = False
        self._got_eof_on_decrypt = False

    def encrypt(self, data: bytes, is_final: bool) -> bytes:
        """Encrypt one chunk; pass is_final=True with the last chunk to apply padding."""
        if self._got_eof_on_encrypt:
            raise CryptoError("Already received encryption eof, can't encrypt anymore; reinit crypto envelope")
        if is_final:
            self._got_eof_on_encrypt = True

        out = bytearray()
        for start in range(0, len(data), BUFFER_SIZE):
            piece = bytes(data[start:start + BUFFER_SIZE])
            out += self._encryptor.update(self._padder.update(piece))
        if is_final:
            out += self._encryptor.update(self._padder.finalize())
            out += self._encryptor.finalize()

        result = bytes(out)
        self.encrypt_hmac.update(result)
        return result

    def decrypt(self, data: bytes, is_final: bool) -> bytes:
        """Decrypt one chunk; pass is_final=True with the last chunk to strip padding.

        Raises:
            CryptoError: On reuse after eof, or when the cipher rejects the data
                (bad length or padding)
        """
        if self._got_eof_on_decrypt:
            raise CryptoError("Already received decryption eof, can't decrypt anymore; reinit crypto envelope")
        if is_final:
            self._got_eof_on_decrypt = True

        self.decrypt_hmac.update(bytes(data))

        out = bytearray()
        try:
            for start in range(0, len(data), BUFFER_SIZE):
                piece = bytes(data[start:start + BUFFER_SIZE])
                out += self._unpadder.update(self._decryptor.update(piece))
            if is_final:
                out += self._unpadder.update(self._decryptor.finalize())
                out += self._unpadder.finalize()
        except ValueError as e:
            raise CryptoError(f"Decryption error: {e}") from e
        return bytes(out)

    def encrypt_tag(self) -> bytes:
        """Tag over IV and all ciphertext produced so far."""
        return self.encrypt_hmac.copy().finalize()

    def decrypt_tag(self) -> bytes:
        """Tag over IV and all ciphertext consumed so far."""
        return self.decrypt_hmac.copy().finalize()

    def verify_tag(self, expected: bytes) -> None:
        """
        Raises:
            IntegrityError: If expected does not match the recomputed decrypt tag
        """
        h = self.decrypt_hmac.copy()
        try:
            h.verify(expected)
        except InvalidSignature as e:
            raise IntegrityError("Data hmac does not equal expected value") from e


# ---- Password derived keys ----

def derive_key(password: str, salt: bytes) -> bytes:
    """Derive the 256-bit symmetric key from a password with scrypt."""
    kdf = Scrypt(salt=salt, length=KEY_SIZE, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(password.encode("utf-8"))


def _replace_file(path: Path, data: bytes) -> None:
    tmp_path = path.with_name(path.name + ".gc_tmp")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise IoError(f"Cannot write {path}: {e}", path=str(path)) from e


def load_or_create_salt(sync_dir: Path) -> bytes:
    """Salt shared by every machine through the sync dir; created on first use."""
    salt_path = Path(sync_dir) / SALT_FILE
    if salt_path.is_file():
        try:
            salt = salt_path.read_bytes()
        except OSError as e:
            raise IoError(f"Cannot read salt file {salt_path}: {e}", path=str(salt_path)) from e
        if len(salt) != SALT_SIZE:
            raise CryptoError(f"Salt file has unexpected size {len(salt)}: {salt_path}", path=str(salt_path))
        return salt

    salt = os.urandom(SALT_SIZE)
    _replace_file(salt_path, salt)
    logger.info(f"Created new key salt: {salt_path}")
    return salt


def key_check_value(key: bytes) -> bytes:
    return hmac_sha256(key, KEYCHECK_LABEL)


def write_key_check(path: Path, key: bytes) -> None:
    """Write the key check value for key to path (temp file, then replace)."""
    _replace_file(Path(path), key_check_value(key))


def check_key(sync_dir: Path, key: bytes) -> None:
    """Compare key against the check value shared through the sync dir.

    The first machine to derive a key writes the check value; every later
    key must match it, so a mistyped password is refused before any
    syncfile is written under it.

    Raises:
        CryptoError: If key does not match the stored check value
    """
    check_path = Path(sync_dir) / KEYCHECK_FILE
    if not check_path.is_file():
        write_key_check(check_path, key)
        logger.info(f"Created key check file: {check_path}")
        return

    try:
        stored = check_path.read_bytes()
    except OSError as e:
        raise IoError(f"Cannot read key check file {check_path}: {e}", path=str(check_path)) from e
    if len(stored) != TAG_SIZE:
        raise CryptoError(f"Key check file has unexpected size {len(stored)}: {check_path}", path=str(check_path))
    if not hmac_matches(key, KEYCHECK_LABEL, stored):
        raise CryptoError(f"Wrong password: key does not match {check_path}", path=str(check_path))
