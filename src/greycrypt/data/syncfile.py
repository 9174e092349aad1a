# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.16
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/data/syncfile.py

"""
On-disk syncfile format and its relationship to native files.

A syncfile is a line-oriented clear header, an empty line, then the binary
payload:

    ver: 1
    syncid: <sha256 hex of KEYWORD + RELPATH upper-cased>
    kw: <KEYWORD>
    relpath: </rel/path>
    is_binary: true|false
    size: <plaintext bytes>
    md_iv: <base64>
    md: <base64 encrypted metadata lines>
    header_hmac: <base64 hmac over the lines above>

    <16 byte IV><AES-256-CBC ciphertext><32 byte HMAC-SHA256 tag>

The encrypted metadata carries the revision token (revguid) together with
the origin host, origin mtime and a content hash. Everything a diagnostic
tool needs to locate a file is readable without the key; the revision token
needs the key.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import io
import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

import xxhash
from loguru import logger

from greycrypt.config.manager import SyncConfig
from greycrypt.data.crypto import (
    BLOCK_BITS,
    IV_SIZE,
    TAG_SIZE,
    CryptoEnvelope,
    hmac_matches,
    hmac_sha256,
    make_iv,
)
from greycrypt.system.exceptions import (
    ConflictError,
    CryptoError,
    DecodeError,
    IntegrityError,
    IoError,
    MappingError,
)
from greycrypt.system.host_utils import (
    canon_lines,
    decanon_lines,
    file_is_binary,
    get_file_mtime,
)

FORMAT_VERSION = 1
SYNC_EXT = ".dat"
TEMP_SUFFIX = ".gc_tmp"
READ_CHUNK = 64 * 1024
MAX_HEADER_LINE = 64 * 1024
BLOCK_SIZE = BLOCK_BITS // 8

HEADER_KEYS = ("ver", "syncid", "kw", "relpath", "is_binary", "size", "md_iv", "md", "header_hmac")
METADATA_KEYS = ("revguid", "origin_native_mtime", "origin_host", "content_hash")


# ---- Identity ----

def get_sync_id(keyword: str, relpath: str) -> str:
    """Stable identity for one logical file; case-insensitive in the relpath."""
    material = keyword.upper() + relpath.upper()
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def syncfile_path_for(sync_dir: Path, syncid: str) -> Path:
    """Deterministic location of a syncfile, sharded by the first two id chars."""
    return Path(sync_dir) / syncid[:2] / f"{syncid}{SYNC_EXT}"


def _keyword_and_relpath(config: SyncConfig, native_path: Path) -> tuple[str, str]:
    found = config.mapping.get_keyword_and_relpath(native_path)
    if found is None:
        raise MappingError(f"No mapped directory contains native file: {native_path}", path=str(native_path))
    keyword, relpath = found
    if "\n" in relpath or "\r" in relpath:
        raise MappingError(f"Cannot sync a path containing a line break: {native_path!r}", path=str(native_path))
    return keyword, relpath


def derive_identity_and_path(config: SyncConfig, native_path: Path) -> tuple[str, Path]:
    """
    Returns:
        (syncid, syncfile path inside the sync dir)

    Raises:
        MappingError: If native_path is not under any mapped directory
    """
    keyword, relpath = _keyword_and_relpath(config, Path(native_path))
    syncid = get_sync_id(keyword, relpath)
    return syncid, syncfile_path_for(config.sync_dir, syncid)


@contextmanager
def _io_errors(action: str, path: Path, syncid: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except OSError as e:
        raise IoError(f"Cannot {action} {path}: {e}", path=str(path), syncid=syncid) from e


# ---- Header codec ----

def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: str, what: str, path: Path) -> bytes:
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise DecodeError(f"Bad base64 in {what}: {path}", path=str(path)) from e


def _parse_kv_lines(raw_lines: list[bytes], what: str, path: Path) -> dict[str, str]:
    fields: dict[str, str] = {}
    for raw in raw_lines:
        try:
            line = raw.decode("utf-8").rstrip("\n")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Undecodable {what} line in {path}", path=str(path)) from e
        key, sep, value = line.partition(": ")
        if not sep:
            raise DecodeError(f"Malformed {what} line {line!r} in {path}", path=str(path))
        if key in fields:
            raise DecodeError(f"Duplicate {what} key {key!r} in {path}", path=str(path))
        fields[key] = value
    return fields


def _read_header(f: BinaryIO, path: Path) -> tuple[dict[str, str], bytes, int]:
    """Read header lines up to the blank separator.

    Returns:
        (fields, signed bytes covered by header_hmac, offset of the payload)
    """
    raw_lines = []
    while True:
        raw = f.readline(MAX_HEADER_LINE)
        if not raw:
            raise DecodeError(f"Truncated syncfile header: {path}", path=str(path))
        if raw == b"\n":
            break
        if not raw.endswith(b"\n"):
            raise DecodeError(f"Unterminated header line in {path}", path=str(path))
        raw_lines.append(raw)
        if len(raw_lines) > len(HEADER_KEYS):
            raise DecodeError(f"Too many header lines in {path}", path=str(path))

    fields = _parse_kv_lines(raw_lines, "header", path)
    if fields.get("ver") != str(FORMAT_VERSION):
        raise DecodeError(f"Unsupported syncfile version {fields.get('ver')!r}: {path}", path=str(path))
    if tuple(fields) != HEADER_KEYS:
        raise DecodeError(f"Unexpected header keys {list(fields)} in {path}", path=str(path))
    return fields, b"".join(raw_lines[:-1]), f.tell()


def _parse_bool(value: str, path: Path) -> bool:
    if value not in ("true", "false"):
        raise DecodeError(f"Bad boolean {value!r} in {path}", path=str(path))
    return value == "true"


def _parse_int(value: str, what: str, path: Path) -> int:
    try:
        parsed = int(value)
    except ValueError as e:
        raise DecodeError(f"Bad {what} {value!r} in {path}", path=str(path)) from e
    if parsed < 0:
        raise DecodeError(f"Negative {what} in {path}", path=str(path))
    return parsed


def read_clear_header(path: Path) -> dict[str, str]:
    """Clear header fields of a syncfile; needs no key and verifies nothing but framing.

    Discovery keys syncfiles by the syncid found here, since a storage
    provider may have renamed the file itself.
    """
    path = Path(path)
    with _io_errors("read syncfile", path), open(path, "rb") as f:
        fields, _, _ = _read_header(f, path)
    syncid = fields["syncid"]
    if len(syncid) != 64 or any(c not in "0123456789abcdef" for c in syncid):
        raise DecodeError(f"Malformed syncid in {path}", path=str(path))
    return fields


# ---- Envelope ----

@dataclass
class SyncFile:
    """Decrypted view of one syncfile: identity, revision and payload location.

    The payload itself is never held here; decrypt_to_writer streams it.
    """
    syncid: str
    keyword: str
    relpath: str
    revguid: uuid.UUID
    is_binary: bool
    size: int
    path: Path
    iv: bytes
    tag: bytes
    payload_offset: int
    ciphertext_length: int
    origin_native_mtime: int = 0
    origin_host: str = ""
    content_hash: str = ""
    nativefile: Optional[Path] = field(default=None)

    def native_path(self, config: SyncConfig) -> Path:
        """Where this file lives on the machine described by config."""
        return config.mapping.native_path_for(self.keyword, self.relpath)

    def decrypt_to_writer(self, config: SyncConfig, sink: BinaryIO) -> None:
        """Stream the decrypted payload into sink, then verify the tag.

        The tag is checked only after the whole ciphertext has been consumed;
        whatever reached sink before an IntegrityError must be discarded.

        Raises:
            IntegrityError: If the stored tag does not match
            CryptoError: If the cipher rejects data whose tag does match
            DecodeError: If the plaintext length differs from the header size
        """
        envelope = CryptoEnvelope(config.require_key(), self.iv)
        remaining = self.ciphertext_length
        written = 0
        cipher_failure = None

        with _io_errors("read syncfile", self.path, self.syncid), open(self.path, "rb") as f:
            f.seek(self.payload_offset + IV_SIZE)
            while remaining > 0:
                chunk = f.read(min(READ_CHUNK, remaining))
                if not chunk:
                    raise DecodeError(f"Syncfile payload truncated: {self.path}", path=str(self.path))
                remaining -= len(chunk)
                try:
                    plain = envelope.decrypt(chunk, remaining == 0)
                    sink.write(plain)
                    written += len(plain)
                except CryptoError as e:
                    # the tag decides which error wins; consume nothing more from the cipher
                    cipher_failure = e
                    while remaining > 0:
                        rest = f.read(min(READ_CHUNK, remaining))
                        if not rest:
                            break
                        envelope.decrypt_hmac.update(rest)
                        remaining -= len(rest)
                    break

        try:
            envelope.verify_tag(self.tag)
        except IntegrityError as e:
            raise IntegrityError(
                f"Syncfile failed integrity check: {self.path}", path=str(self.path), syncid=self.syncid
            ) from (cipher_failure or e)
        if cipher_failure is not None:
            raise CryptoError(
                f"Syncfile payload rejected by cipher: {self.path}", path=str(self.path), syncid=self.syncid
            ) from cipher_failure
        if written != self.size:
            raise DecodeError(
                f"Syncfile payload is {written} bytes, header says {self.size}: {self.path}",
                path=str(self.path), syncid=self.syncid,
            )

    def decrypt_bytes(self, config: SyncConfig) -> bytes:
        """Whole decrypted payload (canonical line endings for text files)."""
        buf = io.BytesIO()
        self.decrypt_to_writer(config, buf)
        return buf.getvalue()

    def restore_native(self, config: SyncConfig) -> Path:
        """Write the decrypted payload to its mapped native path.

        Raises:
            ConflictError: If a native file already exists at the target
        """
        target = self.native_path(config)
        if target.exists():
            raise ConflictError(
                f"Refusing to overwrite existing native file: {target}", path=str(target), syncid=self.syncid
            )

        with _io_errors("create directory for", target, self.syncid):
            target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(target.name + TEMP_SUFFIX)
        try:
            with _io_errors("write native file", target, self.syncid):
                if self.is_binary:
                    with open(tmp_path, "wb") as out:
                        self.decrypt_to_writer(config, out)
                else:
                    raw = self.decrypt_bytes(config)
                    try:
                        text = raw.decode("utf-8")
                    except UnicodeDecodeError as e:
                        raise DecodeError(f"Text syncfile is not UTF-8: {self.path}", path=str(self.path)) from e
                    with open(tmp_path, "w", encoding="utf-8", newline="") as out:
                        out.write(decanon_lines(text))
                os.replace(tmp_path, target)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.debug(f"Restored {self.keyword}{self.relpath} to {target}")
        self.nativefile = target
        return target

    def save_with_data(self, config: SyncConfig, target_path: Path, plaintext: bytes) -> SyncFile:
        """Re-encrypt plaintext under config's key, keeping identity and revguid.

        Used for key rotation: other machines must not see a content change.
        """
        return _write_syncfile(
            config,
            Path(target_path),
            keyword=self.keyword,
            relpath=self.relpath,
            revguid=self.revguid,
            is_binary=self.is_binary,
            plaintext=plaintext,
            origin_native_mtime=self.origin_native_mtime,
            origin_host=self.origin_host,
            nativefile=self.nativefile,
        )


# ---- Writing ----

def _write_syncfile(
    config: SyncConfig,
    target: Path,
    *,
    keyword: str,
    relpath: str,
    revguid: uuid.UUID,
    is_binary: bool,
    plaintext: bytes,
    origin_native_mtime: int,
    origin_host: str,
    nativefile: Optional[Path] = None,
) -> SyncFile:
    key = config.require_key()
    syncid = get_sync_id(keyword, relpath)
    content_hash = xxhash.xxh3_64_hexdigest(plaintext)

    md_lines = (
        f"revguid: {revguid}\n"
        f"origin_native_mtime: {origin_native_mtime}\n"
        f"origin_host: {origin_host}\n"
        f"content_hash: {content_hash}\n"
    )
    md_iv = make_iv()
    md = CryptoEnvelope(key, md_iv).encrypt(md_lines.encode("utf-8"), True)

    signed = "".join(
        f"{k}: {v}\n"
        for k, v in (
            ("ver", FORMAT_VERSION),
            ("syncid", syncid),
            ("kw", keyword),
            ("relpath", relpath),
            ("is_binary", "true" if is_binary else "false"),
            ("size", len(plaintext)),
            ("md_iv", _b64(md_iv)),
            ("md", _b64(md)),
        )
    ).encode("utf-8")
    header = signed + f"header_hmac: {_b64(hmac_sha256(key, signed))}\n\n".encode("ascii")

    iv = make_iv()
    envelope = CryptoEnvelope(key, iv)
    with _io_errors("create directory for", target, syncid):
        target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(target.name + TEMP_SUFFIX)
    ciphertext_length = 0
    try:
        with _io_errors("write syncfile", target, syncid), open(tmp_path, "wb") as out:
            out.write(header)
            out.write(iv)
            view = memoryview(plaintext)
            offset = 0
            while True:
                piece = view[offset:offset + READ_CHUNK]
                offset += len(piece)
                is_final = offset >= len(view)
                encrypted = envelope.encrypt(piece, is_final)
                ciphertext_length += len(encrypted)
                out.write(encrypted)
                if is_final:
                    break
            tag = envelope.encrypt_tag()
            out.write(tag)
            out.flush()
            os.fsync(out.fileno())
        with _io_errors("replace syncfile", target, syncid):
            os.replace(tmp_path, target)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise

    return SyncFile(
        syncid=syncid,
        keyword=keyword,
        relpath=relpath,
        revguid=revguid,
        is_binary=is_binary,
        size=len(plaintext),
        path=target,
        iv=iv,
        tag=tag,
        payload_offset=len(header),
        ciphertext_length=ciphertext_length,
        origin_native_mtime=origin_native_mtime,
        origin_host=origin_host,
        content_hash=content_hash,
        nativefile=nativefile,
    )


def _read_native(native_path: Path) -> tuple[bytes, bool]:
    """Native content as stored in a syncfile, and whether it is binary."""
    with _io_errors("read native file", native_path):
        raw = native_path.read_bytes()
        is_binary = file_is_binary(native_path)
    if is_binary:
        return raw, True
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        # sniffed as text but invalid further in
        return raw, True
    return canon_lines(text).encode("utf-8"), False


def create_syncfile(config: SyncConfig, native_path: Path, override_path: Optional[Path] = None) -> SyncFile:
    """Encrypt native_path into a syncfile with a fresh revguid.

    The syncfile lands at its derived location unless override_path is given
    (e.g. an existing syncfile discovered under another name).

    Raises:
        MappingError: If native_path is not under any mapped directory
    """
    native_path = Path(native_path)
    keyword, relpath = _keyword_and_relpath(config, native_path)
    syncid = get_sync_id(keyword, relpath)
    target = Path(override_path) if override_path is not None else syncfile_path_for(config.sync_dir, syncid)

    plaintext, is_binary = _read_native(native_path)
    with _io_errors("stat native file", native_path):
        native_mtime = get_file_mtime(native_path)
    syncfile = _write_syncfile(
        config,
        target,
        keyword=keyword,
        relpath=relpath,
        revguid=uuid.uuid4(),
        is_binary=is_binary,
        plaintext=plaintext,
        origin_native_mtime=native_mtime,
        origin_host=config.host_name,
        nativefile=native_path,
    )
    logger.debug(f"Wrote syncfile {target.name} for {native_path} (rev {syncfile.revguid})")
    return syncfile


# ---- Reading ----

def _decrypt_metadata(key: bytes, fields: dict[str, str], path: Path) -> dict[str, str]:
    md_iv = _unb64(fields["md_iv"], "md_iv", path)
    md = _unb64(fields["md"], "md", path)
    if len(md_iv) != IV_SIZE:
        raise DecodeError(f"Bad metadata IV length in {path}", path=str(path))
    plain = CryptoEnvelope(key, md_iv).decrypt(md, True)
    lines = [line + b"\n" for line in plain.split(b"\n") if line]
    meta = _parse_kv_lines(lines, "metadata", path)
    missing = [k for k in METADATA_KEYS if k not in meta]
    if missing:
        raise DecodeError(f"Missing metadata keys {missing} in {path}", path=str(path))
    return meta


def from_syncfile(config: SyncConfig, path: Path) -> SyncFile:
    """Read header, metadata, IV and tag; the payload is not touched.

    Raises:
        DecodeError: If the header or framing is malformed
        CryptoError: If the header hmac fails (wrong password or modified header)
    """
    key = config.require_key()
    path = Path(path)
    with _io_errors("read syncfile", path), open(path, "rb") as f:
        fields, signed, offset = _read_header(f, path)
        total = os.fstat(f.fileno()).st_size

        stored_hmac = _unb64(fields["header_hmac"], "header_hmac", path)
        if not hmac_matches(key, signed, stored_hmac):
            raise CryptoError(f"Header hmac mismatch, wrong password or modified header: {path}", path=str(path))

        meta = _decrypt_metadata(key, fields, path)

        ciphertext_length = total - offset - IV_SIZE - TAG_SIZE
        if ciphertext_length < BLOCK_SIZE or ciphertext_length % BLOCK_SIZE:
            raise DecodeError(f"Syncfile payload has bad length {ciphertext_length}: {path}", path=str(path))
        iv = f.read(IV_SIZE)
        f.seek(total - TAG_SIZE)
        tag = f.read(TAG_SIZE)

    keyword, relpath = fields["kw"], fields["relpath"]
    if get_sync_id(keyword, relpath) != fields["syncid"]:
        raise DecodeError(f"Syncid does not match kw/relpath in {path}", path=str(path))
    try:
        revguid = uuid.UUID(meta["revguid"])
    except ValueError as e:
        raise DecodeError(f"Bad revguid in {path}", path=str(path)) from e

    return SyncFile(
        syncid=fields["syncid"],
        keyword=keyword,
        relpath=relpath,
        revguid=revguid,
        is_binary=_parse_bool(fields["is_binary"], path),
        size=_parse_int(fields["size"], "size", path),
        path=path,
        iv=iv,
        tag=tag,
        payload_offset=offset,
        ciphertext_length=ciphertext_length,
        origin_native_mtime=_parse_int(meta["origin_native_mtime"], "origin_native_mtime", path),
        origin_host=meta["origin_host"],
        content_hash=meta["content_hash"],
    )


def get_metadata_hash(config: SyncConfig, path: Path) -> dict[str, str]:
    """Clear and decrypted metadata of a syncfile, for inspection tooling."""
    path = Path(path)
    key = config.require_key()
    with _io_errors("read syncfile", path), open(path, "rb") as f:
        fields, signed, _ = _read_header(f, path)
    if not hmac_matches(key, signed, _unb64(fields["header_hmac"], "header_hmac", path)):
        raise CryptoError(f"Header hmac mismatch, wrong password or modified header: {path}", path=str(path))

    result = {k: v for k, v in fields.items() if k not in ("md_iv", "md", "header_hmac")}
    result.update(_decrypt_metadata(key, fields, path))
    return result
