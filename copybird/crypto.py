"""AES-GCM stream encryption and decryption modules.

Each chunk is framed as a little-endian int32 plaintext length, a 12-byte
nonce and the sealed chunk (ciphertext plus 16-byte tag).
"""

from __future__ import annotations

import binascii
import os
import struct
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from copybird.core import Module, ModuleGroup, ModuleType

BUF_SIZE = 4096
NONCE_SIZE = 12
TAG_SIZE = 16
_LENGTH = struct.Struct("<i")


@dataclass
class AesGcmConfig:
    """Hex-encoded AES key of 16, 24 or 32 bytes."""

    key: str = ""


def _make_cipher(config: AesGcmConfig) -> AESGCM:
    if not config.key:
        raise ValueError("need key")
    try:
        key = bytes.fromhex(config.key)
    except ValueError as exc:
        raise ValueError(f"cipher key hex decode err: {exc}") from exc
    try:
        return AESGCM(key)
    except ValueError as exc:
        raise ValueError(f"cipher init err: {exc}") from exc


def _read_exact(reader, size: int) -> bytes:
    parts = []
    remaining = size
    while remaining:
        part = reader.read(remaining)
        if not part:
            break
        parts.append(part)
        remaining -= len(part)
    return b"".join(parts)


class AesGcmEncrypt(Module):
    """Encrypts the stream chunk by chunk with AES-GCM."""

    name = "aesgcm"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.ENCRYPT

    def __init__(self) -> None:
        super().__init__()
        self._cipher: AESGCM | None = None

    def default_config(self) -> AesGcmConfig:
        return AesGcmConfig()

    def init_module(self, config: AesGcmConfig) -> None:
        self._cipher = _make_cipher(config)
        self.config = config

    def run(self) -> None:
        if self._cipher is None:
            raise RuntimeError("module not initialised")
        for chunk in iter(lambda: self.reader.read(BUF_SIZE), b""):
            nonce = os.urandom(NONCE_SIZE)
            self.writer.write(_LENGTH.pack(len(chunk)))
            self.writer.write(nonce)
            self.writer.write(self._cipher.encrypt(nonce, chunk, None))


class AesGcmDecrypt(Module):
    """Decrypts a stream produced by AesGcmEncrypt."""

    name = "aesgcm"
    group = ModuleGroup.RESTORE
    module_type = ModuleType.DECRYPT

    def __init__(self) -> None:
        super().__init__()
        self._cipher: AESGCM | None = None

    def default_config(self) -> AesGcmConfig:
        return AesGcmConfig()

    def init_module(self, config: AesGcmConfig) -> None:
        self._cipher = _make_cipher(config)
        self.config = config

    def run(self) -> None:
        if self._cipher is None:
            raise RuntimeError("module not initialised")
        while True:
            header = _read_exact(self.reader, _LENGTH.size)
            if not header:
                return
            if len(header) < _LENGTH.size:
                raise ValueError("read err: truncated chunk header")
            (length,) = _LENGTH.unpack(header)
            if length < 0:
                raise ValueError(f"read err: invalid chunk length {length}")
            nonce = _read_exact(self.reader, NONCE_SIZE)
            sealed = _read_exact(self.reader, length + TAG_SIZE)
            if len(nonce) < NONCE_SIZE or len(sealed) < length + TAG_SIZE:
                raise ValueError("read err: truncated chunk")
            try:
                plain = self._cipher.decrypt(nonce, sealed, None)
            except InvalidTag as exc:
                raise ValueError("decrypt err: message authentication failed") from exc
            self.writer.write(plain)


__all__ = ["AesGcmConfig", "AesGcmEncrypt", "AesGcmDecrypt", "binascii"] if False else [
    "AesGcmConfig",
    "AesGcmEncrypt",
    "AesGcmDecrypt",
]