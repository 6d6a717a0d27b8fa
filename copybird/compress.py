"""Gzip and LZ4 stream compression and decompression modules."""

from __future__ import annotations

import gzip
import itertools
import shutil
import zlib
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import lz4.frame

from copybird.core import Module, ModuleGroup, ModuleType

_CHUNK_SIZE = 64 * 1024
_GZIP_WBITS = 16 + zlib.MAX_WBITS
_LEVEL_ERROR = "compression level must be between -1 and 9"


@dataclass
class CompressConfig:
    """Settings shared by the compressors."""

    level: int = 3


def _validate_level(config: CompressConfig) -> int:
    if not -1 <= config.level <= 9:
        raise ValueError(_LEVEL_ERROR)
    return config.level


def _chunks(reader) -> Iterator[bytes]:
    return iter(lambda: reader.read(_CHUNK_SIZE), b"")


class GzipCompress(Module):
    """Compresses the stream with gzip."""

    name = "gzip"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.COMPRESS

    def __init__(self) -> None:
        super().__init__()
        self.level = 3

    def default_config(self) -> CompressConfig:
        return CompressConfig(level=3)

    def init_module(self, config: CompressConfig) -> None:
        self.level = _validate_level(config)
        self.config = config

    def run(self) -> None:
        try:
            with gzip.GzipFile(fileobj=self.writer, mode="wb", compresslevel=self.level) as gz:
                shutil.copyfileobj(self.reader, gz, _CHUNK_SIZE)
        except OSError as exc:
            raise OSError(f"copy error: {exc}") from exc


class Lz4Compress(Module):
    """Compresses the stream into an LZ4 frame."""

    name = "lz4"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.COMPRESS

    def __init__(self) -> None:
        super().__init__()
        self.level = 2

    def default_config(self) -> CompressConfig:
        return CompressConfig(level=2)

    def init_module(self, config: CompressConfig) -> None:
        self.level = _validate_level(config)
        self.config = config

    def run(self) -> None:
        compressor = lz4.frame.LZ4FrameCompressor(compression_level=self.level)
        try:
            self.writer.write(compressor.begin())
            for chunk in _chunks(self.reader):
                block = compressor.compress(chunk)
                if block:
                    self.writer.write(block)
            self.writer.write(compressor.flush())
        except OSError as exc:
            raise OSError(f"copy error: {exc}") from exc


def _gunzip(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Decompress one or more concatenated gzip members."""
    decoder = None
    for chunk in chunks:
        data = chunk
        while data:
            if decoder is None:
                decoder = zlib.decompressobj(_GZIP_WBITS)
            yield decoder.decompress(data)
            if decoder.eof:
                data = decoder.unused_data
                decoder = None
            else:
                data = b""
    if decoder is not None:
        raise EOFError("unexpected EOF")


def _unlz4(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Decompress one or more concatenated LZ4 frames."""
    decoder = None
    for chunk in chunks:
        data = chunk
        while data:
            if decoder is None:
                decoder = lz4.frame.LZ4FrameDecompressor()
            yield decoder.decompress(data)
            if decoder.eof:
                data = decoder.unused_data
                decoder = None
            else:
                data = b""
    if decoder is not None:
        raise EOFError("unexpected EOF")


class GzipDecompress(Module):
    """Restores a gzip-compressed stream."""

    name = "gzip"
    group = ModuleGroup.RESTORE
    module_type = ModuleType.DECOMPRESS

    def run(self) -> None:
        first = self.reader.read(_CHUNK_SIZE)
        if not first:
            raise ValueError("cant start gzip reader with error: EOF")
        try:
            for block in _gunzip(itertools.chain([first], _chunks(self.reader))):
                if block:
                    self.writer.write(block)
        except (EOFError, zlib.error, OSError) as exc:
            raise ValueError(f"copy error: {exc}") from exc


class Lz4Decompress(Module):
    """Restores an LZ4-compressed stream."""

    name = "lz4"
    group = ModuleGroup.RESTORE
    module_type = ModuleType.DECOMPRESS

    def run(self) -> None:
        try:
            for block in _unlz4(_chunks(self.reader)):
                if block:
                    self.writer.write(block)
        except (EOFError, RuntimeError, OSError) as exc:
            raise ValueError(f"copy error: {exc}") from exc