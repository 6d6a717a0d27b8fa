"""Command-line application: module registration and the backup and restore commands."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from copybird.compress import GzipCompress, GzipDecompress, Lz4Compress, Lz4Decompress
from copybird.core import (
    Module,
    ModuleError,
    ModuleGroup,
    ModuleType,
    get_module,
    register_module,
)
from copybird.crypto import AesGcmDecrypt, AesGcmEncrypt
from copybird.files import LocalInput, LocalOutput, TarInput
from copybird.mongodb import MongodbInput
from copybird.mysql import MysqlInput, MysqlOutput
from copybird.pipeline import Runner, load_module
from copybird.remote import HttpOutput, ScpOutput

logger = logging.getLogger(__name__)


@dataclass
class ConfigModule:
    """A module name and its settings."""

    type: str = ""
    config: Any = None


@dataclass
class ConfigBackup:
    """Modules making up a backup run."""

    connect: ConfigModule | None = None
    input: ConfigModule | None = None
    compress: ConfigModule | None = None
    encrypt: ConfigModule | None = None
    outputs: list[ConfigModule] = field(default_factory=list)
    notifiers: list[ConfigModule] = field(default_factory=list)


@dataclass
class ConfigRestore:
    """Modules making up a restore run."""

    connect: ConfigModule = field(default_factory=ConfigModule)
    input: ConfigModule = field(default_factory=ConfigModule)
    decompress: ConfigModule = field(default_factory=ConfigModule)
    decrypt: ConfigModule = field(default_factory=ConfigModule)
    output: ConfigModule = field(default_factory=ConfigModule)
    notifiers: list[ConfigModule] = field(default_factory=list)


class _RestoreLocalInput(LocalInput):
    """Reads a backup file for a restore."""

    group = ModuleGroup.RESTORE


class _RestoreLocalOutput(LocalOutput):
    """Writes a restored stream into a local file."""

    group = ModuleGroup.RESTORE


def _builtin_modules() -> list[Module]:
    return [
        MysqlInput(),
        MongodbInput(),
        LocalInput(),
        TarInput(),
        GzipCompress(),
        Lz4Compress(),
        AesGcmEncrypt(),
        HttpOutput(),
        LocalOutput(),
        ScpOutput(),
        _RestoreLocalInput(),
        AesGcmDecrypt(),
        GzipDecompress(),
        Lz4Decompress(),
        MysqlOutput(),
        _RestoreLocalOutput(),
    ]


def register_modules() -> None:
    """Register the built-in modules, skipping any already registered."""
    for module in _builtin_modules():
        if get_module(module.group, module.module_type, module.name) is None:
            register_module(module)


def _as_mapping(options: Mapping[str, Any] | argparse.Namespace) -> Mapping[str, Any]:
    if isinstance(options, argparse.Namespace):
        return vars(options)
    return options


def _add_flags(command: argparse.ArgumentParser, first_stage: str, second_stage: str) -> None:
    command.add_argument("-f", "--config", default="")
    command.add_argument("-c", "--connect", default="")
    command.add_argument("-i", "--input", default="", help="(required)")
    command.add_argument("-z", f"--{first_stage}", default="")
    command.add_argument("-e", f"--{second_stage}", default="")
    command.add_argument("-o", "--output", default="", help="(required)")
    command.add_argument("-n", "--notifier", action="append", default=None)


class App:
    """The copybird command line."""

    def __init__(self) -> None:
        self.parser: argparse.ArgumentParser | None = None

    def setup(self) -> argparse.ArgumentParser:
        """Build the argument parser with the backup and restore commands."""
        parser = argparse.ArgumentParser(prog="copybird")
        commands = parser.add_subparsers(dest="command")
        backup = commands.add_parser("backup", help="Start new backup")
        _add_flags(backup, "compress", "encrypt")
        backup.set_defaults(handler=self.do_backup)
        restore = commands.add_parser("restore", help="Start new restore")
        _add_flags(restore, "decompress", "decrypt")
        restore.set_defaults(handler=self.do_restore)
        self.parser = parser
        return parser

    def run(self, argv: Sequence[str] | None = None) -> int:
        """Parse the command line, run the chosen command and return an exit code."""
        register_modules()
        parser = self.setup()
        args = parser.parse_args(argv)
        handler = getattr(args, "handler", None)
        if handler is None:
            parser.print_help()
            return 0
        try:
            errors = handler(args)
        except Exception as exc:
            logger.error("cmd err: %s", exc)
            return 1
        return 1 if errors else 0

    def do_backup(self, options: Mapping[str, Any] | argparse.Namespace) -> list[ModuleError]:
        """Run input, optional compress and encrypt, and output as one pipe chain."""
        opts = _as_mapping(options)
        input_module = load_module(ModuleGroup.BACKUP, ModuleType.INPUT, opts.get("input") or "")
        output_module = load_module(ModuleGroup.BACKUP, ModuleType.OUTPUT, opts.get("output") or "")
        compress_spec = opts.get("compress") or ""
        compress_module = (
            load_module(ModuleGroup.BACKUP, ModuleType.COMPRESS, compress_spec)
            if compress_spec
            else None
        )
        encrypt_spec = opts.get("encrypt") or ""
        encrypt_module = (
            load_module(ModuleGroup.BACKUP, ModuleType.ENCRYPT, encrypt_spec)
            if encrypt_spec
            else None
        )
        return Runner(
            input_module=input_module,
            output_module=output_module,
            compress_module=compress_module,
            encrypt_module=encrypt_module,
        ).run()

    def do_restore(self, options: Mapping[str, Any] | argparse.Namespace) -> list[ModuleError]:
        """Run input, optional decrypt and decompress, and output as one pipe chain."""
        opts = _as_mapping(options)
        input_module = load_module(ModuleGroup.RESTORE, ModuleType.INPUT, opts.get("input") or "")
        output_module = load_module(ModuleGroup.RESTORE, ModuleType.OUTPUT, opts.get("output") or "")
        decompress_spec = opts.get("decompress") or ""
        decompress_module = (
            load_module(ModuleGroup.RESTORE, ModuleType.DECOMPRESS, decompress_spec)
            if decompress_spec
            else None
        )
        decrypt_spec = opts.get("decrypt") or ""
        decrypt_module = (
            load_module(ModuleGroup.RESTORE, ModuleType.DECRYPT, decrypt_spec)
            if decrypt_spec
            else None
        )
        # The runner chains its first middle stage before its second, so the
        # stream is decrypted before it is decompressed.
        return Runner(
            input_module=input_module,
            output_module=output_module,
            compress_module=decrypt_module,
            encrypt_module=decompress_module,
        ).run()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the copybird command."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    return App().run(argv)


if __name__ == "__main__":
    raise SystemExit(main())