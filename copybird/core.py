"""Module contract, module kinds and the global module registry."""

from __future__ import annotations

import abc
import threading
from enum import Enum
from typing import Any, BinaryIO


class ModuleGroup(str, Enum):
    """The stage family a module belongs to."""

    BACKUP = "backup"
    RESTORE = "restore"
    GLOBAL = "global"

    def __str__(self) -> str:
        return self.value


class ModuleType(str, Enum):
    """The role a module plays inside its group."""

    INPUT = "input"
    OUTPUT = "output"
    COMPRESS = "compress"
    DECOMPRESS = "decompress"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"
    NOTIFIER = "notifier"
    CONNECT = "connect"

    def __str__(self) -> str:
        return self.value


class Module(abc.ABC):
    """A pipeline stage that reads from ``reader`` and writes to ``writer``.

    Subclasses set ``name``, ``group`` and ``module_type`` and implement ``run``.
    """

    name: str = ""
    group: ModuleGroup = ModuleGroup.BACKUP
    module_type: ModuleType = ModuleType.INPUT

    def __init__(self) -> None:
        self.config: Any = None
        self.reader: BinaryIO | None = None
        self.writer: BinaryIO | None = None

    def default_config(self) -> Any:
        """Return a fresh configuration object holding the defaults."""
        return None

    def init_module(self, config: Any) -> None:
        """Validate and apply a configuration; raise on invalid settings."""
        self.config = config

    def init_pipe(self, writer: BinaryIO | None, reader: BinaryIO | None) -> None:
        """Attach the streams the module writes to and reads from."""
        self.writer = writer
        self.reader = reader

    @abc.abstractmethod
    def run(self) -> None:
        """Do the module's work."""

    def close(self) -> None:
        """Release resources held by the module."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.group}/{self.module_type}/{self.name}>"


class ModuleError(Exception):
    """An error raised by a module while it ran."""

    def __init__(self, module: Module, err: BaseException | str) -> None:
        super().__init__(module, err)
        self.module = module
        self.err = err

    def __str__(self) -> str:
        return f"module {self.module.name} err: {self.err}"


_modules: list[Module] = []
_modules_lock = threading.Lock()


def register_module(module: Module) -> None:
    """Add a module instance to the registry."""
    with _modules_lock:
        _modules.append(module)


def get_module(group: ModuleGroup | str, module_type: ModuleType | str, name: str) -> Module | None:
    """Return the first registered module matching all three keys, or None."""
    with _modules_lock:
        return next(
            (
                module
                for module in _modules
                if module.name == name
                and module.group == group
                and module.module_type == module_type
            ),
            None,
        )


def clear_registry() -> None:
    """Remove every registered module."""
    with _modules_lock:
        _modules.clear()