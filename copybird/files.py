"""Local file input, directory tar input and local file output modules."""

from __future__ import annotations

import os
import shutil
import tarfile
from collections.abc import Iterator
from dataclasses import dataclass

from copybird.core import Module, ModuleGroup, ModuleType

_CHUNK_SIZE = 64 * 1024


@dataclass
class LocalInputConfig:
    """Path of the file to read."""

    filename: str = ""


class LocalInput(Module):
    """Streams a local file into the pipeline."""

    name = "local"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.INPUT

    def default_config(self) -> LocalInputConfig:
        return LocalInputConfig()

    def init_module(self, config: LocalInputConfig) -> None:
        self.config = config

    def run(self) -> None:
        with open(self.config.filename, "rb") as source:
            shutil.copyfileobj(source, self.writer, _CHUNK_SIZE)


@dataclass
class TarInputConfig:
    """Directory to archive."""

    directory_path: str = ""


def _walk(path: str) -> Iterator[str]:
    """Yield ``path`` and everything below it in lexical order."""
    yield path
    if os.path.isdir(path) and not os.path.islink(path):
        for entry in sorted(os.listdir(path)):
            yield from _walk(os.path.join(path, entry))


class TarInput(Module):
    """Streams a tar archive of a directory into the pipeline."""

    name = "tar"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.INPUT

    def default_config(self) -> TarInputConfig:
        return TarInputConfig()

    def init_module(self, config: TarInputConfig) -> None:
        self.config = config

    def run(self) -> None:
        root = self.config.directory_path
        os.stat(root)
        with tarfile.open(fileobj=self.writer, mode="w|") as archive:
            for path in _walk(root):
                if os.path.isdir(path) and not os.path.islink(path):
                    continue
                arcname = path.replace(root, "").lstrip(os.sep)
                info = archive.gettarinfo(path, arcname=arcname)
                if info.isreg():
                    with open(path, "rb") as source:
                        archive.addfile(info, source)
                else:
                    archive.addfile(info)


@dataclass
class LocalOutputConfig:
    """Destination file and the flags used to open it."""

    file: str = "output"
    default_mask: int = os.O_APPEND | os.O_CREAT | os.O_WRONLY


class LocalOutput(Module):
    """Writes the pipeline's stream into a local file, appending by default."""

    name = "local"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.OUTPUT

    def default_config(self) -> LocalOutputConfig:
        return LocalOutputConfig()

    def init_module(self, config: LocalOutputConfig) -> None:
        self.config = config

    def run(self) -> None:
        fd = os.open(self.config.file, self.config.default_mask, 0o644)
        with os.fdopen(fd, "wb") as target:
            shutil.copyfileobj(self.reader, target, _CHUNK_SIZE)