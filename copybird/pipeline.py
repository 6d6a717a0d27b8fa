"""Loading modules from command-line specs and running them as a pipe chain."""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from copybird.core import Module, ModuleError, ModuleGroup, ModuleType, get_module

logger = logging.getLogger(__name__)

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


def parse_args(args: str) -> tuple[str, dict[str, str]]:
    """Split ``name::key=value::key=value`` into the name and its parameters."""
    name, *raw_params = args.split("::")
    params: dict[str, str] = {}
    for param in raw_params:
        parts = param.split("=")
        if len(parts) < 2:
            raise ValueError(f"module param {param!r} must be of the form key=value")
        params[parts[0]] = parts[1]
    return name, params


def _parse_bool(value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean value: {value!r}")


def _parse_int(value: str) -> int:
    if not _INT_PATTERN.fullmatch(value):
        raise ValueError(f"invalid integer value: {value!r}")
    return int(value)


def _type_name(field_type: Any) -> str:
    if isinstance(field_type, str):
        return field_type.strip()
    return getattr(field_type, "__name__", repr(field_type))


def load_config(config: Any, params: dict[str, str]) -> Any:
    """Set the fields of a dataclass config from string parameters.

    Parameters that name no field are ignored. Returns the config.
    """
    if not params:
        return config
    if config is None or not dataclasses.is_dataclass(config):
        raise TypeError(f"module config {config!r} does not accept parameters")
    for p_name, p_value in params.items():
        for config_field in dataclasses.fields(config):
            if config_field.name != p_name:
                continue
            type_name = _type_name(config_field.type)
            if type_name == "str":
                value: Any = p_value
            elif type_name == "bool":
                value = _parse_bool(p_value)
            elif type_name == "int":
                value = _parse_int(p_value)
            else:
                raise TypeError(f"unsupported config param type: {p_name} {type_name}")
            setattr(config, config_field.name, value)
    return config


def _label(value: Any) -> str:
    return str(getattr(value, "value", value))


def load_module(group: ModuleGroup | str, module_type: ModuleType | str, args: str) -> Module:
    """Find a registered module by spec, configure it and initialise it."""
    name, params = parse_args(args)
    module = get_module(group, module_type, name)
    if module is None:
        raise LookupError(f"module {_label(module_type)}/{name} not found")
    config = load_config(module.default_config(), params)
    logger.info("module %s/%s config: %r", _label(module_type), name, config)
    try:
        module.init_module(config)
    except Exception as exc:
        raise RuntimeError(f"init module {_label(module_type)}/{name} err: {exc}") from exc
    return module


def run_module(module: Module, writer: BinaryIO | None = None, reader: BinaryIO | None = None) -> None:
    """Run one module over its streams, closing both streams afterwards.

    Any failure is raised as a ModuleError.
    """
    started = time.perf_counter()
    try:
        module.init_pipe(writer, reader)
        module.run()
    except Exception as exc:
        logger.error("module %s/%s err: %s", _label(module.module_type), module.name, exc)
        raise ModuleError(module, exc) from exc
    finally:
        for stream in (writer, reader):
            if stream is not None:
                with contextlib.suppress(OSError):
                    stream.close()
        logger.info(
            "module %s/%s done by %.2fms",
            _label(module.module_type),
            module.name,
            (time.perf_counter() - started) * 1000,
        )


def _make_pipe() -> tuple[BinaryIO, BinaryIO]:
    read_fd, write_fd = os.pipe()
    return open(read_fd, "rb"), open(write_fd, "wb")


@dataclass
class Runner:
    """Chains input, optional compress and encrypt stages, and output."""

    input_module: Module
    output_module: Module
    compress_module: Module | None = None
    encrypt_module: Module | None = None
    notifiers: list[Module] = field(default_factory=list)

    def run(self) -> list[ModuleError]:
        """Run every stage concurrently and return the errors they raised."""
        errors: list[ModuleError] = []
        errors_lock = threading.Lock()

        def worker(module: Module, writer: BinaryIO | None, reader: BinaryIO | None) -> None:
            try:
                run_module(module, writer, reader)
            except ModuleError as exc:
                with errors_lock:
                    errors.append(exc)

        threads: list[threading.Thread] = []

        def start(module: Module, writer: BinaryIO | None, reader: BinaryIO | None) -> None:
            thread = threading.Thread(target=worker, args=(module, writer, reader))
            threads.append(thread)
            thread.start()

        next_reader, next_writer = _make_pipe()
        start(self.input_module, next_writer, None)
        for stage in (self.compress_module, self.encrypt_module):
            if stage is not None:
                stage_reader, stage_writer = _make_pipe()
                start(stage, stage_writer, next_reader)
                next_reader = stage_reader
        start(self.output_module, None, next_reader)

        for thread in threads:
            thread.join()
        for error in errors:
            logger.error("err: %s", error)
        return errors