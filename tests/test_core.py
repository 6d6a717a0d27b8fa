import io

import pytest

from copybird.core import (
    Module,
    ModuleError,
    ModuleGroup,
    ModuleType,
    clear_registry,
    get_module,
    register_module,
)


class _Stage(Module):
    def __init__(self, name, group=ModuleGroup.BACKUP, module_type=ModuleType.INPUT):
        super().__init__()
        self.name = name
        self.group = group
        self.module_type = module_type

    def run(self):
        self.writer.write(self.reader.read())


@pytest.fixture(autouse=True)
def _empty_registry():
    clear_registry()
    yield
    clear_registry()


def test_enum_values_match_source_strings():
    assert ModuleGroup("backup") is ModuleGroup.BACKUP
    assert ModuleGroup("restore") is ModuleGroup.RESTORE
    assert ModuleType("decompress") is ModuleType.DECOMPRESS
    assert str(ModuleType("encrypt")) == "encrypt"


def test_get_module_finds_registered():
    stage = _Stage("gzip", module_type=ModuleType.COMPRESS)
    register_module(stage)
    assert get_module(ModuleGroup.BACKUP, ModuleType.COMPRESS, "gzip") is stage


def test_get_module_accepts_plain_strings():
    stage = _Stage("local", module_type=ModuleType.OUTPUT)
    register_module(stage)
    assert get_module("backup", "output", "local") is stage


def test_get_module_requires_all_keys_to_match():
    register_module(_Stage("gzip", module_type=ModuleType.COMPRESS))
    assert get_module(ModuleGroup.RESTORE, ModuleType.COMPRESS, "gzip") is None
    assert get_module(ModuleGroup.BACKUP, ModuleType.ENCRYPT, "gzip") is None
    assert get_module(ModuleGroup.BACKUP, ModuleType.COMPRESS, "lz4") is None


def test_first_registration_wins():
    first = _Stage("mysql")
    second = _Stage("mysql")
    register_module(first)
    register_module(second)
    assert get_module(ModuleGroup.BACKUP, ModuleType.INPUT, "mysql") is first


def test_clear_registry_removes_modules():
    register_module(_Stage("mysql"))
    clear_registry()
    assert get_module(ModuleGroup.BACKUP, ModuleType.INPUT, "mysql") is None


def test_module_error_message():
    error = ModuleError(_Stage("gzip"), ValueError("bad level"))
    assert str(error) == "module gzip err: bad level"
    assert isinstance(error.err, ValueError)


def test_module_base_defaults_and_pipe():
    stage = _Stage("copy")
    assert Module.default_config(stage) is None
    Module.init_module(stage, {"a": 1})
    assert stage.config == {"a": 1}

    source, sink = io.BytesIO(b"abc"), io.BytesIO()
    Module.init_pipe(stage, sink, source)
    assert stage.reader is source and stage.writer is sink
    stage.run()
    assert sink.getvalue() == b"abc"


def test_module_without_run_is_abstract():
    with pytest.raises(TypeError):
        Module()