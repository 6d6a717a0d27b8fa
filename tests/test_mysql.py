import io
from unittest import mock

import pymysql
import pytest

from copybird.mysql import (
    MysqlConfig,
    MysqlInput,
    MysqlOutput,
    format_value,
    split_statements,
)

USERS_SCHEMA = "CREATE TABLE `users` (`id` int, `name` text)"
EMPTY_SCHEMA = "CREATE TABLE `empty` (`id` int)"


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rows = []
        self.description = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query):
        self.conn.executed.append(query)
        result = self.conn.results.get(query)
        if isinstance(result, Exception):
            raise result
        rows, columns = result if result is not None else ([], None)
        self.rows = list(rows)
        self.description = [(column,) for column in columns] if columns else None
        return len(self.rows)

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class FakeConnection:
    def __init__(self, results=None):
        self.results = results or {}
        self.executed = []
        self.closed = False
        self.began = False

    def cursor(self):
        return FakeCursor(self)

    def ping(self, reconnect=False):
        return None

    def begin(self):
        self.began = True

    def close(self):
        self.closed = True


def dump_results():
    return {
        "SELECT version()": ([("8.0.36",)], ["version()"]),
        "SHOW TABLES": ([("users",), ("empty",)], ["Tables_in_test"]),
        "SHOW CREATE TABLE `users`": ([("users", USERS_SCHEMA)], ["Table", "Create Table"]),
        "SHOW CREATE TABLE `empty`": ([("empty", EMPTY_SCHEMA)], ["Table", "Create Table"]),
        "SELECT * FROM `users`": ([("1", "O'Brien"), ("2", None)], ["id", "name"]),
        "SELECT * FROM `empty`": ([], ["id"]),
    }


def run_dump(results):
    conn = FakeConnection(results)
    module = MysqlInput()
    out = io.BytesIO()
    with mock.patch("pymysql.connect", return_value=conn):
        module.init_module(module.default_config())
    module.init_pipe(out, None)
    module.run()
    return out.getvalue().decode("utf-8"), conn


def test_format_value_null():
    assert format_value(None) == "NULL"


@pytest.mark.parametrize("value", ["42", "-7", "+5", "0"])
def test_format_value_integers_are_bare(value):
    assert format_value(value) == value


def test_format_value_bytes_integer_is_bare():
    assert format_value(b"12") == "12"


@pytest.mark.parametrize("value", ["1.5", "abc", "99999999999999999999", ""])
def test_format_value_other_text_is_quoted(value):
    result = format_value(value)
    assert result.startswith("'") and result.endswith("'")
    assert result[1:-1] == value


def test_format_value_escapes_quotes():
    assert format_value("O'Brien") == "'O\\'Brien'"


def test_split_statements_basic():
    assert split_statements("SELECT 1; SELECT 2") == ["SELECT 1", "SELECT 2"]


def test_split_statements_keeps_semicolon_in_quotes_and_drops_comments():
    text = "SELECT 'a;b'; -- note\nINSERT INTO t VALUES (1) /* c */;\n# tail\n"
    assert split_statements(text) == ["SELECT 'a;b'", "INSERT INTO t VALUES (1)"]


def test_split_statements_escaped_quote():
    text = "INSERT INTO t VALUES ('it\\'s;here');"
    assert split_statements(text) == ["INSERT INTO t VALUES ('it\\'s;here')"]


def test_split_statements_double_dash_without_space_is_not_comment():
    assert split_statements("SELECT 3--1") == ["SELECT 3--1"]


def test_split_statements_unterminated_quote():
    with pytest.raises(ValueError):
        split_statements("SELECT 'open")


def test_split_statements_unterminated_comment():
    with pytest.raises(ValueError):
        split_statements("SELECT 1 /* open")


def test_default_config_connects_to_default_dsn():
    conn = FakeConnection()
    module = MysqlInput()
    config = module.default_config()
    assert config.dsn.endswith("@tcp(localhost:3306)/test")
    with mock.patch("pymysql.connect", return_value=conn) as connect:
        module.init_module(config)
    kwargs = connect.call_args.kwargs
    assert kwargs["host"] == "localhost"
    assert kwargs["port"] == 3306
    assert kwargs["database"] == "test"
    assert conn.began


def test_dsn_parsing_for_output():
    conn = FakeConnection()
    module = MysqlOutput()
    dsn = "user:password@tcp(db.example.com:3307)/shop?charset=utf8mb4"
    with mock.patch("pymysql.connect", return_value=conn) as connect:
        result = module.init_module(MysqlConfig(dsn=dsn))
    assert result is None
    kwargs = connect.call_args.kwargs
    assert kwargs["host"] == "db.example.com"
    assert kwargs["port"] == 3307
    assert kwargs["user"] == "user"
    assert kwargs["password"] == "password"
    assert kwargs["database"] == "shop"
    assert kwargs["charset"] == "utf8mb4"
    assert kwargs["autocommit"] is True


def test_dsn_unix_socket():
    with mock.patch("pymysql.connect", return_value=FakeConnection()) as connect:
        result = MysqlOutput().init_module(MysqlConfig(dsn="user@unix(/tmp/mysql.sock)/db"))
    assert result is None
    kwargs = connect.call_args.kwargs
    assert kwargs["unix_socket"] == "/tmp/mysql.sock"
    assert kwargs["user"] == "user"
    assert "host" not in kwargs


def test_dsn_without_slash_is_rejected():
    with mock.patch("pymysql.connect", return_value=FakeConnection()) as connect:
        with pytest.raises(ValueError):
            MysqlOutput().init_module(MysqlConfig(dsn="localhost"))
    assert connect.call_count == 0


def test_dump_structure():
    text, _ = run_dump(dump_results())
    assert "-- Server version   8.0.36\n" in text
    assert "DROP TABLE IF EXISTS users;" in text
    assert USERS_SCHEMA + ";" in text
    assert "INSERT INTO `users` VALUES (1,'O\\'Brien'),(2,NULL);" in text
    assert "INSERT INTO `empty`" not in text
    assert "UNLOCK TABLES;" in text
    assert text.index("users") < text.index("empty")
    assert "-- Dump completed on " in text.rsplit("\n", 1)[-1]


def test_dump_tolerates_missing_version():
    results = dump_results()
    results["SELECT version()"] = pymysql.err.OperationalError(1045, "denied")
    text, _ = run_dump(results)
    assert "-- Server version   \n" in text


def test_dump_wrong_table_returned():
    results = dump_results()
    results["SHOW CREATE TABLE `users`"] = ([("other", USERS_SCHEMA)], ["Table", "Create Table"])
    with pytest.raises(ValueError, match="wrong table returned"):
        run_dump(results)


def test_run_requires_init():
    with pytest.raises(RuntimeError):
        MysqlInput().run()


def test_restore_executes_only_supported_statements():
    conn = FakeConnection()
    module = MysqlOutput()
    with mock.patch("pymysql.connect", return_value=conn):
        module.init_module(module.default_config())
    script = (
        b"SET NAMES utf8;\nLOCK TABLES t WRITE;\nINSERT INTO t VALUES (1);\n"
        b"UNLOCK TABLES;\nCREATE DATABASE d;\n"
    )
    module.init_pipe(None, io.BytesIO(script))
    result = module.run()
    assert result is None
    assert conn.executed == ["INSERT INTO t VALUES (1)", "CREATE DATABASE d"]


def test_dump_then_restore_round_trip():
    text, _ = run_dump(dump_results())
    conn = FakeConnection()
    module = MysqlOutput()
    with mock.patch("pymysql.connect", return_value=conn):
        module.init_module(module.default_config())
    module.init_pipe(None, io.BytesIO(text.encode("utf-8")))
    result = module.run()
    assert result is None
    assert conn.executed == [
        "DROP TABLE IF EXISTS users",
        USERS_SCHEMA,
        "INSERT INTO `users` VALUES (1,'O\\'Brien'),(2,NULL)",
        "DROP TABLE IF EXISTS empty",
        EMPTY_SCHEMA,
    ]


def test_output_close_closes_connection():
    conn = FakeConnection()
    module = MysqlOutput()
    with mock.patch("pymysql.connect", return_value=conn):
        module.init_module(module.default_config())
    result = module.close()
    assert result is None
    assert conn.closed