"""MySQL dump input and SQL restore output modules."""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl

import pymysql

from copybird.core import Module, ModuleGroup, ModuleType

logger = logging.getLogger(__name__)

DEFAULT_DSN = "user:password@tcp(localhost:3306)/test"
_DEFAULT_HOST = "localhost"
_DEFAULT_PORT = 3306
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_SPECIAL = re.compile(r"['\"`#;]|--|/\*")
_FIRST_WORD = re.compile(r"[A-Za-z]+")
_EXECUTABLE = frozenset({"SELECT", "INSERT", "CREATE", "DROP", "ALTER", "RENAME", "TRUNCATE"})

HEADER_TEMPLATE = """
--
-- ------------------------------------------------------
-- Server version   {version}
/*!40101 SET @OLD_CHARACTER_SET_CLIENT=@@CHARACTER_SET_CLIENT */;
/*!40101 SET @OLD_CHARACTER_SET_RESULTS=@@CHARACTER_SET_RESULTS */;
/*!40101 SET @OLD_COLLATION_CONNECTION=@@COLLATION_CONNECTION */;
/*!40101 SET NAMES utf8mb4 */;
/*!40103 SET @OLD_TIME_ZONE=@@TIME_ZONE */;
/*!40103 SET TIME_ZONE='+00:00' */;
/*!40014 SET @OLD_UNIQUE_CHECKS=@@UNIQUE_CHECKS, UNIQUE_CHECKS=0 */;
/*!40014 SET @OLD_FOREIGN_KEY_CHECKS=@@FOREIGN_KEY_CHECKS, FOREIGN_KEY_CHECKS=0 */;
/*!40101 SET @OLD_SQL_MODE=@@SQL_MODE, SQL_MODE='NO_AUTO_VALUE_ON_ZERO' */;
/*!40111 SET @OLD_SQL_NOTES=@@SQL_NOTES, SQL_NOTES=0 */;
"""

TABLE_TEMPLATE = """
--
-- Table structure for table {name}
--
DROP TABLE IF EXISTS {name};
/*!40101 SET @saved_cs_client     = @@character_set_client */;
/*!40101 SET character_set_client = utf8mb4 */;
{schema};
/*!40101 SET character_set_client = @saved_cs_client */;
--
-- Dumping data for table {name}
--
LOCK TABLES {name} WRITE;
/*!40000 ALTER TABLE {name} DISABLE KEYS */;
"""

END_TABLE_TEMPLATE = """
/*!40000 ALTER TABLE {name} ENABLE KEYS */;
UNLOCK TABLES;
"""

FOOTER_TEMPLATE = "-- Dump completed on {end_time}"


@dataclass
class MysqlConfig:
    """Connection string ``user:password@protocol(address)/dbname?params``."""

    dsn: str = DEFAULT_DSN


def _parse_dsn(dsn: str) -> dict[str, Any]:
    """Turn a DSN into keyword arguments for ``pymysql.connect``."""
    body, _, query = dsn.partition("?")
    slash = body.rfind("/")
    if slash < 0:
        raise ValueError("invalid DSN: missing the slash separating the database name")
    kwargs: dict[str, Any] = {}
    database = body[slash + 1 :]
    if database:
        kwargs["database"] = database
    head = body[:slash]
    at = head.rfind("@")
    if at >= 0:
        user, sep, secret = head[:at].partition(":")
        if user:
            kwargs["user"] = user
        if sep:
            kwargs["password"] = secret
        head = head[at + 1 :]
    paren = head.find("(")
    if paren >= 0:
        if not head.endswith(")"):
            raise ValueError("invalid DSN: did you forget to close the address parenthesis?")
        protocol, address = head[:paren], head[paren + 1 : -1]
    else:
        protocol, address = head, ""
    if protocol == "unix":
        kwargs["unix_socket"] = address
    elif protocol in ("", "tcp"):
        host, port = address or _DEFAULT_HOST, _DEFAULT_PORT
        if ":" in address and not address.endswith("]"):
            host_part, _, port_part = address.rpartition(":")
            host = host_part
            try:
                port = int(port_part)
            except ValueError as exc:
                raise ValueError(f"invalid DSN: bad port {port_part!r}") from exc
        kwargs["host"] = host.strip("[]") or _DEFAULT_HOST
        kwargs["port"] = port
    else:
        raise ValueError(f"invalid DSN: unknown network {protocol!r}")
    for key, value in parse_qsl(query):
        if key == "charset":
            kwargs["charset"] = value
    return kwargs


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="surrogateescape")
    return str(value)


def _quote_ident(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


def format_value(value: Any) -> str:
    """Render a column value as an SQL literal for an INSERT statement.

    NULL for None, bare digits for values that parse as a 64-bit integer,
    a single-quoted string with escaped quotes otherwise.
    """
    if value is None:
        return "NULL"
    text = _text(value)
    if _INT_PATTERN.fullmatch(text) and _INT64_MIN <= int(text) <= _INT64_MAX:
        return text
    return "'" + text.replace("'", "\\'") + "'"


def _quoted_end(text: str, start: int) -> int:
    quote = text[start]
    pos = start + 1
    length = len(text)
    while pos < length:
        char = text[pos]
        if char == "\\" and quote != "`":
            pos += 2
            continue
        if char == quote:
            if pos + 1 < length and text[pos + 1] == quote:
                pos += 2
                continue
            return pos + 1
        pos += 1
    raise ValueError("unterminated quoted string")


def split_statements(text: str) -> list[str]:
    """Split SQL text into statements, dropping comments and empty statements."""
    statements: list[str] = []
    current: list[str] = []

    def flush() -> None:
        statement = "".join(current).strip()
        current.clear()
        if statement:
            statements.append(statement)

    length = len(text)
    pos = 0
    while True:
        match = _SPECIAL.search(text, pos)
        if match is None:
            current.append(text[pos:])
            break
        start = match.start()
        current.append(text[pos:start])
        token = match.group()
        if token in ("'", '"', "`"):
            end = _quoted_end(text, start)
            current.append(text[start:end])
            pos = end
        elif token == ";":
            flush()
            pos = start + 1
        elif token == "/*":
            close = text.find("*/", start + 2)
            if close < 0:
                raise ValueError("unterminated comment")
            current.append(" ")
            pos = close + 2
        elif token == "#" or start + 2 == length or text[start + 2].isspace():
            newline = text.find("\n", start)
            current.append("\n")
            pos = length if newline < 0 else newline + 1
        else:
            current.append("-")
            pos = start + 1
    flush()
    return statements


def _is_executable(statement: str) -> bool:
    match = _FIRST_WORD.match(statement)
    return match is not None and match.group().upper() in _EXECUTABLE


class MysqlInput(Module):
    """Dumps a MySQL database as SQL text into the pipeline."""

    name = "mysql"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.INPUT

    def __init__(self) -> None:
        super().__init__()
        self._conn: Any = None

    def default_config(self) -> MysqlConfig:
        return MysqlConfig()

    def init_module(self, config: MysqlConfig) -> None:
        self.config = config
        # An empty converter table keeps column values in their text form.
        conn = pymysql.connect(**_parse_dsn(config.dsn), conv={})
        conn.ping(reconnect=False)
        conn.begin()
        self._conn = conn

    def run(self) -> None:
        if self._conn is None:
            raise RuntimeError("module not initialised")
        with self._conn.cursor() as cursor:
            self._write(HEADER_TEMPLATE.format(version=self._server_version(cursor)))
            for table in self._tables(cursor):
                schema = self._table_schema(cursor, table)
                self._write(TABLE_TEMPLATE.format(name=table, schema=schema))
                self._write_table_data(cursor, table)
                self._write(END_TABLE_TEMPLATE.format(name=table))
            end_time = datetime.datetime.now().astimezone()
            self._write(FOOTER_TEMPLATE.format(end_time=end_time))

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _write(self, text: str) -> None:
        self.writer.write(text.encode("utf-8", errors="surrogateescape"))

    @staticmethod
    def _server_version(cursor: Any) -> str:
        try:
            cursor.execute("SELECT version()")
        except pymysql.MySQLError as exc:
            logger.warning("cannot read server version: %s", exc)
            return ""
        row = cursor.fetchone()
        return "" if row is None else _text(row[0])

    @staticmethod
    def _tables(cursor: Any) -> list[str]:
        cursor.execute("SHOW TABLES")
        return [_text(row[0]) for row in cursor.fetchall()]

    @staticmethod
    def _table_schema(cursor: Any, table: str) -> str:
        cursor.execute(f"SHOW CREATE TABLE {_quote_ident(table)}")
        row = cursor.fetchone()
        if row is None:
            raise LookupError(f"no schema returned for table {table}")
        if _text(row[0]) != table:
            raise ValueError("wrong table returned")
        return _text(row[1])

    def _write_table_data(self, cursor: Any, table: str) -> None:
        cursor.execute(f"SELECT * FROM {_quote_ident(table)}")
        rows = cursor.fetchall()
        if not rows:
            return
        if not cursor.description:
            raise ValueError(f"no columns in table {table}")
        self._write(f"INSERT INTO {_quote_ident(table)} VALUES ")
        last = len(rows)
        for index, row in enumerate(rows, 1):
            values = ",".join(format_value(value) for value in row)
            self._write(f"({values})" + (";" if index == last else ","))


class MysqlOutput(Module):
    """Replays an SQL dump read from the pipeline against a MySQL server."""

    name = "mysql"
    group = ModuleGroup.RESTORE
    module_type = ModuleType.OUTPUT

    def __init__(self) -> None:
        super().__init__()
        self._conn: Any = None

    def default_config(self) -> MysqlConfig:
        return MysqlConfig()

    def init_module(self, config: MysqlConfig) -> None:
        self.config = config
        conn = pymysql.connect(**_parse_dsn(config.dsn), autocommit=True)
        conn.ping(reconnect=False)
        self._conn = conn

    def run(self) -> None:
        if self._conn is None:
            raise RuntimeError("module not initialised")
        if self.reader is None:
            raise RuntimeError("no input stream")
        text = self.reader.read().decode("utf-8")
        with self._conn.cursor() as cursor:
            for statement in split_statements(text):
                if _is_executable(statement):
                    cursor.execute(statement)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None