"""MongoDB input module exporting every collection as JSON lines."""

from __future__ import annotations

import base64
import datetime
import decimal
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

import pymongo
from bson.decimal128 import Decimal128
from bson.objectid import ObjectId
from bson.timestamp import Timestamp
from pymongo.errors import PyMongoError

from copybird.core import Module, ModuleGroup, ModuleType

logger = logging.getLogger(__name__)

HEADER_FORMAT = '{{"database":"{database}","collection":"{collection}","time":"{time}"}}'
_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}

_timeout = 2.0


def set_default_timeout(seconds: float) -> None:
    """Set the connection timeout, in seconds, used by new connections."""
    global _timeout
    _timeout = float(seconds)


@dataclass
class MongoConfig:
    """MongoDB connection URI."""

    dsn: str = ""


def _json_default(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return (value - _EPOCH) // datetime.timedelta(milliseconds=1)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Timestamp):
        return {"T": value.time, "I": value.inc}
    if isinstance(value, (Decimal128, decimal.Decimal, uuid.UUID)):
        return str(value)
    return str(value)


def _encode_document(document: Any) -> bytes:
    text = json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_json_default,
    )
    for char, escape in _JSON_ESCAPES.items():
        text = text.replace(char, escape)
    return text.encode("utf-8")


class MongodbInput(Module):
    """Exports every collection of every database as JSON lines."""

    name = "mongodb"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.INPUT

    def __init__(self) -> None:
        super().__init__()
        self._client: Any = None
        self.db_count = 0
        self.coll_count = 0
        self.doc_count = 0
        self.bytes_out = 0

    def default_config(self) -> MongoConfig:
        return MongoConfig()

    def init_module(self, config: MongoConfig) -> None:
        if not isinstance(config, MongoConfig):
            raise TypeError(
                f"config type mismatch, expected: MongoConfig actual: {type(config).__name__}"
            )
        self.config = config
        timeout_ms = int(_timeout * 1000)
        self._client = pymongo.MongoClient(
            config.dsn,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )

    def run(self) -> None:
        if self._client is None:
            raise RuntimeError("module not initialised")
        started = time.monotonic()
        try:
            databases = self._client.list_database_names()
        except PyMongoError as exc:
            raise RuntimeError(f"unable to fetch databases: {exc}") from exc
        for database in databases:
            try:
                collections = self._get_collections(database)
            except (PyMongoError, ValueError) as exc:
                raise RuntimeError(f"unable to fetch collections: {exc}") from exc
            for collection in collections:
                try:
                    self.export_collection(database, collection)
                except (PyMongoError, OSError, RuntimeError, ValueError, TypeError) as exc:
                    raise RuntimeError(f"unable to export collection: {exc}") from exc
                self.coll_count += 1
            self.db_count += 1
        logger.info(
            "exported [databases: %d collections: %d documents: %d bytes out: %d duration: %.3fs]",
            self.db_count,
            self.coll_count,
            self.doc_count,
            self.bytes_out,
            time.monotonic() - started,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _get_collections(self, database: str) -> list[str]:
        names = []
        for info in self._client[database].list_collections():
            name = info.get("name")
            if not isinstance(name, str):
                raise ValueError(f"invalid collection name: {name!r}")
            names.append(name)
        return names

    def export_collection(self, db_name: str, coll_name: str) -> None:
        """Write a header line, then one JSON line per document in the collection."""
        if self._client is None:
            raise RuntimeError("module not initialised")
        try:
            cursor = self._client[db_name][coll_name].find({})
        except PyMongoError as exc:
            raise RuntimeError(f"unable to fetch documents :{exc}") from exc
        with cursor:
            header = HEADER_FORMAT.format(
                database=db_name, collection=coll_name, time=time.time_ns()
            )
            try:
                self.writer.write(header.encode("utf-8") + b"\n")
            except OSError as exc:
                raise RuntimeError(f"unable to write header: {exc}") from exc
            for document in cursor:
                try:
                    data = _encode_document(document) + b"\n"
                except (TypeError, ValueError) as exc:
                    raise RuntimeError(f"unable to marshal document: {exc}") from exc
                try:
                    written = self.writer.write(data)
                except OSError as exc:
                    raise RuntimeError(f"unable to write document data: {exc}") from exc
                count = len(data) if written is None else written
                self.bytes_out += count
                self.doc_count += 1
                if count != len(data):
                    raise RuntimeError(f"expected write: {len(data)} actual: {count}")