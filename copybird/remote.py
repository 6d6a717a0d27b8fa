"""HTTP and SFTP output modules and the SSH tunnel connector."""

from __future__ import annotations

import contextlib
import io
import logging
import os
import shutil
import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import paramiko
import requests
from paramiko.hostkeys import HostKeyEntry, InvalidHostKey

from copybird.core import Module, ModuleGroup, ModuleType

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_DIAL_TIMEOUT = 10.0
_ACCEPT_POLL = 0.2
_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


@dataclass
class HttpOutputConfig:
    """URL the stream is posted to."""

    target_url: str = ""


class HttpOutput(Module):
    """Posts the pipeline's stream to a URL as the request body."""

    name = "http"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.OUTPUT

    def default_config(self) -> HttpOutputConfig:
        return HttpOutputConfig()

    def init_module(self, config: HttpOutputConfig) -> None:
        self.config = config

    def run(self) -> None:
        reader = self.reader
        body = None if reader is None else iter(lambda: reader.read(_CHUNK_SIZE), b"")
        with requests.post(
            self.config.target_url,
            data=body,
            headers={"Content-Type": "application/json"},
        ):
            pass


def _known_hosts_path() -> str:
    return os.path.join(os.environ.get("HOME", ""), ".ssh", "known_hosts")


def get_host_key(host: str, known_hosts: str | None = None) -> paramiko.PKey | None:
    """Return the first known_hosts key whose host field contains ``host``.

    Lines that do not have exactly three space-separated fields are skipped.
    Returns None when no line matches.
    """
    path = known_hosts or _known_hosts_path()
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            text = line.rstrip("\r\n")
            fields = text.split(" ")
            if len(fields) != 3 or host not in fields[0]:
                continue
            try:
                entry = HostKeyEntry.from_line(text)
            except (InvalidHostKey, paramiko.SSHException, ValueError) as exc:
                raise ValueError(f"error parsing {fields[2]!r}: {exc}") from exc
            if entry is None:
                raise ValueError(f"error parsing {fields[2]!r}: unsupported key type {fields[1]}")
            return entry.key
    return None


def _load_private_key(path: str, passphrase: str = "") -> paramiko.PKey:
    """Read a private key, retrying with the passphrase if it is encrypted."""
    with open(path, encoding="utf-8") as handle:
        text = handle.read()
    last_error: Exception | None = None
    for secret in (None, passphrase or None):
        for key_class in _KEY_CLASSES:
            try:
                return key_class.from_private_key(io.StringIO(text), password=secret)
            except (paramiko.SSHException, ValueError) as exc:
                last_error = exc
    raise ValueError(f"cannot parse private key {path}: {last_error}")


def _connect(
    host: str,
    port: int,
    user: str,
    host_key: paramiko.PKey | None,
    *,
    pkey: paramiko.PKey | None = None,
    password: str | None = None,
) -> paramiko.SSHClient:
    """Open an SSH connection that accepts only the given host key."""
    client = paramiko.SSHClient()
    if host_key is not None:
        known = client.get_host_keys()
        for name in {host, f"[{host}]:{port}"}:
            known.add(name, host_key.get_name(), host_key)
    client.set_missing_host_key_policy(paramiko.RejectPolicy())
    try:
        client.connect(
            host,
            port=port,
            username=user,
            password=password,
            pkey=pkey,
            look_for_keys=False,
            allow_agent=False,
            timeout=_DIAL_TIMEOUT,
        )
    except (OSError, paramiko.SSHException) as exc:
        client.close()
        raise ConnectionError(f"Failed to dial: {exc}") from exc
    return client


@dataclass
class ScpOutputConfig:
    """Remote host, credentials and destination file for SFTP upload."""

    addr: str = ""
    port: int = 0
    user: str = ""
    password: str = ""
    file_name: str = ""
    path_to_key: str = ""
    private_key_password: str = ""


class ScpOutput(Module):
    """Uploads the pipeline's stream to a remote file over SFTP."""

    name = "scp"
    group = ModuleGroup.BACKUP
    module_type = ModuleType.OUTPUT

    def __init__(self) -> None:
        super().__init__()
        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    def default_config(self) -> ScpOutputConfig:
        return ScpOutputConfig()

    def init_module(self, config: ScpOutputConfig) -> None:
        self.config = config
        host_key = get_host_key(config.addr)
        if host_key is None:
            raise ValueError(f"no host key for {config.addr} in known_hosts")
        pkey = None
        if config.path_to_key:
            pkey = _load_private_key(config.path_to_key, config.private_key_password)
        password = None if pkey is not None else (config.password or None)
        client = _connect(
            config.addr, config.port, config.user, host_key, pkey=pkey, password=password
        )
        try:
            self._sftp = client.open_sftp()
        except paramiko.SSHException:
            client.close()
            raise
        self._client = client

    def run(self) -> None:
        if self._sftp is None:
            raise RuntimeError("module not initialised")
        with self._sftp.open(self.config.file_name, "wb") as target:
            shutil.copyfileobj(self.reader, target, _CHUNK_SIZE)

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None


@dataclass(frozen=True)
class Endpoint:
    """A host and port pair."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def _pipe(source: Any, target: Any) -> None:
    """Copy from one connection to another, then shut the target's write side."""
    try:
        for data in iter(lambda: source.recv(_CHUNK_SIZE), b""):
            target.sendall(data)
    except OSError as exc:
        logger.error("copy error: %s", exc)
    finally:
        with contextlib.suppress(OSError, EOFError):
            target.shutdown(socket.SHUT_WR)


@dataclass
class SshTunnel:
    """Forwards local connections through an SSH server to a remote endpoint.

    ``connector`` replaces the SSH hop: given the remote endpoint it returns a
    connected socket-like object.
    """

    local: Endpoint
    server: Endpoint
    remote: Endpoint
    user: str = ""
    pkey: paramiko.PKey | None = None
    host_key: paramiko.PKey | None = None
    connector: Callable[[Endpoint], Any] | None = None
    listener: socket.socket | None = field(default=None, init=False)
    ready: threading.Event = field(default_factory=threading.Event, init=False)
    _stopped: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def start(self) -> None:
        """Listen on the local endpoint and forward connections until stopped."""
        listener = socket.create_server((self.local.host, self.local.port))
        listener.settimeout(_ACCEPT_POLL)
        self._stopped.clear()
        self.listener = listener
        self.ready.set()
        with listener:
            while not self._stopped.is_set():
                try:
                    conn, _ = listener.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self._stopped.is_set():
                        return
                    raise
                conn.settimeout(None)
                threading.Thread(target=self._forward, args=(conn,), daemon=True).start()

    def stop(self) -> None:
        """Stop accepting connections and close the listener."""
        self._stopped.set()
        if self.listener is not None:
            with contextlib.suppress(OSError):
                self.listener.close()

    def _open_remote(self, local_conn: socket.socket) -> tuple[Any, paramiko.SSHClient | None]:
        if self.connector is not None:
            return self.connector(self.remote), None
        client = _connect(
            self.server.host, self.server.port, self.user, self.host_key, pkey=self.pkey
        )
        try:
            transport = client.get_transport()
            if transport is None:
                raise paramiko.SSHException("no transport")
            channel = transport.open_channel(
                "direct-tcpip", (self.remote.host, self.remote.port), local_conn.getpeername()
            )
        except (OSError, paramiko.SSHException):
            client.close()
            raise
        return channel, client

    def _forward(self, local_conn: socket.socket) -> None:
        try:
            remote_conn, client = self._open_remote(local_conn)
        except (OSError, paramiko.SSHException) as exc:
            logger.error("dial error: %s", exc)
            local_conn.close()
            return
        pumps = [
            threading.Thread(target=_pipe, args=(local_conn, remote_conn), daemon=True),
            threading.Thread(target=_pipe, args=(remote_conn, local_conn), daemon=True),
        ]
        for pump in pumps:
            pump.start()
        for pump in pumps:
            pump.join()
        for conn in (local_conn, remote_conn):
            with contextlib.suppress(OSError):
                conn.close()
        if client is not None:
            client.close()


@dataclass
class SshConnectConfig:
    """Endpoints, user and private key path for the SSH tunnel."""

    local_endpoint_host: str = ""
    local_endpoint_port: int = 0
    server_endpoint_host: str = ""
    server_endpoint_port: int = 0
    remote_endpoint_host: str = ""
    remote_endpoint_port: int = 0
    remote_user: str = ""
    key_path: str = ""


class SshConnect(Module):
    """Opens an SSH tunnel from a local port to a remote endpoint."""

    name = "ssh"
    group = ModuleGroup.GLOBAL
    module_type = ModuleType.CONNECT

    def __init__(self) -> None:
        super().__init__()
        self.tunnel: SshTunnel | None = None

    def default_config(self) -> SshConnectConfig:
        return SshConnectConfig()

    def init_module(self, config: SshConnectConfig) -> None:
        self.config = config
        local = Endpoint(config.local_endpoint_host, config.local_endpoint_port)
        server = Endpoint(config.server_endpoint_host, config.server_endpoint_port)
        remote = Endpoint(config.remote_endpoint_host, config.remote_endpoint_port)
        host_key = get_host_key(config.server_endpoint_host)
        pkey = _load_private_key(config.key_path)
        self.tunnel = SshTunnel(
            local=local,
            server=server,
            remote=remote,
            user=config.remote_user,
            pkey=pkey,
            host_key=host_key,
        )

    def run(self) -> None:
        if self.tunnel is None:
            raise RuntimeError("module not initialised")
        self.tunnel.start()

    def close(self) -> None:
        if self.tunnel is not None:
            self.tunnel.stop()