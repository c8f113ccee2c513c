"""A small client for the Docker Engine HTTP API."""

from __future__ import annotations

import http.client
import json
import os
import socket
import ssl
import threading
from collections.abc import Callable, Iterator, Mapping
from typing import Any, Protocol
from urllib.parse import urlencode, urlsplit

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
# The newest API version this client speaks; newer daemons are talked to at this version.
MAX_API_VERSION = "1.41"
# The version assumed when the daemon does not announce one.
FALLBACK_API_VERSION = "1.24"

_CHUNK_SIZE = 64 * 1024


class DockerAPIError(Exception):
    """Raised when the Docker daemon cannot be reached or answers with an error."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class _Connection(Protocol):
    def request(self, method: str, url: str, body: Any = None, headers: Mapping[str, str] = ...) -> None: ...

    def getresponse(self) -> http.client.HTTPResponse: ...

    def close(self) -> None: ...


class UnixHTTPConnection(http.client.HTTPConnection):
    """An HTTP connection made over a Unix domain socket."""

    def __init__(self, socket_path: str, timeout: float | None = None) -> None:
        super().__init__("localhost", timeout=timeout)
        self.socket_path = socket_path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(self.socket_path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


def _version_tuple(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


def _negotiated_version(server_version: str | None) -> str:
    if not server_version:
        return FALLBACK_API_VERSION
    try:
        if _version_tuple(server_version) < _version_tuple(MAX_API_VERSION):
            return server_version
    except ValueError:
        pass
    return MAX_API_VERSION


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (list, tuple)):
        return [_query_value(item) for item in value]
    return value


def _error_message(payload: bytes, status: int) -> str:
    try:
        decoded = json.loads(payload)
    except ValueError:
        text = payload.decode("utf-8", errors="replace").strip()
        return text or f"HTTP {status}"
    if isinstance(decoded, dict) and decoded.get("message"):
        return str(decoded["message"])
    return f"HTTP {status}"


class DockerAPI:
    """Issues requests against a Docker daemon, negotiating the API version once."""

    def __init__(self, connection_factory: Callable[[], _Connection], api_version: str | None = None) -> None:
        self._connect = connection_factory
        self._api_version = api_version
        self._lock = threading.Lock()

    @property
    def api_version(self) -> str:
        """The API version used for requests, negotiated with the daemon if not given."""
        with self._lock:
            if self._api_version is None:
                self._api_version = _negotiated_version(self._ping())
            return self._api_version

    def _ping(self) -> str | None:
        conn = self._connect()
        try:
            conn.request("GET", "/_ping")
            response = conn.getresponse()
            response.read()
            return response.getheader("API-Version")
        except OSError as err:
            raise DockerAPIError(f"could not connect to docker: {err}") from err
        finally:
            conn.close()

    def _open(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None,
        json_body: Any,
        data: bytes | None,
        headers: Mapping[str, str] | None,
    ) -> tuple[_Connection, http.client.HTTPResponse]:
        url = f"/v{self.api_version}{path}"
        if params:
            query = {key: _query_value(value) for key, value in params.items() if value is not None}
            url += "?" + urlencode(query, doseq=True)
        all_headers = dict(headers or {})
        body = data
        if json_body is not None:
            body = json.dumps(json_body).encode("utf-8")
            all_headers.setdefault("Content-Type", "application/json")
        conn = self._connect()
        try:
            conn.request(method, url, body=body, headers=all_headers)
            response = conn.getresponse()
        except OSError as err:
            conn.close()
            raise DockerAPIError(f"could not connect to docker: {err}") from err
        if response.status >= 400:
            payload = response.read()
            conn.close()
            raise DockerAPIError(_error_message(payload, response.status), status=response.status)
        return conn, response

    def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        data: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a request and return its decoded JSON body, raw bytes, or None if empty."""
        conn, response = self._open(method, path, params, json_body, data, headers)
        try:
            payload = response.read()
            content_type = response.getheader("Content-Type") or ""
        finally:
            conn.close()
        if not payload:
            return None
        if "json" in content_type:
            return json.loads(payload)
        return payload

    def stream(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        data: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Iterator[bytes]:
        """Send a request and yield its body in chunks as they arrive."""
        conn, response = self._open(method, path, params, json_body, data, headers)
        try:
            while chunk := response.read1(_CHUNK_SIZE):
                yield chunk
        finally:
            conn.close()


def _tls_context(cert_path: str, verify: bool) -> ssl.SSLContext:
    if verify:
        context = ssl.create_default_context(cafile=os.path.join(cert_path, "ca.pem"))
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    context.load_cert_chain(os.path.join(cert_path, "cert.pem"), os.path.join(cert_path, "key.pem"))
    return context


def docker_api_from_env() -> DockerAPI:
    """Return a DockerAPI configured from DOCKER_HOST, DOCKER_API_VERSION and the TLS variables."""
    host = os.environ.get("DOCKER_HOST") or DEFAULT_DOCKER_HOST
    api_version = os.environ.get("DOCKER_API_VERSION") or None
    cert_path = os.environ.get("DOCKER_CERT_PATH") or ""
    verify = bool(os.environ.get("DOCKER_TLS_VERIFY"))
    parts = urlsplit(host)

    if parts.scheme == "unix":
        socket_path = parts.path

        def factory() -> _Connection:
            return UnixHTTPConnection(socket_path)

    elif parts.scheme in ("tcp", "http", "https"):
        hostname = parts.hostname or "localhost"
        port = parts.port
        if cert_path or parts.scheme == "https":
            context = _tls_context(cert_path, verify) if cert_path else ssl.create_default_context()

            def factory() -> _Connection:
                return http.client.HTTPSConnection(hostname, port, context=context)

        else:

            def factory() -> _Connection:
                return http.client.HTTPConnection(hostname, port)

    else:
        raise ValueError(f"unsupported docker host: {host}")

    return DockerAPI(factory, api_version=api_version)