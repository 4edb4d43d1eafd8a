"""HTTP client API of the Coordinator."""

from __future__ import annotations

import base64
import json
import logging
import socket
import ssl
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from http import HTTPStatus
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

from cryptography import x509

logger = logging.getLogger(__name__)

PEER_CERTIFICATES_KEY = "marblerun.peer_certificates"
"""WSGI environ key holding the TLS peer certificates, or ``None`` without TLS."""

_Response = tuple[HTTPStatus, bytes, str]


class ClientCore(ABC):
    """The Coordinator core as seen by the client API."""

    @abstractmethod
    def get_status(self) -> tuple[int, str]:
        """Return the status code and status message of the Coordinator."""

    @abstractmethod
    def get_manifest_signature(self) -> bytes | None:
        """Return the signature of the current manifest."""

    @abstractmethod
    def set_manifest(self, manifest: bytes) -> Mapping[str, bytes]:
        """Set the manifest; return the encrypted recovery secrets per key holder."""

    @abstractmethod
    def get_cert_quote(self) -> tuple[str, bytes | None]:
        """Return the Coordinator's PEM certificate chain and its quote."""

    @abstractmethod
    def recover(self, key: bytes) -> int:
        """Process a recovery secret; return the number of secrets still missing."""

    @abstractmethod
    def verify_admin(self, peer_certificates: Sequence[x509.Certificate]) -> bool:
        """Check whether one of the peer certificates belongs to an admin."""

    @abstractmethod
    def update_manifest(self, update_manifest: bytes) -> None:
        """Apply an update manifest."""


class _ReadError(Exception):
    pass


def _encode(value: Any) -> bytes:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text.encode()


def _json_ok(data: Any) -> _Response:
    body = _encode({"status": "success", "data": data}) + b"\n"
    return HTTPStatus.OK, body, "application/json"


def _json_error(message: str, status: HTTPStatus) -> _Response:
    document: dict[str, Any] = {"status": "error", "data": None}
    if message:
        document["message"] = message
    return status, _encode(document) + b"\n", "text/plain; charset=utf-8"


def _read_body(environ: dict) -> bytes:
    stream = environ.get("wsgi.input")
    length = environ.get("CONTENT_LENGTH")
    if stream is None or not length:
        return b""
    try:
        return stream.read(int(length))
    except (ValueError, OSError) as err:
        raise _ReadError(str(err)) from err


def _b64(data: bytes | None) -> str | None:
    return None if data is None else base64.b64encode(data).decode()


class ClientApi:
    """WSGI application serving the client API."""

    def __init__(self, client_core: ClientCore) -> None:
        self._core = client_core
        self._routes: dict[str, Callable[[dict, str], _Response]] = {
            "/status": self._status,
            "/manifest": self._manifest,
            "/quote": self._quote,
            "/recover": self._recover,
            "/update": self._update,
        }

    def __call__(self, environ, start_response):
        handler = self._routes.get(environ.get("PATH_INFO", ""))
        if handler is None:
            status, body, content_type = (
                HTTPStatus.NOT_FOUND,
                b"404 page not found\n",
                "text/plain; charset=utf-8",
            )
        else:
            status, body, content_type = handler(environ, environ.get("REQUEST_METHOD", "GET"))
        headers = [("Content-Type", content_type), ("Content-Length", str(len(body)))]
        if content_type.startswith("text/plain"):
            headers.append(("X-Content-Type-Options", "nosniff"))
        start_response(f"{status.value} {status.phrase}", headers)
        return [body]

    def _status(self, environ: dict, method: str) -> _Response:
        if method != "GET":
            return _json_error("", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            code, message = self._core.get_status()
        except Exception as err:
            return _json_error(str(err), HTTPStatus.INTERNAL_SERVER_ERROR)
        return _json_ok({"StatusCode": code, "StatusMessage": message})

    def _manifest(self, environ: dict, method: str) -> _Response:
        if method == "GET":
            signature = self._core.get_manifest_signature() or b""
            return _json_ok({"ManifestSignature": signature.hex()})
        if method != "POST":
            return _json_error("", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            manifest = _read_body(environ)
        except _ReadError as err:
            return _json_error(str(err), HTTPStatus.INTERNAL_SERVER_ERROR)
        try:
            secrets = self._core.set_manifest(manifest)
        except Exception as err:
            return _json_error(str(err), HTTPStatus.BAD_REQUEST)
        if secrets:
            encoded = {name: _b64(secret) for name, secret in secrets.items()}
            return _json_ok({"RecoverySecrets": encoded})
        return _json_ok(None)

    def _quote(self, environ: dict, method: str) -> _Response:
        if method != "GET":
            return _json_error("", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            cert, quote = self._core.get_cert_quote()
        except Exception as err:
            return _json_error(str(err), HTTPStatus.INTERNAL_SERVER_ERROR)
        return _json_ok({"Cert": cert, "Quote": _b64(quote)})

    def _recover(self, environ: dict, method: str) -> _Response:
        if method != "POST":
            return _json_error("", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            key = _read_body(environ)
        except _ReadError as err:
            return _json_error(str(err), HTTPStatus.INTERNAL_SERVER_ERROR)
        try:
            remaining = self._core.recover(key)
        except Exception as err:
            return _json_error(str(err), HTTPStatus.INTERNAL_SERVER_ERROR)
        if remaining != 0:
            message = (
                "Secret was processed successfully. Upload the next secret. "
                f"Remaining secrets: {remaining}"
            )
        else:
            message = "Recovery successful."
        return _json_ok({"StatusMessage": message})

    def _update(self, environ: dict, method: str) -> _Response:
        peer_certificates = environ.get(PEER_CERTIFICATES_KEY)
        if peer_certificates is None or not self._core.verify_admin(peer_certificates):
            return _json_error("unauthorized user", HTTPStatus.UNAUTHORIZED)
        if method != "POST":
            return _json_error("", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            update = _read_body(environ)
        except _ReadError as err:
            return _json_error(str(err), HTTPStatus.INTERNAL_SERVER_ERROR)
        try:
            self._core.update_manifest(update)
        except Exception as err:
            return _json_error(str(err), HTTPStatus.BAD_REQUEST)
        return _json_ok(None)


def create_serve_mux(client_core: ClientCore) -> ClientApi:
    """Create the WSGI application serving the client API."""
    return ClientApi(client_core)


class _TLSWSGIServer(WSGIServer):
    ssl_context: ssl.SSLContext

    def get_request(self):
        sock, addr = super().get_request()
        return self.ssl_context.wrap_socket(sock, server_side=True), addr


class _LoggingRequestHandler(WSGIRequestHandler):
    def get_environ(self):
        environ = super().get_environ()
        if isinstance(self.connection, ssl.SSLSocket):
            environ["HTTPS"] = "on"
            der = self.connection.getpeercert(binary_form=True)
            environ[PEER_CERTIFICATES_KEY] = [x509.load_der_x509_certificate(der)] if der else []
        return environ

    def log_message(self, format, *args):
        sys.stdout.write(
            f"{self.address_string()} - - [{self.log_date_time_string()}] {format % args}\n"
        )


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    return host.strip("[]"), int(port)


def run_client_server(app, address: str, ssl_context: ssl.SSLContext) -> None:
    """Serve ``app`` over HTTPS on ``address`` until the server stops."""
    logger.info("starting client https server (address=%s)", address)
    try:
        host, port = _split_host_port(address)
        family = socket.AF_INET6 if ":" in host else socket.AF_INET

        class _Server(_TLSWSGIServer):
            address_family = family

        with _Server((host, port), _LoggingRequestHandler) as server:
            server.ssl_context = ssl_context
            server.set_app(app)
            server.serve_forever()
    except (OSError, ValueError) as err:
        logger.warning("%s", err)