"""Marble start-up: authenticate to the Coordinator and apply the returned parameters."""

from __future__ import annotations

import hashlib
import logging
import os
import ssl
import struct
import sys
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from . import config
from .certs import generate_cert, generate_csr, load_tls_context
from .quote import Issuer, QuoteError
from .util import DEFAULT_CERTIFICATE_IP_ADDRESSES, getenv, must_getenv

logger = logging.getLogger(__name__)

_OE_HEADER_VERSION = 1
_OE_REPORT_TYPE_SGX_REMOTE = 2
_MAX_QUOTE_SIZE = 8192
_DEFAULT_ARGV = ("./marble",)


@dataclass
class ActivationRequest:
    """Request a Marble sends to the Coordinator to be activated."""

    csr: bytes
    marble_type: str
    quote: bytes
    uuid: str


@dataclass
class Parameters:
    """Files, environment variables and arguments the Coordinator hands to a Marble."""

    files: dict[str, str | bytes] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    argv: list[str] = field(default_factory=list)


ActivateFunc = Callable[[ActivationRequest, str, ssl.SSLContext], Parameters]
"""Activates the Marble and returns its parameters."""


def prepend_oe_header_to_raw_quote(raw_quote: bytes) -> bytes:
    """Prefix a raw SGX quote with the header of an OpenEnclave remote report."""
    header = struct.pack("<IIQ", _OE_HEADER_VERSION, _OE_REPORT_TYPE_SGX_REMOTE, len(raw_quote))
    return header + bytes(raw_quote)


@dataclass
class GrapheneQuoteIssuer(Issuer):
    """Issues quotes through the attestation pseudo-files of a Graphene enclave."""

    report_data_path: str = "/dev/attestation/user_report_data"
    quote_path: str = "/dev/attestation/quote"

    def issue(self, cert):
        """Issue a quote whose report data is the SHA-256 digest of ``cert``."""
        digest = hashlib.sha256(cert).digest()
        with open(self.report_data_path, "r+b", buffering=0) as report_data:
            report_data.write(digest)
        with open(self.quote_path, "rb", buffering=0) as quote_file:
            quote = quote_file.read(_MAX_QUOTE_SIZE)
        if not 0 < len(quote) < _MAX_QUOTE_SIZE:
            raise QuoteError("invalid quote size")
        return prepend_oe_header_to_raw_quote(quote)


def _resolve(fs: str | os.PathLike | None, path: str) -> Path:
    """Resolve ``path`` inside the file system rooted at ``fs`` (``None`` is the real one)."""
    if fs is None:
        return Path(path)
    return Path(fs) / str(path).lstrip("/")


def _write_file(path: Path, data: bytes, mode: int) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with open(fd, "wb") as file:
        file.write(data)


def _read_uuid(fs, filename: str) -> uuid.UUID | None:
    try:
        text = _resolve(fs, filename).read_text()
    except FileNotFoundError:
        return None
    try:
        return uuid.UUID(text.strip())
    except ValueError as err:
        raise ValueError(f"failed to unmarshal UUID: {err}") from err


def _store_uuid(fs, marble_uuid: uuid.UUID, filename: str) -> None:
    try:
        _write_file(_resolve(fs, filename), str(marble_uuid).encode(), 0o600)
    except OSError as err:
        raise OSError(f"failed to store uuid to file: {err}") from err


def _get_uuid(fs, uuid_file: str) -> uuid.UUID:
    """Load the stored UUID, or generate and store a new one."""
    logger.info("[PreMain] loading UUID")
    existing = _read_uuid(fs, uuid_file)
    if existing is None:
        logger.info("[PreMain] UUID not found. Generating and storing a new UUID")
        new_uuid = uuid.uuid4()
        _store_uuid(fs, new_uuid, uuid_file)
        return new_uuid
    logger.info("[PreMain] found UUID: %s", existing)
    return existing


def _dns_names() -> list[str]:
    return getenv(config.DNS_NAMES, config.DNS_NAMES_DEFAULT).split(",")


def _generate_certificate() -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    return generate_cert(_dns_names(), DEFAULT_CERTIFICATE_IP_ADDRESSES, False)


def _apply_parameters(params: Parameters, fs) -> None:
    logger.info("[PreMain] creating files from manifest")
    for path, data in params.files.items():
        target = _resolve(fs, path)
        target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        _write_file(target, data.encode() if isinstance(data, str) else bytes(data), 0o600)

    logger.info("[PreMain] setting env vars from manifest")
    for key, value in params.env.items():
        os.environ[key] = value

    sys.argv = list(params.argv) if params.argv else list(_DEFAULT_ARGV)


def pre_main_ex(
    issuer: Issuer | None,
    activate: ActivateFunc,
    hostfs: str | os.PathLike | None,
    enclavefs: str | os.PathLike | None,
) -> None:
    """Authenticate to the Coordinator and apply the parameters it returns.

    ``hostfs`` holds the UUID file and ``enclavefs`` receives the files from the
    manifest; each is a root directory, or ``None`` for the real file system.
    """
    logger.info("[PreMain] starting PreMain")

    logger.info("[PreMain] fetching env variables")
    coord_addr = getenv(config.COORDINATOR_ADDR, config.COORDINATOR_ADDR_DEFAULT)
    marble_type = must_getenv(config.TYPE)
    marble_dns_names = _dns_names()
    uuid_file = getenv(config.UUID_FILE, config.uuid_file_default())

    cert, privk = _generate_certificate()

    # The Coordinator verifies the Marble, not the other way round.
    logger.info("[PreMain] loading TLS Credentials")
    tls_context = load_tls_context(cert, privk, True)

    marble_uuid = _get_uuid(hostfs, uuid_file)

    logger.info("[PreMain] generating CSR")
    csr = generate_csr(marble_dns_names, privk)

    logger.info("[PreMain] generating quote")
    cert_der = cert.public_bytes(serialization.Encoding.DER)
    if issuer is None:
        logger.warning("[PreMain] no quote issuer available. Proceeding in simulation mode")
        quote = b""
    else:
        try:
            quote = issuer.issue(cert_der)
        except (QuoteError, OSError) as err:
            # An empty quote is only accepted by a Coordinator in simulation mode.
            logger.warning("[PreMain] failed to get quote: %s. Proceeding in simulation mode", err)
            quote = b""

    request = ActivationRequest(
        csr=csr.public_bytes(serialization.Encoding.DER),
        marble_type=marble_type,
        quote=quote,
        uuid=str(marble_uuid),
    )
    logger.info("[PreMain] activating marble of type %s", marble_type)
    params = activate(request, coord_addr, tls_context)

    _apply_parameters(params, enclavefs)
    logger.info("[PreMain] done with PreMain")


def _as_mapping(params: Mapping[str, str] | None) -> dict[str, str]:
    return dict(params or {})