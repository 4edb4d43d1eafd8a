"""Self-signed certificate, CSR and TLS context helpers for Marbles."""

from __future__ import annotations

import datetime
import ipaddress
import secrets
import ssl
import tempfile
from collections.abc import Iterable
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .util import DEFAULT_CERTIFICATE_IP_ADDRESSES

MARBLE_NAME = "Marblerun Marble"

_MAX_VALIDITY = datetime.timedelta(microseconds=(2**63 - 1) // 1000)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _san(dns_names: Iterable[str], ip_addrs: Iterable[IPAddress]) -> list[x509.GeneralName]:
    names: list[x509.GeneralName] = [x509.DNSName(name) for name in dns_names]
    names.extend(x509.IPAddress(ip) for ip in ip_addrs)
    return names


def generate_certificate_serial_number() -> int:
    """Return a random serial number below 2**128."""
    return secrets.randbelow(1 << 128)


def generate_cert(
    dns_names: Iterable[str], ip_addrs: Iterable[IPAddress], is_ca: bool
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Generate a self-signed P-256 certificate and its private key."""
    privk = ec.generate_private_key(ec.SECP256R1())
    not_before = datetime.datetime.now(datetime.timezone.utc)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, MARBLE_NAME)])

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(privk.public_key())
        .serial_number(generate_certificate_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + _MAX_VALIDITY)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=True,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
    )
    names = _san(dns_names, ip_addrs)
    if names:
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)

    cert = builder.sign(privk, hashes.SHA256())
    return cert, privk


def generate_csr(
    dns_names: Iterable[str], privk: ec.EllipticCurvePrivateKey
) -> x509.CertificateSigningRequest:
    """Generate a CSR for ``dns_names`` and the default IP addresses, signed by ``privk``."""
    names = _san(dns_names, DEFAULT_CERTIFICATE_IP_ADDRESSES)
    builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name([]))
    if names:
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)
    return builder.sign(privk, hashes.SHA256())


def must_generate_test_marble_credentials() -> tuple[x509.Certificate, bytes, ec.EllipticCurvePrivateKey]:
    """Return dummy Marble credentials for testing: certificate, DER CSR and private key."""
    dns_names = ["localhost", "*.foobar.net", "*.example.org"]
    cert, privk = generate_cert(dns_names, DEFAULT_CERTIFICATE_IP_ADDRESSES, False)
    csr = generate_csr(dns_names, privk)
    return cert, csr.public_bytes(serialization.Encoding.DER), privk


def load_tls_context(
    cert: x509.Certificate, privk: ec.EllipticCurvePrivateKey, insecure_skip_verify: bool
) -> ssl.SSLContext:
    """Build a client TLS context presenting ``cert`` with ``privk``."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    if insecure_skip_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    else:
        context.load_default_certs()

    with tempfile.TemporaryDirectory() as tmp:
        cert_path = Path(tmp) / "cert.pem"
        key_path = Path(tmp) / "key.pem"
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        key_path.write_bytes(
            privk.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        context.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))
    return context