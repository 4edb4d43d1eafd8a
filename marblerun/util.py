"""General helpers: key derivation, environment access, RSA-OAEP and byte utilities."""

from __future__ import annotations

import ipaddress
import os
import socket
import sys

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

DEFAULT_CERTIFICATE_IP_ADDRESSES: tuple[ipaddress.IPv4Address | ipaddress.IPv6Address, ...] = (
    ipaddress.IPv4Address("127.0.0.1"),
    ipaddress.IPv6Address("::1"),
)
"""Placeholder IP addresses used for automated X.509 certificate generation."""

_LOCALHOST = "localhost"


def derive_key(secret: bytes, salt: bytes, length: int) -> bytes:
    """Derive a key of ``length`` bytes from ``secret`` using HKDF-SHA256."""
    hkdf = HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=None)
    return hkdf.derive(secret)


def must_getenv(name: str) -> str:
    """Return the environment variable ``name`` or terminate if it is unset or empty."""
    value = os.environ.get(name, "")
    if not value:
        sys.exit(f"environment variable not set: {name}")
    return value


def getenv(name: str, fallback: str) -> str:
    """Return the environment variable ``name``, or ``fallback`` if it is unset or empty."""
    return os.environ.get(name, "") or fallback


def must_get_local_listener_and_addr() -> tuple[socket.socket, str]:
    """Open a TCP listener on a system-chosen localhost port; return it and its address."""
    listener = socket.create_server((_LOCALHOST, 0))
    port = listener.getsockname()[1]
    return listener, f"{_LOCALHOST}:{port}"


def xor_bytes(a: bytes, b: bytes) -> bytes:
    """XOR two byte strings of equal length."""
    if len(a) != len(b):
        raise ValueError(f"lengths of byte slices differ: {len(a)} != {len(b)}")
    return bytes(x ^ y for x, y in zip(a, b))


def _oaep() -> padding.OAEP:
    return padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


def encrypt_oaep(pub: rsa.RSAPublicKey, plaintext: bytes) -> bytes:
    """Encrypt ``plaintext`` with RSA-OAEP (SHA-256)."""
    return pub.encrypt(plaintext, _oaep())


def decrypt_oaep(priv: rsa.RSAPrivateKey, ciphertext: bytes) -> bytes:
    """Decrypt ``ciphertext`` with RSA-OAEP (SHA-256)."""
    return priv.decrypt(ciphertext, _oaep())


def must_getwd() -> str:
    """Return the working directory, preferring ``EDG_CWD`` when running in an enclave."""
    wd = os.environ.get("EDG_CWD", "")
    if wd:
        return wd
    return os.getcwd()