"""Recovery of the state encryption key by the manifest's recovery key holders."""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping

from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import load_der_public_key

from .util import encrypt_oaep

_KEY_SIZE = 16

_PEM_BLOCK = re.compile(
    r"-----BEGIN ([^\r\n-]*)-----\r?\n(.*?)-----END \1-----",
    re.DOTALL,
)


class RecoveryError(Exception):
    """Raised when recovery data cannot be generated or a key cannot be used."""


class Recovery(ABC):
    """A recoverer the core uses to protect and restore its encryption key."""

    @abstractmethod
    def generate_encryption_key(self, recovery_keys: Mapping[str, str]) -> bytes:
        """Generate and remember a fresh encryption key."""

    @abstractmethod
    def generate_recovery_data(
        self, recovery_keys: Mapping[str, str]
    ) -> tuple[dict[str, bytes], bytes | None]:
        """Return the encrypted secrets per key holder and any data to store in the state."""

    @abstractmethod
    def recover_key(self, secret: bytes) -> tuple[int, bytes]:
        """Process an uploaded secret; return the remaining secret count and the key."""

    @abstractmethod
    def get_recovery_data(self) -> bytes | None:
        """Return the recovery data to store alongside the sealed state."""

    @abstractmethod
    def set_recovery_data(self, data: bytes | None) -> None:
        """Restore recovery data read back from the sealed state."""


def _decode_pem_block(pem_content: str) -> tuple[str, bytes] | None:
    for match in _PEM_BLOCK.finditer(pem_content):
        block_type, body = match.group(1), match.group(2)
        # Skip any RFC 1421 headers ("Name: value" lines followed by a blank line).
        if ":" in body.split("\n", 1)[0]:
            _, _, body = body.partition("\n\n")
        try:
            return block_type, base64.b64decode("".join(body.split()), validate=True)
        except (binascii.Error, ValueError):
            continue
    return None


def parse_rsa_public_key_from_pem(pem_content: str) -> rsa.RSAPublicKey:
    """Parse a PEM ``PUBLIC KEY`` block holding an RSA public key."""
    block = _decode_pem_block(pem_content)
    if block is None or block[0] != "PUBLIC KEY":
        raise RecoveryError("invalid public key in manifest")
    try:
        public_key = load_der_public_key(block[1])
    except (ValueError, TypeError) as err:
        raise RecoveryError(f"invalid public key in manifest: {err}") from err
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise RecoveryError("unsupported type of public key")
    return public_key


def _generate_random_key() -> bytes:
    return os.urandom(_KEY_SIZE)


def _hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class SinglePartyRecovery(Recovery):
    """A recoverer supporting only a single recovery key holder."""

    def __init__(self) -> None:
        self._encryption_key = b""

    def generate_encryption_key(self, recovery_keys):
        if len(recovery_keys) > 1:
            raise RecoveryError("multi-party recovery is not supported in this version of Marblerun")
        self._encryption_key = _generate_random_key()
        return self._encryption_key

    def generate_recovery_data(self, recovery_keys):
        secret_map: dict[str, bytes] = {}
        for name, pem_content in recovery_keys.items():
            public_key = parse_rsa_public_key_from_pem(pem_content)
            secret_map[name] = encrypt_oaep(public_key, self._encryption_key)
        return secret_map, None

    def recover_key(self, secret):
        return 0, secret

    def get_recovery_data(self):
        return None

    def set_recovery_data(self, data):
        return None