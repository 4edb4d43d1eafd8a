"""Quote issuing and validation for remote attestation."""

from __future__ import annotations

import hashlib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass


class QuoteError(Exception):
    """Raised when a quote cannot be issued or does not validate."""


@dataclass
class PackageProperties:
    """Enclave package properties of a quote.

    Either ``unique_id`` or ``signer_id``, ``product_id`` and ``security_version``
    should be specified.
    """

    debug: bool = False
    unique_id: str = ""
    signer_id: str = ""
    product_id: int | None = None
    security_version: int | None = None

    def is_compliant(self, given: PackageProperties) -> bool:
        """Check whether ``given`` satisfies these required properties."""
        if self.debug != given.debug:
            return False
        if self.unique_id and self.unique_id.casefold() != given.unique_id.casefold():
            return False
        if self.signer_id and self.signer_id.casefold() != given.signer_id.casefold():
            return False
        if self.product_id is not None and self.product_id != given.product_id:
            return False
        if self.security_version is not None and (
            given.security_version is None or self.security_version > given.security_version
        ):
            return False
        return True


@dataclass
class InfrastructureProperties:
    """Infrastructure properties of an SGX DCAP quote."""

    cpusvn: bytes | None = None
    qesvn: int | None = None
    pcesvn: int | None = None
    root_ca: bytes | None = None

    def is_compliant(self, given: InfrastructureProperties) -> bool:
        """Check whether ``given`` matches these required properties exactly."""
        return self == given


class Validator(ABC):
    """Validates quotes."""

    @abstractmethod
    def validate(
        self, quote: bytes, cert: bytes, pp: PackageProperties, ip: InfrastructureProperties
    ) -> None:
        """Validate ``quote`` for ``cert``; raise :class:`QuoteError` on failure."""


class Issuer(ABC):
    """Issues quotes."""

    @abstractmethod
    def issue(self, cert: bytes) -> bytes:
        """Issue a quote for ``cert``; raise :class:`QuoteError` on failure."""


class FailValidator(Validator):
    """A validator that always fails."""

    def validate(self, quote, cert, pp, ip):
        raise QuoteError("cannot validate quote")


class FailIssuer(Issuer):
    """An issuer that always fails."""

    def issue(self, cert):
        raise QuoteError("cannot issue quote")


@dataclass(frozen=True)
class _Entry:
    message: bytes
    pp: PackageProperties
    ip: InfrastructureProperties


class MockValidator(Validator):
    """A validator that accepts quotes registered with :meth:`add_valid_quote`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._valid: dict[bytes, _Entry] = {}

    def validate(self, quote, message, pp, ip):
        with self._lock:
            entry = self._valid.get(bytes(quote))
        if entry is None:
            raise QuoteError("wrong quote")
        if entry.message != bytes(message):
            raise QuoteError("wrong message")
        if not pp.is_compliant(entry.pp):
            raise QuoteError("package does not comply")
        if not ip.is_compliant(entry.ip):
            raise QuoteError("infrastructure does not comply")

    def add_valid_quote(self, quote, message, pp, ip):
        """Register ``quote`` as valid for ``message`` with the given properties."""
        with self._lock:
            self._valid[bytes(quote)] = _Entry(bytes(message), pp, ip)


class MockIssuer(Issuer):
    """An issuer whose quote is the SHA-256 digest of the message."""

    def issue(self, message):
        return hashlib.sha256(message).digest()