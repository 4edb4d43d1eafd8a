"""Environment variables a Marble reads for its configuration."""

from __future__ import annotations

import os

from .util import must_getwd

COORDINATOR_ADDR = "EDG_MARBLE_COORDINATOR_ADDR"
"""Address the Marble uses to reach the Coordinator via gRPC."""

COORDINATOR_ADDR_DEFAULT = "localhost:2001"

TYPE = "EDG_MARBLE_TYPE"
"""Marble type used for attestation with the Coordinator."""

DNS_NAMES = "EDG_MARBLE_DNS_NAMES"
"""Alternative DNS names for the Marble's certificate."""

DNS_NAMES_DEFAULT = "localhost"

UUID_FILE = "EDG_MARBLE_UUID_FILE"
"""File path where the Marble stores its UUID."""


def uuid_file_default() -> str:
    """Return the default path of the Marble's UUID file."""
    return os.path.join(must_getwd(), "uuid")