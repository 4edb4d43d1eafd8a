"""Attestation, activation, recovery and admission tools for confidential service meshes."""

__version__ = "0.1.0"

__all__ = [
    "certs",
    "config",
    "hello",
    "injector",
    "premain",
    "quote",
    "recovery",
    "server",
    "util",
]