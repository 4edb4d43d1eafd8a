import os
import socket

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from marblerun import util


def test_derive_key_length():
    key = util.derive_key(b"secret", b"salt", 32)
    assert len(key) == 32


def test_derive_key_deterministic_and_salted():
    first = util.derive_key(b"secret", b"salt", 32)
    assert util.derive_key(b"secret", b"salt", 32) == first
    assert util.derive_key(b"secret", b"other", 32) != first


def test_must_getenv(monkeypatch):
    monkeypatch.setenv("EDG_TEST_MUST_GETENV", "foo")
    assert util.must_getenv("EDG_TEST_MUST_GETENV") == "foo"


def test_must_getenv_unset_exits(monkeypatch):
    monkeypatch.delenv("EDG_TEST_MUST_GETENV", raising=False)
    with pytest.raises(SystemExit):
        util.must_getenv("EDG_TEST_MUST_GETENV")


@pytest.mark.parametrize(
    "envname, is_set, value, fallback, result",
    [
        ("EDG_TEST_GETENV", True, "foo", "bar", "foo"),
        ("EDG_TEST_GETENV2", False, "not set", "bar", "bar"),
        ("EDG_TEST_GETENV3", True, "", "bar", "bar"),
    ],
)
def test_getenv(monkeypatch, envname, is_set, value, fallback, result):
    monkeypatch.delenv(envname, raising=False)
    if is_set:
        monkeypatch.setenv(envname, value)
    assert util.getenv(envname, fallback) == result


def test_xor_bytes():
    first = bytes([0xD, 0xE, 0xA, 0xD, 0xC, 0x0, 0xD, 0xE])
    second = bytes([0xB, 0xA, 0xD, 0xD, 0xC, 0xA, 0xF, 0xE])
    expected = bytes([0x6, 0x4, 0x7, 0x0, 0x0, 0xA, 0x2, 0x0])
    assert util.xor_bytes(first, second) == expected


def test_xor_bytes_length_mismatch():
    with pytest.raises(ValueError, match="lengths of byte slices differ"):
        util.xor_bytes(b"\x01\x02", b"\x01")


def test_oaep_round_trip():
    priv = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    ciphertext = util.encrypt_oaep(priv.public_key(), b"hello")
    assert ciphertext != b"hello"
    assert util.decrypt_oaep(priv, ciphertext) == b"hello"


def test_local_listener():
    listener, addr = util.must_get_local_listener_and_addr()
    try:
        host, port = addr.split(":")
        assert host == "localhost"
        assert int(port) == listener.getsockname()[1]
        with socket.create_connection(("localhost", int(port)), timeout=5):
            pass
    finally:
        listener.close()


def test_must_getwd_prefers_edg_cwd(monkeypatch):
    monkeypatch.setenv("EDG_CWD", "/enclave/dir")
    assert util.must_getwd() == "/enclave/dir"


def test_must_getwd_falls_back_to_cwd(monkeypatch, tmp_path):
    monkeypatch.delenv("EDG_CWD", raising=False)
    monkeypatch.chdir(tmp_path)
    result = util.must_getwd()
    assert os.path.realpath(result) == os.path.realpath(str(tmp_path))