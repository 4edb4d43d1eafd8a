import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from marblerun.recovery import (
    Recovery,
    RecoveryError,
    SinglePartyRecovery,
    parse_rsa_public_key_from_pem,
)
from marblerun.util import decrypt_oaep


@pytest.fixture(scope="module")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def public_pem(rsa_private_key):
    return (
        rsa_private_key.public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode()
    )


def test_generate_encryption_key_is_16_random_bytes(public_pem):
    recoverer = SinglePartyRecovery()
    first = recoverer.generate_encryption_key({"testRecKey1": public_pem})
    second = recoverer.generate_encryption_key({"testRecKey1": public_pem})
    assert len(first) == 16
    assert len(second) == 16
    assert first != second


def test_generate_encryption_key_rejects_multiple_keys(public_pem):
    recoverer = SinglePartyRecovery()
    with pytest.raises(RecoveryError, match="multi-party recovery is not supported"):
        recoverer.generate_encryption_key({"a": public_pem, "b": public_pem})


def test_recovery_data_round_trip(rsa_private_key, public_pem):
    recoverer = SinglePartyRecovery()
    key = recoverer.generate_encryption_key({"testRecKey1": public_pem})
    secrets_map, extra = recoverer.generate_recovery_data({"testRecKey1": public_pem})
    assert extra is None
    assert set(secrets_map) == {"testRecKey1"}
    assert decrypt_oaep(rsa_private_key, secrets_map["testRecKey1"]) == key


def test_recovery_data_without_keys_is_empty():
    recoverer = SinglePartyRecovery()
    recoverer.generate_encryption_key({})
    assert recoverer.generate_recovery_data({}) == ({}, None)


def test_recover_key_returns_secret_unchanged():
    recoverer = SinglePartyRecovery()
    assert recoverer.recover_key(b"secret") == (0, b"secret")


def test_recovery_data_storage_is_empty():
    recoverer = SinglePartyRecovery()
    assert recoverer.set_recovery_data(b"anything") is None
    assert recoverer.get_recovery_data() is None


def test_parse_public_key_round_trip(rsa_private_key, public_pem):
    parsed = parse_rsa_public_key_from_pem(public_pem)
    assert parsed.public_numbers() == rsa_private_key.public_key().public_numbers()


def test_parse_rejects_non_pem():
    with pytest.raises(RecoveryError, match="invalid public key in manifest"):
        parse_rsa_public_key_from_pem("not a pem")


def test_parse_rejects_wrong_block_type(rsa_private_key):
    pkcs1 = rsa_private_key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.PKCS1
    )
    with pytest.raises(RecoveryError, match="invalid public key in manifest"):
        parse_rsa_public_key_from_pem(pkcs1.decode())


def test_parse_rejects_garbage_key_bytes():
    pem = "-----BEGIN PUBLIC KEY-----\nAAAA\n-----END PUBLIC KEY-----\n"
    with pytest.raises(RecoveryError):
        parse_rsa_public_key_from_pem(pem)


def test_parse_rejects_non_rsa_key():
    ec_pem = (
        ec.generate_private_key(ec.SECP256R1())
        .public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode()
    )
    with pytest.raises(RecoveryError, match="unsupported type of public key"):
        parse_rsa_public_key_from_pem(ec_pem)


def test_generate_recovery_data_propagates_bad_key():
    recoverer = SinglePartyRecovery()
    recoverer.generate_encryption_key({"k": "bad"})
    with pytest.raises(RecoveryError):
        recoverer.generate_recovery_data({"k": "bad"})


def test_recovery_is_abstract():
    with pytest.raises(TypeError):
        Recovery()
    assert isinstance(SinglePartyRecovery(), Recovery)