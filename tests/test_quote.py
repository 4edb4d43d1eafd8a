import pytest

from marblerun.quote import (
    FailIssuer,
    FailValidator,
    InfrastructureProperties,
    MockIssuer,
    MockValidator,
    PackageProperties,
    QuoteError,
)

SIGNER = "1f1e1d1c1b1a191817161514131211100f0e0d0c0b0a09080706050403020100"


def test_package_compliance_matching():
    required = PackageProperties(debug=True, signer_id=SIGNER, product_id=44, security_version=3)
    given = PackageProperties(debug=True, signer_id=SIGNER.upper(), product_id=44, security_version=4)
    assert required.is_compliant(given) is True


@pytest.mark.parametrize(
    "given",
    [
        PackageProperties(debug=False, signer_id=SIGNER, product_id=44, security_version=3),
        PackageProperties(debug=True, signer_id="00", product_id=44, security_version=3),
        PackageProperties(debug=True, signer_id=SIGNER, product_id=45, security_version=3),
        PackageProperties(debug=True, signer_id=SIGNER, product_id=44, security_version=2),
        PackageProperties(debug=True, signer_id=SIGNER),
    ],
)
def test_package_compliance_mismatch(given):
    required = PackageProperties(debug=True, signer_id=SIGNER, product_id=44, security_version=3)
    assert required.is_compliant(given) is False


def test_package_unique_id_case_insensitive():
    required = PackageProperties(unique_id="abcdef")
    assert required.is_compliant(PackageProperties(unique_id="ABCDEF")) is True
    assert required.is_compliant(PackageProperties(unique_id="abcde0")) is False


def test_empty_requirements_accept_anything_with_same_debug():
    assert PackageProperties().is_compliant(PackageProperties(unique_id="x", product_id=1)) is True


def test_infrastructure_compliance_is_equality():
    a = InfrastructureProperties(cpusvn=bytes(range(16)), qesvn=2, pcesvn=3, root_ca=b"\x03\x03\x03")
    b = InfrastructureProperties(cpusvn=bytes(range(16)), qesvn=2, pcesvn=3, root_ca=b"\x03\x03\x03")
    assert a.is_compliant(b) is True
    assert a.is_compliant(InfrastructureProperties(cpusvn=bytes(range(16)), qesvn=2, pcesvn=4)) is False
    assert InfrastructureProperties(cpusvn=b"").is_compliant(InfrastructureProperties()) is False


def test_fail_validator_and_issuer():
    with pytest.raises(QuoteError, match="cannot validate quote"):
        FailValidator().validate(b"q", b"c", PackageProperties(), InfrastructureProperties())
    with pytest.raises(QuoteError, match="cannot issue quote"):
        FailIssuer().issue(b"c")


def test_mock_issuer_digest():
    assert MockIssuer().issue(b"").hex() == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )
    assert len(MockIssuer().issue(b"cert")) == 32


def test_mock_validator_round_trip():
    validator = MockValidator()
    pp = PackageProperties(debug=True, security_version=5)
    ip = InfrastructureProperties(qesvn=2)
    quote = MockIssuer().issue(b"cert")
    validator.add_valid_quote(quote, b"cert", pp, ip)
    validator.validate(quote, b"cert", PackageProperties(debug=True, security_version=4), ip)

    with pytest.raises(QuoteError, match="wrong quote"):
        validator.validate(b"unknown", b"cert", pp, ip)
    with pytest.raises(QuoteError, match="wrong message"):
        validator.validate(quote, b"other", pp, ip)
    with pytest.raises(QuoteError, match="package does not comply"):
        validator.validate(quote, b"cert", PackageProperties(debug=True, security_version=6), ip)
    with pytest.raises(QuoteError, match="infrastructure does not comply"):
        validator.validate(quote, b"cert", pp, InfrastructureProperties(qesvn=3))