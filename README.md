# marblerun

Python building blocks for a confidential service mesh. Services ("marbles")
run inside secure enclaves. Before they start, they attest to a coordinator.
The coordinator checks their quotes, hands out configuration and secrets, and
can recover its sealed state with a key held by an operator.

## Installation

```
pip install .
```

For development, install with the test extra and run the suite:

```
pip install ".[test]"
pytest
```

## What is in the package

| Module | Purpose |
| --- | --- |
| `marblerun.util` | HKDF-SHA256 key derivation, environment helpers, XOR of byte strings, RSA-OAEP (SHA-256) encryption and decryption, a listener on a free local port |
| `marblerun.certs` | Self-signed ECDSA P-256 certificates, CSRs, random 128-bit serial numbers, client TLS contexts presenting a marble's certificate |
| `marblerun.config` | The names of the environment variables a marble reads, their defaults, and the default location of its UUID file |
| `marblerun.quote` | Package and infrastructure properties with compliance checks, the `Validator` and `Issuer` interfaces, and failing and mock implementations |
| `marblerun.recovery` | Single-party recovery: a random 16-byte encryption key, wrapped with the operator's RSA public key |
| `marblerun.injector` | A Kubernetes mutating admission webhook that adds marble environment variables, a UUID volume, SGX resource limits and tolerations to pods |
| `marblerun.server` | The coordinator's client REST API (`/status`, `/manifest`, `/quote`, `/recover`, `/update`) as a WSGI application, and an HTTPS server to run it |
| `marblerun.premain` | The steps a marble runs before its real `main`: load or create its UUID, generate a certificate and CSR, obtain a quote, activate with the coordinator, and apply the returned files, environment and arguments |
| `marblerun.hello` | A small "hello world" HTTP service |

## Examples

### Checking package properties

```python
from marblerun.quote import PackageProperties

required = PackageProperties(debug=False, signer_id="1F1E1D", security_version=2)
reported = PackageProperties(debug=False, signer_id="1f1e1d", product_id=44, security_version=3)

assert required.is_compliant(reported)
```

IDs are compared without regard to case. The debug flags must match, and the
security version of the reported package must be at least the required one.
`InfrastructureProperties.is_compliant` requires an exact match.

### Mock quotes in tests

```python
from marblerun.quote import (
    InfrastructureProperties,
    MockIssuer,
    MockValidator,
    PackageProperties,
)

issuer = MockIssuer()
validator = MockValidator()

cert = b"certificate bytes"
quote = issuer.issue(cert)  # SHA-256 digest of the message

pp = PackageProperties(debug=True)
ip = InfrastructureProperties()
validator.add_valid_quote(quote, cert, pp, ip)
validator.validate(quote, cert, pp, ip)  # raises QuoteError if anything does not match
```

`FailIssuer` and `FailValidator` always raise `QuoteError`.

### Key derivation and XOR

```python
from marblerun.util import derive_key, xor_bytes

key = derive_key(b"secret", b"salt", 32)
assert len(key) == 32

assert xor_bytes(b"\x0d\x0e", b"\x0b\x0a") == b"\x06\x04"
```

`xor_bytes` raises `ValueError` when the two inputs differ in length.

### Single-party recovery

```python
from marblerun.recovery import SinglePartyRecovery

recovery = SinglePartyRecovery()
encryption_key = recovery.generate_encryption_key({"operator": public_key_pem})
secrets, _ = recovery.generate_recovery_data({"operator": public_key_pem})
# secrets["operator"] holds the encryption key, RSA-OAEP encrypted for the operator
```

Only one recovery key is supported; passing more than one raises
`RecoveryError`. A key that is not a PEM `PUBLIC KEY` block holding an RSA key
also raises `RecoveryError`.

### Admission webhook

```python
from marblerun.injector import mutate

response = mutate(
    admission_review_json,
    "coordinator-mesh-api.marblerun:2001",
    "cluster.local",
    "kubernetes.azure.com/sgx_epc_mem_in_MiB",
    True,
)
```

The result is an `AdmissionReview` response as JSON bytes, with the JSON patch
base64-encoded in `response.patch`. Pods without a `marblerun/marbletype` label
are allowed unchanged. A request that is not valid JSON, has no request, or has
no valid pod in it raises `MutationError`.

`Mutator(coord_addr, domain_name, sgx_resource)` offers `handle_mutate` and
`handle_mutate_no_sgx` as WSGI handlers. They accept only `POST` requests with
`Content-Type: application/json`, answer other requests with 400 and failed
mutations with 500.

### Marble start-up

```python
from marblerun.premain import Parameters, pre_main_ex
from marblerun.quote import MockIssuer

def activate(request, coord_addr, tls_context):
    # send `request` (an ActivationRequest) to the coordinator at coord_addr
    return Parameters(files={"/etc/app.conf": "..."}, env={"MODE": "prod"}, argv=["app"])

pre_main_ex(MockIssuer(), activate, "/tmp/hostfs", "/tmp/enclavefs")
```

`pre_main_ex` reads `EDG_MARBLE_TYPE` (required), `EDG_MARBLE_COORDINATOR_ADDR`,
`EDG_MARBLE_DNS_NAMES` and `EDG_MARBLE_UUID_FILE`. The UUID file lives in
`hostfs`; manifest files are written under `enclavefs`; either may be `None` for
the real file system. If the issuer is `None` or fails, an empty quote is sent.
Afterwards the environment variables are set and `sys.argv` is replaced
(`["./marble"]` when the parameters carry no arguments).

`GrapheneQuoteIssuer` issues quotes through `/dev/attestation/user_report_data`
and `/dev/attestation/quote`.

### Client API

```python
from marblerun.server import create_serve_mux, run_client_server

app = create_serve_mux(my_core)  # any object implementing ClientCore
run_client_server(app, "localhost:4433", ssl_context)
```

Successful responses are JSON of the form `{"status": "success", "data": ...}`;
errors are `{"status": "error", "data": null, "message": ...}`, with the
message left out when it is empty. `/update` needs the client's TLS
certificates, which the server places in the WSGI environ under
`PEER_CERTIFICATES_KEY`; without them, or when `ClientCore.verify_admin`
rejects them, it answers 401.

## Hello world service

The package installs a sample service that answers every request with a
greeting and its command-line arguments:

```
marblerun-hello
```

It listens on port 8080.

## What the package does not do

- It has no coordinator core: `ClientCore` is an abstract interface that the
  user supplies.
- It does not talk to a coordinator over the network on its own: the
  `activate` function passed to `pre_main_ex` carries the request.
- It has no enclave quote issuer or validator apart from `GrapheneQuoteIssuer`
  and the mock and failing ones in `marblerun.quote`.
- It serves no metrics endpoint and does not mount enclave file systems.