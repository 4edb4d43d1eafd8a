"""Admission webhook that injects Marble configuration into Kubernetes pods."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

MARBLE_TYPE_LABEL = "marblerun/marbletype"
_ENV_COORDINATOR_ADDR = "EDG_MARBLE_COORDINATOR_ADDR"
_ENV_TYPE = "EDG_MARBLE_TYPE"
_ENV_DNS_NAMES = "EDG_MARBLE_DNS_NAMES"
_ENV_UUID_FILE = "EDG_MARBLE_UUID_FILE"
_SGX_RESOURCE_AMOUNT = 10


class MutationError(Exception):
    """Raised when an admission review cannot be mutated."""


class _BadRequest(Exception):
    pass


def _marshal(value: Any) -> bytes:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text.encode()


def _field(obj: dict, key: str, kind: type, default: Any) -> Any:
    value = obj.get(key)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise MutationError("invalid pod")
    return value


def _env_var(name: str, value: str) -> dict[str, str]:
    var = {"name": name}
    if value:
        var["value"] = value
    return var


def _env_is_set(set_vars: list[dict], name: str) -> bool:
    return any(var.get("name") == name for var in set_vars)


def _add_env_var(set_vars: list[dict], new_vars: list[dict], base_path: str) -> list[dict]:
    """Create patches adding every required variable not already set."""
    patches = []
    first = not set_vars
    for new_var in new_vars:
        if first:
            first = False
            path, value = base_path, [new_var]
        else:
            path, value = f"{base_path}/-", new_var
        if not _env_is_set(set_vars, new_var["name"]):
            patches.append({"op": "add", "path": path, "value": value})
    return patches


def _create_resource_patch(resources: dict, idx: int, resource_key: str) -> dict:
    limits = _field(resources, "limits", dict, {})
    requests = _field(resources, "requests", dict, {})
    if not limits and not requests:
        return {
            "op": "add",
            "path": f"/spec/containers/{idx}/resources",
            "value": {"limits": {resource_key: _SGX_RESOURCE_AMOUNT}},
        }
    if not limits:
        return {
            "op": "add",
            "path": f"/spec/containers/{idx}/resources/limits",
            "value": {resource_key: _SGX_RESOURCE_AMOUNT},
        }
    # "/" in the key would be read as a path separator by JSON Patch.
    escaped_key = resource_key.replace("/", "~1")
    return {
        "op": "add",
        "path": f"/spec/containers/{idx}/resources/limits/{escaped_key}",
        "value": _SGX_RESOURCE_AMOUNT,
    }


def _create_mount_patch(mounts: int, path: str, mount_path: str, uid: str) -> dict:
    mount = {"name": f"uuid-file-{uid}", "mountPath": mount_path}
    if mounts <= 0:
        return {"op": "add", "path": path, "value": [mount]}
    return {"op": "add", "path": f"{path}/-", "value": mount}


def _create_volume_patch(volumes: int, uid: str) -> dict:
    volume = {
        "name": f"uuid-file-{uid}",
        "downwardAPI": {
            "items": [{"path": "uuid-file", "fieldRef": {"fieldPath": "metadata.uid"}}],
        },
    }
    if volumes <= 0:
        return {"op": "add", "path": "/spec/volumes", "value": [volume]}
    return {"op": "add", "path": "/spec/volumes/-", "value": volume}


def _toleration(resource_key: str) -> dict[str, str]:
    toleration = {"key": resource_key} if resource_key else {}
    toleration.update({"operator": "Exists", "effect": "NoSchedule"})
    return toleration


def _parse_review(body: bytes | str) -> tuple[str, dict]:
    try:
        review = json.loads(body)
    except ValueError as err:
        logger.warning("Unable to mutate request: invalid admission review")
        raise MutationError("invalid admission review") from err
    if not isinstance(review, dict):
        raise MutationError("invalid admission review")
    request = review.get("request")
    if request is None:
        logger.warning("Unable to mutate request: empty admission review request")
        raise MutationError("empty admission request")
    if not isinstance(request, dict) or not isinstance(request.get("uid", ""), str):
        raise MutationError("invalid admission review")
    pod = request.get("object")
    if not isinstance(pod, dict):
        logger.warning("Unable to mutate request: invalid pod")
        raise MutationError("invalid pod")
    return request.get("uid") or "", pod


def mutate(
    body: bytes | str, coord_addr: str, domain_name: str, resource_key: str, inject_sgx: bool
) -> bytes:
    """Build the admission review response with JSON patches for the pod in ``body``."""
    uid, pod = _parse_review(body)
    metadata = _field(pod, "metadata", dict, {})
    labels = _field(metadata, "labels", dict, {})
    spec = _field(pod, "spec", dict, {})
    containers = _field(spec, "containers", list, [])
    if not all(isinstance(container, dict) for container in containers):
        raise MutationError("invalid pod")

    response: dict[str, Any] = {"uid": uid, "allowed": False}
    review = {"kind": "AdmissionReview", "apiVersion": "admission.k8s.io/v1", "response": response}

    marble_type = labels.get(MARBLE_TYPE_LABEL) or ""
    if not isinstance(marble_type, str):
        raise MutationError("invalid pod")
    if not marble_type:
        response["allowed"] = True
        response["status"] = {
            "metadata": {},
            "status": "Success",
            "message": f"Missing [{MARBLE_TYPE_LABEL}] label, injection skipped",
        }
        logger.info("Pod is missing [%s] label, skipping injection", MARBLE_TYPE_LABEL)
        return _marshal(review)

    namespace = _field(metadata, "namespace", str, "") or "default"
    new_env_vars = [
        _env_var(_ENV_COORDINATOR_ADDR, coord_addr),
        _env_var(_ENV_TYPE, marble_type),
        _env_var(
            _ENV_DNS_NAMES,
            f"{marble_type},{marble_type}.{namespace},{marble_type}.{namespace}.svc.{domain_name}",
        ),
    ]

    patch: list[dict] = []
    need_new_volume = False
    for idx, container in enumerate(containers):
        env = _field(container, "env", list, [])
        if not all(isinstance(var, dict) for var in env):
            raise MutationError("invalid pod")
        if not _env_is_set(env, _ENV_UUID_FILE):
            need_new_volume = True
            new_env_vars.append(_env_var(_ENV_UUID_FILE, f"/{marble_type}-uid/uuid-file"))
            patch.append(
                _create_mount_patch(
                    len(_field(container, "volumeMounts", list, [])),
                    f"/spec/containers/{idx}/volumeMounts",
                    f"/{marble_type}-uid",
                    uid,
                )
            )
        patch.extend(_add_env_var(env, new_env_vars, f"/spec/containers/{idx}/env"))
        if inject_sgx:
            resources = _field(container, "resources", dict, {})
            patch.append(_create_resource_patch(resources, idx, resource_key))

    if need_new_volume:
        patch.append(_create_volume_patch(len(_field(spec, "volumes", list, [])), uid))

    if inject_sgx:
        if not _field(spec, "tolerations", list, []):
            patch.append({"op": "add", "path": "/spec/tolerations", "value": [_toleration(resource_key)]})
        else:
            patch.append({"op": "add", "path": "/spec/tolerations/-", "value": _toleration(resource_key)})

    patch_bytes = _marshal(patch) if patch else b"null"
    response["allowed"] = True
    response["patch"] = base64.b64encode(patch_bytes).decode()
    response["patchType"] = "JSONPatch"
    logger.info("Mutation request for pod of marble type [%s] successful", marble_type)
    return _marshal(review)


def _read_request(environ: dict) -> bytes:
    if environ.get("REQUEST_METHOD") != "POST":
        raise _BadRequest("unable to handle requests other than POST")
    if environ.get("CONTENT_TYPE", "") != "application/json":
        raise _BadRequest("wrong application type")
    stream = environ.get("wsgi.input")
    if stream is None:
        return b""
    try:
        length = environ.get("CONTENT_LENGTH")
        return stream.read(int(length)) if length else stream.read()
    except (ValueError, OSError) as err:
        raise _BadRequest("unable to read request") from err


def _plain_error(start_response, message: str, status: str) -> list[bytes]:
    body = f"{message}\n".encode()
    start_response(
        status,
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
            ("Content-Length", str(len(body))),
        ],
    )
    return [body]


@dataclass
class Mutator:
    """WSGI handlers for the admission webhook."""

    coord_addr: str
    domain_name: str
    sgx_resource: str

    def _handle(self, environ, start_response, inject_sgx: bool) -> list[bytes]:
        try:
            body = _read_request(environ)
        except _BadRequest as err:
            return _plain_error(start_response, str(err), "400 Bad Request")
        try:
            mutated = mutate(body, self.coord_addr, self.domain_name, self.sgx_resource, inject_sgx)
        except MutationError:
            return _plain_error(start_response, "unable to mutate request", "500 Internal Server Error")
        start_response(
            "200 OK",
            [("Content-Type", "application/json"), ("Content-Length", str(len(mutated)))],
        )
        return [mutated]

    def handle_mutate(self, environ, start_response):
        """Handle a mutate request, injecting SGX resources and tolerations."""
        logger.info("Handling mutate request, injecting sgx tolerations")
        return self._handle(environ, start_response, True)

    def handle_mutate_no_sgx(self, environ, start_response):
        """Handle a mutate request without SGX injection."""
        logger.info("Handling mutate request, omitting sgx injection")
        return self._handle(environ, start_response, False)