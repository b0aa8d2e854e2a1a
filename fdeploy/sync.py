"""Synchronise function requests with their K8s Deployments.

Every operation follows the same read-modify-write cycle: fetch the current
Deployment, compute the new manifest from a copy of it and replace the entire
Deployment in a single PUT. The manifest retains the `resourceVersion` it was
fetched with, which means K8s will reject the write with a 409 if anyone else
modified the Deployment in the meantime. The caller receives a
`ConflictError` and may simply retry the request.

All functions raise a `fdeploy.errors.SyncError` to abort the request.
"""

import logging
from typing import List

from square.dtypes import K8sConfig

import fdeploy.generate
import fdeploy.k8s
import fdeploy.manifest_utilities as mu
from fdeploy.errors import (
    ClientRequestError,
    ConflictError,
    NotFoundError,
    OrchestratorError,
)
from fdeploy.models import FunctionDeployment, FunctionStatus, ScaleServiceRequest

logit = logging.getLogger("app")


async def _replace(k8scfg: K8sConfig, namespace: str, manifest: dict, msg: str):
    """Write `manifest` back to K8s and translate the failure modes."""
    resp, code, err = await fdeploy.k8s.replace_deployment(k8scfg, namespace, manifest)
    if not err:
        return

    if code == 409:
        raise ConflictError(f"{msg}: deployment was modified concurrently, retry")
    if code == 404:
        raise NotFoundError(f"{msg}: deployment no longer exists")

    # Include the reason from K8s if there is one.
    reason = resp.get("message", "") if isinstance(resp, dict) else ""
    raise OrchestratorError(f"{msg}: {reason}" if reason else msg)


async def scale_function(
    k8scfg: K8sConfig, namespace: str, name: str, req: ScaleServiceRequest
) -> None:
    """Set the replica count of function `name` and nothing else."""
    meta_log = {"component": "scale", "namespace": namespace, "name": name}
    logit.info("update replicas", meta_log | {"replicas": req.replicas})

    if req.replicas < 0:
        raise ClientRequestError(f"Invalid replica count {req.replicas} for {name}")

    base, found, err = await fdeploy.k8s.get_deployment(k8scfg, namespace, name)
    if err:
        raise OrchestratorError(f"Unable to lookup function deployment {name}")
    if not found:
        raise NotFoundError(f"Function deployment {name} not found")

    manifest = fdeploy.generate.scale_manifest(base, req.replicas)
    await _replace(
        k8scfg, namespace, manifest, f"Unable to update function deployment {name}"
    )


async def read_function(k8scfg: K8sConfig, namespace: str, name: str) -> FunctionStatus:
    """Return the summary of function `name`."""
    logit.info("read replicas", {"component": "scale", "name": name})

    manifest, found, err = await fdeploy.k8s.get_deployment(k8scfg, namespace, name)
    if err:
        raise OrchestratorError(f"Unable to lookup function deployment {name}")
    if not found:
        raise NotFoundError(f"Function {name} not found")

    # The Deployment exists but was not created for a function.
    info, err = mu.function_status(manifest)
    if err:
        raise NotFoundError(f"Function {name} not found")
    return info


async def list_functions(k8scfg: K8sConfig, namespace: str) -> List[FunctionStatus]:
    """Return the summary of all functions in `namespace`, sorted by name."""
    manifests, err = await fdeploy.k8s.list_deployments(k8scfg, namespace)
    if err:
        raise OrchestratorError(f"Unable to list functions in {namespace}")

    out: List[FunctionStatus] = []
    for manifest in manifests:
        info, err = mu.function_status(manifest)
        if not err:
            out.append(info)
    out.sort(key=lambda _: _.name)
    return out


async def update_function(
    k8scfg: K8sConfig, namespace: str, req: FunctionDeployment
) -> None:
    """Update the Deployment of function `req.service` to match `req`.

    All inputs are validated before the fetched Deployment is modified. Any
    error aborts the request before we write anything back to K8s.

    """
    name = req.service
    meta_log = {"component": "update", "namespace": namespace, "name": name}
    logit.info("update function", meta_log | {"image": req.image})

    base, found, err = await fdeploy.k8s.get_deployment(k8scfg, namespace, name)
    if err:
        raise NotFoundError(f"Unable to lookup function deployment {name}")
    if not found:
        raise NotFoundError(f'deployments.apps "{name}" not found')

    # Deployments without containers are written back unchanged.
    if fdeploy.generate.has_containers(base):
        resources = mu.create_resources(req)
        secrets = await mu.get_secrets(k8scfg, namespace, req.secrets)
        manifest = fdeploy.generate.update_deployment_manifest(
            req, base, resources, secrets
        )
    else:
        logit.warning("deployment has no containers", meta_log)
        manifest = base

    await _replace(
        k8scfg, namespace, manifest, f"Unable to update function deployment {name}"
    )
