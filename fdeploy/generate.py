import copy
import time
from typing import Dict

from fdeploy.defaults import FUNCTION_LABEL, UID_LABEL
from fdeploy.manifest_utilities import (
    build_env_vars,
    create_selector,
    min_replica_count,
    update_secrets,
)
from fdeploy.models import FunctionDeployment, K8sRequestLimit, K8sSecret


def unique_id() -> str:
    """Return the nanosecond fraction of the current wall clock second."""
    return str(time.time_ns() % 1_000_000_000)


def function_labels(req: FunctionDeployment) -> Dict[str, str]:
    """Return the labels for the Deployment and Pod template of `req`.

    The caller supplied labels take precedence, even over the function and
    uniqueness labels.

    """
    labels = {
        FUNCTION_LABEL: req.service,
        UID_LABEL: unique_id(),
    }
    return labels | (req.labels or {})


def has_containers(manifest: dict) -> bool:
    try:
        return len(manifest["spec"]["template"]["spec"]["containers"]) > 0
    except KeyError:
        return False


def update_deployment_manifest(
    req: FunctionDeployment,
    base: dict,
    resources: K8sRequestLimit,
    secrets: Dict[str, K8sSecret],
) -> dict:
    """Return a copy of the Deployment `base` updated to match `req`.

    The `resources` and `secrets` must have been validated already. Only the
    first container of the Pod is modified and `base` itself remains untouched.
    Manifests without containers are returned unchanged.

    Raise `ClientRequestError` if a requested secret is missing in `secrets`.

    """
    manifest = copy.deepcopy(base)
    if not has_containers(manifest):
        return manifest

    spec = manifest["spec"]
    pod_spec = spec["template"]["spec"]
    container = pod_spec["containers"][0]

    container["image"] = req.image
    container["env"] = [_.model_dump(exclude_none=True) for _ in build_env_vars(req)]

    # Placement constraints replace the previous node selector entirely.
    selector = create_selector(req.constraints)
    if len(selector) > 0:
        pod_spec["nodeSelector"] = selector
    else:
        pod_spec.pop("nodeSelector", None)

    # An explicit minimum replica count in the labels overrides the current one.
    labels = function_labels(req)
    if req.labels is not None:
        min_replicas = min_replica_count(req.labels)
        if min_replicas is not None:
            spec["replicas"] = min_replicas

    manifest["metadata"]["labels"] = labels
    spec["template"].setdefault("metadata", {})["labels"] = dict(labels)

    container["resources"] = resources.model_dump(exclude_defaults=True)

    update_secrets(req, manifest, secrets)
    return manifest


def scale_manifest(base: dict, replicas: int) -> dict:
    """Return a copy of the Deployment `base` with `replicas` replicas."""
    manifest = copy.deepcopy(base)
    manifest.setdefault("spec", {})["replicas"] = replicas
    return manifest
