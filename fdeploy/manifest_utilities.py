import logging
import re
from typing import Dict, List, Tuple

import pydantic
from kubernetes.utils.quantity import parse_quantity
from square.dtypes import K8sConfig

import fdeploy.k8s
from fdeploy.defaults import (
    ENV_PROCESS_NAME,
    FUNCTION_LABEL,
    IMAGE_PULL_SECRET_TYPES,
    MIN_SCALE_LABEL,
    SECRETS_MOUNT_PATH,
    projected_secrets_name,
)
from fdeploy.errors import ClientRequestError, OrchestratorError
from fdeploy.models import (
    FunctionDeployment,
    FunctionResources,
    FunctionStatus,
    K8sDeploymentStatus,
    K8sEnvVar,
    K8sRequestLimit,
    K8sResourceCpuMem,
    K8sSecret,
)

logit = logging.getLogger("app")

# Grammar of a K8s resource quantity, eg `500m`, `1.5`, `128Mi` or `1e3`.
QUANTITY_RE = re.compile(
    r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+|[KMGTPE]i|[numkMGTPE])?", re.ASCII
)


def build_env_vars(req: FunctionDeployment) -> List[K8sEnvVar]:
    """Return the container environment for `req`, sorted by name."""
    env = {k: v for k, v in req.envVars.items()}
    if req.envProcess != "":
        env[ENV_PROCESS_NAME] = req.envProcess

    return [K8sEnvVar(name=k, value=v) for k, v in sorted(env.items())]


def create_selector(constraints: List[str]) -> Dict[str, str]:
    """Convert `key=value` placement constraints into a node selector.

    Constraints without a `=` are ignored and the last duplicate key wins.

    """
    selector: Dict[str, str] = {}
    for constraint in constraints:
        key, sep, value = constraint.partition("=")
        if sep == "":
            continue
        selector[key.strip()] = value.strip()
    return selector


def _parse_cpu_mem(res: FunctionResources | None, kind: str) -> K8sResourceCpuMem:
    out = K8sResourceCpuMem()
    if res is None:
        return out

    for field in ("cpu", "memory"):
        value = getattr(res, field)
        if value == "":
            continue
        # `parse_quantity` alone also accepts `NaN`, `1_000` or padded values.
        if QUANTITY_RE.fullmatch(value) is None:
            raise ClientRequestError(f"invalid {field} {kind}: {value}")
        try:
            quantity = parse_quantity(value)
        except ValueError:
            raise ClientRequestError(f"invalid {field} {kind}: {value}")
        if not quantity.is_finite():
            raise ClientRequestError(f"invalid {field} {kind}: {value}")
        setattr(out, field, value)
    return out


def create_resources(req: FunctionDeployment) -> K8sRequestLimit:
    """Return the validated resource limits and requests of `req`.

    Raise `ClientRequestError` if any quantity is malformed.

    """
    return K8sRequestLimit(
        limits=_parse_cpu_mem(req.limits, "limit"),
        requests=_parse_cpu_mem(req.requests, "request"),
    )


async def get_secrets(
    k8scfg: K8sConfig, namespace: str, names: List[str]
) -> Dict[str, K8sSecret]:
    """Fetch all secrets in `names` from `namespace`.

    Raise `ClientRequestError` if any of them does not exist.

    """
    out: Dict[str, K8sSecret] = {}
    for name in names:
        manifest, found, err = await fdeploy.k8s.get_secret(k8scfg, namespace, name)
        if err:
            raise OrchestratorError(f"could not read secret '{name}'")
        if not found:
            raise ClientRequestError(
                f"required secret '{name}' was not found in the cluster"
            )

        try:
            out[name] = K8sSecret.model_validate(manifest)
        except pydantic.ValidationError:
            raise OrchestratorError(f"could not read secret '{name}'")
    return out


def update_secrets(
    req: FunctionDeployment, manifest: dict, secrets: Dict[str, K8sSecret]
) -> None:
    """Mount the requested `secrets` into the first container of `manifest`.

    Sidecars and any other containers of the Pod never receive the secrets
    volume.

    All ordinary secrets are combined into a single projected volume. Docker
    registry secrets become image pull secrets of the Pod instead.

    NOTE: this function modifies `manifest` in-place.

    """
    pod_spec = manifest["spec"]["template"]["spec"]
    volume_name = projected_secrets_name(req.service)

    projections: List[dict] = []
    pull_secrets: List[dict] = pod_spec.get("imagePullSecrets", [])
    for name in req.secrets:
        try:
            secret = secrets[name]
        except KeyError:
            raise ClientRequestError(
                f"required secret '{name}' was not found in the cluster"
            )

        if secret.type in IMAGE_PULL_SECRET_TYPES:
            if {"name": name} not in pull_secrets:
                pull_secrets.append({"name": name})
            continue

        items = [{"key": key, "path": key} for key in sorted(secret.data)]
        projections.append({"secret": {"name": name, "items": items}})

    if len(pull_secrets) > 0:
        pod_spec["imagePullSecrets"] = pull_secrets

    # Replace the projected volume from the previous update, if there was one.
    volumes = [_ for _ in pod_spec.get("volumes", []) if _["name"] != volume_name]
    if len(projections) > 0:
        volumes.append({"name": volume_name, "projected": {"sources": projections}})
    _set_or_drop(pod_spec, "volumes", volumes)

    # Same for the volume mount of the container.
    container = pod_spec["containers"][0]
    mounts = [_ for _ in container.get("volumeMounts", []) if _["name"] != volume_name]
    if len(projections) > 0:
        mounts.append(
            {"name": volume_name, "readOnly": True, "mountPath": SECRETS_MOUNT_PATH}
        )
    _set_or_drop(container, "volumeMounts", mounts)


def _set_or_drop(obj: dict, key: str, value: list) -> None:
    # K8s omits empty lists, so do we.
    if len(value) > 0:
        obj[key] = value
    else:
        obj.pop(key, None)


def min_replica_count(labels: Dict[str, str]) -> int | None:
    """Return the minimum replica count encoded in `labels`, if there is one."""
    try:
        value = int(labels[MIN_SCALE_LABEL])
    except KeyError:
        return None
    except ValueError:
        logit.warning(
            "ignoring invalid minimum replica label",
            {"label": MIN_SCALE_LABEL, "value": labels[MIN_SCALE_LABEL]},
        )
        return None

    return value if value > 0 else None


def is_function(manifest: dict) -> bool:
    """Return `True` if the Deployment `manifest` belongs to a function."""
    try:
        labels: Dict[str, str] = manifest["metadata"]["labels"]
    except KeyError:
        return False
    return FUNCTION_LABEL in labels


def function_status(manifest: dict) -> Tuple[FunctionStatus, bool]:
    """Compile the summary of the function Deployment `manifest`."""
    if not is_function(manifest):
        return FunctionStatus(name=""), True

    try:
        meta = manifest["metadata"]
        template = manifest["spec"]["template"]
        container = template["spec"]["containers"][0]
    except (KeyError, IndexError):
        logit.error("invalid Deployment manifest", {"manifest": manifest})
        return FunctionStatus(name=""), True

    status = K8sDeploymentStatus.model_validate(manifest.get("status", {}))
    env_process = ""
    for env in container.get("env", []):
        if env.get("name") == ENV_PROCESS_NAME:
            env_process = env.get("value", "")

    # Compile and return the info.
    info = FunctionStatus(
        name=meta["name"],
        namespace=meta.get("namespace", ""),
        image=container.get("image", ""),
        replicas=manifest["spec"].get("replicas", 0) or 0,
        availableReplicas=status.availableReplicas,
        envProcess=env_process,
        labels=template.get("metadata", {}).get("labels", {}) or {},
        annotations=template.get("metadata", {}).get("annotations", {}) or {},
    )
    return info, False
