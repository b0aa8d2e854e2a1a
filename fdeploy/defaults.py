# Every function Deployment carries this label with the function name as value.
FUNCTION_LABEL = "faas_function"

# Regenerated on every update to force a new rollout of the Pod template.
UID_LABEL = "uid"

# Optional caller label that pins the replica count during an update.
MIN_SCALE_LABEL = "com.openfaas.scale.min"

# Name of the environment variable that holds the function process.
ENV_PROCESS_NAME = "fprocess"

# All secrets of a function are projected into this directory.
SECRETS_MOUNT_PATH = "/var/openfaas/secrets"

# Secrets of these types are image pull secrets and are not mounted.
IMAGE_PULL_SECRET_TYPES = (
    "kubernetes.io/dockercfg",
    "kubernetes.io/dockerconfigjson",
)

DEFAULT_NAMESPACE = "openfaas-fn"


def projected_secrets_name(service: str) -> str:
    """Return the name of the volume that projects all secrets of `service`."""
    return f"{service}-projected-secrets"


def deployment_path(namespace: str, name: str = "") -> str:
    """Return the K8s API path of a single Deployment or all Deployments."""
    path = f"/apis/apps/v1/namespaces/{namespace}/deployments"
    return f"{path}/{name}" if name else path


def secret_path(namespace: str, name: str) -> str:
    return f"/api/v1/namespaces/{namespace}/secrets/{name}"
