from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

# ----------------------------------------------------------------------
# Kubernetes
# ----------------------------------------------------------------------


class K8sEnvVar(BaseModel):
    name: str
    value: str = ""
    valueFrom: Any = None


class K8sResourceCpuMem(BaseModel):
    cpu: str = ""
    memory: str = ""


class K8sRequestLimit(BaseModel):
    requests: K8sResourceCpuMem = K8sResourceCpuMem()
    limits: K8sResourceCpuMem = K8sResourceCpuMem()


class K8sMetadata(BaseModel):
    name: str = ""
    namespace: str = ""
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}
    resourceVersion: str = ""


class K8sDeploymentStatus(BaseModel):
    replicas: int = 0
    availableReplicas: int = 0


class K8sSecret(BaseModel):
    """The few Secret fields we care about. Only the keys of `data` are used."""

    metadata: K8sMetadata = K8sMetadata()
    type: str = "Opaque"
    data: Dict[str, str] = {}


# ----------------------------------------------------------------------
# fdeploy Internal Models.
# ----------------------------------------------------------------------


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kubeconfig: Path
    kubecontext: str

    # Functions live in this namespace unless a request names another one.
    namespace: str

    loglevel: str
    host: str
    port: int


# ----------------------------------------------------------------------
# API Interface Models.
# ----------------------------------------------------------------------


class FunctionResources(BaseModel):
    cpu: str = ""
    memory: str = ""


class FunctionDeployment(BaseModel):
    """PUT /functions"""

    service: str
    image: str
    network: str = ""
    namespace: str = ""
    envProcess: str = ""
    envVars: Dict[str, str] = {}
    constraints: List[str] = []
    secrets: List[str] = []

    # `None` and an empty dict are not the same: only the former means the
    # caller did not send any labels.
    labels: Dict[str, str] | None = None
    annotations: Dict[str, str] | None = None
    limits: FunctionResources | None = None
    requests: FunctionResources | None = None


class ScaleServiceRequest(BaseModel):
    """PUT /functions/{name}/scale"""

    serviceName: str = ""
    replicas: int = 0


class FunctionStatus(BaseModel):
    """GET /functions/{name}/scale"""

    name: str
    image: str = ""
    namespace: str = ""
    invocationCount: float = 0
    replicas: int = 0
    availableReplicas: int = 0
    envProcess: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
