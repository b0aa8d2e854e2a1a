from typing import Annotated, cast

from fastapi import Depends, Request
from square.dtypes import K8sConfig

from fdeploy.models import ServerConfig


def get_config(request: Request) -> ServerConfig:
    """FastAPI dependency to extract the server config."""
    return cast(ServerConfig, request.app.extra["config"])


def get_k8scfg(request: Request) -> K8sConfig:
    """FastAPI dependency to extract the cluster config and its HTTP client."""
    return cast(K8sConfig, request.app.extra["k8scfg"])


d_config = Annotated[ServerConfig, Depends(get_config)]
d_k8scfg = Annotated[K8sConfig, Depends(get_k8scfg)]
