import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Tuple

from fastapi import FastAPI
from starlette.types import ASGIApp

import fdeploy.k8s
import fdeploy.routers.basic as basic
import fdeploy.routers.functions as functions
from fdeploy.defaults import DEFAULT_NAMESPACE
from fdeploy.models import ServerConfig

# Convenience.
logit = logging.getLogger("app")


# ----------------------------------------------------------------------
# Setup Server.
# ----------------------------------------------------------------------
def compile_server_config() -> Tuple[ServerConfig, bool]:
    try:
        cfg = ServerConfig(
            kubeconfig=Path(os.getenv("KUBECONFIG", "")),
            kubecontext=os.getenv("KUBECONTEXT", ""),
            namespace=os.getenv("FDEPLOY_NAMESPACE", DEFAULT_NAMESPACE),
            loglevel=os.getenv("FDEPLOY_LOGLEVEL", "info"),
            host=os.getenv("FDEPLOY_HOST", "0.0.0.0"),
            port=int(os.getenv("FDEPLOY_PORT", "8080")),
        )
        assert cfg.namespace != ""
        return cfg, False
    except (AssertionError, ValueError) as e:
        logit.error("invalid environment variables", {"reason": tuple(e.args)})
        return (
            ServerConfig(
                kubeconfig=Path(""),
                kubecontext="",
                namespace="",
                host="",
                port=-1,
                loglevel="",
            ),
            True,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: ServerConfig = app.extra["config"]

    # Provide a single K8s client to the entire app. This will ensure
    # efficient reuse of sessions, certificates and other common options.
    k8scfg, err = fdeploy.k8s.create_cluster_config(cfg.kubeconfig, cfg.kubecontext)
    if err:
        raise RuntimeError("could not create K8s client")

    app.extra["k8scfg"] = k8scfg
    async with k8scfg.client:
        logit.info("server startup complete", {"namespace": cfg.namespace})
        yield
    logit.info("server shutdown complete")


def make_app() -> ASGIApp:
    """Return a fully configured FastAPI instance."""
    cfg, err = compile_server_config()
    if err:
        raise RuntimeError("could not meet preconditions to start server")

    app = FastAPI(
        title="Function Deployments",
        summary="",
        description="",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.extra["config"] = cfg

    # Install the web server routes.
    app.include_router(functions.router, prefix="", tags=["Functions"])
    app.include_router(basic.router, prefix="", tags=["Basic"])

    return app
