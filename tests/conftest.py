from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient
from square.dtypes import K8sConfig

import fdeploy.api
import fdeploy.logstreams
from fdeploy.models import ServerConfig


def pytest_configure(*args, **kwargs):
    """Pytest calls this hook on startup."""
    # Set log level to DEBUG for all unit tests.
    fdeploy.logstreams.setup("DEBUG")


def get_server_config():
    return ServerConfig(
        kubeconfig=Path("/tmp/kind-kubeconf.yaml"),
        kubecontext="kind-kind",
        namespace="openfaas-fn",
        host="0.0.0.0",
        port=8080,
        loglevel="info",
    )


@pytest.fixture
async def k8scfg(respx_mock):
    """Return a cluster config whose requests are intercepted by `respx`."""
    async with AsyncClient(base_url="https:") as client:
        yield K8sConfig(client=client)


@pytest.fixture
def client(respx_mock):
    """Return a test client for an app that never talks to a real cluster.

    NOTE: the app lifespan does not run since the client is not used as a
    context manager. We therefore install the configs ourselves.

    """
    app = fdeploy.api.make_app()
    app.extra["config"] = get_server_config()  # type: ignore
    app.extra["k8scfg"] = K8sConfig(client=httpx.AsyncClient(base_url="https:"))  # type: ignore
    yield TestClient(app)
