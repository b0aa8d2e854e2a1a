import asyncio
import json
import logging
import ssl
from pathlib import Path
from typing import List, Tuple
from urllib.parse import urlparse

import httpx
import square.k8s
import tenacity as tc
from square.dtypes import ConnectionParameters, K8sConfig

from fdeploy.defaults import FUNCTION_LABEL, deployment_path, secret_path

# Define the exceptions we want to retry on.
WEB_EXCEPTIONS = (httpx.RequestError, ssl.SSLError, KeyError, asyncio.TimeoutError)


# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("app")


def _on_backoff(retry_state: tc.RetryCallState):
    """Log a warning on each retry."""
    attempt = retry_state.attempt_number
    k8sconfig, method, url = retry_state.args[:3]
    path = urlparse(url).path

    logit.warning(f"Back off {attempt} - {k8sconfig.name} - {method} {path}.")


async def _mysleep(delay: float):
    """This trivial function exists to mock out the `sleep` call during tests."""
    await asyncio.sleep(delay)


async def _send(
    k8sconfig: K8sConfig,
    method: str,
    url: str,
    payload: dict | list | None,
    headers: dict | None,
) -> httpx.Response:
    return await k8sconfig.client.request(method, url, json=payload, headers=headers)


@tc.retry(
    stop=(tc.stop_after_delay(60) | tc.stop_after_attempt(5)),
    wait=tc.wait_exponential(multiplier=1, min=0, max=10) + tc.wait_random(0, 1),
    retry=tc.retry_if_exception_type(WEB_EXCEPTIONS),
    before_sleep=_on_backoff,
    reraise=True,
    sleep=_mysleep,
)
async def _call(
    k8sconfig: K8sConfig,
    method: str,
    url: str,
    payload: dict | list | None,
    headers: dict | None,
) -> httpx.Response:
    return await _send(k8sconfig, method, url, payload, headers)


async def request(
    k8sconfig: K8sConfig,
    method: str,
    url: str,
    payload: dict | list | None = None,
    headers: dict | None = None,
) -> Tuple[dict, int, bool]:
    """Return response of web request made with `client`.

    Only GET requests are retried on network errors. Every other method
    reaches K8s at most once because a blind retry of a write could silently
    clobber a change made by someone else in the meantime.

    Inputs:
        k8sconfig: K8sConfig
            Cluster config with an HttpX client that has the correct certificates.
        url: str
            Eg `https://1.2.3.4/apis/apps/v1/namespaces/default/deployments`
        payload: dict
            Anything that can be JSON encoded, usually a K8s manifest.
        headers: dict
            Request headers. These will *not* replace the existing request
            headers dictionary (eg the access tokens), but augment them.

    Returns:
        (dict, int, bool): the JSON response and the HTTP status code.

    """
    call = _call if method.upper() == "GET" else _send

    # Make the HTTP request, possibly via our backoff/retry handler.
    try:
        ret = await call(k8sconfig, method, url, payload=payload, headers=headers)
    except WEB_EXCEPTIONS as err:
        logit.error(f"Giving up - {k8sconfig.name} - {err} - {method} {url}")
        return ({}, -1, True)

    # Decode the JSON response and abort if that is impossible.
    try:
        response = json.loads(ret.text)
    except json.decoder.JSONDecodeError as err:
        msg = (
            f"JSON error - {k8sconfig.name} - "
            f"{err.msg} in line {err.lineno} column {err.colno}",
            "-" * 80 + "\n" + err.doc + "\n" + "-" * 80,
        )
        logit.error(str.join("\n", msg))
        return ({}, ret.status_code, True)

    # Log the entire request in debug mode.
    logit.debug(
        f"{method} {ret.status_code} {ret.url}\n"
        f"Headers: {headers}\n"
        f"Payload: {payload}\n"
        f"Response: {response}\n"
    )
    return (response, ret.status_code, False)


async def get(k8sconfig: K8sConfig, url: str) -> Tuple[dict, bool]:
    """Make GET requests to K8s (see `request`)."""
    resp, code, err = await request(k8sconfig, "GET", url, payload=None, headers=None)
    if err or code != 200:
        logit.error(f"{code} - GET - {url} - {resp}")
        return (resp, True)
    return (resp, False)


async def get_resource(k8sconfig: K8sConfig, url: str) -> Tuple[dict, bool, bool]:
    """Fetch a single K8s resource.

    Returns:
        (dict, bool, bool): the manifest, whether it exists and the error flag.
        A 404 is not an error but merely means the resource does not exist.

    """
    resp, code, err = await request(k8sconfig, "GET", url, payload=None, headers=None)
    if err:
        return ({}, False, True)

    if code == 404:
        return ({}, False, False)

    if code != 200:
        logit.error(f"{code} - GET - {url} - {resp}")
        return ({}, False, True)
    return (resp, True, False)


async def get_deployment(
    k8sconfig: K8sConfig, namespace: str, name: str
) -> Tuple[dict, bool, bool]:
    """Return the current Deployment `namespace/name` (see `get_resource`)."""
    return await get_resource(k8sconfig, deployment_path(namespace, name))


async def get_secret(
    k8sconfig: K8sConfig, namespace: str, name: str
) -> Tuple[dict, bool, bool]:
    """Return the Secret `namespace/name` (see `get_resource`)."""
    return await get_resource(k8sconfig, secret_path(namespace, name))


async def list_deployments(
    k8sconfig: K8sConfig, namespace: str
) -> Tuple[List[dict], bool]:
    """Return all Deployments in `namespace` that belong to a function."""
    url = f"{deployment_path(namespace)}?labelSelector={FUNCTION_LABEL}"
    resp, err = await get(k8sconfig, url)
    if err:
        return ([], True)
    return (resp.get("items", []), False)


async def replace_deployment(
    k8sconfig: K8sConfig, namespace: str, manifest: dict
) -> Tuple[dict, int, bool]:
    """Replace the entire Deployment with `manifest`.

    The `manifest` must still carry the `metadata.resourceVersion` it was
    fetched with. K8s rejects the request with 409 if the Deployment has
    changed since then.

    Returns:
        (dict, int, bool): the K8s response, the HTTP status code and the
        error flag.

    """
    url = deployment_path(namespace, manifest["metadata"]["name"])
    resp, code, err = await request(k8sconfig, "PUT", url, manifest, headers=None)
    if err or code != 200:
        logit.error(f"{code} - PUT - {url} - {resp}")
        return (resp, code, True)
    return (resp, code, False)


def create_cluster_config(kubeconf: Path, context: str) -> Tuple[K8sConfig, bool]:
    # Parse Kubeconfig file.
    cfg, err = square.k8s.load_auto_config(kubeconf, context)
    if err:
        return K8sConfig(), True

    # Create HTTPX client.
    params = ConnectionParameters(read=60, write=60, pool=60)
    cfg, err = square.k8s.create_httpx_client(cfg, params)
    if err:
        return K8sConfig(), True

    # Set the base URL to the K8s API server for convenience.
    cfg.client.base_url = cfg.url

    return cfg, False
