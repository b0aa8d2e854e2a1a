import json
import logging
from functools import wraps
from typing import List

import pydantic
from fastapi import APIRouter, Request, Response, status
from fastapi.responses import PlainTextResponse

import fdeploy.sync
from fdeploy.errors import (
    ClientRequestError,
    ConflictError,
    NotFoundError,
    OrchestratorError,
    SyncError,
)
from fdeploy.models import FunctionDeployment, FunctionStatus, ScaleServiceRequest
from fdeploy.routers.dependencies import d_config, d_k8scfg

# Convenience.
logit = logging.getLogger("app")
router = APIRouter()

ERROR_CODES = {
    ClientRequestError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    OrchestratorError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_code(err: SyncError) -> int:
    return ERROR_CODES.get(type(err), status.HTTP_500_INTERNAL_SERVER_ERROR)


def handle_sync_errors(func):
    """Convert `SyncError`s into plain text responses with the matching code."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SyncError as e:
            code = error_code(e)
            logit.error(
                "request failed",
                {"component": "functions", "code": code, "message": e.message},
            )
            return PlainTextResponse(status_code=code, content=e.message)

    return wrapper


def parse_scale_request(body: bytes) -> ScaleServiceRequest:
    """Return the scale request in `body`.

    An empty body is valid and means zero replicas.

    """
    if len(body) == 0:
        return ScaleServiceRequest()

    try:
        return ScaleServiceRequest.model_validate(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError, pydantic.ValidationError):
        raise ClientRequestError("Cannot parse request. Please pass valid JSON.")


def parse_update_request(body: bytes) -> FunctionDeployment:
    try:
        return FunctionDeployment.model_validate_json(body)
    except pydantic.ValidationError as err:
        raise ClientRequestError(f"Cannot parse request: {err.error_count()} errors")


# ----------------------------------------------------------------------
# Function Routes.
# ----------------------------------------------------------------------


@router.get("/functions")
async def get_functions(
    cfg: d_config, k8scfg: d_k8scfg, namespace: str = ""
) -> List[FunctionStatus]:
    try:
        return await fdeploy.sync.list_functions(k8scfg, namespace or cfg.namespace)
    except SyncError as e:
        return Response(status_code=error_code(e))  # type: ignore


@router.put("/functions")
@handle_sync_errors
async def put_function(request: Request, cfg: d_config, k8scfg: d_k8scfg):
    req = parse_update_request(await request.body())
    await fdeploy.sync.update_function(k8scfg, req.namespace or cfg.namespace, req)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/functions/{name}")
@router.get("/functions/{name}/scale")
async def get_function(
    name: str, cfg: d_config, k8scfg: d_k8scfg, namespace: str = ""
) -> FunctionStatus:
    """Return the function summary or an empty 404/500 response."""
    try:
        return await fdeploy.sync.read_function(k8scfg, namespace or cfg.namespace, name)
    except SyncError as e:
        return Response(status_code=error_code(e))  # type: ignore


@router.put("/functions/{name}/scale")
@handle_sync_errors
async def put_function_scale(
    name: str, request: Request, cfg: d_config, k8scfg: d_k8scfg, namespace: str = ""
):
    req = parse_scale_request(await request.body())
    await fdeploy.sync.scale_function(k8scfg, namespace or cfg.namespace, name, req)
    return Response(status_code=status.HTTP_200_OK)
