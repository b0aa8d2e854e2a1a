from fastapi import APIRouter, Request, Response, status

router = APIRouter()


# ----------------------------------------------------------------------
# Probes.
# ----------------------------------------------------------------------


@router.get("/healthz")
def get_healthz() -> Response:
    """Liveness probe. Always returns 200."""
    return Response(status_code=status.HTTP_200_OK)


@router.get("/readyz")
def get_readyz(request: Request) -> Response:
    """Readiness probe: 503 until the lifespan has installed the K8s client."""
    if "k8scfg" not in request.app.extra:
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
