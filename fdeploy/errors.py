"""Errors that terminate a function request.

Each error carries a human readable message that is returned verbatim to the
caller. See `fdeploy.routers.functions.handle_sync_errors` for the mapping onto
HTTP status codes.
"""


class SyncError(Exception):
    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ClientRequestError(SyncError):
    """Malformed request, invalid resource quantity or unknown secret."""


class NotFoundError(SyncError):
    """The function Deployment does not exist."""


class ConflictError(SyncError):
    """The Deployment changed between our read and our write."""


class OrchestratorError(SyncError):
    """K8s could not be reached or rejected the request."""
