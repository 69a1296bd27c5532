import logging

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Missing, invalid, expired or revoked credentials."""


def http_error(e: Exception, action: str) -> HTTPException:
    """
    Map a service exception to an HTTPException.

    AuthenticationError -> 401, PermissionError -> 403, LookupError -> 404,
    ValueError -> 400, anything else -> 500 (logged).
    """
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, AuthenticationError):
        return HTTPException(status_code=401, detail=str(e), headers={"WWW-Authenticate": "Bearer"})
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail=str(e))
    # KeyError is a LookupError too but always means a bug
    if isinstance(e, LookupError) and not isinstance(e, KeyError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Failed to {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Failed to {action}")
