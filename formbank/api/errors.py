"""Translate domain exceptions into structured HTTP errors"""

import logging

from fastapi import HTTPException

from formbank.domain.exceptions import (
    AccessDeniedError,
    GatewayFailure,
    GatewayLockout,
    GatewayTimeout,
    NotFoundError,
    StateConflict,
    StorageFailure,
    ValidationError,
)

LOCKOUT_SUGGESTION = (
    "The account is temporarily locked. Please wait for the lock to expire "
    "or verify that the configured PIN matches the account PIN in the wallet service."
)


def http_error_for(exc: Exception, request_id: str) -> HTTPException:
    """Map a workflow failure to the HTTP status and body the client sees"""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail={"error": str(exc)})

    if isinstance(exc, StateConflict):
        return HTTPException(status_code=409, detail={"error": str(exc)})

    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail={"error": str(exc)})

    if isinstance(exc, AccessDeniedError):
        return HTTPException(status_code=403, detail={"error": str(exc)})

    if isinstance(exc, GatewayLockout):
        logging.error(f"Wallet lockout: {exc}", extra={"request_id": request_id})
        return HTTPException(
            status_code=423,
            detail={"error": str(exc), "locked": True, "suggestion": LOCKOUT_SUGGESTION},
        )

    if isinstance(exc, GatewayTimeout):
        logging.error(f"Wallet timeout: {exc}", extra={"request_id": request_id})
        return HTTPException(status_code=504, detail={"error": str(exc), "ambiguous": True})

    if isinstance(exc, GatewayFailure):
        logging.warning(f"Wallet transfer failed: {exc}", extra={"request_id": request_id})
        return HTTPException(status_code=502, detail={"error": str(exc) or "Transfer failed"})

    if isinstance(exc, StorageFailure):
        logging.error(f"Storage failure: {exc}", extra={"request_id": request_id})
        return HTTPException(status_code=500, detail={"error": "Database error"})

    logging.error(f"Unexpected error: {exc}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail={"error": "Internal server error"})
