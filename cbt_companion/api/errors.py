"""
Translation of classified errors into HTTP responses
"""

from typing import Dict

from fastapi import HTTPException, status

from ..models.errors import AuthFlowError, ErrorKind

ERROR_STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CODE_INVALID_OR_EXPIRED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CREDENTIAL_REJECTED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.NETWORK: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.UNKNOWN: status.HTTP_502_BAD_GATEWAY,
}


def to_http_exception(err: AuthFlowError) -> HTTPException:
    """Convert AuthFlowError to HTTPException with a consistent payload"""
    return HTTPException(
        status_code=ERROR_STATUS_CODES.get(err.kind, status.HTTP_400_BAD_REQUEST),
        detail=err.to_dict(),
    )
