from fastapi import HTTPException, status

from contentops.errors import (
    ContentOpsError,
    InsufficientCredits,
    InvalidRequest,
    NotFound,
    NotReady,
    PublishFailed,
    ReconciliationRefused,
    StateConflict,
)

_STATUS_BY_ERROR = (
    (InsufficientCredits, status.HTTP_402_PAYMENT_REQUIRED),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (NotReady, status.HTTP_409_CONFLICT),
    (ReconciliationRefused, status.HTTP_409_CONFLICT),
    (StateConflict, status.HTTP_409_CONFLICT),
    (PublishFailed, status.HTTP_502_BAD_GATEWAY),
    (InvalidRequest, status.HTTP_400_BAD_REQUEST),
)


def to_http_error(error: ContentOpsError) -> HTTPException:
    """Translate a domain error into the HTTPException a route raises."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(error, InsufficientCredits):
        detail = {
            "message": str(error),
            "required": error.required,
            "available": error.available,
        }
    else:
        detail = str(error)

    return HTTPException(status_code=status_code, detail=detail)
