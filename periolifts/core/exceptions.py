import enum
import logging
from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    SERVER = "server"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class AppError(Exception):
    """Base for every error the record store and repositories report.

    Repositories never raise these to their callers; they travel inside
    ``Err`` results. The record store client raises them so that retry and
    caching wrappers can react to the kind.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = False
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AppError) and other.kind == self.kind and other.message == self.message

    def __hash__(self) -> int:
        return hash((self.kind, self.message))


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION
    default_message = "Invalid request data"


class AuthenticationError(AppError):
    kind = ErrorKind.AUTHENTICATION
    default_message = "Authentication required"


class PermissionDeniedError(AppError):
    kind = ErrorKind.PERMISSION
    default_message = "Permission denied"


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"


class NetworkError(AppError):
    kind = ErrorKind.NETWORK
    retryable = True
    default_message = "Network error"


class ServerError(AppError):
    kind = ErrorKind.SERVER
    retryable = True
    default_message = "Server error"


class FetchCancelledError(AppError):
    kind = ErrorKind.CANCELLED
    default_message = "Request was cancelled"


class UnknownError(AppError):
    kind = ErrorKind.UNKNOWN


class InvalidDurationError(ValueError):
    """Raised when a rest timer is started with a non-positive duration."""


class MalformedRecordError(ValueError):
    """Raised when aggregation receives a record the repository should have rejected."""


_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTHENTICATION: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.PERMISSION: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.NETWORK: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.SERVER: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.CANCELLED: 499,
    ErrorKind.UNKNOWN: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_code_for(error: AppError) -> int:
    return _STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors()), "message": "Validation Error", "request_id": request_id},
    )


async def app_error_exception_handler(request: Request, exc: AppError):
    request_id = getattr(request.state, "request_id", None)
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning("Request %s failed with %s: %s", request_id, exc.kind.value, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": jsonable_encoder(exc.details),
            "message": exc.message,
            "kind": exc.kind.value,
            "retryable": exc.retryable,
            "request_id": request_id,
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None)
    logger.exception("Unhandled error on %s %s (request %s)", request.method, request.url.path, request_id)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": None,
            "message": UnknownError.default_message,
            "kind": ErrorKind.UNKNOWN.value,
            "retryable": False,
            "request_id": request_id,
        },
    )
