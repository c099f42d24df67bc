"""
Error kinds and the client-facing error shape.

Every failure the service knows about maps onto one ErrorKind; callers
branch on the kind rather than on exception attributes.
"""
import enum
import errno
from datetime import datetime, timezone
from http import HTTPStatus

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)


class ErrorKind(enum.Enum):
    PORT_IN_USE = "port_in_use"
    PERMISSION_DENIED = "permission_denied"
    ROUTE_NOT_FOUND = "route_not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    BODY_TOO_LARGE = "body_too_large"
    HANDLER_FAILURE = "handler_failure"
    REQUEST_TIMEOUT = "request_timeout"
    UNKNOWN = "unknown"


_STATUS_KINDS = {
    404: ErrorKind.ROUTE_NOT_FOUND,
    405: ErrorKind.METHOD_NOT_ALLOWED,
    413: ErrorKind.BODY_TOO_LARGE,
    500: ErrorKind.HANDLER_FAILURE,
    504: ErrorKind.REQUEST_TIMEOUT,
}


class ConfigError(Exception):
    """Raised when the environment holds an unusable setting."""


class StartupError(Exception):
    """Raised when the listener cannot bind its socket."""

    def __init__(self, kind: ErrorKind, host: str, port: int, cause: OSError):
        super().__init__(f"cannot bind {host}:{port}: {cause.strerror or cause}")
        self.kind = kind
        self.host = host
        self.port = port
        self.cause = cause

    @property
    def code(self) -> str:
        """Symbolic errno name, e.g. EADDRINUSE."""
        if self.cause.errno is None:
            return "UNKNOWN"
        return errno.errorcode.get(self.cause.errno, str(self.cause.errno))


def classify_bind_error(error: OSError) -> ErrorKind:
    if error.errno == errno.EADDRINUSE:
        return ErrorKind.PORT_IN_USE
    if error.errno in (errno.EACCES, errno.EPERM):
        return ErrorKind.PERMISSION_DENIED
    return ErrorKind.UNKNOWN


def kind_for_status(status: int) -> ErrorKind:
    return _STATUS_KINDS.get(status, ErrorKind.UNKNOWN)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def error_payload(status: int, path: str) -> dict:
    """Build the generic error body sent to clients.

    Only the reason phrase, status, time and path are exposed; exception
    messages and stack traces stay in the server log.
    """
    return {
        "error": HTTPStatus(status).phrase,
        "status": status,
        "timestamp": utc_timestamp(),
        "path": path,
    }


def error_response(status: int, path: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(error_payload(status, path), status_code=status, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing errors (404, 405, ...) with the generic error body."""
    logger.debug(
        "request not routed",
        kind=kind_for_status(exc.status_code).value,
        method=request.method,
        path=request.url.path,
        status=exc.status_code,
    )
    return error_response(exc.status_code, request.url.path, headers=getattr(exc, "headers", None))
