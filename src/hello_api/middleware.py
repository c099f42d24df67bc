"""
Request pipeline stages.

The app factory registers these in a fixed order, outermost first:
ErrorHandlerMiddleware, RequestTimeoutMiddleware, RequestLoggerMiddleware.
Routing and the hello handler run inside the innermost stage.
"""
import json
import traceback
from urllib.parse import parse_qsl

import anyio
import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from hello_api.errors import ErrorKind, error_response, utc_timestamp

logger = structlog.get_logger(__name__)

EMPTY_BODY = "{}"
UNSERIALIZABLE_BODY = "[Object - Unable to serialize]"


def request_target(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def serialize_body(body: bytes, content_type: str, path: str) -> str:
    """Render a request body for the request log.

    Never raises: a body that cannot be serialized is replaced with a
    placeholder and the failure is logged.
    """
    if not body:
        return EMPTY_BODY
    media_type = content_type.split(";", 1)[0].strip().lower()
    try:
        if media_type == "application/json" or media_type.endswith("+json"):
            return json.dumps(json.loads(body), separators=(",", ":"))
        if media_type == "application/x-www-form-urlencoded":
            return json.dumps(dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True)))
    except (ValueError, RecursionError) as exc:
        logger.error("request body serialization failed", error=str(exc), path=path)
        return UNSERIALIZABLE_BODY
    return body.decode("utf-8", errors="replace")


class BodyTooLarge(Exception):
    pass


async def read_limited_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing more than limit bytes.

    A declared Content-Length is checked before anything is read; a body
    without one is counted while it streams in.
    """
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit():
        if int(declared) > limit:
            raise BodyTooLarge()
        return await request.body()

    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise BodyTooLarge()
        chunks.append(chunk)
    return b"".join(chunks)


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """Logs method, URL and body of every request before it is routed.

    Bodies over max_body_size are answered with 413 without being routed.
    """

    def __init__(self, app: ASGIApp, max_body_size: int):
        super().__init__(app)
        self.max_body_size = max_body_size

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request_target(request)
        try:
            body = await read_limited_body(request, self.max_body_size)
        except BodyTooLarge:
            logger.warning(
                "request body too large",
                kind=ErrorKind.BODY_TOO_LARGE.value,
                method=request.method,
                path=path,
                limit=self.max_body_size,
            )
            return error_response(413, request.url.path)
        logger.info(
            "http request",
            method=request.method,
            path=path,
            body=serialize_body(body, request.headers.get("content-type", ""), path),
        )
        return await call_next(request)


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Answers 504 when the inner stages exceed the per-request deadline."""

    def __init__(self, app: ASGIApp, timeout: float):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        with anyio.move_on_after(self.timeout):
            return await call_next(request)
        logger.warning(
            "request timed out",
            kind=ErrorKind.REQUEST_TIMEOUT.value,
            method=request.method,
            path=request.url.path,
            timeout=self.timeout,
        )
        return error_response(504, request.url.path)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Terminal stage: converts any exception into a generic 500 response.

    Full details go to the server log only. The client sees the generic
    error body, and no further handlers run for the request.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            client = request.client
            logger.error(
                "unhandled application error",
                kind=ErrorKind.HANDLER_FAILURE.value,
                error_name=type(exc).__name__,
                error_message=str(exc),
                error_stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                request_url=request_target(request),
                request_method=request.method,
                request_headers=dict(request.headers),
                request_query=dict(request.query_params),
                user_agent=request.headers.get("user-agent"),
                client_ip=client.host if client else None,
                timestamp=utc_timestamp(),
            )
            return error_response(500, request.url.path)
