"""
HTTP listener: binds the TCP socket and serves the app with uvicorn.

Startup and process-level failures are fatal. They are logged and turned
into a non-zero exit code instead of leaving a half-started server running.
"""
import asyncio
import signal
import socket
import sys
import threading

import structlog
import uvicorn
from fastapi import FastAPI

from hello_api.config import Settings
from hello_api.errors import ErrorKind, StartupError, classify_bind_error, utc_timestamp
from hello_api.log import LEVELS

logger = structlog.get_logger(__name__)


class Listener:
    """Owns the listening socket and the uvicorn server for one process."""

    def __init__(self, app: FastAPI, settings: Settings):
        self.app = app
        self.settings = settings
        self.server: uvicorn.Server | None = None
        self.exit_code = 0

    def bind(self) -> socket.socket:
        """Create and bind the listening socket.

        Raises:
            StartupError: The address cannot be bound
        """
        host, port = self.settings.host, self.settings.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as exc:
            sock.close()
            raise StartupError(classify_bind_error(exc), host, port, exc) from exc
        sock.set_inheritable(True)
        return sock

    def build_config(self) -> uvicorn.Config:
        """uvicorn settings for serving the app on the pre-bound socket.

        Forwarded client addresses are honoured only with TRUST_PROXY; the
        access log is off because RequestLoggerMiddleware replaces it.
        """
        return uvicorn.Config(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            loop="asyncio",
            lifespan="on",
            log_config=None,
            log_level=LEVELS[self.settings.log_level],
            access_log=False,
            proxy_headers=self.settings.trust_proxy,
            forwarded_allow_ips="*" if self.settings.trust_proxy else None,
        )

    def run(self) -> int:
        """Serve until shutdown and return the process exit code."""
        try:
            sock = self.bind()
        except StartupError as exc:
            report_startup_failure(exc)
            return 1

        host, port = self.settings.host, self.settings.port
        logger.info("http server listening", host=host, port=port, url=f"http://{host}:{port}")

        self.server = uvicorn.Server(self.build_config())

        # SIGTERM takes the same graceful path as Ctrl+C.
        previous_sigterm = None
        if threading.current_thread() is threading.main_thread():
            previous_sigterm = signal.signal(signal.SIGTERM, signal.default_int_handler)

        interrupted = False
        try:
            asyncio.run(self._serve(sock))
        except KeyboardInterrupt:
            interrupted = True
        finally:
            sock.close()
            if previous_sigterm is not None:
                signal.signal(signal.SIGTERM, previous_sigterm)

        if not self.server.started and not interrupted and self.exit_code == 0:
            logger.error("application terminating: server failed to start", port=port)
            self.exit_code = 1
        logger.info("http server stopped", exit_code=self.exit_code)
        return self.exit_code

    async def _serve(self, sock: socket.socket) -> None:
        asyncio.get_running_loop().set_exception_handler(self._on_loop_exception)
        await self.server.serve(sockets=[sock])

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        """Treat exceptions nobody awaited as fatal and stop serving."""
        exc = context.get("exception")
        logger.error(
            "unhandled exception in event loop, terminating",
            message=context.get("message"),
            exc_info=exc if exc is not None else False,
        )
        self.exit_code = 1
        if self.server is not None:
            self.server.should_exit = True


def report_startup_failure(error: StartupError) -> None:
    """Log a diagnostic, with remediation hints, for a bind failure."""
    if error.kind is ErrorKind.PORT_IN_USE:
        logger.error(
            "server startup failed: port is already in use",
            code=error.code,
            host=error.host,
            port=error.port,
        )
        logger.error(
            "resolution: stop the process holding the port or pick another one",
            find_process=f"lsof -ti:{error.port}",
            other_port="PORT=3001 python -m hello_api",
        )
    elif error.kind is ErrorKind.PERMISSION_DENIED:
        logger.error(
            "server startup failed: permission denied",
            code=error.code,
            host=error.host,
            port=error.port,
        )
        logger.error("resolution: use a port between 1024 and 65535 or run with the required privileges")
    else:
        logger.error(
            "server startup failed",
            code=error.code,
            message=str(error.cause),
            host=error.host,
            port=error.port,
        )
        logger.error("resolution: check HOST and PORT and the system network configuration")
    logger.error("application terminating due to server startup failure", shutdown_at=utc_timestamp())


def log_uncaught_exception(exc_type, exc, tb) -> None:
    """sys.excepthook replacement: log the exception as fatal."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    logger.critical("uncaught exception, terminating", exc_info=(exc_type, exc, tb))
