"""WSGI server construction with panic recovery."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from werkzeug.serving import BaseWSGIServer, WSGIRequestHandler, make_server

READ_TIMEOUT_SECONDS = 10.0

_ERROR_BODY = b"Internal Server Error\n"

WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]


@dataclass(frozen=True)
class ServerConfig:
    """Listen address such as ``:8080`` and a name for logs."""

    addr: str = ""
    name: str = ""


class _RequestHandler(WSGIRequestHandler):
    timeout = READ_TIMEOUT_SECONDS


def recover_middleware(logger: logging.Logger, app: WSGIApp) -> WSGIApp:
    """Turn an exception escaping ``app`` into a logged 500 response."""

    def guarded(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        started = False

        def tracking_start_response(status: str, headers: list, exc_info: Any = None) -> Any:
            nonlocal started
            started = True
            return start_response(status, headers, exc_info)

        try:
            return app(environ, tracking_start_response)
        except Exception as exc:
            logger.error(
                "panic recovered from HTTP handler",
                extra={
                    "panic": str(exc),
                    "method": environ.get("REQUEST_METHOD", ""),
                    "path": environ.get("PATH_INFO", ""),
                },
                exc_info=True,
            )
            start_response(
                "500 Internal Server Error",
                [
                    ("Content-Type", "text/plain; charset=utf-8"),
                    ("X-Content-Type-Options", "nosniff"),
                    ("Content-Length", str(len(_ERROR_BODY))),
                ],
                sys.exc_info() if started else None,
            )
            return [_ERROR_BODY]

    return guarded


def _split_addr(addr: str) -> tuple[str, int]:
    host, separator, port = addr.rpartition(":")
    if not separator:
        host, port = addr, ""
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port) if port else 80


def create_server(cfg: ServerConfig, app: WSGIApp, logger: logging.Logger) -> BaseWSGIServer:
    """A threaded server bound to ``cfg.addr`` serving ``app`` behind recovery."""
    host, port = _split_addr(cfg.addr)
    return make_server(
        host,
        port,
        recover_middleware(logger, app),
        threaded=True,
        request_handler=_RequestHandler,
    )