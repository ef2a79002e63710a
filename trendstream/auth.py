"""Bearer token protection for admin endpoints."""

from __future__ import annotations

import functools
import hmac
from typing import Any, Callable

from werkzeug.wrappers import Response

AUTHORIZATION_HEADER = "Authorization"
BEARER_PREFIX = "Bearer "

_SPACE_CHARS = (
    "\t\n\v\f\r \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)

Handler = Callable[..., Response]


def _plain_error(status: int, message: str) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _unauthorized() -> Response:
    response = _plain_error(401, "Unauthorized")
    response.headers["WWW-Authenticate"] = "Bearer"
    return response


def constant_time_equal(a: str, b: str) -> bool:
    """Compare two strings without leaking where they differ."""
    left, right = a.encode("utf-8"), b.encode("utf-8")
    if len(left) != len(right):
        return False
    return hmac.compare_digest(left, right)


class TokenAuth:
    """Admits requests that carry the configured bearer token."""

    def __init__(self, token: str) -> None:
        self._token = token

    def wrap(self, handler: Handler) -> Handler:
        """Return a handler that checks the token before calling ``handler``."""

        @functools.wraps(handler)
        def guarded(request: Any, *args: Any, **kwargs: Any) -> Response:
            if not self._token.strip(_SPACE_CHARS):
                return _plain_error(500, "admin token is not configured")

            header = request.headers.get(AUTHORIZATION_HEADER, "")
            if not header.startswith(BEARER_PREFIX):
                return _unauthorized()

            presented = header[len(BEARER_PREFIX):].strip(_SPACE_CHARS)
            if not constant_time_equal(presented, self._token):
                return _plain_error(403, "Forbidden")

            return handler(request, *args, **kwargs)

        return guarded