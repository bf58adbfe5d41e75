"""CORS and bearer authentication shared by the proxy and the placeholder app.

Precedence: ``OPTIONS`` preflight is answered before authentication (browsers
never send credentials on preflight); every other request must carry
``Authorization: Bearer <shared secret>`` or gets a 401 before any route
logic runs.  Every response -- including 401s -- carries permissive CORS
headers.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

DEFAULT_ALLOW_HEADERS = "Authorization, Content-Type"
PROXY_ALLOW_HEADERS = "Authorization, Content-Type, x-openclaw-session-key"


def is_authorized(header: str | None, secret: str) -> bool:
    """Constant-time comparison of an ``Authorization`` header against the secret."""
    if not header or not secret:
        return False
    return secrets.compare_digest(header.encode(), f"Bearer {secret}".encode())


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def install_guard(app: FastAPI, get_secret: Callable[[], str], *, allow_headers: str = DEFAULT_ALLOW_HEADERS) -> None:
    """Install the CORS + auth middleware and ``{"error": ...}`` exception handlers on *app*."""
    cors_headers = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Headers": allow_headers,
    }

    @app.middleware("http")
    async def guard(request: Request, call_next: Callable) -> Response:
        if request.method == "OPTIONS":
            response: Response = Response(status_code=status.HTTP_204_NO_CONTENT)
        elif not is_authorized(request.headers.get("authorization"), get_secret()):
            response = error_response(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
        else:
            response = await call_next(request)
        response.headers.update(cors_headers)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = error_response(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, _exc: RequestValidationError) -> JSONResponse:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request")
