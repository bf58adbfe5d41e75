"""Relay of non-control HTTP requests to the local gateway.

Method, path, query, headers and body go through unchanged; the backend's
status, headers and body come back unchanged and streamed (event-stream
responses are never buffered).  Hop-by-hop headers are per-connection and
are not relayed.
"""

from __future__ import annotations

import httpx
from fastapi import Request, Response, status
from loguru import logger
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from clawdaunt.host.proxy.guard import error_response

HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})


def _relayable(name: bytes) -> bool:
    return name.decode("latin-1").lower() not in HOP_BY_HOP


async def forward_request(request: Request, client: httpx.AsyncClient, port: int) -> Response:
    """Forward *request* to ``127.0.0.1:port``; 502 ``Backend unavailable`` if it cannot be reached."""
    url = httpx.URL(
        scheme="http",
        host="127.0.0.1",
        port=port,
        path=request.url.path,
        query=request.url.query.encode("latin-1"),
    )
    headers = [(k, v) for k, v in request.headers.raw if _relayable(k) and k.lower() != b"content-length"]
    body = await request.body()
    upstream_request = client.build_request(request.method, url, headers=headers, content=body or None)

    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.HTTPError as exc:
        logger.warning("Forward {} {} failed: {}", request.method, request.url.path, exc)
        return error_response(status.HTTP_502_BAD_GATEWAY, "Backend unavailable")

    response = StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    # Assigned raw so repeated headers (Set-Cookie) survive.
    response.raw_headers = [(k.lower(), v) for k, v in upstream.headers.raw if _relayable(k)]
    return response
