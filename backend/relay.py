"""CORS relay for the provider API.

Stateless forwarder: ``{RELAY_PREFIX}/<path>?<query>`` is sent to
``PROVIDER_BASE_URL/<path>?<query>`` with the caller's headers, and the
response comes back with permissive CORS headers so a browser page can call
the provider. Preflight ``OPTIONS`` is answered locally with 204.

Run with ``uvicorn backend.relay:app --port 8787``.
"""

import logging
from typing import AsyncIterator, Dict

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from config.settings import settings

logger = logging.getLogger(__name__)

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": (
        "Content-Type, Authorization, X-ModelScope-Async-Mode, X-ModelScope-Task-Type"
    ),
    "Access-Control-Max-Age": "86400",
}

# Not forwarded in either direction; recomputed by the HTTP stack
_HOP_BY_HOP = {
    "host",
    "content-length",
    "connection",
    "keep-alive",
    "transfer-encoding",
    "content-encoding",
}

app = FastAPI(title="Knit Design Studio relay")


async def get_upstream_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT) as client:
        yield client


def build_target_url(path: str, query: str, base: str = settings.PROVIDER_BASE_URL) -> str:
    target = f"{base.rstrip('/')}/{path.lstrip('/')}"
    if query:
        target = f"{target}?{query}"
    return target


@app.api_route(
    settings.RELAY_PREFIX + "/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
)
async def relay(path: str, request: Request, client: httpx.AsyncClient = Depends(get_upstream_client)):
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=CORS_HEADERS)

    target = build_target_url(path, request.url.query)
    headers = {k: v for k, v in request.headers.items() if k.lower() not in _HOP_BY_HOP}
    body = await request.body()

    try:
        upstream = await client.request(request.method, target, headers=headers, content=body)
    except httpx.HTTPError as e:
        logger.error("[Relay] %s %s failed: %r", request.method, target, e)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch from ModelScope API", "details": str(e)},
            headers={"Access-Control-Allow-Origin": "*"},
        )

    response_headers = {
        k: v for k, v in upstream.headers.items() if k.lower() not in _HOP_BY_HOP
    }
    response_headers.update(CORS_HEADERS)
    return Response(content=upstream.content, status_code=upstream.status_code, headers=response_headers)
