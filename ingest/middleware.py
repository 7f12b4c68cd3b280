# ingest/middleware.py
"""
Request middleware: CORS shim, request timer and body-size limit.

Registered by ``ingest.app.create_app`` so that, outermost first, a request
passes CORS -> timer -> body limit -> router.
"""

import time
from typing import List

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ingest.monitoring import logger

CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type"


class PayloadTooLarge(HTTPException):
    def __init__(self, limit: int):
        super().__init__(status_code=413, detail=f"Request body exceeds {limit} bytes")


class BodySizeLimitMiddleware:
    """Reject bodies over ``max_body_bytes`` before the request is dispatched.

    A declared ``Content-Length`` over the limit is answered with 413 straight
    away. Bodies without one (chunked) are buffered here up to the limit and
    replayed to the app, so an oversized stream is also rejected before any
    handler runs.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int):
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def reject(self, scope: Scope, receive: Receive, send: Send, size: int) -> None:
        logger.warning(
            "Rejected oversized request body",
            extra={"path": scope.get("path"), "content_length": size},
        )
        exc = PayloadTooLarge(self.max_body_bytes)
        response = JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
        await response(scope, receive, send)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = Headers(scope=scope).get("content-length")
        if declared is not None and declared.isdigit():
            if int(declared) > self.max_body_bytes:
                await self.reject(scope, receive, send, int(declared))
                return
            await self.app(scope, receive, send)
            return

        buffered: List[Message] = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_body_bytes:
                await self.reject(scope, receive, send, received)
                return
            more_body = message.get("more_body", False)

        async def replay_receive() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay_receive, send)


async def cors_middleware(request: Request, call_next):
    settings = request.app.state.settings
    if request.method == "OPTIONS":
        response = Response(status_code=200)
    else:
        response = await call_next(request)
    if settings.cors_enabled:
        response.headers["Access-Control-Allow-Origin"] = settings.cors_allow_origin
        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
    return response


def route_label(request: Request) -> str:
    """Matched route pattern, or the literal path when nothing matched."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


async def metrics_middleware(request: Request, call_next):
    metrics = request.app.state.metrics
    if metrics is None:
        return await call_next(request)

    start = time.perf_counter()
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        logger.exception("Unhandled exception in request", extra={"path": request.url.path})
        raise
    finally:
        metrics.observe_request(start, method, route_label(request), status)
