"""
auth/middleware.py -- Resolve the session bridge once per request.

Binds request.state.user before routing so handlers and other
middleware can read it without knowing about the bridge. Resolution is
synchronous (provider HTTP call, SQL queries), so it runs in Starlette's
thread pool instead of blocking the event loop.

Must be registered so that SessionMiddleware wraps it: request.session has to
exist by the time this runs.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from starlette.concurrency import run_in_threadpool


def register_bridge_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def resolve_session(request: Request, call_next):
        bridge = getattr(request.app.state, "bridge", None)
        if bridge is not None:
            await run_in_threadpool(bridge.resolve, request)
        return await call_next(request)
