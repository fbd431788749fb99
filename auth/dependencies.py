"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every helper asks the SessionBridge stored on app.state.bridge; none of them
reads cookies or tokens directly. The bridge middleware (auth/middleware.py)
normally resolves the request before any route runs, so these are cheap
lookups of the bound principal.

try_get_current_user() is the soft variant (returns None when anonymous).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

All three are plain def functions: the bridge does blocking I/O, and FastAPI
runs sync dependencies in its thread pool.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.contracts import IdentityLinkable
from auth.guard import SessionBridge


def get_bridge(request: Request) -> SessionBridge:
    return request.app.state.bridge


def try_get_current_user(request: Request) -> IdentityLinkable | None:
    """Return the authenticated user, or None. Never raises for bad tokens."""
    return get_bridge(request).resolve(request)


def get_current_user(request: Request) -> IdentityLinkable:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
