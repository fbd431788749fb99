"""
api/routes/v1/auth.py -- Session endpoints backed by the session bridge.

Routes:
  POST /api/v1/auth/login    -- provider password check; starts a session
  POST /api/v1/auth/logout   -- clears the cached session and provider cookies
  GET  /api/v1/auth/me       -- current user (requires auth)
  GET  /api/v1/auth/session  -- cached session snapshot, or authenticated=false

Security:
  [H2] POST /login is rate-limited per IP (STYTCH_LOGIN_RATE_LIMIT).
  [M5] Cache-Control: no-store on login, session and me responses.
  Login failures return one generic error whatever the provider's reason,
  so the endpoint does not reveal which emails exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LogoutResponse, MeResponse, SessionResponse
from auth.contracts import IdentityLinkable, OrganizationMember
from auth.dependencies import get_bridge, get_current_user
from auth.guard import SessionBridge
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:   public -- clearing a session needs no prior auth
# - GET  /api/v1/auth/session:  public -- reports authenticated=false when anonymous
# - GET  /api/v1/auth/me:       requires auth (get_current_user)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _me(bridge: SessionBridge, user: IdentityLinkable) -> MeResponse:
    return MeResponse(
        id=bridge.id_of(user),
        external_user_id=user.get_external_id(),
        email=user.get_email(),
        name=user.get_name(),
        organization_ref=user.get_organization_ref() if isinstance(user, OrganizationMember) else None,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=MeResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Verify email/password with the provider, reconcile, and start a session."""
    bridge = get_bridge(request)
    ok = bridge.attempt(
        request,
        {"email": body.email, "password": body.password, "organization_id": body.organization_id},
        remember=body.remember,
    )
    if not ok:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    user = bridge.resolve(request)
    resp = JSONResponse(status_code=200, content=_me(bridge, user).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=LogoutResponse)
def logout(request: Request) -> JSONResponse:
    """Forget the cached session and drop the provider's session cookies.

    The cookies have to go too: left in place, the next request would simply
    verify them again and log the user straight back in.
    """
    bridge = get_bridge(request)
    bridge.logout(request)
    settings = get_settings()
    resp = JSONResponse(content=LogoutResponse().model_dump())
    resp.delete_cookie(settings.session_cookie_name)
    resp.delete_cookie(settings.jwt_cookie_name)
    return resp


@router.get("/auth/session", response_model=SessionResponse)
def session(request: Request) -> JSONResponse:
    bridge = get_bridge(request)
    authenticated = bridge.check(request)
    body = SessionResponse(
        authenticated=authenticated,
        mode=bridge.mode.value,
        expires_at=bridge.expires_at(request) if authenticated else None,
        session=bridge.session_data(request) if authenticated else None,
    )
    resp = JSONResponse(content=body.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, user: IdentityLinkable = Depends(get_current_user)) -> JSONResponse:
    """Return the locally reconciled user behind this request."""
    resp = JSONResponse(content=_me(get_bridge(request), user).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
