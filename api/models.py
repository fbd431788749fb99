"""
API request and response models for the session bridge REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
core/models.py, which own the internal representation. Route handlers map
between the two.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    organization_id is required by the provider in business mode and ignored
    in consumer mode.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=256)
    organization_id: Optional[str] = Field(default=None, max_length=128)
    remember: bool = False


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """The locally reconciled user behind the current request."""

    model_config = ConfigDict(frozen=True)

    id: Any
    external_user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    organization_ref: Optional[str] = None


class SessionResponse(BaseModel):
    """Response for GET /api/v1/auth/session.

    session is the cached snapshot exactly as stored; it is None when the
    request is anonymous.
    """

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    mode: str
    expires_at: Optional[float] = None
    session: Optional[dict[str, Any]] = None


class LogoutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "logged_out"


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    mode: str
