"""
auth/credentials.py -- Pull provider tokens off an incoming request.

Two carriers are checked:
  1. Cookies -- the opaque session token and the session JWT, under the cookie
     names from Settings (stytch_session / stytch_session_jwt by default).
  2. Authorization: Bearer <token> header -- accepted as the session JWT when
     the JWT cookie is absent, for API clients that do not keep cookies.

Extraction only reads; it never validates. Choosing which token to verify is
the bridge's job.
"""

from __future__ import annotations

from dataclasses import dataclass

from starlette.requests import HTTPConnection

from core.config import Settings


@dataclass(frozen=True)
class Credentials:
    session_token: str | None = None
    session_jwt: str | None = None

    def is_empty(self) -> bool:
        return not self.session_token and not self.session_jwt


def extract_credentials(request: HTTPConnection, settings: Settings) -> Credentials:
    session_token = request.cookies.get(settings.session_cookie_name) or None
    session_jwt = request.cookies.get(settings.jwt_cookie_name) or None

    if not session_jwt:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            session_jwt = auth_header[7:].strip() or None

    return Credentials(session_token=session_token, session_jwt=session_jwt)
