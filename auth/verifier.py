"""
auth/verifier.py -- Provider round trips and payload normalization.

Turns a credential (opaque session token, signed session JWT, or an
email/password pair) into an ExternalProfile by asking the provider, and turns
every way that can go wrong into a VerificationError with a reason tag:

  expired      -- the provider (or the JWT's own exp claim) says it is expired
  invalid      -- unknown/revoked token, malformed JWT, bad credentials,
                  or a response that does not match the expected schema
  transport    -- timeout, connection failure, provider 5xx or rate limit
  unsupported  -- signed JWTs under business mode

Endpoints (all POST unless noted, HTTP basic auth with project id / secret):
  consumer opaque   /v1/sessions/authenticate       {"session_token"}
  business opaque   /v1/b2b/sessions/authenticate   {"session_token"}
  consumer signed   /v1/sessions/authenticate       {"session_jwt"}
                    then GET /v1/users/{user_id}
  consumer password /v1/passwords/authenticate      {"email", "password"}
  business password /v1/b2b/passwords/authenticate  {"organization_id", "email_address", "password"}

A signed token only proves who the session belongs to; it carries no profile
fields. That is why the signed path needs a second call to fetch the user.
The business API has no signed-token authenticate call at all, so a JWT under
business mode is rejected before any network traffic.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests
from jose import JWTError, jwt

from core.config import Settings
from core.errors import VerificationError
from core.models import (
    BusinessProfile,
    ConsumerProfile,
    EmailAddress,
    ExternalIdentity,
    ExternalMembership,
    ExternalProfile,
    PersonName,
    TenancyMode,
    TokenKind,
)

logger = logging.getLogger("stytchbridge.verifier")


class IdentityVerifier:
    """Synchronous client for the provider's session and password endpoints.

    One requests.Session per verifier for connection pooling. The bridge owns a
    single verifier for the application lifetime; close() releases the pool.
    """

    def __init__(
        self,
        settings: Settings,
        http: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = settings.base_url
        self._timeout = settings.timeout
        self._clock = clock
        self._http = http or requests.Session()
        # Known provider host; a long redirect chain is never legitimate here.
        self._http.max_redirects = 3
        self._http.auth = (settings.project_id, settings.secret)

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def verify_token(self, kind: TokenKind, value: str, mode: TenancyMode) -> ExternalProfile:
        """Verify a credential and return the normalized profile.

        Raises VerificationError on every failure path; callers never see a
        requests or JSON exception.
        """
        if kind is TokenKind.OPAQUE_SESSION:
            return self.verify_opaque(value, mode)
        if mode is TenancyMode.BUSINESS:
            raise VerificationError(
                VerificationError.UNSUPPORTED,
                "Signed session tokens are not supported in business mode.",
            )
        claims = self.verify_signed(value)
        user_id = claims.get("user_id")
        if not user_id:
            raise VerificationError(VerificationError.INVALID, "Verified session carries no user_id.")
        return ConsumerProfile(identity=self.fetch_user(user_id))

    def verify_opaque(self, token: str, mode: TenancyMode) -> ExternalProfile:
        if mode is TenancyMode.BUSINESS:
            payload = self._post("/v1/b2b/sessions/authenticate", {"session_token": token})
            return _parse_business(payload)
        payload = self._post("/v1/sessions/authenticate", {"session_token": token})
        return ConsumerProfile(identity=_parse_consumer_user(payload.get("user")))

    def verify_signed(self, token: str) -> dict[str, Any]:
        """Authenticate a consumer session JWT and return the session claims.

        The token's own claims are inspected first (unverified) so that a
        garbage or already-expired token costs no round trip. The signature is
        checked by the provider, never trusted locally.
        """
        try:
            unverified = jwt.get_unverified_claims(token)
        except JWTError as e:
            raise VerificationError(VerificationError.INVALID, f"Malformed session JWT: {e}") from e
        exp = unverified.get("exp")
        if isinstance(exp, (int, float)) and exp <= self._clock():
            raise VerificationError(VerificationError.EXPIRED, "Session JWT has expired.")

        payload = self._post("/v1/sessions/authenticate", {"session_jwt": token})
        session = payload.get("session")
        if not isinstance(session, dict):
            raise VerificationError(VerificationError.INVALID, "Provider response has no session object.")
        return session

    def fetch_user(self, user_id: str) -> ExternalIdentity:
        payload = self._request("GET", f"/v1/users/{user_id}")
        return _parse_consumer_user(payload)

    def authenticate_password(
        self,
        email: str,
        password: str,
        mode: TenancyMode,
        organization_id: str | None = None,
    ) -> ExternalProfile:
        """Check an email/password pair with the provider.

        Business passwords are scoped to an organization, so organization_id is
        mandatory there; leaving it out is an invalid credential, not a crash.
        """
        if mode is TenancyMode.BUSINESS:
            if not organization_id:
                raise VerificationError(
                    VerificationError.INVALID,
                    "Business password authentication requires an organization_id.",
                )
            payload = self._post(
                "/v1/b2b/passwords/authenticate",
                {"organization_id": organization_id, "email_address": email, "password": password},
            )
            return _parse_business(payload)
        payload = self._post("/v1/passwords/authenticate", {"email": email, "password": password})
        return ConsumerProfile(identity=_parse_consumer_user(payload.get("user")))

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", path, json=body)

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            resp = self._http.request(method, url, timeout=self._timeout, **kwargs)
        except requests.Timeout as e:
            raise VerificationError(VerificationError.TRANSPORT, f"Provider timed out: {e}") from e
        except requests.RequestException as e:
            raise VerificationError(VerificationError.TRANSPORT, f"Provider unreachable: {e}") from e

        if resp.status_code >= 500 or resp.status_code == 429:
            raise VerificationError(VerificationError.TRANSPORT, f"Provider returned HTTP {resp.status_code}.")

        try:
            payload = resp.json()
        except ValueError as e:
            raise VerificationError(VerificationError.INVALID, "Provider returned a non-JSON body.") from e
        if not isinstance(payload, dict):
            raise VerificationError(VerificationError.INVALID, "Provider returned an unexpected JSON shape.")

        if resp.status_code >= 400:
            error_type = str(payload.get("error_type") or "")
            reason = VerificationError.EXPIRED if "expired" in error_type else VerificationError.INVALID
            raise VerificationError(reason, f"Provider rejected credential ({resp.status_code} {error_type}).")
        return payload


# ---------------------------------------------------------------------------
# Payload normalization
# ---------------------------------------------------------------------------


def _parse_name(raw: Any) -> str | PersonName | None:
    if isinstance(raw, dict):
        return PersonName(
            first_name=_opt_str(raw.get("first_name")) or "",
            last_name=_opt_str(raw.get("last_name")) or "",
        )
    if isinstance(raw, str):
        return raw
    return None


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _parse_consumer_user(user: Any) -> ExternalIdentity:
    """Normalize a consumer user object: user_id, emails[{email, verified}], name."""
    if not isinstance(user, dict) or not user.get("user_id"):
        raise VerificationError(VerificationError.INVALID, "Provider response has no user object.")
    raw_emails = user.get("emails")
    if raw_emails is None:
        raw_emails = []
    if not isinstance(raw_emails, list):
        raise VerificationError(VerificationError.INVALID, "Provider user has a malformed emails list.")
    emails = tuple(
        EmailAddress(address=entry["email"], verified=entry.get("verified") is True)
        for entry in raw_emails
        if isinstance(entry, dict) and _opt_str(entry.get("email"))
    )
    return ExternalIdentity(
        external_user_id=str(user["user_id"]),
        emails=emails,
        display_name=_parse_name(user.get("name")),
    )


def _parse_business(payload: dict[str, Any]) -> BusinessProfile:
    """Normalize a business response: member + organization objects.

    The member is the identity (member_id is its stable id; the name is always
    a plain string) and, together with the organization, forms the membership.
    """
    member = payload.get("member")
    if not isinstance(member, dict) or not member.get("member_id"):
        raise VerificationError(VerificationError.INVALID, "Provider response has no member object.")
    organization = payload.get("organization") if isinstance(payload.get("organization"), dict) else {}

    email = member.get("email_address")
    if email is not None and not isinstance(email, str):
        raise VerificationError(VerificationError.INVALID, "Provider member has a malformed email_address.")
    email = email or None
    identity = ExternalIdentity(
        external_user_id=str(member["member_id"]),
        emails=(EmailAddress(address=email, verified=member.get("email_address_verified") is True),)
        if email
        else (),
        display_name=_opt_str(member.get("name")),
    )

    organization_id = member.get("organization_id") or organization.get("organization_id")
    membership = None
    if organization_id:
        if not isinstance(organization_id, str):
            raise VerificationError(VerificationError.INVALID, "Provider member has a malformed organization_id.")
        membership = ExternalMembership(
            member_id=str(member["member_id"]),
            organization_id=organization_id,
            member_email=email,
            member_status=_opt_str(member.get("status")),
            organization_name=_opt_str(organization.get("organization_name")),
            organization_slug=_opt_str(organization.get("organization_slug")),
        )
    return BusinessProfile(identity=identity, membership=membership)
