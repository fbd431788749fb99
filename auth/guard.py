"""
auth/guard.py -- Session bridge: resolve the authenticated user for a request.

Pattern: Facade. One object ties the session cache, the provider verifier and
the reconciler together so route code only ever asks "who is this?".

resolve() walks a fixed sequence, stopping at the first step that decides:

  Start        -- a principal already bound to request.state is returned as-is;
                  a request already resolved to anonymous stays anonymous.
  CacheCheck   -- a valid snapshot in request.session whose user still exists
                  locally. A snapshot pointing at a deleted user is a miss.
  TokenExtract -- opaque session cookie, then session JWT cookie or Bearer
                  header. No token means anonymous.
  Verify       -- one provider call, opaque token preferred.
  Reconcile    -- map the verified identity onto local records.
  CacheWrite   -- store a fresh snapshot and bind the user.

The cache is read at most once and the provider is called at most once per
request. Verification and reconciliation failures are logged and resolve to
anonymous; they never reach the route.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable

from sqlalchemy.engine import Engine
from starlette.requests import HTTPConnection

from auth.contracts import (
    IdentityLinkable,
    OrganizationMember,
    OrganizationRepository,
    RememberTokenHolder,
    UserRepository,
    load_store,
)
from auth.credentials import extract_credentials
from auth.models import BusinessSession, ConsumerSession, Session
from auth.reconciler import IdentityReconciler
from auth.verifier import IdentityVerifier
from cache.session import SessionCache
from core.config import Settings
from core.errors import ConfigurationError, ReconciliationError, StorageError, VerificationError
from core.models import (
    BusinessProfile,
    ExternalIdentity,
    ExternalMembership,
    ExternalProfile,
    TenancyMode,
    TokenKind,
    derive_display_name,
)

logger = logging.getLogger("stytchbridge.guard")

# request.state attributes owned by the bridge
_STATE_USER = "user"
_STATE_RESOLVED = "stytch_resolved"
_STATE_FROM_CACHE = "stytch_from_cache"


class SessionBridge:
    def __init__(
        self,
        settings: Settings,
        verifier: IdentityVerifier,
        reconciler: IdentityReconciler,
        users: UserRepository,
        organizations: OrganizationRepository | None = None,
        mode: TenancyMode | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._verifier = verifier
        self._reconciler = reconciler
        self._users = users
        self._organizations = organizations
        self.mode = mode or settings.default_auth_method
        self._clock = clock

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, request: HTTPConnection) -> IdentityLinkable | None:
        """Return the authenticated user for request, or None for anonymous."""
        state = request.state
        bound = getattr(state, _STATE_USER, None)
        if bound is not None:
            return bound
        if getattr(state, _STATE_RESOLVED, False):
            return None

        setattr(state, _STATE_RESOLVED, True)
        user = self._authenticate(request)
        if user is not None:
            setattr(state, _STATE_USER, user)
        return user

    def _authenticate(self, request: HTTPConnection) -> IdentityLinkable | None:
        cache = self._cache(request)
        snapshot = cache.read()
        if snapshot is not None:
            try:
                user = self._users.find_by_id(snapshot.local_user_id)
            except StorageError as e:
                logger.error("User lookup for cached session failed: %s", e)
                return None
            if user is not None:
                setattr(request.state, _STATE_FROM_CACHE, True)
                return user
            logger.info("Cached session references missing user %s; re-verifying", snapshot.local_user_id)

        credentials = extract_credentials(request, self._settings)
        if credentials.is_empty():
            return None

        if credentials.session_token:
            kind, value = TokenKind.OPAQUE_SESSION, credentials.session_token
        else:
            kind, value = TokenKind.SIGNED_JWT, credentials.session_jwt

        try:
            profile = self._verifier.verify_token(kind, value, self.mode)
        except VerificationError as e:
            level = logging.INFO if e.reason == VerificationError.EXPIRED else logging.WARNING
            logger.log(level, "Token verification failed (%s, %s): %s", kind.value, e.reason, e)
            return None

        return self._establish(request, cache, profile)

    def _establish(
        self,
        request: HTTPConnection,
        cache: SessionCache,
        profile: ExternalProfile,
        remember: bool = False,
    ) -> IdentityLinkable | None:
        """Reconcile profile and write the snapshot. None on reconcile or storage failure."""
        try:
            user = self._reconciler.reconcile(profile)
        except ReconciliationError as e:
            logger.error(
                "Reconciliation failed for external user %s (%s): %s",
                profile.identity.external_user_id,
                e.reason,
                e,
            )
            return None

        if remember and not self._remember(user):
            return None

        membership = profile.membership if isinstance(profile, BusinessProfile) else None
        cache.write(self._snapshot(user, profile.identity, membership))
        return user

    # ------------------------------------------------------------------
    # Explicit login / logout
    # ------------------------------------------------------------------

    def login(self, request: HTTPConnection, user: IdentityLinkable, remember: bool = False) -> bool:
        """Authenticate user for this request and the session, without a provider call.

        Returns False, with nothing written, when the remember token cannot be
        stored.
        """
        if remember and not self._remember(user):
            return False
        self._cache(request).write(self._snapshot(user))
        self._bind(request, user)
        return True

    def login_using_id(self, request: HTTPConnection, user_id: Any, remember: bool = False) -> IdentityLinkable | None:
        try:
            user = self._users.find_by_id(user_id)
        except StorageError as e:
            logger.error("User lookup for login of %s failed: %s", user_id, e)
            return None
        if user is None or not self.login(request, user, remember):
            return None
        return user

    def attempt(self, request: HTTPConnection, credentials: dict[str, Any], remember: bool = False) -> bool:
        """Check an email/password pair with the provider and log the user in.

        credentials takes "email" (or "email_address"), "password" and, under
        business mode, "organization_id". Returns False on any failure.
        """
        email = credentials.get("email") or credentials.get("email_address")
        password = credentials.get("password")
        if not email or not password:
            return False

        try:
            profile = self._verifier.authenticate_password(
                email,
                password,
                self.mode,
                organization_id=credentials.get("organization_id"),
            )
        except VerificationError as e:
            logger.info("Password authentication failed (%s): %s", e.reason, e)
            return False

        user = self._establish(request, self._cache(request), profile, remember=remember)
        if user is None:
            return False
        self._bind(request, user)
        setattr(request.state, _STATE_FROM_CACHE, False)
        return True

    def logout(self, request: HTTPConnection) -> None:
        self._cache(request).clear()
        setattr(request.state, _STATE_USER, None)
        setattr(request.state, _STATE_RESOLVED, True)
        setattr(request.state, _STATE_FROM_CACHE, False)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def check(self, request: HTTPConnection) -> bool:
        return self.resolve(request) is not None

    def guest(self, request: HTTPConnection) -> bool:
        return not self.check(request)

    def id(self, request: HTTPConnection) -> Any:
        user = self.resolve(request)
        if user is None:
            return None
        return self.id_of(user)

    def id_of(self, user: IdentityLinkable) -> Any:
        return self._users.get_local_id(user)

    def session_data(self, request: HTTPConnection) -> dict[str, Any] | None:
        """The stored snapshot dict, expired or not."""
        return self._cache(request).raw()

    def has_valid_session(self, request: HTTPConnection) -> bool:
        return self._cache(request).is_valid()

    def expires_at(self, request: HTTPConnection) -> float | None:
        return self._cache(request).expires_at()

    def via_remember(self, request: HTTPConnection) -> bool:
        """True when this request's user came from the session cache rather
        than a fresh provider verification."""
        self.resolve(request)
        return bool(getattr(request.state, _STATE_FROM_CACHE, False))

    def close(self) -> None:
        self._verifier.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cache(self, request: HTTPConnection) -> SessionCache:
        if "session" not in request.scope:
            raise ConfigurationError("SessionMiddleware must be installed before the session bridge.")
        return SessionCache(request.session, ttl=self._settings.session_timeout, clock=self._clock)

    def _bind(self, request: HTTPConnection, user: IdentityLinkable) -> None:
        setattr(request.state, _STATE_USER, user)
        setattr(request.state, _STATE_RESOLVED, True)

    def _remember(self, user: IdentityLinkable) -> bool:
        try:
            self._ensure_remember_token(user)
        except StorageError as e:
            logger.error("Storing remember token for user %s failed: %s", self._users.get_local_id(user), e)
            return False
        return True

    def _ensure_remember_token(self, user: IdentityLinkable) -> None:
        if not isinstance(user, RememberTokenHolder):
            raise ConfigurationError(f"{type(user).__name__} does not implement RememberTokenHolder.")
        if user.get_remember_token():
            return
        user.set_remember_token(secrets.token_hex(30))
        self._users.update(user)

    def _snapshot(
        self,
        user: IdentityLinkable,
        identity: ExternalIdentity | None = None,
        membership: ExternalMembership | None = None,
    ) -> Session:
        """Build the cache entry. Provider values win over stored ones when a
        fresh identity is at hand; login() only has the stored ones."""
        if identity is not None:
            primary = identity.primary_email
            external_user_id = identity.external_user_id
            email = primary.address if primary is not None else user.get_email()
            display_name = derive_display_name(identity.display_name) or user.get_name()
        else:
            external_user_id = user.get_external_id()
            email = user.get_email()
            display_name = user.get_name()

        common = {
            "local_user_id": self._users.get_local_id(user),
            "external_user_id": external_user_id,
            "authenticated_at": int(self._clock()),
            "email": email,
            "display_name": display_name,
        }

        if not self._settings.links_organizations(self.mode):
            return ConsumerSession(**common, tenancy_mode=self.mode)

        if membership is not None:
            return BusinessSession(
                **common,
                member_id=membership.member_id,
                external_organization_id=membership.organization_id,
                organization_name=membership.organization_name,
                organization_slug=membership.organization_slug,
                member_email=membership.member_email,
                member_status=membership.member_status,
            )
        return BusinessSession(**common, **self._stored_organization_fields(user))

    def _stored_organization_fields(self, user: IdentityLinkable) -> dict[str, Any]:
        org_ref = user.get_organization_ref() if isinstance(user, OrganizationMember) else None
        name = None
        if org_ref and self._organizations is not None:
            try:
                organization = self._organizations.find_by_external_id(org_ref)
            except StorageError as e:
                logger.error("Organization lookup for %s failed; caching without its name: %s", org_ref, e)
                organization = None
            if organization is not None:
                name = organization.get_name()
        return {"external_organization_id": org_ref, "organization_name": name}


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_bridge(
    settings: Settings,
    engine: Engine,
    mode: TenancyMode | None = None,
    verifier: IdentityVerifier | None = None,
) -> SessionBridge:
    """Wire stores, verifier and reconciler from settings.

    Raises ConfigurationError when a configured store cannot be loaded or is
    missing a capability. Called once at application startup.
    """
    mode = mode or settings.default_auth_method
    users = load_store(settings.user_store, UserRepository, settings, engine)

    organizations = None
    if settings.links_organizations(mode):
        organizations = load_store(settings.organization_store, OrganizationRepository, settings, engine)
        sample = users.new_user()
        if not isinstance(sample, OrganizationMember):
            raise ConfigurationError(
                f"{type(sample).__name__} must implement OrganizationMember when organization linking is enabled."
            )

    verifier = verifier or IdentityVerifier(settings)
    reconciler = IdentityReconciler(settings, users, organizations)
    logger.info(
        "Session bridge ready (mode=%s, organization_linking=%s)",
        mode.value,
        organizations is not None,
    )
    return SessionBridge(settings, verifier, reconciler, users, organizations, mode=mode)
