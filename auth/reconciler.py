"""
auth/reconciler.py -- Map a verified provider identity onto local records.

Algorithm (deterministic; repeating identical input writes nothing new):

  1. Find the user by external id.                       -> sync (4)
  2. Else find by primary email; link the external id.    -> sync (4)
  3. Else create a new user from the identity.
  4. Sync email (primary, verified, changed) and name (non-empty, changed);
     persist only if something actually changed.
  5. Business mode with a membership and organization linking enabled:
     find-or-create the organization, refresh its name, point the user at it.

Step 2 links by the primary email the provider reports. Linking never
overwrites an external id that is already set -- a user row belongs to at most
one provider identity for its whole life. An email match on a row linked to a
different identity is an identity_conflict error rather than a takeover.
Links made on an unverified address are logged at WARNING.

Step 4 never moves an email onto a user when another local row already holds
it: the update is rejected by the UNIQUE email column, the old address is
kept, and the user stays authenticated.

Creation race: two requests reconciling the same new identity may both miss in
steps 1-2 and both try to create. The stores enforce UNIQUE external id and
email columns, so the slower writer gets DuplicateRecordError. It then re-runs
the lookups once and continues on the winner's row. A second conflict means
something other than this race is going on and is reported as a storage error.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging

from auth.contracts import (
    IdentityLinkable,
    OrganizationLinkable,
    OrganizationMember,
    OrganizationRepository,
    UserRepository,
)
from core.config import Settings
from core.errors import DuplicateRecordError, ReconciliationError, StorageError
from core.models import (
    BusinessProfile,
    ConsumerProfile,
    ExternalIdentity,
    ExternalMembership,
    ExternalProfile,
    TenancyMode,
    derive_display_name,
)

logger = logging.getLogger("stytchbridge.reconciler")


class IdentityReconciler:
    def __init__(
        self,
        settings: Settings,
        users: UserRepository,
        organizations: OrganizationRepository | None = None,
    ) -> None:
        self._settings = settings
        self._users = users
        self._organizations = organizations

    def reconcile(self, profile: ExternalProfile) -> IdentityLinkable:
        """Return the local user for profile, creating or updating it as needed.

        Raises ReconciliationError for structural failures only. An identity
        without any email is legal and simply yields a user with no email.
        """
        try:
            match profile:
                case BusinessProfile(identity=identity, membership=membership):
                    user = self._reconcile_user(identity)
                    if membership is not None and self._settings.links_organizations(TenancyMode.BUSINESS):
                        self._link_organization(user, membership)
                    return user
                case ConsumerProfile(identity=identity):
                    return self._reconcile_user(identity)
        except StorageError as e:
            raise ReconciliationError(ReconciliationError.STORAGE_UNAVAILABLE, str(e)) from e
        raise ReconciliationError(
            ReconciliationError.MISSING_CAPABILITY,
            f"Unsupported profile type {type(profile).__name__}.",
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def _reconcile_user(self, identity: ExternalIdentity) -> IdentityLinkable:
        user, linked = self._lookup(identity)
        if user is None:
            try:
                return self._create(identity)
            except DuplicateRecordError:
                logger.info(
                    "Concurrent creation for external user %s; re-reading the winning row",
                    identity.external_user_id,
                )
                user, linked = self._lookup(identity)
                if user is None:
                    raise ReconciliationError(
                        ReconciliationError.STORAGE_UNAVAILABLE,
                        f"Repeated unique-constraint conflict creating external user {identity.external_user_id}.",
                    )
        self._sync(user, identity, dirty=linked)
        return user

    def _lookup(self, identity: ExternalIdentity) -> tuple[IdentityLinkable | None, bool]:
        """Steps 1 and 2. Returns (user, linked) where linked means the external
        id was just set in memory and still needs persisting."""
        user = self._users.find_by_external_id(identity.external_user_id)
        if user is not None:
            return _require_linkable(user), False

        primary = identity.primary_email
        if primary is None:
            return None, False
        user = self._users.find_by_email(primary.address)
        if user is None:
            return None, False
        user = _require_linkable(user)
        if user.get_external_id() is not None:
            # The email already belongs to a user linked to another identity.
            raise ReconciliationError(
                ReconciliationError.IDENTITY_CONFLICT,
                f"Email of external user {identity.external_user_id} is linked to a different identity.",
            )
        user.set_external_id(identity.external_user_id)
        if primary.verified:
            logger.info("Linking external user %s to existing local user by email", identity.external_user_id)
        else:
            logger.warning(
                "Linking external user %s to existing local user by UNVERIFIED email %s",
                identity.external_user_id,
                primary.address,
            )
        return user, True

    def _create(self, identity: ExternalIdentity) -> IdentityLinkable:
        user = _require_linkable(self._users.new_user())
        user.set_external_id(identity.external_user_id)
        primary = identity.primary_email
        if primary is not None:
            user.set_email(primary.address)
        name = derive_display_name(identity.display_name)
        if name:
            user.set_name(name)
        created = self._users.create(user)
        logger.info("Created local user for external user %s", identity.external_user_id)
        return created

    def _sync(self, user: IdentityLinkable, identity: ExternalIdentity, dirty: bool = False) -> None:
        changed = dirty
        previous_email = user.get_email()
        email_changed = False
        primary = identity.primary_email
        if primary is not None and primary.verified and previous_email != primary.address:
            user.set_email(primary.address)
            email_changed = True
        name = derive_display_name(identity.display_name)
        if name and user.get_name() != name:
            user.set_name(name)
            changed = True
        if not (changed or email_changed):
            return
        try:
            self._users.update(user)
        except DuplicateRecordError:
            if not email_changed:
                raise
            # Another local row already holds the new address: keep the old one.
            logger.warning(
                "Email %s of external user %s belongs to another local user; keeping %s",
                primary.address,
                identity.external_user_id,
                previous_email,
            )
            user.set_email(previous_email)
            if changed:
                self._users.update(user)

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def _link_organization(self, user: IdentityLinkable, membership: ExternalMembership) -> None:
        if self._organizations is None:
            raise ReconciliationError(
                ReconciliationError.MISSING_CAPABILITY,
                "Organization linking is enabled but no organization store is configured.",
            )
        if not isinstance(user, OrganizationMember):
            raise ReconciliationError(
                ReconciliationError.MISSING_CAPABILITY,
                f"{type(user).__name__} does not implement OrganizationMember.",
            )

        self._ensure_organization(membership)
        if user.get_organization_ref() != membership.organization_id:
            user.set_organization_ref(membership.organization_id)
            self._users.update(user)

    def _ensure_organization(self, membership: ExternalMembership) -> OrganizationLinkable:
        organization = self._organizations.find_by_external_id(membership.organization_id)
        if organization is None:
            organization = _require_org_linkable(self._organizations.new_organization())
            organization.set_external_organization_id(membership.organization_id)
            if membership.organization_name:
                organization.set_name(membership.organization_name)
            try:
                organization = self._organizations.create(organization)
                logger.info("Created local organization for %s", membership.organization_id)
                return organization
            except DuplicateRecordError:
                organization = self._organizations.find_by_external_id(membership.organization_id)
                if organization is None:
                    raise

        organization = _require_org_linkable(organization)
        if membership.organization_name and organization.get_name() != membership.organization_name:
            organization.set_name(membership.organization_name)
            self._organizations.update(organization)
        return organization


def _require_linkable(user: object) -> IdentityLinkable:
    if not isinstance(user, IdentityLinkable):
        raise ReconciliationError(
            ReconciliationError.MISSING_CAPABILITY,
            f"{type(user).__name__} does not implement IdentityLinkable.",
        )
    return user


def _require_org_linkable(organization: object) -> OrganizationLinkable:
    if not isinstance(organization, OrganizationLinkable):
        raise ReconciliationError(
            ReconciliationError.MISSING_CAPABILITY,
            f"{type(organization).__name__} does not implement OrganizationLinkable.",
        )
    return organization
