"""
auth/models.py -- Local entities and the cached session snapshot.

Pattern: Data class. User and Organization are the persistent records the
reconciler maps provider identities onto; the get/set methods are the
capability interfaces from auth/contracts.py and carry no logic beyond
attribute access. Stores and the reconciler do the work.

ConsumerSession / BusinessSession are the two shapes of the cached
authentication snapshot. Business-only fields live on BusinessSession alone,
so "business fields present iff business mode with organization linking" is a
property of which class gets built, not of which keys happen to be set.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from auth.contracts import IdentityLinkable, OrganizationLinkable, OrganizationMember, RememberTokenHolder
from core.models import TenancyMode


@dataclass
class User(IdentityLinkable, OrganizationMember, RememberTokenHolder):
    """A local application user.

    external_user_id is None until the first successful verification links the
    record to a provider identity. Once set, reconciliation never changes it.

    organization_ref is the provider's organization id (not a local foreign
    key) -- a denormalized pointer at Organization.external_organization_id.
    """

    id: int | None = None
    external_user_id: str | None = None
    email: str | None = None
    name: str | None = None
    organization_ref: str | None = None
    remember_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def get_external_id(self) -> str | None:
        return self.external_user_id

    def set_external_id(self, external_id: str) -> None:
        self.external_user_id = external_id

    def get_email(self) -> str | None:
        return self.email

    def set_email(self, email: str) -> None:
        self.email = email

    def get_name(self) -> str | None:
        return self.name

    def set_name(self, name: str) -> None:
        self.name = name

    def get_organization_ref(self) -> str | None:
        return self.organization_ref

    def set_organization_ref(self, external_organization_id: str) -> None:
        self.organization_ref = external_organization_id

    def get_remember_token(self) -> str | None:
        return self.remember_token

    def set_remember_token(self, token: str) -> None:
        self.remember_token = token


@dataclass
class Organization(OrganizationLinkable):
    """A local organization, created lazily on first business-member login."""

    id: int | None = None
    external_organization_id: str | None = None
    name: str | None = None
    created_at: str | None = None

    def get_external_organization_id(self) -> str | None:
        return self.external_organization_id

    def set_external_organization_id(self, external_organization_id: str) -> None:
        self.external_organization_id = external_organization_id

    def get_name(self) -> str | None:
        return self.name

    def set_name(self, name: str) -> None:
        self.name = name


# ---------------------------------------------------------------------------
# Session snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConsumerSession:
    """Snapshot of a user at authentication time.

    tenancy_mode records the mode it was written under: a business-mode bridge
    with organization linking disabled still writes this shape.
    external_user_id is None when the session came from login() for a user
    that has never been linked to a provider identity.
    """

    local_user_id: int | str
    external_user_id: str | None
    authenticated_at: int
    email: str | None = None
    display_name: str | None = None
    tenancy_mode: TenancyMode = TenancyMode.CONSUMER


@dataclass(frozen=True)
class BusinessSession:
    """Snapshot of an organization member at authentication time."""

    local_user_id: int | str
    external_user_id: str | None
    authenticated_at: int
    email: str | None = None
    display_name: str | None = None
    member_id: str | None = None
    external_organization_id: str | None = None
    organization_name: str | None = None
    organization_slug: str | None = None
    member_email: str | None = None
    member_status: str | None = None

    tenancy_mode = TenancyMode.BUSINESS


Session = Union[ConsumerSession, BusinessSession]
