"""
core/models.py -- Provider-side domain shapes.

Everything here is transient: built by auth/verifier.py from a provider
response, consumed by auth/reconciler.py, never persisted. Frozen dataclasses
so nothing downstream can mutate what the provider said.

The two tenancy models produce different payloads. Rather than branching on a
mode string wherever a payload is read, the verifier wraps its result in one of
two profile types and the reconciler matches on the type.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TenancyMode(str, Enum):
    CONSUMER = "consumer"  # provider calls this B2C
    BUSINESS = "business"  # provider calls this B2B


class TokenKind(str, Enum):
    OPAQUE_SESSION = "opaque_session"
    SIGNED_JWT = "signed_jwt"


# ---------------------------------------------------------------------------
# Identity payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmailAddress:
    address: str
    verified: bool = False


@dataclass(frozen=True)
class PersonName:
    first_name: str = ""
    last_name: str = ""

    def full(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class ExternalIdentity:
    """A verified provider identity.

    display_name is a PersonName for consumer users, a plain string for
    business members, and None when the provider sent no name at all.
    """

    external_user_id: str
    emails: tuple[EmailAddress, ...] = ()
    display_name: Union[str, PersonName, None] = None

    @property
    def primary_email(self) -> Optional[EmailAddress]:
        return self.emails[0] if self.emails else None


@dataclass(frozen=True)
class ExternalMembership:
    member_id: str
    organization_id: str
    member_email: Optional[str] = None
    member_status: Optional[str] = None
    organization_name: Optional[str] = None
    organization_slug: Optional[str] = None


# ---------------------------------------------------------------------------
# Tagged profile union
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConsumerProfile:
    identity: ExternalIdentity

    mode = TenancyMode.CONSUMER


@dataclass(frozen=True)
class BusinessProfile:
    identity: ExternalIdentity
    membership: Optional[ExternalMembership] = None

    mode = TenancyMode.BUSINESS


ExternalProfile = Union[ConsumerProfile, BusinessProfile]


def derive_display_name(display_name: Union[str, PersonName, None]) -> str:
    """Collapse a provider name into the single string stored locally.

    Structured names become "first last" (trimmed); strings are used verbatim;
    a missing name is the empty string, which callers treat as "no name".
    """
    if display_name is None:
        return ""
    if isinstance(display_name, PersonName):
        return display_name.full()
    return display_name
