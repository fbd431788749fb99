"""
auth/contracts.py -- Capability interfaces for local user/organization adapters.

The bridge never reaches into an application's models by column name. Instead
the reconciler talks to two kinds of abstraction:

  Entity capabilities  -- IdentityLinkable, OrganizationMember,
                          RememberTokenHolder, OrganizationLinkable. An entity
                          type implements the get/set pairs it supports.
  Repositories         -- UserRepository, OrganizationRepository. Lookup,
                          create and update against whatever storage the
                          application uses. auth/store.py ships SQLAlchemy Core
                          implementations.

Both are abc.ABC classes, so an adapter that forgets a method cannot be
instantiated at all. load_store() turns that TypeError into a
ConfigurationError at startup instead of a per-request failure.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import importlib
import inspect
from abc import ABC, abstractmethod
from typing import Any

from core.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Entity capabilities
# ---------------------------------------------------------------------------


class IdentityLinkable(ABC):
    """A local user record that can be linked to a provider identity."""

    @abstractmethod
    def get_external_id(self) -> str | None: ...

    @abstractmethod
    def set_external_id(self, external_id: str) -> None: ...

    @abstractmethod
    def get_email(self) -> str | None: ...

    @abstractmethod
    def set_email(self, email: str) -> None: ...

    @abstractmethod
    def get_name(self) -> str | None: ...

    @abstractmethod
    def set_name(self, name: str) -> None: ...


class OrganizationMember(ABC):
    """A local user record that can point at an organization by external id."""

    @abstractmethod
    def get_organization_ref(self) -> str | None: ...

    @abstractmethod
    def set_organization_ref(self, external_organization_id: str) -> None: ...


class RememberTokenHolder(ABC):
    """A local user record that can carry a "remember me" token."""

    @abstractmethod
    def get_remember_token(self) -> str | None: ...

    @abstractmethod
    def set_remember_token(self, token: str) -> None: ...


class OrganizationLinkable(ABC):
    """A local organization record keyed by the provider's organization id."""

    @abstractmethod
    def get_external_organization_id(self) -> str | None: ...

    @abstractmethod
    def set_external_organization_id(self, external_organization_id: str) -> None: ...

    @abstractmethod
    def get_name(self) -> str | None: ...

    @abstractmethod
    def set_name(self, name: str) -> None: ...


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserRepository(ABC):
    """Finder and persistence capabilities every user adapter must provide.

    create() and update() raise core.errors.DuplicateRecordError when a unique
    constraint rejects the write, and core.errors.StorageError for any other
    storage failure. Finders return None when nothing matches.
    """

    @abstractmethod
    def find_by_id(self, user_id: Any) -> IdentityLinkable | None: ...

    @abstractmethod
    def find_by_external_id(self, external_user_id: str) -> IdentityLinkable | None: ...

    @abstractmethod
    def find_by_email(self, email: str) -> IdentityLinkable | None: ...

    @abstractmethod
    def create(self, user: IdentityLinkable) -> IdentityLinkable: ...

    @abstractmethod
    def update(self, user: IdentityLinkable) -> None: ...

    @abstractmethod
    def new_user(self) -> IdentityLinkable:
        """Return an empty, unsaved entity of the type this repository stores."""

    @abstractmethod
    def get_local_id(self, user: IdentityLinkable) -> Any:
        """Return the storage-assigned identifier of a persisted user."""


class OrganizationRepository(ABC):
    @abstractmethod
    def find_by_external_id(self, external_organization_id: str) -> OrganizationLinkable | None: ...

    @abstractmethod
    def create(self, organization: OrganizationLinkable) -> OrganizationLinkable: ...

    @abstractmethod
    def update(self, organization: OrganizationLinkable) -> None: ...

    @abstractmethod
    def new_organization(self) -> OrganizationLinkable: ...


# ---------------------------------------------------------------------------
# Locator resolution
# ---------------------------------------------------------------------------


def load_store(locator: str, interface: type, *args: Any) -> Any:
    """Resolve a "module:Class" locator and instantiate it with args.

    Raises ConfigurationError when the module or class cannot be found, when
    the class does not derive from interface, or when it leaves any of the
    interface's abstract methods unimplemented.
    """
    module_name, sep, class_name = locator.partition(":")
    if not sep or not module_name or not class_name:
        raise ConfigurationError(f"Store locator {locator!r} must look like 'package.module:ClassName'.")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Store module {module_name!r} could not be imported: {e}") from e
    cls = getattr(module, class_name, None)
    if not inspect.isclass(cls):
        raise ConfigurationError(f"Store class {class_name!r} not found in {module_name!r}.")
    if not issubclass(cls, interface):
        raise ConfigurationError(f"{locator} must implement {interface.__name__}.")
    if inspect.isabstract(cls):
        missing = ", ".join(sorted(cls.__abstractmethods__))
        raise ConfigurationError(f"{locator} is missing required capabilities: {missing}.")
    return cls(*args)
