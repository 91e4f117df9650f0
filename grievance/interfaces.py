"""Interface definitions for platform capabilities, storage and identity."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Optional

from .models import (
    Capability,
    ComplaintRecord,
    Coordinates,
    Identity,
    PermissionGrant,
    StoredObject,
    UploadBody,
)


class CapabilityProvider(ABC):
    """Platform permission dialogs for one or more device capabilities."""

    @abstractmethod
    async def status(self, capability: Capability) -> PermissionGrant:
        """Report the current grant without prompting."""

    @abstractmethod
    async def request(self, capability: Capability) -> PermissionGrant:
        """Prompt the user for the capability."""

    async def open_settings(self) -> bool:
        """Open the platform permission settings. Returns False if unsupported."""
        return False


class LocationProvider(ABC):
    """Platform geolocation service."""

    async def services_enabled(self) -> bool:
        return True

    @abstractmethod
    async def current_position(self) -> Coordinates:
        """Acquire a live fix. May take arbitrarily long."""

    @abstractmethod
    async def last_known_position(self) -> Optional[Coordinates]:
        """Return the cached fix, if the platform has one."""


class ContentReader(ABC):
    """Reads picked content referenced by a URI into memory."""

    @abstractmethod
    async def read(self, uri: str) -> bytes:
        """Return the full content behind ``uri``."""


class ObjectStore(ABC):
    """Stores attachment payloads at caller-chosen paths."""

    @abstractmethod
    def upload(self, path: str, body: UploadBody, content_type: str) -> StoredObject:
        """Store ``body`` at ``path``. Must refuse to overwrite an existing path."""


class ComplaintStore(ABC):
    """Persists complaint records."""

    @abstractmethod
    def insert(self, record: ComplaintRecord) -> Dict[str, object]:
        """Insert ``record`` and return the stored row, including ``id``.

        Inserting twice for the same ``draft_id`` returns the existing row.
        """


class IdentityProvider(ABC):
    @abstractmethod
    def current_user(self) -> Optional[Identity]:
        """Return the signed-in user, or None."""
