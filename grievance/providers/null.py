"""Providers standing in for capabilities the platform does not offer."""

from __future__ import annotations

from typing import Optional

from ..interfaces import CapabilityProvider, ContentReader, LocationProvider
from ..models import Capability, Coordinates, PermissionGrant, PermissionStatus


class NullCapabilityProvider(CapabilityProvider):
    """Every capability is denied and can't be asked for again."""

    async def status(self, capability: Capability) -> PermissionGrant:
        return PermissionGrant(capability, PermissionStatus.DENIED, can_ask_again=False)

    async def request(self, capability: Capability) -> PermissionGrant:
        return PermissionGrant(capability, PermissionStatus.DENIED, can_ask_again=False)


class NullLocationProvider(LocationProvider):
    async def services_enabled(self) -> bool:
        return False

    async def current_position(self) -> Coordinates:
        raise LookupError("Location services are not available on this device")

    async def last_known_position(self) -> Optional[Coordinates]:
        return None


class NullContentReader(ContentReader):
    async def read(self, uri: str) -> bytes:
        raise LookupError(f"No content reader available for {uri}")
