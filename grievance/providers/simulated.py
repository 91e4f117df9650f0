"""Simulated device producing deterministic permission, location and identity answers."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from ..interfaces import CapabilityProvider, IdentityProvider, LocationProvider
from ..models import Capability, Coordinates, Identity, PermissionGrant, PermissionStatus


class SimulatedPermissions(CapabilityProvider):
    """Permission dialogs answered from a fixed table.

    ``answers`` is what the user picks when prompted; ``hard_denied`` lists
    capabilities the platform will no longer prompt for.
    """

    def __init__(
        self,
        answers: Optional[Dict[Capability, bool]] = None,
        granted: Optional[Dict[Capability, bool]] = None,
        hard_denied: Optional[List[Capability]] = None,
    ) -> None:
        self._answers = dict(answers or {})
        self._granted = dict(granted or {})
        self._hard_denied = set(hard_denied or [])
        self.prompts: List[Capability] = []
        self.settings_opened = 0

    async def status(self, capability: Capability) -> PermissionGrant:
        if self._granted.get(capability):
            return PermissionGrant(capability, PermissionStatus.GRANTED)
        return PermissionGrant(
            capability,
            PermissionStatus.DENIED,
            can_ask_again=capability not in self._hard_denied,
        )

    async def request(self, capability: Capability) -> PermissionGrant:
        self.prompts.append(capability)
        if self._answers.get(capability, False):
            self._granted[capability] = True
            return PermissionGrant(capability, PermissionStatus.GRANTED)
        return PermissionGrant(capability, PermissionStatus.DENIED)

    async def open_settings(self) -> bool:
        self.settings_opened += 1
        return True


class SimulatedLocation(LocationProvider):
    """Reports ``live`` after ``delay`` seconds, or never when ``live`` is None."""

    def __init__(
        self,
        live: Optional[Coordinates] = None,
        last_known: Optional[Coordinates] = None,
        delay: float = 0.0,
        enabled: bool = True,
    ) -> None:
        self._live = live
        self._last_known = last_known
        self._delay = delay
        self._enabled = enabled

    async def services_enabled(self) -> bool:
        return self._enabled

    async def current_position(self) -> Coordinates:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._live is None:
            await asyncio.Event().wait()
        return self._live

    async def last_known_position(self) -> Optional[Coordinates]:
        return self._last_known


class StaticIdentityProvider(IdentityProvider):
    """Always reports the same signed-in user (or nobody)."""

    def __init__(self, identity: Optional[Identity] = None) -> None:
        self._identity = identity

    def current_user(self) -> Optional[Identity]:
        return self._identity
