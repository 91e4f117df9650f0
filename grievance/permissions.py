"""Capability negotiation for location, camera and media library access.

``PermissionNegotiator.request`` never raises and never waits longer than the
configured prompt timeout. A missing provider, a provider error and a timeout
all come back as a denial so the caller can fall back to manual entry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

from .config import PermissionConfig
from .errors import Failure, FailureKind
from .interfaces import CapabilityProvider
from .models import Capability, PermissionGrant, PermissionStatus
from .providers.base import ProviderFactory
from .providers.null import NullCapabilityProvider
from .providers.registry import PERMISSIONS

logger = logging.getLogger(__name__)

FALLBACK_ACTIONS: Dict[Capability, str] = {
    Capability.LOCATION: "Enter the location manually",
    Capability.CAMERA: "Attach an existing photo or document instead",
    Capability.MEDIA_LIBRARY: "Attach files with the document picker instead",
}

LABELS: Dict[Capability, str] = {
    Capability.LOCATION: "Location",
    Capability.CAMERA: "Camera",
    Capability.MEDIA_LIBRARY: "Media library",
}


@dataclass(frozen=True)
class PermissionReport:
    grants: Dict[Capability, PermissionGrant]

    def status(self, capability: Capability) -> PermissionStatus:
        grant = self.grants.get(capability)
        return grant.status if grant else PermissionStatus.DENIED

    def granted(self, capability: Capability) -> bool:
        return self.status(capability) is PermissionStatus.GRANTED

    @property
    def statuses(self) -> Dict[Capability, PermissionStatus]:
        return {capability: grant.status for capability, grant in self.grants.items()}

    @property
    def denied(self) -> FrozenSet[Capability]:
        return frozenset(c for c, grant in self.grants.items() if not grant.granted)

    @property
    def needs_settings(self) -> FrozenSet[Capability]:
        """Denied capabilities the platform will not prompt for again."""
        return frozenset(c for c, grant in self.grants.items() if not grant.granted and not grant.can_ask_again)

    def failures(self) -> List[Failure]:
        failures: List[Failure] = []
        for capability in Capability:
            if capability not in self.denied:
                continue
            label = LABELS[capability]
            if capability in self.needs_settings:
                message = f"{label} permission is required. Open settings to enable it."
            else:
                message = f"{label} permission was denied."
            failures.append(
                Failure.of(
                    FailureKind.PERMISSION_DENIED,
                    message,
                    fallback_action=FALLBACK_ACTIONS[capability],
                    details={
                        "capability": capability.value,
                        "open_settings": capability in self.needs_settings,
                    },
                )
            )
        return failures


class PermissionNegotiator:
    def __init__(self, factory: ProviderFactory, config: Optional[PermissionConfig] = None) -> None:
        self._factory = factory
        self._config = config or PermissionConfig()

    async def request(self, capabilities: Iterable[Capability]) -> PermissionReport:
        """Ask for each capability that is not already granted."""
        wanted = set(capabilities)
        provider = self._provider()
        grants: Dict[Capability, PermissionGrant] = {}
        for capability in Capability:
            if capability in wanted:
                grants[capability] = await self._negotiate(provider, capability)
        report = PermissionReport(grants)
        if report.denied:
            logger.warning(
                "Permissions denied: %s",
                ", ".join(sorted(c.value for c in report.denied)),
            )
        return report

    async def open_settings(self) -> bool:
        """Escalate a hard denial to the platform permission settings."""
        provider = self._provider()
        try:
            return bool(await asyncio.wait_for(provider.open_settings(), self._config.prompt_timeout_seconds))
        except asyncio.TimeoutError:
            logger.warning("Opening permission settings timed out")
        except Exception:
            logger.warning("Opening permission settings failed", exc_info=True)
        return False

    def _provider(self) -> CapabilityProvider:
        return self._factory.resolve(PERMISSIONS, NullCapabilityProvider())

    async def _negotiate(self, provider: CapabilityProvider, capability: Capability) -> PermissionGrant:
        current = await self._ask(lambda: provider.status(capability), capability)
        if current.granted:
            return current
        if not current.can_ask_again:
            logger.info("%s permission is blocked; settings escalation required", capability.value)
            return current
        return await self._ask(lambda: provider.request(capability), capability)

    async def _ask(self, call: Callable[[], Awaitable[PermissionGrant]], capability: Capability) -> PermissionGrant:
        try:
            grant = await asyncio.wait_for(call(), self._config.prompt_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("%s permission prompt timed out", capability.value)
        except Exception:
            logger.warning("%s permission check failed", capability.value, exc_info=True)
        else:
            if isinstance(grant, PermissionGrant):
                return grant
            logger.warning("%s permission provider returned %r, treating as denied", capability.value, grant)
        return PermissionGrant(capability, PermissionStatus.DENIED)
