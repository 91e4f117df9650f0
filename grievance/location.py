"""Geolocation with a hard deadline and a last-known fallback."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from .config import LocationConfig
from .errors import Failure, FailureKind
from .interfaces import LocationProvider
from .models import Capability, Coordinates, LocationFix, LocationSource
from .permissions import PermissionNegotiator
from .providers.base import ProviderFactory
from .providers.null import NullLocationProvider
from .providers.registry import LOCATION

logger = logging.getLogger(__name__)

MANUAL_ENTRY = "Enter the location manually"


class LocationState(Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    ACQUIRING_POSITION = "acquiring_position"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class LocationResolution:
    state: LocationState
    fix: Optional[LocationFix] = None
    failure: Optional[Failure] = None

    @property
    def resolved(self) -> bool:
        return self.state is LocationState.RESOLVED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocationResolver:
    """Resolves one fix per call; nothing is retried automatically."""

    def __init__(
        self,
        negotiator: PermissionNegotiator,
        factory: ProviderFactory,
        config: Optional[LocationConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._negotiator = negotiator
        self._factory = factory
        self._config = config or LocationConfig()
        self._clock = clock
        self._state = LocationState.IDLE
        self.transitions: List[LocationState] = []

    @property
    def state(self) -> LocationState:
        return self._state

    async def resolve(self) -> LocationResolution:
        self.transitions = []
        self._state = LocationState.IDLE
        self._enter(LocationState.REQUESTING_PERMISSION)
        report = await self._negotiator.request({Capability.LOCATION})
        provider = self._factory.resolve(LOCATION, NullLocationProvider())

        if not report.granted(Capability.LOCATION):
            fallback = await self._last_known(provider)
            if fallback is not None:
                return self._resolved(fallback)
            failure = report.failures()[0]
            return self._failed(failure)

        self._enter(LocationState.ACQUIRING_POSITION)
        if not await self._services_enabled(provider):
            fallback = await self._last_known(provider)
            if fallback is not None:
                return self._resolved(fallback)
            return self._failed(
                Failure.of(
                    FailureKind.LOCATION_UNAVAILABLE,
                    "Location services are disabled. Enable GPS on your device and try again.",
                    fallback_action=MANUAL_ENTRY,
                )
            )

        live = await self._live(provider)
        if live is not None:
            return self._resolved(self._fix(live, LocationSource.LIVE))
        fallback = await self._last_known(provider)
        if fallback is not None:
            return self._resolved(fallback)
        return self._failed(
            Failure.of(
                FailureKind.LOCATION_UNAVAILABLE,
                "Could not retrieve current location. Try enabling GPS or use manual entry.",
                fallback_action=MANUAL_ENTRY,
            )
        )

    async def _live(self, provider: LocationProvider) -> Optional[Coordinates]:
        try:
            coordinates = await asyncio.wait_for(provider.current_position(), self._config.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Live location timed out after %.1fs", self._config.timeout_seconds)
        except Exception:
            logger.warning("Live location failed", exc_info=True)
        else:
            if isinstance(coordinates, Coordinates):
                return coordinates
            logger.warning("Live location returned %r, ignoring it", coordinates)
        return None

    async def _last_known(self, provider: LocationProvider) -> Optional[LocationFix]:
        try:
            coordinates = await provider.last_known_position()
        except Exception:
            logger.warning("Last known location lookup failed", exc_info=True)
            return None
        if coordinates is None:
            return None
        if not isinstance(coordinates, Coordinates):
            logger.warning("Last known location returned %r, ignoring it", coordinates)
            return None
        logger.info("Using last known location")
        return self._fix(coordinates, LocationSource.LAST_KNOWN)

    async def _services_enabled(self, provider: LocationProvider) -> bool:
        try:
            return await provider.services_enabled()
        except Exception:
            logger.warning("Location services check failed", exc_info=True)
            return False

    def _fix(self, coordinates: Coordinates, source: LocationSource) -> LocationFix:
        places = self._config.decimal_places
        return LocationFix(
            latitude=round(coordinates.latitude, places),
            longitude=round(coordinates.longitude, places),
            source=source,
            acquired_at=self._clock(),
            decimal_places=places,
        )

    def _enter(self, state: LocationState) -> None:
        self._state = state
        self.transitions.append(state)

    def _resolved(self, fix: LocationFix) -> LocationResolution:
        self._enter(LocationState.RESOLVED)
        logger.info("Location resolved (%s): %s", fix.source.value, fix.display)
        return LocationResolution(state=LocationState.RESOLVED, fix=fix)

    def _failed(self, failure: Failure) -> LocationResolution:
        self._enter(LocationState.FAILED)
        logger.warning("Location failed: %s", failure.message)
        return LocationResolution(state=LocationState.FAILED, failure=failure)
