"""Provider registry mapping capability names to loaders."""

from __future__ import annotations

from typing import Dict, Optional

from ..interfaces import CapabilityProvider, ContentReader, LocationProvider
from .base import ProviderFactory, ProviderLoader
from .filesystem import FileSystemContentReader

PERMISSIONS = "permissions"
LOCATION = "location"
CONTENT = "content"


def build_default_factory(overrides: Optional[Dict[str, ProviderLoader]] = None) -> ProviderFactory:
    registry: Dict[str, ProviderLoader] = {
        CONTENT: FileSystemContentReader,
    }
    registry.update(overrides or {})
    return ProviderFactory(registry)


def build_device_factory(
    permissions: Optional[CapabilityProvider] = None,
    location: Optional[LocationProvider] = None,
    content: Optional[ContentReader] = None,
) -> ProviderFactory:
    """Factory serving already-constructed providers; missing ones resolve to null."""
    overrides: Dict[str, ProviderLoader] = {
        PERMISSIONS: lambda: permissions,
        LOCATION: lambda: location,
    }
    if content is not None:
        overrides[CONTENT] = lambda: content
    return build_default_factory(overrides)
