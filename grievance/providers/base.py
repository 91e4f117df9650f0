"""Provider resolution shared by the permission, location and upload stages."""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProviderLoader = Callable[[], Optional[object]]


@dataclass
class ProviderFactory:
    """Registry of loaders for optional platform providers.

    A loader may import a module that is not installed, return None or raise;
    all three resolve to the caller's null provider.
    """

    registry: Dict[str, ProviderLoader]

    def resolve(self, name: str, fallback: T) -> T:
        loader = self.registry.get(name)
        if loader is None:
            logger.info("No %s provider registered, using %s", name, type(fallback).__name__)
            return fallback
        try:
            provider = loader()
        except ImportError as exc:
            logger.warning("%s provider is not installed: %s", name, exc)
            return fallback
        except Exception:
            logger.warning("%s provider failed to load", name, exc_info=True)
            return fallback
        if provider is None:
            logger.warning("%s provider is unavailable", name)
            return fallback
        return provider


def import_provider(module_path: str, attribute: str) -> ProviderLoader:
    """Loader that instantiates ``module_path.attribute`` on first use."""

    def _load() -> object:
        module = importlib.import_module(module_path)
        return getattr(module, attribute)()

    return _load
