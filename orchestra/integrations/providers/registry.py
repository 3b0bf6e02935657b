"""Provider registry and factory for ticket providers.

This module provides:
- ProviderRegistry for decorator-based registration of provider classes
- ProviderPool, a per-request factory that hands out one provider instance
  per kind and closes them all together

Example usage:
    @ProviderRegistry.register
    class JiraTicketProvider(HttpTicketProvider):
        KIND = ProviderKind.JIRA
        ...

    async with ProviderPool(performance=perf, palette=palette) as pool:
        provider = pool(handle)
"""

from __future__ import annotations

import logging
import threading
from typing import Any, ClassVar

from orchestra.integrations.providers.base import ProviderHandle, ProviderKind, TicketProvider
from orchestra.utils.errors import ProviderNotSupportedError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of provider classes keyed by ProviderKind.

    All methods are class methods - no instance needed. Registry mutations
    are protected by a lock.
    """

    _providers: ClassVar[dict[ProviderKind, type[TicketProvider]]] = {}
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def register(cls, provider_class: type[TicketProvider]) -> type[TicketProvider]:
        """Decorator to register a provider class.

        The provider class must be a TicketProvider subclass with a KIND
        class attribute holding a ProviderKind.

        Raises:
            TypeError: If the class is not a TicketProvider or lacks a valid KIND
        """
        if not isinstance(provider_class, type) or not issubclass(provider_class, TicketProvider):
            raise TypeError(
                f"Provider class must be a subclass of TicketProvider, "
                f"got {type(provider_class).__name__}"
            )

        kind = getattr(provider_class, "KIND", None)
        if not isinstance(kind, ProviderKind):
            raise TypeError(
                f"Provider class {provider_class.__name__} must have a KIND class attribute "
                f"holding a ProviderKind"
            )

        with cls._lock:
            existing = cls._providers.get(kind)
            if existing is not None and existing is not provider_class:
                logger.warning(
                    "Replacing existing provider %s with %s for kind %s",
                    existing.__name__,
                    provider_class.__name__,
                    kind.name,
                )
            cls._providers[kind] = provider_class

        return provider_class

    @classmethod
    def create(cls, kind: ProviderKind, **kwargs: Any) -> TicketProvider:
        """Instantiate the provider registered for a kind.

        Args:
            kind: Provider kind to instantiate
            **kwargs: Forwarded to the provider constructor

        Raises:
            ProviderNotSupportedError: If nothing is registered for the kind
        """
        with cls._lock:
            provider_class = cls._providers.get(kind)
        if provider_class is None:
            raise ProviderNotSupportedError(kind.value)
        return provider_class(**kwargs)

    @classmethod
    def supported_kinds(cls) -> list[ProviderKind]:
        """Registered kinds, in ProviderKind declaration order."""
        with cls._lock:
            return [kind for kind in ProviderKind if kind in cls._providers]

    @classmethod
    def is_registered(cls, kind: ProviderKind) -> bool:
        with cls._lock:
            return kind in cls._providers

    @classmethod
    def unregister(cls, kind: ProviderKind) -> None:
        """Remove a registration. Intended for tests."""
        with cls._lock:
            cls._providers.pop(kind, None)


class ProviderPool:
    """Hands out one provider instance per kind, created on first use.

    Calling the pool with a handle returns the provider for the handle's
    kind, so a pool can be passed wherever a provider factory is expected.
    """

    def __init__(self, **provider_kwargs: Any) -> None:
        """Initialize the pool.

        Args:
            **provider_kwargs: Forwarded to every provider constructor
                (performance, palette, transport, ...)
        """
        self._provider_kwargs = provider_kwargs
        self._instances: dict[ProviderKind, TicketProvider] = {}

    def __call__(self, handle: ProviderHandle) -> TicketProvider:
        provider = self._instances.get(handle.kind)
        if provider is None:
            provider = ProviderRegistry.create(handle.kind, **self._provider_kwargs)
            self._instances[handle.kind] = provider
        return provider

    async def __aenter__(self) -> ProviderPool:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close every provider created by this pool."""
        instances = list(self._instances.values())
        self._instances.clear()
        for provider in instances:
            await provider.close()


__all__ = [
    "ProviderPool",
    "ProviderRegistry",
]
