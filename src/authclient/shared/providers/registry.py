"""Provider registry: name → ``AuthProvider``, in registration order."""

from __future__ import annotations

import dataclasses
import inspect
from typing import Any

import structlog

from authclient.domain.entities import ProviderMetadata
from authclient.domain.enums import Capability
from authclient.ports.outbound import AuthProvider

logger = structlog.get_logger(__name__)


class ProviderRegistry:
    """Registered providers plus the externally maintained ``configured`` flags."""

    def __init__(self, providers: list[AuthProvider] | None = None) -> None:
        self._providers: dict[str, AuthProvider] = {}
        self._configured: dict[str, bool] = {}
        for provider in providers or []:
            self.register(provider.name, provider)

    def register(self, name: str, provider: AuthProvider) -> None:
        """Add or replace ``name``; an existing configured flag is kept."""
        if name in self._providers:
            logger.warning("provider_overwritten", provider=name)
        self._providers[name] = provider
        self._configured.setdefault(name, False)

    def get(self, name: str | None) -> AuthProvider | None:
        if name is None:
            return None
        return self._providers.get(name)

    def has(self, name: str) -> bool:
        return name in self._providers

    def list(self) -> list[str]:
        return list(self._providers)

    def items(self) -> list[tuple[str, AuthProvider]]:
        return list(self._providers.items())

    async def call_method(
        self, name: str | None, method: Capability | str, *args: Any, **kwargs: Any
    ) -> Any:
        """Invoke a provider capability; ``None`` when the provider or capability is absent.

        Failures raised by the provider itself propagate.
        """
        provider = self.get(name)
        if provider is None:
            return None
        capability = provider.capability(method)
        if capability is None:
            return None
        result = capability(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def set_configured(self, name: str, configured: bool) -> None:
        self._configured[name] = configured

    def is_configured(self, name: str) -> bool:
        return self._configured.get(name, False)

    def get_all_metadata(self) -> list[ProviderMetadata]:
        return [
            dataclasses.replace(provider.get_metadata(), configured=True)
            for name, provider in self._providers.items()
            if self._configured.get(name, False)
        ]
