"""Provider adapter registry: maps a provider family id to a constructor.

The orchestrator and webhook manager only ever call create(); adding a
family is a register() call at composition time.
"""

from collections.abc import Callable

import httpx

from mailsync.core.config import Settings, get_settings
from mailsync.domain.enums import ProviderFamily
from mailsync.infrastructure.exceptions import UnsupportedProviderError
from mailsync.infrastructure.external.email.providers import (
    AggregatorProvider,
    GmailProvider,
    IMAPProvider,
    OutlookProvider,
)
from mailsync.infrastructure.external.email.protocols import (
    MailProviderAdapter,
    ProviderCredentials,
)
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

AdapterConstructor = Callable[..., MailProviderAdapter]


class ProviderAdapterRegistry:
    """Registry of adapter constructors.

    Constructors are called as ``ctor(credentials, settings=..., http_client=...)``.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._constructors: dict[str, AdapterConstructor] = {}
        self._settings = settings
        self._http_client = http_client

    def register(self, provider_family: str, constructor: AdapterConstructor) -> None:
        self._constructors[provider_family.lower()] = constructor
        logger.debug("Registered provider adapter: %s", provider_family)

    def supported_families(self) -> list[str]:
        return sorted(self._constructors)

    def is_supported(self, provider_family: str) -> bool:
        return provider_family.lower() in self._constructors

    def create(self, credentials: ProviderCredentials) -> MailProviderAdapter:
        """Build an adapter for credentials.provider_family.

        Raises:
            UnsupportedProviderError: No constructor registered for the family.
        """
        family = credentials.provider_family.lower()
        constructor = self._constructors.get(family)
        if constructor is None:
            raise UnsupportedProviderError(family, self.supported_families())
        return constructor(
            credentials,
            settings=self._settings or get_settings(),
            http_client=self._http_client,
        )


def build_default_registry(
    *,
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ProviderAdapterRegistry:
    """Registry with the four built-in families."""
    registry = ProviderAdapterRegistry(settings=settings, http_client=http_client)
    registry.register(ProviderFamily.DELTA_QUERY.value, OutlookProvider)
    registry.register(ProviderFamily.REST_HISTORY.value, GmailProvider)
    registry.register(ProviderFamily.LEGACY_IMAP.value, IMAPProvider)
    registry.register(ProviderFamily.AGGREGATOR.value, AggregatorProvider)
    return registry
