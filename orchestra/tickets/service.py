"""Ticket list service: the interface callers use to page through tickets.

This module wraps ExternalTicketAggregator with the outer concerns of a
listing request:
- page size normalization
- opaque page token decoding and encoding
- single-ticket retrieval with caching and local comment merge

Example usage:
    async with create_ticket_list_service(config) as service:
        page = await service.list_tickets(handles, page_size=50)
        more = await service.list_tickets(handles, page_token=page.next_page_token)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from orchestra.config.fetch_config import AggregationConfig
from orchestra.integrations.providers.base import ProviderHandle
from orchestra.integrations.providers.registry import ProviderPool
from orchestra.tickets.aggregator import ExternalTicketAggregator, ProviderFactory
from orchestra.tickets.cache import CacheKey, InMemoryTicketCache, TicketCache
from orchestra.tickets.models import MergedTicket, TicketPage, parse_composite_id
from orchestra.tickets.overlay import (
    JsonMaterializedTicketStore,
    MaterializedTicketLookup,
    NullMaterializedTicketLookup,
    overlay,
)
from orchestra.tickets.pagination import (
    decode_page_token,
    encode_page_token,
    normalize_page_size,
)
from orchestra.utils.errors import NoProvidersConfiguredError

if TYPE_CHECKING:
    import httpx

    from orchestra.config.manager import ConfigManager

logger = logging.getLogger(__name__)

# Upper bound on cached single tickets
DEFAULT_CACHE_MAX_SIZE = 1000


class TicketListService:
    """Paged listing and single-ticket retrieval across providers.

    Resource Management:
        The service owns the provider factory's lifecycle when the factory
        has a close() coroutine (ProviderPool does). Use it as an async
        context manager or call close() explicitly.

    Attributes:
        config: Page size bounds, round cap and cache TTL
    """

    def __init__(
        self,
        provider_factory: ProviderFactory,
        lookup: MaterializedTicketLookup | None = None,
        cache: TicketCache | None = None,
        config: AggregationConfig | None = None,
        aggregator: ExternalTicketAggregator | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            provider_factory: Returns the provider implementation for a handle
            lookup: Read-only materialized ticket lookup
            cache: Cache for single-ticket retrieval (None disables caching)
            config: Aggregation settings (defaults when None)
            aggregator: Pre-built aggregator; built from the other
                arguments when None
        """
        self.config = config or AggregationConfig()
        self._provider_factory = provider_factory
        self._lookup: MaterializedTicketLookup = lookup or NullMaterializedTicketLookup()
        self._cache = cache
        self._aggregator = aggregator or ExternalTicketAggregator(
            provider_factory,
            lookup=self._lookup,
            max_rounds=self.config.max_rounds,
        )

    async def list_tickets(
        self,
        providers: Sequence[ProviderHandle],
        page_size: int | None = None,
        page_token: str | None = None,
    ) -> TicketPage:
        """Return one page of merged external tickets.

        Args:
            providers: Configured providers in allocation order
            page_size: Requested page size, clamped to the configured bounds
            page_token: Token from the previous page (None for the first)

        Returns:
            TicketPage whose next_page_token resumes after this page

        Raises:
            NoProvidersConfiguredError: If providers is empty
            InvalidPageTokenError: If page_token is malformed
        """
        if not providers:
            raise NoProvidersConfiguredError()

        size = normalize_page_size(page_size, self.config.page_size_min, self.config.page_size_max)
        state = decode_page_token(page_token)
        logger.debug(
            "Listing %d tickets from %d provider(s), %d already exhausted",
            size,
            len(providers),
            len(state.exhausted),
        )

        page = await self._aggregator.fetch_page(providers, size, state)
        return TicketPage(
            tickets=page.tickets,
            next_page_token=encode_page_token(page.state),
            has_more=page.has_more,
        )

    async def get_ticket(
        self,
        providers: Sequence[ProviderHandle],
        composite_id: str,
    ) -> MergedTicket | None:
        """Fetch a single ticket by its composite id.

        Provider data is served from the cache when fresh; the local overlay
        is always applied on top, including local comments.

        Args:
            providers: Configured providers
            composite_id: "<provider-id>:<external-id>"

        Returns:
            The merged ticket, or None if the provider is not configured or
            the ticket does not exist

        Raises:
            ValueError: If composite_id is malformed
            ProviderError: If the provider call fails
        """
        provider_id, external_id = parse_composite_id(composite_id)
        handle = next((h for h in providers if h.id == provider_id), None)
        if handle is None:
            logger.info("No configured provider with id '%s'", provider_id)
            return None

        key = CacheKey(provider_id=provider_id, external_id=external_id)
        summary = self._cache.get(key) if self._cache is not None else None
        if summary is None:
            provider = self._provider_factory(handle)
            summary = await provider.fetch_ticket_by_id(handle, external_id)
            if summary is None:
                return None
            if self._cache is not None:
                self._cache.set(summary)

        return await overlay(
            summary,
            handle.id,
            self._lookup,
            source=handle.kind.name,
            include_local_comments=True,
        )

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    async def close(self) -> None:
        """Close providers created by the provider factory."""
        close = getattr(self._provider_factory, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> TicketListService:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def create_ticket_list_service(
    config_manager: ConfigManager,
    materialized_file: Path | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TicketListService:
    """Create a TicketListService wired from configuration.

    Args:
        config_manager: Loaded configuration manager
        materialized_file: JSON file with local records. Falls back to the
            MATERIALIZED_TICKETS_FILE setting; no local records when neither
            is set.
        transport: Optional httpx transport for every provider (tests)

    Returns:
        Service owning a fresh ProviderPool

    Raises:
        ConfigurationError: If the materialized tickets file cannot be read
    """
    aggregation = config_manager.get_aggregation_config()
    pool = ProviderPool(
        performance=config_manager.get_fetch_performance_config(),
        palette=config_manager.get_ticket_palette(),
        transport=transport,
    )

    if materialized_file is None and config_manager.settings.materialized_tickets_file:
        materialized_file = Path(config_manager.settings.materialized_tickets_file).expanduser()
    lookup: MaterializedTicketLookup | None = (
        JsonMaterializedTicketStore(materialized_file) if materialized_file else None
    )

    cache = InMemoryTicketCache(
        default_ttl=timedelta(minutes=aggregation.cache_ttl_minutes),
        max_size=DEFAULT_CACHE_MAX_SIZE,
    )
    return TicketListService(pool, lookup=lookup, cache=cache, config=aggregation)


__all__ = [
    "DEFAULT_CACHE_MAX_SIZE",
    "TicketListService",
    "create_ticket_list_service",
]
