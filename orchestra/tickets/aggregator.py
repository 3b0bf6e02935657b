"""Aggregation of external tickets across providers.

ExternalTicketAggregator produces one page of tickets from several
independent, paginated and unreliable providers:

    1. Providers already exhausted in the incoming state are skipped.
    2. Each round splits the outstanding item count across the remaining
       providers (see allocator.allocate) and calls them concurrently.
    3. Results are joined, de-duplicated and overlaid with local data; only
       then are the collected list, cursors and exhausted set updated.
    4. Rounds repeat while the page is short and providers remain, up to a
       fixed round cap.

Exhaustion rules:
    - ``is_last_page`` or a permanent provider error exhausts a provider.
    - A provider that under-yielded earlier in the call and yields nothing
      new when asked again is exhausted.
    - A provider that under-yields but returns items stays active.
    - A transient failure contributes nothing and is not asked again during
      this call, but never exhausts the provider.

``has_more`` is true exactly when some provider is still not exhausted,
independent of how many tickets were collected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from orchestra.config.fetch_config import DEFAULT_AGGREGATION_ROUNDS
from orchestra.integrations.providers.base import (
    ExternalTicketSummary,
    ProviderHandle,
    TicketProvider,
)
from orchestra.integrations.providers.exceptions import (
    ProviderError,
    ProviderPermanentError,
)
from orchestra.tickets.allocator import allocate
from orchestra.tickets.models import (
    AggregatedPage,
    MergedTicket,
    OutcomeKind,
    RoundResult,
    make_composite_id,
)
from orchestra.tickets.overlay import (
    MaterializedTicketLookup,
    NullMaterializedTicketLookup,
    overlay,
)
from orchestra.tickets.pagination import PaginationState
from orchestra.utils.errors import NoProvidersConfiguredError

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderHandle], TicketProvider]


def _unique_by_id(providers: Sequence[ProviderHandle]) -> list[ProviderHandle]:
    seen: set[str] = set()
    unique = []
    for handle in providers:
        if handle.id not in seen:
            seen.add(handle.id)
            unique.append(handle)
    return unique


class ExternalTicketAggregator:
    """Fans out to providers and merges one page of external tickets.

    The aggregator holds no per-request state; everything needed to resume
    lives in the PaginationState passed in and returned.

    Attributes:
        max_rounds: Hard cap on fetch rounds per page request
    """

    def __init__(
        self,
        provider_factory: ProviderFactory,
        lookup: MaterializedTicketLookup | None = None,
        max_rounds: int = DEFAULT_AGGREGATION_ROUNDS,
    ) -> None:
        """Initialize the aggregator.

        Args:
            provider_factory: Returns the provider implementation for a handle
            lookup: Read-only materialized ticket lookup (none by default)
            max_rounds: Hard cap on fetch rounds per page request

        Raises:
            ValueError: If max_rounds is below 1
        """
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be at least 1, got {max_rounds}")
        self._provider_factory = provider_factory
        self._lookup: MaterializedTicketLookup = lookup or NullMaterializedTicketLookup()
        self.max_rounds = max_rounds

    async def fetch_page(
        self,
        providers: Sequence[ProviderHandle],
        target_count: int,
        state: PaginationState | None = None,
    ) -> AggregatedPage:
        """Collect up to ``target_count`` tickets from the given providers.

        Args:
            providers: Configured providers in allocation order
            target_count: Number of tickets wanted on this page
            state: State returned with the previous page (None for the first)

        Returns:
            AggregatedPage with merged tickets, the new state and has_more.
            The returned exhausted set always contains the incoming one.

        Raises:
            NoProvidersConfiguredError: If providers is empty
            ValueError: If target_count is negative
            asyncio.CancelledError: If the request is cancelled; no partial
                page is returned
        """
        if not providers:
            raise NoProvidersConfiguredError()
        if target_count < 0:
            raise ValueError(f"target_count must be non-negative, got {target_count}")

        state = state or PaginationState()
        candidates = [h for h in _unique_by_id(providers) if not state.is_exhausted(h.id)]
        if not candidates:
            logger.debug("All %d providers exhausted, nothing to fetch", len(providers))
            return AggregatedPage(tickets=(), state=state, has_more=False)

        exhausted: set[str] = set(state.exhausted)
        cursors: dict[str, str | None] = {h.id: state.cursor_for(h.id) for h in candidates}
        collected: list[MergedTicket] = []
        seen_ids: set[str] = set()
        under_yielded: set[str] = set()
        failed: set[str] = set()
        rounds: list[tuple[RoundResult, ...]] = []

        while len(collected) < target_count and len(rounds) < self.max_rounds:
            active = [h for h in candidates if h.id not in exhausted and h.id not in failed]
            if not active:
                break

            allocation = allocate(active, target_count - len(collected))
            calls = [(h, allocation[h.id]) for h in active if allocation.get(h.id, 0) > 0]
            logger.debug(
                "Round %d: requesting %s",
                len(rounds) + 1,
                ", ".join(f"{h.id}={slots}" for h, slots in calls),
            )

            results = await self._run_round(calls, cursors)
            rounds.append(results)

            # All calls of the round have completed; state changes happen here only
            fresh: list[tuple[ProviderHandle, ExternalTicketSummary]] = []
            for (handle, allocated), result in zip(calls, results, strict=True):
                if result.outcome is OutcomeKind.PERMANENT_EXHAUSTION:
                    exhausted.add(handle.id)
                    continue
                if result.outcome is OutcomeKind.TRANSIENT_FAILURE:
                    failed.add(handle.id)
                    continue

                if result.items or result.next_cursor is not None:
                    cursors[handle.id] = result.next_cursor

                new_items = []
                for item in result.items:
                    composite_id = make_composite_id(handle.id, item.external_id)
                    if composite_id not in seen_ids:
                        seen_ids.add(composite_id)
                        new_items.append(item)
                fresh.extend((handle, item) for item in new_items)

                if result.is_last_page:
                    exhausted.add(handle.id)
                elif not new_items and handle.id in under_yielded:
                    logger.debug("Provider %s yielded nothing after under-yielding", handle.id)
                    exhausted.add(handle.id)
                elif len(new_items) < allocated:
                    under_yielded.add(handle.id)

            collected.extend(await self._overlay_all(fresh))

        has_more = any(h.id not in exhausted for h in candidates)
        new_state = state.with_exhausted(exhausted).with_cursors(cursors)
        logger.info(
            "Aggregated %d/%d tickets in %d round(s), %d provider(s) exhausted, has_more=%s",
            len(collected),
            target_count,
            len(rounds),
            len(new_state.exhausted),
            has_more,
        )
        return AggregatedPage(
            tickets=tuple(collected),
            state=new_state,
            has_more=has_more,
            rounds=tuple(rounds),
        )

    async def _run_round(
        self,
        calls: list[tuple[ProviderHandle, int]],
        cursors: dict[str, str | None],
    ) -> tuple[RoundResult, ...]:
        """Call every provider of the round concurrently and wait for all."""
        async with asyncio.TaskGroup() as group:
            tasks = [
                group.create_task(self._call_provider(handle, allocated, cursors.get(handle.id)))
                for handle, allocated in calls
            ]
        return tuple(task.result() for task in tasks)

    async def _call_provider(
        self,
        handle: ProviderHandle,
        allocated: int,
        cursor: str | None,
    ) -> RoundResult:
        """Call one provider and turn its answer into a tagged outcome.

        Provider failures never propagate; cancellation does.
        """
        log_context = {"provider": handle.kind.value, "provider_id": handle.id}
        try:
            provider = self._provider_factory(handle)
            page = await provider.fetch_tickets(handle, cursor, allocated)
        except ProviderPermanentError as e:
            logger.warning(
                "Provider %s failed permanently, marking exhausted: %s",
                handle.display_name,
                e,
                extra=log_context,
            )
            return RoundResult(
                provider_id=handle.id,
                allocated=allocated,
                outcome=OutcomeKind.PERMANENT_EXHAUSTION,
                error=str(e),
            )
        except ProviderError as e:
            logger.warning(
                "Provider %s failed, skipping for this page: %s",
                handle.display_name,
                e,
                extra=log_context,
            )
            return RoundResult(
                provider_id=handle.id,
                allocated=allocated,
                outcome=OutcomeKind.TRANSIENT_FAILURE,
                error=str(e),
            )
        except Exception as e:
            logger.exception(
                "Unexpected error from provider %s, skipping for this page",
                handle.display_name,
                extra=log_context,
            )
            return RoundResult(
                provider_id=handle.id,
                allocated=allocated,
                outcome=OutcomeKind.TRANSIENT_FAILURE,
                error=f"{type(e).__name__}: {e}",
            )

        if len(page.items) > allocated:
            logger.debug(
                "Provider %s returned %d items for %d slots",
                handle.id,
                len(page.items),
                allocated,
            )
        return RoundResult(
            provider_id=handle.id,
            allocated=allocated,
            outcome=OutcomeKind.ITEMS if page.items else OutcomeKind.EMPTY,
            page=page,
        )

    async def _overlay_all(
        self,
        items: list[tuple[ProviderHandle, ExternalTicketSummary]],
    ) -> list[MergedTicket]:
        """Apply the local overlay to a round's new items concurrently, keeping order."""
        if not items:
            return []
        return list(
            await asyncio.gather(
                *(
                    overlay(item, handle.id, self._lookup, source=handle.kind.name)
                    for handle, item in items
                )
            )
        )


__all__ = [
    "ExternalTicketAggregator",
    "ProviderFactory",
]
