"""Slot allocation across active providers."""

from __future__ import annotations

from collections.abc import Sequence

from orchestra.integrations.providers.base import ProviderHandle


def allocate(active_providers: Sequence[ProviderHandle], total_slots: int) -> dict[str, int]:
    """Split a slot count evenly across providers.

    Every provider receives ``total_slots // len(active_providers)`` slots and
    the first ``total_slots % len(active_providers)`` providers, in the order
    given, receive one more. The result is deterministic for a given order.

    Providers can be allocated 0 slots when the slot count is smaller than the
    provider count; callers must skip them rather than request zero items.

    Args:
        active_providers: Providers eligible for this round, in caller order
        total_slots: Number of items to request in total

    Returns:
        Mapping of provider id to slot count, in provider order. Empty when
        there are no providers or no slots.

    Raises:
        ValueError: If total_slots is negative
    """
    if total_slots < 0:
        raise ValueError(f"total_slots must be non-negative, got {total_slots}")
    if not active_providers or total_slots == 0:
        return {}

    base, remainder = divmod(total_slots, len(active_providers))
    return {
        provider.id: base + (1 if index < remainder else 0)
        for index, provider in enumerate(active_providers)
    }


__all__ = ["allocate"]
