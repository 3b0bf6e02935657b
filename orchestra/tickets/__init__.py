"""External ticket aggregation for ORCHESTRA.

This package contains:
- allocator: Splitting a page's slots across providers
- pagination: Pagination state and opaque page tokens
- overlay: Local materialized data applied to fetched tickets
- aggregator: Multi-round fan-out producing one page
- cache: Single-ticket cache
- service: TicketListService, the list/show entry point
"""

from orchestra.tickets.aggregator import ExternalTicketAggregator, ProviderFactory
from orchestra.tickets.allocator import allocate
from orchestra.tickets.cache import CacheKey, InMemoryTicketCache, TicketCache
from orchestra.tickets.models import (
    AggregatedPage,
    MergedTicket,
    OutcomeKind,
    RoundResult,
    TicketPage,
    make_composite_id,
    parse_composite_id,
)
from orchestra.tickets.overlay import (
    InMemoryMaterializedTicketStore,
    JsonMaterializedTicketStore,
    MaterializedTicket,
    MaterializedTicketLookup,
    NullMaterializedTicketLookup,
)
from orchestra.tickets.pagination import (
    PaginationState,
    decode_page_token,
    encode_page_token,
    normalize_page_size,
)
from orchestra.tickets.service import TicketListService, create_ticket_list_service

__all__ = [
    # Engine
    "ExternalTicketAggregator",
    "ProviderFactory",
    "allocate",
    # Pagination
    "PaginationState",
    "decode_page_token",
    "encode_page_token",
    "normalize_page_size",
    # Models
    "AggregatedPage",
    "MergedTicket",
    "OutcomeKind",
    "RoundResult",
    "TicketPage",
    "make_composite_id",
    "parse_composite_id",
    # Overlay
    "InMemoryMaterializedTicketStore",
    "JsonMaterializedTicketStore",
    "MaterializedTicket",
    "MaterializedTicketLookup",
    "NullMaterializedTicketLookup",
    # Cache
    "CacheKey",
    "InMemoryTicketCache",
    "TicketCache",
    # Service
    "TicketListService",
    "create_ticket_list_service",
]
