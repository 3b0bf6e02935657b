"""Output types of the aggregation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from orchestra.integrations.providers.base import (
    ExternalTicketSummary,
    PriorityLabel,
    ProviderPage,
    StatusLabel,
    TicketComment,
)
from orchestra.tickets.pagination import PaginationState

COMPOSITE_ID_SEPARATOR = ":"


def make_composite_id(provider_id: str, external_id: str) -> str:
    """Build the caller-facing id of an external ticket."""
    return f"{provider_id}{COMPOSITE_ID_SEPARATOR}{external_id}"


def parse_composite_id(value: str) -> tuple[str, str]:
    """Split a composite id into (provider_id, external_id).

    The split happens at the first separator, so external ids may contain
    colons themselves.

    Raises:
        ValueError: If either part is empty
    """
    provider_id, separator, external_id = value.partition(COMPOSITE_ID_SEPARATOR)
    if not separator or not provider_id or not external_id:
        raise ValueError(
            f"Invalid ticket id '{value}' (expected: <provider-id>{COMPOSITE_ID_SEPARATOR}<external-id>)"
        )
    return provider_id, external_id


@dataclass(frozen=True)
class MergedTicket:
    """An external ticket with local assignment data applied.

    Overlay fields are set only when a materialized record exists; without
    one the ticket is exactly what the provider returned.

    Attributes:
        summary: The ticket as fetched (status and priority may be
            replaced by local overrides)
        source: Provider kind name in upper case, e.g. "JIRA"
        materialized: True when a local record was found
        assigned_agent_id: Agent assigned locally, if any
        assigned_workflow_id: Workflow assigned locally, if any
    """

    summary: ExternalTicketSummary
    source: str
    materialized: bool = False
    assigned_agent_id: str | None = None
    assigned_workflow_id: str | None = None

    @property
    def composite_id(self) -> str:
        return make_composite_id(self.summary.provider_id, self.summary.external_id)

    @property
    def provider_id(self) -> str:
        return self.summary.provider_id

    @property
    def external_id(self) -> str:
        return self.summary.external_id

    @property
    def title(self) -> str:
        return self.summary.title

    @property
    def status(self) -> StatusLabel:
        return self.summary.status

    @property
    def priority(self) -> PriorityLabel:
        return self.summary.priority

    @property
    def comments(self) -> tuple[TicketComment, ...]:
        return self.summary.comments

    def to_dict(self) -> dict[str, object]:
        """JSON-ready representation used by the command line output."""
        summary = self.summary
        return {
            "id": self.composite_id,
            "source": self.source,
            "title": summary.title,
            "description": summary.description,
            "status": {"name": summary.status.name, "color": summary.status.color},
            "priority": {
                "name": summary.priority.name,
                "color": summary.priority.color,
                "value": summary.priority.value,
            },
            "externalUrl": summary.external_url,
            "materialized": self.materialized,
            "assignedAgentId": self.assigned_agent_id,
            "assignedWorkflowId": self.assigned_workflow_id,
            "comments": [
                {
                    "id": comment.id,
                    "author": comment.author,
                    "content": comment.content,
                    "timestamp": comment.timestamp.isoformat() if comment.timestamp else None,
                }
                for comment in summary.comments
            ],
        }


class OutcomeKind(Enum):
    """Outcome of one provider call within a round."""

    ITEMS = "items"
    EMPTY = "empty"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_EXHAUSTION = "permanent_exhaustion"


@dataclass(frozen=True)
class RoundResult:
    """What one provider returned in one round.

    Attributes:
        provider_id: The provider called
        allocated: Slots requested from the provider
        outcome: Tagged outcome of the call
        page: Provider page for ITEMS/EMPTY and for last-page exhaustion
        error: Failure description for TRANSIENT_FAILURE and for
            exhaustion caused by an error
    """

    provider_id: str
    allocated: int
    outcome: OutcomeKind
    page: ProviderPage | None = None
    error: str | None = None

    @property
    def items(self) -> tuple[ExternalTicketSummary, ...]:
        return self.page.items if self.page is not None else ()

    @property
    def is_last_page(self) -> bool:
        return self.page is not None and self.page.is_last_page

    @property
    def next_cursor(self) -> str | None:
        return self.page.next_cursor if self.page is not None else None


@dataclass(frozen=True)
class AggregatedPage:
    """Result of one aggregation call."""

    tickets: tuple[MergedTicket, ...]
    state: PaginationState
    has_more: bool
    rounds: tuple[tuple[RoundResult, ...], ...] = field(default=(), repr=False, compare=False)


@dataclass(frozen=True)
class TicketPage:
    """Page returned to callers of the list service."""

    tickets: tuple[MergedTicket, ...]
    next_page_token: str
    has_more: bool


__all__ = [
    "AggregatedPage",
    "COMPOSITE_ID_SEPARATOR",
    "MergedTicket",
    "OutcomeKind",
    "RoundResult",
    "TicketPage",
    "make_composite_id",
    "parse_composite_id",
]
