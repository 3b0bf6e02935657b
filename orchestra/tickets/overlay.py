"""Local overlay of materialized ticket data onto external tickets.

An external ticket becomes "materialized" once it receives local
assignment state. The overlay step looks up that local record by
(provider id, external id) and copies its fields onto the fetched ticket.
The lookup is read-only: creating or changing local records is a separate
write path.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from orchestra.integrations.providers.base import (
    ExternalTicketSummary,
    PriorityLabel,
    StatusLabel,
    TicketComment,
    TicketProvider,
)
from orchestra.tickets.models import MergedTicket
from orchestra.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterializedTicket:
    """Local record for an external ticket.

    Attributes:
        provider_id: Provider the ticket belongs to
        external_id: Provider-scoped ticket id
        assigned_agent_id: Locally assigned agent
        assigned_workflow_id: Locally assigned workflow
        status: Local status that replaces the provider's status
        priority: Local priority that replaces the provider's priority
        comments: Comments written locally
    """

    provider_id: str
    external_id: str
    assigned_agent_id: str | None = None
    assigned_workflow_id: str | None = None
    status: StatusLabel | None = None
    priority: PriorityLabel | None = None
    comments: tuple[TicketComment, ...] = ()


class MaterializedTicketLookup(Protocol):
    """Read-only access to materialized ticket records."""

    async def find_materialized_ticket(
        self, provider_id: str, external_id: str
    ) -> MaterializedTicket | None: ...


class NullMaterializedTicketLookup:
    """Lookup with no local records. Every ticket is presented as fetched."""

    async def find_materialized_ticket(
        self, provider_id: str, external_id: str
    ) -> MaterializedTicket | None:
        return None


class InMemoryMaterializedTicketStore:
    """Materialized records held in a dict keyed by (provider id, external id)."""

    def __init__(self, records: Iterable[MaterializedTicket] = ()) -> None:
        self._records: dict[tuple[str, str], MaterializedTicket] = {}
        for record in records:
            self.add(record)

    def add(self, record: MaterializedTicket) -> None:
        self._records[(record.provider_id, record.external_id)] = record

    def __len__(self) -> int:
        return len(self._records)

    async def find_materialized_ticket(
        self, provider_id: str, external_id: str
    ) -> MaterializedTicket | None:
        return self._records.get((provider_id, external_id))


class JsonMaterializedTicketStore(InMemoryMaterializedTicketStore):
    """Materialized records loaded from a JSON file.

    The file holds a list of objects:

        [
          {
            "providerId": "work-jira",
            "externalId": "OPS-12",
            "assignedAgentId": "agent-7",
            "assignedWorkflowId": "wf-2",
            "status": {"name": "In Review", "color": "bg-yellow-500/20 text-yellow-400"},
            "priority": {"name": "High", "color": "bg-orange-500/10", "value": 3},
            "comments": [{"author": "ana", "content": "Taking this", "timestamp": "2026-01-05T10:00:00Z"}]
          }
        ]
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(self._read(path))

    @classmethod
    def _read(cls, path: Path) -> list[MaterializedTicket]:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigurationError(f"Materialized tickets file not found: {path}") from None
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot read materialized tickets file {path}: {e}") from e

        if not isinstance(document, list):
            raise ConfigurationError(f"Materialized tickets file {path} must contain a JSON list")

        records = []
        for index, entry in enumerate(document):
            try:
                records.append(cls._parse_record(entry))
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Invalid materialized ticket at index {index} in {path}: {e}"
                ) from e
        logger.debug("Loaded %d materialized tickets from %s", len(records), path)
        return records

    @staticmethod
    def _parse_record(entry: dict[str, Any]) -> MaterializedTicket:
        status = entry.get("status")
        priority = entry.get("priority")
        return MaterializedTicket(
            provider_id=str(entry["providerId"]),
            external_id=str(entry["externalId"]),
            assigned_agent_id=entry.get("assignedAgentId"),
            assigned_workflow_id=entry.get("assignedWorkflowId"),
            status=StatusLabel(name=status["name"], color=status["color"]) if status else None,
            priority=(
                PriorityLabel(
                    name=priority["name"],
                    color=priority["color"],
                    value=int(priority["value"]),
                )
                if priority
                else None
            ),
            comments=tuple(
                TicketComment(
                    id=comment.get("id"),
                    author=str(comment["author"]),
                    content=str(comment["content"]),
                    timestamp=TicketProvider.parse_timestamp(comment.get("timestamp")),
                )
                for comment in entry.get("comments") or []
            ),
        )


def _sort_timestamp(timestamp: datetime) -> datetime:
    # Naive timestamps are treated as UTC so they compare with aware ones
    return timestamp if timestamp.tzinfo is not None else timestamp.replace(tzinfo=UTC)


def merge_comments(
    external: Iterable[TicketComment],
    local: Iterable[TicketComment],
) -> tuple[TicketComment, ...]:
    """Combine provider and local comments, newest first.

    Comments without a timestamp keep their relative order and sort after
    every timestamped comment.
    """
    combined = [*external, *local]
    dated = [comment for comment in combined if comment.timestamp is not None]
    undated = [comment for comment in combined if comment.timestamp is None]
    dated.sort(key=lambda comment: _sort_timestamp(comment.timestamp), reverse=True)  # type: ignore[arg-type]
    return (*dated, *undated)


async def overlay(
    summary: ExternalTicketSummary,
    provider_id: str,
    lookup: MaterializedTicketLookup,
    source: str,
    *,
    include_local_comments: bool = False,
) -> MergedTicket:
    """Apply the local record for a ticket, if one exists.

    Args:
        summary: Ticket as fetched from the provider
        provider_id: Provider the ticket came from
        lookup: Read-only materialized record lookup
        source: Provider kind name shown to callers
        include_local_comments: Merge local comments into the ticket
            (single-ticket retrieval only)

    Returns:
        The merged ticket. Without a local record the summary is unchanged
        and every overlay field is empty.
    """
    record = await lookup.find_materialized_ticket(provider_id, summary.external_id)
    if record is None:
        return MergedTicket(summary=summary, source=source)

    changes: dict[str, Any] = {}
    if record.status is not None:
        changes["status"] = record.status
    if record.priority is not None:
        changes["priority"] = record.priority
    if include_local_comments and record.comments:
        changes["comments"] = merge_comments(summary.comments, record.comments)

    return MergedTicket(
        summary=dataclasses.replace(summary, **changes) if changes else summary,
        source=source,
        materialized=True,
        assigned_agent_id=record.assigned_agent_id,
        assigned_workflow_id=record.assigned_workflow_id,
    )


__all__ = [
    "InMemoryMaterializedTicketStore",
    "JsonMaterializedTicketStore",
    "MaterializedTicket",
    "MaterializedTicketLookup",
    "NullMaterializedTicketLookup",
    "merge_comments",
    "overlay",
]
