"""Provider contract for external ticket sources.

This module provides:
- ProviderKind enum for the supported external trackers
- ProviderHandle, the read-only description of one configured integration
- ExternalTicketSummary and its parts, the common ticket shape every
  provider projects its native payloads into
- ProviderPage, the result of one paginated fetch
- TicketProvider abstract base class that all providers must implement

Provider-native JSON never crosses this boundary: each adapter parses its
own payloads and returns ExternalTicketSummary values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar


class ProviderKind(Enum):
    """Supported external ticket providers."""

    JIRA = "jira"
    GITHUB = "github"
    GITLAB = "gitlab"
    CONFLUENCE = "confluence"

    @classmethod
    def parse(cls, value: str) -> ProviderKind:
        """Parse a provider kind from a case-insensitive string.

        Raises:
            ValueError: If the value names no known kind
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            allowed = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown provider kind '{value}'. Allowed values: {allowed}") from None


# Display names for provider kinds
PROVIDER_DISPLAY_NAMES: dict[ProviderKind, str] = {
    ProviderKind.JIRA: "Jira",
    ProviderKind.GITHUB: "GitHub",
    ProviderKind.GITLAB: "GitLab",
    ProviderKind.CONFLUENCE: "Confluence",
}


@dataclass(frozen=True)
class ProviderHandle:
    """One configured external source.

    Attributes:
        id: Stable provider identifier, used in composite ticket ids and
            in pagination state
        kind: The provider kind
        name: Configuration name of the integration
        settings: Read-only connection settings (url, token, filter, ...)
    """

    id: str
    kind: ProviderKind
    name: str = ""
    settings: Mapping[str, str] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("ProviderHandle requires a non-empty id")
        # Freeze the settings so adapters cannot mutate configuration
        object.__setattr__(self, "settings", MappingProxyType(dict(self.settings)))

    @property
    def display_name(self) -> str:
        """Human-readable name, e.g. 'Jira (work)'."""
        kind_name = PROVIDER_DISPLAY_NAMES.get(self.kind, self.kind.value)
        return f"{kind_name} ({self.name})" if self.name else kind_name


@dataclass(frozen=True)
class TicketComment:
    """A comment on a ticket. Some providers omit timestamps."""

    author: str
    content: str
    id: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True)
class StatusLabel:
    name: str
    color: str


@dataclass(frozen=True)
class PriorityLabel:
    """Priority name, color and ordinal value (higher is more urgent)."""

    name: str
    color: str
    value: int


@dataclass(frozen=True)
class ExternalTicketSummary:
    """A provider-native ticket projected into the common shape.

    Created fresh on every fetch and never mutated.
    """

    provider_id: str
    external_id: str
    title: str
    description: str
    status: StatusLabel
    priority: PriorityLabel
    external_url: str
    comments: tuple[TicketComment, ...] = ()


@dataclass(frozen=True)
class ProviderPage:
    """Result of one paginated provider fetch.

    Attributes:
        items: Tickets returned for the requested range
        is_last_page: True when the provider has no further data from this
            cursor, even if items is non-empty
        next_cursor: Opaque cursor for the next range, or None
    """

    items: tuple[ExternalTicketSummary, ...] = ()
    is_last_page: bool = False
    next_cursor: str | None = None


class TicketProvider(ABC):
    """Abstract base class for external ticket providers.

    Implementations must be free of side effects: fetching never creates or
    modifies data on either side. Cursors are opaque strings produced and
    consumed only by the same provider kind; ``None`` means the provider's
    natural starting point.

    Class Attributes:
        KIND: Required class attribute of type ``ProviderKind`` for registry
            registration. Must be set before using ``@ProviderRegistry.register``.
    """

    KIND: ClassVar[ProviderKind]

    @property
    def name(self) -> str:
        """Human-readable provider name."""
        return PROVIDER_DISPLAY_NAMES.get(self.KIND, self.KIND.value)

    @abstractmethod
    async def fetch_tickets(
        self,
        handle: ProviderHandle,
        cursor: str | None,
        max_items: int,
    ) -> ProviderPage:
        """Fetch up to ``max_items`` tickets starting at ``cursor``.

        Args:
            handle: The configured integration to read from
            cursor: Opaque cursor from a previous ProviderPage, or None
            max_items: Upper bound on returned items (always > 0)

        Returns:
            ProviderPage with items, last-page flag and next cursor

        Raises:
            ProviderTransientError: For network, timeout and server failures
            ProviderPermanentError: For authentication/permission failures
                and missing settings
        """
        pass

    @abstractmethod
    async def fetch_ticket_by_id(
        self,
        handle: ProviderHandle,
        external_id: str,
    ) -> ExternalTicketSummary | None:
        """Fetch a single ticket with its comments.

        Args:
            handle: The configured integration to read from
            external_id: Provider-scoped ticket id

        Returns:
            The ticket, or None if the provider does not know it

        Raises:
            TicketIdFormatError: If external_id is malformed for this provider
            ProviderTransientError: For network, timeout and server failures
            ProviderPermanentError: For authentication/permission failures
        """
        pass

    async def close(self) -> None:
        """Release resources held by the provider. Safe to call repeatedly."""
        return None

    @staticmethod
    def safe_nested_get(obj: Any, key: str, default: str = "") -> str:
        """Safely get a string from an object that might not be a dict.

        Example::

            status_name = self.safe_nested_get(fields.get("status"), "name")

        Args:
            obj: The object to read from (may be None, dict, or other type)
            key: The key to retrieve
            default: Value returned when obj is not a dict or the key is absent

        Returns:
            The value as a string, or the default
        """
        if isinstance(obj, dict):
            value = obj.get(key, default)
            return str(value) if value is not None else default
        return default

    @staticmethod
    def parse_timestamp(timestamp_str: str | None) -> datetime | None:
        """Parse an ISO 8601 timestamp from a provider payload.

        Handles both the 'Z' suffix and explicit offsets, including the
        compact ``+0000`` form Jira emits.

        Returns:
            Parsed datetime, or None if parsing fails or input is empty
        """
        if not timestamp_str:
            return None
        try:
            return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
        except (ValueError, TypeError):
            pass
        try:
            return datetime.strptime(timestamp_str, "%Y-%m-%dT%H:%M:%S.%f%z")
        except (ValueError, TypeError):
            return None


__all__ = [
    "ExternalTicketSummary",
    "PROVIDER_DISPLAY_NAMES",
    "PriorityLabel",
    "ProviderHandle",
    "ProviderKind",
    "ProviderPage",
    "StatusLabel",
    "TicketComment",
    "TicketProvider",
]
