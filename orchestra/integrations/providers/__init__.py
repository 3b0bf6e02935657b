"""Ticket provider adapters.

Importing this package registers every built-in provider with
ProviderRegistry.
"""

from orchestra.integrations.providers.base import (
    PROVIDER_DISPLAY_NAMES,
    ExternalTicketSummary,
    PriorityLabel,
    ProviderHandle,
    ProviderKind,
    ProviderPage,
    StatusLabel,
    TicketComment,
    TicketProvider,
)
from orchestra.integrations.providers.confluence import ConfluenceTicketProvider
from orchestra.integrations.providers.exceptions import (
    CredentialValidationError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    TicketIdFormatError,
)
from orchestra.integrations.providers.github import GitHubTicketProvider
from orchestra.integrations.providers.gitlab import GitLabTicketProvider
from orchestra.integrations.providers.http import HttpTicketProvider
from orchestra.integrations.providers.jira import JiraTicketProvider
from orchestra.integrations.providers.registry import ProviderPool, ProviderRegistry

__all__ = [
    # Contract
    "ExternalTicketSummary",
    "PROVIDER_DISPLAY_NAMES",
    "PriorityLabel",
    "ProviderHandle",
    "ProviderKind",
    "ProviderPage",
    "StatusLabel",
    "TicketComment",
    "TicketProvider",
    # Exceptions
    "CredentialValidationError",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "TicketIdFormatError",
    # Implementations
    "ConfluenceTicketProvider",
    "GitHubTicketProvider",
    "GitLabTicketProvider",
    "HttpTicketProvider",
    "JiraTicketProvider",
    # Registry
    "ProviderPool",
    "ProviderRegistry",
]
