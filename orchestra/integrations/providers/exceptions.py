"""Custom exceptions for provider operations.

This module defines the exception hierarchy raised by TicketProvider
implementations:
- ProviderError: Base exception for all provider failures
- ProviderTransientError: Network error, timeout, 5xx, rate limiting, bad payload
- ProviderPermanentError: Authentication or permission failure
- CredentialValidationError: Integration is missing required settings
- TicketIdFormatError: External id is malformed for the provider

The aggregation engine converts these into per-provider round outcomes;
they never escape a page request.
"""

from __future__ import annotations


class ProviderError(Exception):
    """Base exception for provider failures.

    Attributes:
        provider_name: Name of the provider (e.g., "Jira", "GitHub")
        provider_id: Identifier of the configured integration (optional)
    """

    def __init__(
        self,
        provider_name: str,
        message: str,
        provider_id: str | None = None,
    ) -> None:
        self.provider_name = provider_name
        self.provider_id = provider_id
        super().__init__(message)


class ProviderTransientError(ProviderError):
    """Raised for failures that may succeed on a later request.

    Attributes:
        status_code: HTTP status code when the failure was an HTTP response
    """

    def __init__(
        self,
        provider_name: str,
        message: str,
        provider_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(provider_name, message, provider_id)


class ProviderPermanentError(ProviderError):
    """Raised when a provider cannot serve this integration at all.

    Covers authentication and permission failures. The aggregation engine
    marks the provider exhausted for the rest of the pagination lineage.
    """

    def __init__(
        self,
        provider_name: str,
        message: str,
        provider_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(provider_name, message, provider_id)


class CredentialValidationError(ProviderPermanentError):
    """Raised when an integration is missing required settings.

    Attributes:
        missing_keys: Set of setting keys that are missing
    """

    def __init__(
        self,
        provider_name: str,
        missing_keys: set[str] | frozenset[str],
        provider_id: str | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize CredentialValidationError.

        Args:
            provider_name: The provider that requires the settings
            missing_keys: Set of missing setting names
            provider_id: Identifier of the integration
            message: Optional custom message (auto-generated if not provided)
        """
        self.missing_keys = missing_keys
        if message is None:
            message = f"{provider_name} integration missing required settings: {sorted(missing_keys)}"
        super().__init__(provider_name, message, provider_id)


class TicketIdFormatError(ProviderError):
    """Raised when an external id is malformed for the provider.

    Attributes:
        ticket_id: The invalid ticket id
        expected_format: Description of the expected format (optional)
    """

    def __init__(
        self,
        provider_name: str,
        ticket_id: str,
        expected_format: str | None = None,
        message: str | None = None,
    ) -> None:
        self.ticket_id = ticket_id
        self.expected_format = expected_format
        if message is None:
            message = f"Invalid {provider_name} ticket id: {ticket_id}"
            if expected_format:
                message += f" (expected: {expected_format})"
        super().__init__(provider_name, message)


__all__ = [
    "CredentialValidationError",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "TicketIdFormatError",
]
