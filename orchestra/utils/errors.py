"""Custom exceptions and exit codes for ORCHESTRA.

This module defines the exit codes and exception hierarchy surfaced to
callers of the aggregation engine. Provider-level failures live in
orchestra.integrations.providers.exceptions and never cross the
orchestrator boundary.
"""

from enum import IntEnum
from typing import ClassVar


class ExitCode(IntEnum):
    """Exit codes used by the command line interface."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFIGURATION_ERROR = 2
    INVALID_REQUEST = 3
    USER_CANCELLED = 4


class OrchestraError(Exception):
    """Base exception for ORCHESTRA errors.

    Each exception type has an associated exit code for proper error reporting.
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.GENERAL_ERROR

    def __init__(self, message: str, exit_code: ExitCode | None = None) -> None:
        """Initialize the exception."""
        super().__init__(message)
        self._exit_code = exit_code

    @property
    def exit_code(self) -> ExitCode:
        """Get the exit code for this exception."""
        if self._exit_code is not None:
            return self._exit_code
        return self.__class__._default_exit_code


class ConfigurationError(OrchestraError):
    """Configuration is missing or malformed.

    Raised when:
    - An integration declares an unknown provider kind
    - An integration is missing its id or required settings
    - A numeric setting cannot be parsed
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.CONFIGURATION_ERROR


class NoProvidersConfiguredError(ConfigurationError):
    """A page was requested without any provider configurations."""

    def __init__(self, message: str = "No external providers supplied") -> None:
        super().__init__(message)


class ProviderNotSupportedError(ConfigurationError):
    """No provider implementation is registered for a provider kind.

    Attributes:
        kind: Name of the unsupported provider kind
    """

    def __init__(self, kind: str, message: str | None = None) -> None:
        self.kind = kind
        super().__init__(message or f"No provider implementation registered for '{kind}'")


class InvalidPageTokenError(OrchestraError):
    """The pagination token could not be decoded.

    Tokens are opaque to callers; a token that does not round-trip is a
    request error, not a reason to silently restart pagination.
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.INVALID_REQUEST


class AggregationCancelledError(OrchestraError):
    """A page request was aborted before it completed.

    Raised by the command line layer when the user interrupts a fetch.
    A cancelled page never yields a partial result.
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.USER_CANCELLED


__all__ = [
    "ExitCode",
    "OrchestraError",
    "ConfigurationError",
    "NoProvidersConfiguredError",
    "ProviderNotSupportedError",
    "InvalidPageTokenError",
    "AggregationCancelledError",
]
