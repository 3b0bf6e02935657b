"""Utility modules for ORCHESTRA.

This package contains:
- console: Rich-based terminal output utilities
- env_utils: Environment variable expansion utilities
- errors: Custom exceptions and exit codes
- logging: Logging configuration
"""

from orchestra.utils.console import (
    console,
    print_error,
    print_header,
    print_info,
    print_warning,
)
from orchestra.utils.env_utils import (
    SENSITIVE_KEY_PATTERNS,
    EnvVarExpansionError,
    expand_env_vars,
    is_sensitive_key,
)
from orchestra.utils.errors import (
    AggregationCancelledError,
    ConfigurationError,
    ExitCode,
    InvalidPageTokenError,
    NoProvidersConfiguredError,
    OrchestraError,
    ProviderNotSupportedError,
)
from orchestra.utils.logging import get_logger, log_message, setup_logging

__all__ = [
    # Console
    "console",
    "print_error",
    "print_header",
    "print_info",
    "print_warning",
    # Environment
    "SENSITIVE_KEY_PATTERNS",
    "EnvVarExpansionError",
    "expand_env_vars",
    "is_sensitive_key",
    # Errors
    "AggregationCancelledError",
    "ConfigurationError",
    "ExitCode",
    "InvalidPageTokenError",
    "NoProvidersConfiguredError",
    "OrchestraError",
    "ProviderNotSupportedError",
    # Logging
    "get_logger",
    "log_message",
    "setup_logging",
]
