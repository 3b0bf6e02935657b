"""Fetch and aggregation configuration for ORCHESTRA.

This module defines the configuration classes consumed by the provider
adapters and the aggregation engine:

    - FetchPerformanceConfig: HTTP timeout and retry tuning per provider call
    - AggregationConfig: round cap, page size bounds and cache lifetime
    - TicketPalette: status/priority colors and priority ordinals

Validation:
    - Performance and aggregation values have upper bounds to prevent hanging
    - Integration settings are validated against the fields each provider
      kind requires
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from orchestra.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ConfigValidationError(ConfigurationError):
    """Raised when configuration validation fails.

    This exception is raised for fail-fast behavior when:
    - An integration declares an unknown provider kind
    - Required integration settings are missing or empty
    - A setting still contains an unexpanded ${VAR} reference
    """

    pass


# Known provider kinds for validation
KNOWN_PROVIDER_KINDS = frozenset({"jira", "github", "gitlab", "confluence"})

# Required integration settings per provider kind
PROVIDER_REQUIRED_SETTINGS: dict[str, frozenset[str]] = {
    "jira": frozenset({"url", "token"}),
    "github": frozenset({"token", "repository"}),
    "gitlab": frozenset({"token", "project"}),
    "confluence": frozenset({"url", "token"}),
}

# Setting key aliases, normalized to canonical names per provider kind
SETTING_ALIASES: dict[str, dict[str, str]] = {
    "jira": {"base_url": "url", "api_token": "token", "jql": "filter"},
    "github": {"repo": "repository"},
    "gitlab": {"project_id": "project", "base_url": "url"},
    "confluence": {"base_url": "url", "api_token": "token", "cql": "filter"},
}


def canonicalize_settings(kind: str, settings: Mapping[str, Any]) -> dict[str, Any]:
    """Canonicalize integration setting keys using per-kind aliases.

    Args:
        kind: Provider kind name (e.g., 'jira', 'gitlab')
        settings: Mapping of setting key-value pairs

    Returns:
        New dictionary with lowercase keys and aliases replaced by canonical names

    Example:
        >>> canonicalize_settings("jira", {"BASE_URL": "https://x", "token": "t"})
        {'url': 'https://x', 'token': 't'}
    """
    aliases = SETTING_ALIASES.get(kind.lower(), {})

    canonicalized: dict[str, Any] = {}
    for key, value in settings.items():
        key_lower = key.lower()
        canonicalized[aliases.get(key_lower, key_lower)] = value
    return canonicalized


_UNEXPANDED_ENV_VAR_PATTERN = re.compile(r"\$\{[^}]+\}")


def validate_integration_settings(
    kind: str,
    settings: Mapping[str, Any],
    name: str = "",
    strict: bool = True,
) -> list[str]:
    """Validate integration settings for a provider kind.

    Args:
        kind: Provider kind name
        settings: Canonicalized settings mapping
        name: Integration name used in messages
        strict: If True, raises ConfigValidationError on the first problem set.
                If False, returns the list of problems.

    Returns:
        List of validation messages (empty when valid)

    Raises:
        ConfigValidationError: If strict=True and validation fails
    """
    label = f"integration '{name}'" if name else f"'{kind}' integration"
    kind_lower = kind.lower()

    if kind_lower not in KNOWN_PROVIDER_KINDS:
        message = (
            f"Unknown provider kind '{kind}' for {label}. "
            f"Allowed values: {', '.join(sorted(KNOWN_PROVIDER_KINDS))}"
        )
        if strict:
            raise ConfigValidationError(message)
        return [message]

    errors: list[str] = []
    required = PROVIDER_REQUIRED_SETTINGS[kind_lower]

    missing = required - set(settings.keys())
    if missing:
        errors.append(f"Missing required settings for {label}: {', '.join(sorted(missing))}")

    for field_name in sorted(required & set(settings.keys())):
        value = settings[field_name]
        if not value or (isinstance(value, str) and not value.strip()):
            errors.append(f"Setting '{field_name}' for {label} is empty")
        elif isinstance(value, str) and _UNEXPANDED_ENV_VAR_PATTERN.search(value):
            # Do not echo the value, it may be half of a secret
            errors.append(
                f"Setting '{field_name}' for {label} contains an unexpanded environment variable"
            )

    if strict and errors:
        raise ConfigValidationError("; ".join(errors))
    return errors


# Upper bounds for performance settings
MAX_TIMEOUT_SECONDS = 300  # 5 minutes
MAX_RETRIES = 10
MAX_RETRY_DELAY_SECONDS = 60.0

# Bounds for aggregation settings
MAX_AGGREGATION_ROUNDS = 10
DEFAULT_AGGREGATION_ROUNDS = 3
DEFAULT_PAGE_SIZE_MIN = 50
DEFAULT_PAGE_SIZE_MAX = 100
MAX_CACHE_TTL_MINUTES = 24 * 60


@dataclass
class FetchPerformanceConfig:
    """Performance settings for provider HTTP calls.

    Attributes:
        timeout_seconds: HTTP request timeout (max: 300s/5 min)
        max_retries: Maximum number of retry attempts (max: 10)
        retry_delay_seconds: Base delay between retry attempts (max: 60s)

    Values are clamped in __post_init__ using simple assignment (not frozen).
    """

    timeout_seconds: int = 30
    max_retries: int = 3
    retry_delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        """Clamp values to safe bounds (lower and upper)."""
        if self.timeout_seconds <= 0:
            logger.warning(
                "timeout_seconds (%s) must be positive, clamping to 1", self.timeout_seconds
            )
            self.timeout_seconds = 1
        elif self.timeout_seconds > MAX_TIMEOUT_SECONDS:
            logger.warning(
                "timeout_seconds (%s) exceeds max (%s), clamping to max",
                self.timeout_seconds,
                MAX_TIMEOUT_SECONDS,
            )
            self.timeout_seconds = MAX_TIMEOUT_SECONDS

        if self.max_retries < 0:
            logger.warning("max_retries (%s) is negative, clamping to 0", self.max_retries)
            self.max_retries = 0
        elif self.max_retries > MAX_RETRIES:
            logger.warning(
                "max_retries (%s) exceeds max (%s), clamping to max", self.max_retries, MAX_RETRIES
            )
            self.max_retries = MAX_RETRIES

        if self.retry_delay_seconds < 0:
            logger.warning(
                "retry_delay_seconds (%s) is negative, clamping to 0", self.retry_delay_seconds
            )
            self.retry_delay_seconds = 0.0
        elif self.retry_delay_seconds > MAX_RETRY_DELAY_SECONDS:
            logger.warning(
                "retry_delay_seconds (%s) exceeds max (%s), clamping to max",
                self.retry_delay_seconds,
                MAX_RETRY_DELAY_SECONDS,
            )
            self.retry_delay_seconds = MAX_RETRY_DELAY_SECONDS


@dataclass
class AggregationConfig:
    """Settings for the aggregation engine and the list/show service.

    Attributes:
        max_rounds: Hard cap on fetch rounds per page request (1-10)
        page_size_min: Smallest page size a caller may request
        page_size_max: Largest page size a caller may request
        cache_ttl_minutes: Lifetime of single-ticket cache entries (0 disables)
    """

    max_rounds: int = DEFAULT_AGGREGATION_ROUNDS
    page_size_min: int = DEFAULT_PAGE_SIZE_MIN
    page_size_max: int = DEFAULT_PAGE_SIZE_MAX
    cache_ttl_minutes: int = 60

    def __post_init__(self) -> None:
        """Clamp values to safe bounds."""
        if not 1 <= self.max_rounds <= MAX_AGGREGATION_ROUNDS:
            clamped = min(max(self.max_rounds, 1), MAX_AGGREGATION_ROUNDS)
            logger.warning(
                "max_rounds (%s) outside [1, %s], clamping to %s",
                self.max_rounds,
                MAX_AGGREGATION_ROUNDS,
                clamped,
            )
            self.max_rounds = clamped

        if self.page_size_min < 1:
            logger.warning("page_size_min (%s) must be positive, clamping to 1", self.page_size_min)
            self.page_size_min = 1
        if self.page_size_max < self.page_size_min:
            logger.warning(
                "page_size_max (%s) is below page_size_min (%s), using page_size_min",
                self.page_size_max,
                self.page_size_min,
            )
            self.page_size_max = self.page_size_min

        if self.cache_ttl_minutes < 0:
            self.cache_ttl_minutes = 0
        elif self.cache_ttl_minutes > MAX_CACHE_TTL_MINUTES:
            self.cache_ttl_minutes = MAX_CACHE_TTL_MINUTES


# (keywords, color) pairs; the first rule whose keyword occurs in the
# lowercased name wins, so more specific keywords come first
ColorRules = tuple[tuple[tuple[str, ...], str], ...]
ValueRules = tuple[tuple[tuple[str, ...], int], ...]

DEFAULT_STATUS_RULES: ColorRules = (
    (("done", "complete", "closed", "resolved"), "bg-emerald-500/20 text-emerald-400"),
    (("progress", "review"), "bg-yellow-500/20 text-yellow-400"),
    (("todo", "to do", "backlog"), "bg-purple-500/20 text-purple-400"),
)

DEFAULT_PRIORITY_RULES: ColorRules = (
    (("highest", "critical", "blocker", "urgent"), "bg-red-500/10 text-red-400 border border-red-500/20"),
    (("high",), "bg-orange-500/10 text-orange-400 border border-orange-500/20"),
    (("low", "trivial", "minor"), "bg-slate-500/10 text-slate-400 border border-slate-500/20"),
)

DEFAULT_PRIORITY_VALUES: ValueRules = (
    (("highest", "critical", "blocker", "urgent"), 4),
    (("high",), 3),
    (("low", "trivial", "minor"), 1),
)


def _match_rule(name: str, rules: tuple[tuple[tuple[str, ...], Any], ...]) -> Any:
    lowered = name.lower()
    for keywords, result in rules:
        if any(keyword in lowered for keyword in keywords):
            return result
    return None


@dataclass(frozen=True)
class TicketPalette:
    """Status and priority presentation values handed to provider adapters.

    Providers never carry their own color tables; a palette is injected so
    deployments and tests can vary the values.

    Attributes:
        status_rules: Keyword rules mapping status names to colors
        priority_rules: Keyword rules mapping priority names to colors
        priority_values: Keyword rules mapping priority names to ordinals
            (higher is more urgent)
        default_status_color: Color for statuses no rule matches
        default_priority_color: Color for priorities no rule matches
        default_priority_name: Priority name used when a ticket has none
        default_priority_value: Ordinal for priorities no rule matches
    """

    status_rules: ColorRules = DEFAULT_STATUS_RULES
    priority_rules: ColorRules = DEFAULT_PRIORITY_RULES
    priority_values: ValueRules = DEFAULT_PRIORITY_VALUES
    default_status_color: str = "bg-blue-500/20 text-blue-400"
    default_priority_color: str = "bg-blue-500/10 text-blue-400 border border-blue-500/20"
    default_priority_name: str = "Medium"
    default_priority_value: int = 2

    def status_color(self, status_name: str) -> str:
        """Return the color for a status name."""
        return _match_rule(status_name, self.status_rules) or self.default_status_color

    def priority_color(self, priority_name: str) -> str:
        """Return the color for a priority name."""
        return _match_rule(priority_name, self.priority_rules) or self.default_priority_color

    def priority_value(self, priority_name: str) -> int:
        """Return the ordinal value for a priority name."""
        value = _match_rule(priority_name, self.priority_values)
        return self.default_priority_value if value is None else value


__all__ = [
    "AggregationConfig",
    "ConfigValidationError",
    "DEFAULT_AGGREGATION_ROUNDS",
    "DEFAULT_PAGE_SIZE_MAX",
    "DEFAULT_PAGE_SIZE_MIN",
    "FetchPerformanceConfig",
    "KNOWN_PROVIDER_KINDS",
    "MAX_AGGREGATION_ROUNDS",
    "MAX_RETRIES",
    "MAX_RETRY_DELAY_SECONDS",
    "MAX_TIMEOUT_SECONDS",
    "PROVIDER_REQUIRED_SETTINGS",
    "SETTING_ALIASES",
    "TicketPalette",
    "canonicalize_settings",
    "validate_integration_settings",
]
