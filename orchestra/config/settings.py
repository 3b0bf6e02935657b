"""Settings dataclass for ORCHESTRA configuration.

This module defines the Settings dataclass that holds the scalar
configuration values. Integration declarations (INTEGRATION_<NAME>_<FIELD>)
are dynamic and handled by ConfigManager.get_integrations().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from orchestra.config.fetch_config import (
    DEFAULT_AGGREGATION_ROUNDS,
    DEFAULT_PAGE_SIZE_MAX,
    DEFAULT_PAGE_SIZE_MIN,
)


@dataclass
class Settings:
    """Configuration settings for ORCHESTRA.

    All settings have sensible defaults and can be loaded from
    the configuration file (~/.orchestra-config).

    Attributes:
        aggregation_max_rounds: Hard cap on fetch rounds per page request
        page_size_min: Smallest accepted page size
        page_size_max: Largest accepted page size
        fetch_timeout_seconds: Per-request HTTP timeout for provider calls
        fetch_max_retries: Retry attempts for transient provider failures
        fetch_retry_delay_seconds: Base delay for exponential backoff
        ticket_cache_ttl_minutes: Lifetime of single-ticket cache entries
        default_status_color: Color for statuses without a matching rule
        default_priority_color: Color for priorities without a matching rule
        default_priority_name: Priority name for tickets that carry none
        materialized_tickets_file: JSON file with local assignment records
    """

    # Aggregation settings
    aggregation_max_rounds: int = DEFAULT_AGGREGATION_ROUNDS
    page_size_min: int = DEFAULT_PAGE_SIZE_MIN
    page_size_max: int = DEFAULT_PAGE_SIZE_MAX

    # Fetch performance settings
    fetch_timeout_seconds: int = 30
    fetch_max_retries: int = 3
    fetch_retry_delay_seconds: float = 1.0

    # Single-ticket cache
    ticket_cache_ttl_minutes: int = 60

    # Presentation settings
    default_status_color: str = "bg-blue-500/20 text-blue-400"
    default_priority_color: str = "bg-blue-500/10 text-blue-400 border border-blue-500/20"
    default_priority_name: str = "Medium"

    # Local overlay source
    materialized_tickets_file: str = ""

    # Config key to attribute mapping
    _key_mapping: dict[str, str] = field(
        default_factory=lambda: {
            "AGGREGATION_MAX_ROUNDS": "aggregation_max_rounds",
            "PAGE_SIZE_MIN": "page_size_min",
            "PAGE_SIZE_MAX": "page_size_max",
            "FETCH_TIMEOUT_SECONDS": "fetch_timeout_seconds",
            "FETCH_MAX_RETRIES": "fetch_max_retries",
            "FETCH_RETRY_DELAY_SECONDS": "fetch_retry_delay_seconds",
            "TICKET_CACHE_TTL_MINUTES": "ticket_cache_ttl_minutes",
            "DEFAULT_STATUS_COLOR": "default_status_color",
            "DEFAULT_PRIORITY_COLOR": "default_priority_color",
            "DEFAULT_PRIORITY_NAME": "default_priority_name",
            "MATERIALIZED_TICKETS_FILE": "materialized_tickets_file",
        },
        repr=False,
    )

    def get_attribute_for_key(self, key: str) -> str | None:
        """Get the attribute name for a config key.

        Args:
            key: Configuration key (e.g., "PAGE_SIZE_MAX")

        Returns:
            Attribute name or None if key is unknown
        """
        return self._key_mapping.get(key)

    @classmethod
    def get_config_keys(cls) -> list[str]:
        """Get list of all valid configuration keys."""
        return list(cls()._key_mapping.keys())


# Default configuration file path
CONFIG_FILE = Path.home() / ".orchestra-config"
