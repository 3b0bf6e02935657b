"""Configuration management for ORCHESTRA.

This package contains:
- settings: Settings dataclass with configuration fields
- manager: ConfigManager class for loading configuration
- fetch_config: Fetch, aggregation and palette configuration
"""

from orchestra.config.fetch_config import (
    AggregationConfig,
    ConfigValidationError,
    FetchPerformanceConfig,
    TicketPalette,
)
from orchestra.config.manager import ConfigManager
from orchestra.config.settings import Settings

__all__ = [
    "AggregationConfig",
    "ConfigManager",
    "ConfigValidationError",
    "FetchPerformanceConfig",
    "Settings",
    "TicketPalette",
]
