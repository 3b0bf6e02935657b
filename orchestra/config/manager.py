"""Configuration manager for ORCHESTRA.

This module provides the ConfigManager class for loading configuration
values with a cascading hierarchy:

    1. Environment Variables (highest priority)
    2. Local Config (.orchestra in project/parent directories)
    3. Global Config (~/.orchestra-config)
    4. Built-in Defaults (lowest priority)

External integrations are declared with prefixed keys:

    INTEGRATIONS=work,oss
    INTEGRATION_WORK_KIND=jira
    INTEGRATION_WORK_ID=5f0c...            # optional, defaults to the name
    INTEGRATION_WORK_URL=https://company.atlassian.net
    INTEGRATION_WORK_TOKEN=${JIRA_TOKEN}
    INTEGRATION_OSS_KIND=github
    INTEGRATION_OSS_REPOSITORY=acme/widgets
    INTEGRATION_OSS_TOKEN=${GITHUB_TOKEN}

The INTEGRATIONS list fixes provider order, which in turn fixes how
leftover slots are distributed. Without it, integrations appear in the
order their keys were first seen.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from orchestra.config.fetch_config import (
    AggregationConfig,
    ConfigValidationError,
    FetchPerformanceConfig,
    TicketPalette,
    canonicalize_settings,
    validate_integration_settings,
)
from orchestra.config.settings import CONFIG_FILE, Settings
from orchestra.integrations.providers.base import ProviderHandle, ProviderKind
from orchestra.utils.env_utils import EnvVarExpansionError, expand_env_vars
from orchestra.utils.logging import log_message

logger = logging.getLogger(__name__)

INTEGRATIONS_KEY = "INTEGRATIONS"
INTEGRATION_PREFIX = "INTEGRATION_"

# Integration fields that describe the handle rather than its settings
_HANDLE_FIELDS = frozenset({"kind", "id", "name"})


class ConfigManager:
    """Loads configuration with cascading precedence.

    Configuration Precedence (highest to lowest):
    1. Environment Variables - CI/CD, temporary overrides
    2. Local Config (.orchestra) - Project-specific settings
    3. Global Config (~/.orchestra-config) - User defaults
    4. Built-in Defaults - Fallback values

    Files are parsed line by line as KEY=VALUE pairs; nothing is evaluated.

    Attributes:
        settings: Current settings instance
        global_config_path: Path to global ~/.orchestra-config file
        local_config_path: Path to discovered local .orchestra file (after load)
    """

    LOCAL_CONFIG_NAME = ".orchestra"
    GLOBAL_CONFIG_NAME = ".orchestra-config"

    def __init__(
        self,
        global_config_path: Path | None = None,
        search_start: Path | None = None,
    ) -> None:
        """Initialize the configuration manager.

        Args:
            global_config_path: Optional custom path to global config file.
                                Defaults to ~/.orchestra-config.
            search_start: Directory where the local config search begins.
                          Defaults to the current working directory.
        """
        self.global_config_path = global_config_path or CONFIG_FILE
        self.local_config_path: Path | None = None
        self.settings = Settings()
        self._search_start = search_start
        self._raw_values: dict[str, str] = {}
        self._config_sources: dict[str, str] = {}

    def load(self) -> Settings:
        """Load configuration from all sources with cascading precedence.

        This method is idempotent: each call starts from clean defaults.

        Returns:
            Settings instance with loaded values
        """
        self.settings = Settings()
        self.local_config_path = None
        self._raw_values = {}
        self._config_sources = {}

        if self.global_config_path.exists():
            log_message(f"Loading global configuration from {self.global_config_path}")
            self._load_file(self.global_config_path, source="global")

        local_path = self._find_local_config()
        if local_path:
            self.local_config_path = local_path
            log_message(f"Loading local configuration from {local_path}")
            self._load_file(local_path, source=f"local ({local_path})")

        self._load_environment()

        for key, value in self._raw_values.items():
            self._apply_value_to_settings(key, value)

        log_message(f"Configuration loaded successfully ({len(self._raw_values)} keys)")
        return self.settings

    def _find_local_config(self) -> Path | None:
        """Find local .orchestra config by traversing up from the start directory.

        Stops at the first .orchestra file, at a repository root (.git), or
        at the filesystem root.
        """
        current = (self._search_start or Path.cwd()).resolve()
        while True:
            config_path = current / self.LOCAL_CONFIG_NAME
            if config_path.is_file():
                return config_path

            if (current / ".git").exists():
                break

            parent = current.parent
            if parent == current:
                break
            current = parent

        return None

    def _load_file(self, path: Path, source: str = "file") -> None:
        """Load key=value pairs from a config file.

        Args:
            path: Path to the config file
            source: Source identifier for debugging
        """
        pattern = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_]*)=(.*)$")

        with path.open() as f:
            for line in f:
                line = line.strip()

                if not line or line.startswith("#"):
                    continue

                match = pattern.match(line)
                if not match:
                    logger.debug("Skipping malformed line in %s", source)
                    continue

                key, value = match.groups()
                if value.startswith('"') and value.endswith('"') and len(value) >= 2:
                    value = self._unescape_value(value[1:-1])
                elif value.startswith("'") and value.endswith("'") and len(value) >= 2:
                    # Single quotes: no escaping, just remove quotes
                    value = value[1:-1]

                self._raw_values[key] = value
                self._config_sources[key] = source

    def _load_environment(self) -> None:
        """Override config with environment variables.

        Only known keys, the INTEGRATIONS list and INTEGRATION_* keys are
        read, to avoid polluting the configuration with unrelated variables.
        """
        known_keys = set(Settings.get_config_keys()) | {INTEGRATIONS_KEY}
        for key, env_value in os.environ.items():
            if key in known_keys or key.startswith(INTEGRATION_PREFIX):
                self._raw_values[key] = env_value
                self._config_sources[key] = "environment"

    def _apply_value_to_settings(self, key: str, value: str) -> None:
        """Apply a raw config value to the settings object.

        The target type is taken from the current attribute value. Values
        that fail to parse keep the default and log a warning.
        """
        attr = self.settings.get_attribute_for_key(key)
        if attr is None:
            return

        current_value = getattr(self.settings, attr)

        if isinstance(current_value, bool):
            setattr(self.settings, attr, value.lower() in ("true", "1", "yes"))
        elif isinstance(current_value, int):
            try:
                setattr(self.settings, attr, int(value))
            except ValueError:
                logger.warning("Invalid %s value '%s', using default %s", key, value, current_value)
        elif isinstance(current_value, float):
            try:
                setattr(self.settings, attr, float(value))
            except ValueError:
                logger.warning("Invalid %s value '%s', using default %s", key, value, current_value)
        else:
            setattr(self.settings, attr, value)

    @staticmethod
    def _unescape_value(value: str) -> str:
        """Unescape backslashes and double quotes in a double-quoted value."""
        result = value.replace("\\\\", "\\")
        result = result.replace('\\"', '"')
        return result

    def get(self, key: str, default: str = "") -> str:
        """Get a raw configuration value.

        Args:
            key: Configuration key to retrieve
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._raw_values.get(key, default)

    def get_source(self, key: str) -> str | None:
        """Name the source a key was loaded from ("global", "environment", ...)."""
        return self._config_sources.get(key)

    # ------------------------------------------------------------------
    # Typed views
    # ------------------------------------------------------------------

    def get_fetch_performance_config(self) -> FetchPerformanceConfig:
        """Get fetch performance configuration.

        Values are clamped to safe bounds by FetchPerformanceConfig.
        """
        return FetchPerformanceConfig(
            timeout_seconds=self.settings.fetch_timeout_seconds,
            max_retries=self.settings.fetch_max_retries,
            retry_delay_seconds=self.settings.fetch_retry_delay_seconds,
        )

    def get_aggregation_config(self) -> AggregationConfig:
        """Get aggregation engine configuration."""
        return AggregationConfig(
            max_rounds=self.settings.aggregation_max_rounds,
            page_size_min=self.settings.page_size_min,
            page_size_max=self.settings.page_size_max,
            cache_ttl_minutes=self.settings.ticket_cache_ttl_minutes,
        )

    def get_ticket_palette(self) -> TicketPalette:
        """Build the presentation palette handed to provider adapters."""
        return TicketPalette(
            default_status_color=self.settings.default_status_color,
            default_priority_color=self.settings.default_priority_color,
            default_priority_name=self.settings.default_priority_name,
        )

    def _integration_names(self) -> list[str]:
        """Integration names in configuration order."""
        declared = self._raw_values.get(INTEGRATIONS_KEY, "")
        if declared.strip():
            declared_names = [name.strip().upper() for name in declared.split(",") if name.strip()]
            return list(dict.fromkeys(declared_names))

        names: list[str] = []
        for key in self._raw_values:
            if key.startswith(INTEGRATION_PREFIX):
                name = key[len(INTEGRATION_PREFIX) :].split("_", 1)[0]
                if name and name not in names:
                    names.append(name)
        return names

    def get_integrations(self, strict: bool = True) -> list[ProviderHandle]:
        """Build provider handles from INTEGRATION_<NAME>_<FIELD> keys.

        Setting values are expanded from ${VAR} environment references and
        setting keys are canonicalized per provider kind.

        Args:
            strict: If True, invalid integrations raise ConfigValidationError.
                    If False, they are logged and skipped.

        Returns:
            Provider handles in configuration order

        Raises:
            ConfigValidationError: If strict=True and an integration is invalid,
                or two integrations share an id
        """
        handles: list[ProviderHandle] = []
        seen_ids: dict[str, str] = {}

        for name in self._integration_names():
            try:
                handle = self._build_handle(name, strict)
            except (ConfigValidationError, EnvVarExpansionError) as e:
                if strict:
                    raise ConfigValidationError(str(e)) from e
                logger.warning("Skipping integration '%s': %s", name.lower(), e)
                continue

            if handle.id in seen_ids:
                message = (
                    f"Integrations '{seen_ids[handle.id]}' and '{name.lower()}' "
                    f"share the id '{handle.id}'"
                )
                if strict:
                    raise ConfigValidationError(message)
                logger.warning("Skipping integration '%s': %s", name.lower(), message)
                continue

            seen_ids[handle.id] = name.lower()
            handles.append(handle)

        return handles

    def _build_handle(self, name: str, strict: bool) -> ProviderHandle:
        prefix = f"{INTEGRATION_PREFIX}{name}_"
        fields: dict[str, str] = {}
        for key, value in self._raw_values.items():
            if key.startswith(prefix):
                fields[key[len(prefix) :].lower()] = expand_env_vars(
                    value, strict=strict, context=key
                )

        kind_value = fields.get("kind", "")
        if not kind_value:
            raise ConfigValidationError(f"Integration '{name.lower()}' has no {prefix}KIND")
        try:
            kind = ProviderKind.parse(kind_value)
        except ValueError as e:
            raise ConfigValidationError(f"Integration '{name.lower()}': {e}") from None

        settings = canonicalize_settings(
            kind.value,
            {key: value for key, value in fields.items() if key not in _HANDLE_FIELDS},
        )
        validate_integration_settings(kind.value, settings, name=name.lower(), strict=True)

        return ProviderHandle(
            id=fields.get("id") or name.lower(),
            kind=kind,
            name=fields.get("name") or name.lower(),
            settings=settings,
        )


__all__ = [
    "ConfigManager",
    "INTEGRATIONS_KEY",
    "INTEGRATION_PREFIX",
]
