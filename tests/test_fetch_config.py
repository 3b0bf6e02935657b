"""Tests for orchestra.config.fetch_config module."""

import pytest

from orchestra.config.fetch_config import (
    MAX_AGGREGATION_ROUNDS,
    MAX_RETRIES,
    MAX_RETRY_DELAY_SECONDS,
    MAX_TIMEOUT_SECONDS,
    AggregationConfig,
    ConfigValidationError,
    FetchPerformanceConfig,
    TicketPalette,
    canonicalize_settings,
    validate_integration_settings,
)
from orchestra.utils.errors import ConfigurationError, ExitCode


class TestFetchPerformanceConfig:
    """Tests for FetchPerformanceConfig clamping."""

    def test_defaults(self):
        config = FetchPerformanceConfig()

        assert config.timeout_seconds == 30
        assert config.max_retries == 3
        assert config.retry_delay_seconds == 1.0

    def test_upper_bounds(self):
        config = FetchPerformanceConfig(
            timeout_seconds=10_000, max_retries=100, retry_delay_seconds=500
        )

        assert config.timeout_seconds == MAX_TIMEOUT_SECONDS
        assert config.max_retries == MAX_RETRIES
        assert config.retry_delay_seconds == MAX_RETRY_DELAY_SECONDS

    def test_lower_bounds(self):
        config = FetchPerformanceConfig(timeout_seconds=0, max_retries=-1, retry_delay_seconds=-2)

        assert config.timeout_seconds == 1
        assert config.max_retries == 0
        assert config.retry_delay_seconds == 0.0


class TestAggregationConfig:
    """Tests for AggregationConfig clamping."""

    def test_defaults(self):
        config = AggregationConfig()

        assert config.max_rounds == 3
        assert (config.page_size_min, config.page_size_max) == (50, 100)

    @pytest.mark.parametrize(("value", "expected"), [(0, 1), (-4, 1), (99, MAX_AGGREGATION_ROUNDS)])
    def test_rounds_clamped(self, value, expected):
        assert AggregationConfig(max_rounds=value).max_rounds == expected

    def test_page_size_bounds_repaired(self):
        config = AggregationConfig(page_size_min=0, page_size_max=-5)

        assert config.page_size_min == 1
        assert config.page_size_max == 1

    def test_cache_ttl_clamped(self):
        assert AggregationConfig(cache_ttl_minutes=-1).cache_ttl_minutes == 0
        assert AggregationConfig(cache_ttl_minutes=10**6).cache_ttl_minutes == 24 * 60


class TestTicketPalette:
    """Tests for TicketPalette keyword rules."""

    @pytest.fixture
    def palette(self):
        return TicketPalette()

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("Highest", 4),
            ("Critical", 4),
            ("Blocker", 4),
            ("urgent", 4),
            ("High", 3),
            ("Medium", 2),
            ("Normal", 2),
            ("Low", 1),
            ("Lowest", 1),
            ("Trivial", 1),
            ("Minor", 1),
        ],
    )
    def test_priority_values(self, palette, name, value):
        assert palette.priority_value(name) == value

    @pytest.mark.parametrize(
        ("status", "color_fragment"),
        [
            ("Done", "emerald"),
            ("Resolved", "emerald"),
            ("In Progress", "yellow"),
            ("In Review", "yellow"),
            ("To Do", "purple"),
            ("Backlog", "purple"),
            ("Triage", "blue"),
        ],
    )
    def test_status_colors(self, palette, status, color_fragment):
        assert color_fragment in palette.status_color(status)

    def test_priority_colors(self, palette):
        assert "red" in palette.priority_color("Blocker")
        assert "orange" in palette.priority_color("High")
        assert palette.priority_color("Medium") == palette.default_priority_color

    def test_custom_palette(self):
        palette = TicketPalette(
            priority_values=((("p0",), 4),),
            default_priority_value=1,
        )

        assert palette.priority_value("P0") == 4
        assert palette.priority_value("High") == 1


class TestIntegrationSettings:
    """Tests for canonicalize_settings() and validate_integration_settings()."""

    def test_canonicalize_lowercases_and_applies_aliases(self):
        settings = canonicalize_settings("gitlab", {"PROJECT_ID": "42", "Token": "t"})

        assert settings == {"project": "42", "token": "t"}

    def test_canonicalize_unknown_kind_only_lowercases(self):
        assert canonicalize_settings("trello", {"KEY": "v"}) == {"key": "v"}

    def test_valid_settings(self):
        assert validate_integration_settings("github", {"token": "t", "repository": "a/b"}) == []

    def test_unknown_kind(self):
        with pytest.raises(ConfigValidationError, match="Unknown provider kind"):
            validate_integration_settings("trello", {})

    def test_non_strict_collects_problems(self):
        errors = validate_integration_settings(
            "jira",
            {"url": "  ", "token": "${JIRA_TOKEN}"},
            name="work",
            strict=False,
        )

        assert errors == [
            "Setting 'token' for integration 'work' contains an unexpanded environment variable",
            "Setting 'url' for integration 'work' is empty",
        ]

    def test_strict_joins_problems(self):
        with pytest.raises(ConfigValidationError, match="Missing required settings") as exc_info:
            validate_integration_settings("confluence", {"token": "t"})

        assert "url" in str(exc_info.value)

    def test_validation_error_is_configuration_error(self):
        error = ConfigValidationError("bad")

        assert isinstance(error, ConfigurationError)
        assert error.exit_code == ExitCode.CONFIGURATION_ERROR
