"""Test fakes and factory helpers for provider testing."""

from tests.fakes.fake_provider import (
    DatasetProvider,
    ScriptedProvider,
    make_factory,
    make_summary,
)

__all__ = [
    "DatasetProvider",
    "ScriptedProvider",
    "make_factory",
    "make_summary",
]
