"""Shared pytest fixtures for ORCHESTRA tests."""

import os
from pathlib import Path

import pytest

from orchestra.config.settings import Settings
from orchestra.integrations.providers.base import ProviderHandle, ProviderKind

# Enable pytest-asyncio for async test support
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove configuration variables inherited from the developer's shell."""
    config_keys = set(Settings.get_config_keys()) | {"INTEGRATIONS"}
    for key in list(os.environ):
        if key in config_keys or key.startswith("INTEGRATION_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def jira_handle() -> ProviderHandle:
    return ProviderHandle(
        id="work",
        kind=ProviderKind.JIRA,
        name="work",
        settings={"url": "https://company.atlassian.net", "token": "jira-token"},
    )


@pytest.fixture
def github_handle() -> ProviderHandle:
    return ProviderHandle(
        id="oss",
        kind=ProviderKind.GITHUB,
        name="oss",
        settings={"token": "gh-token", "repository": "acme/widgets"},
    )


@pytest.fixture
def handles() -> list[ProviderHandle]:
    """Three handles with ids a, b and c, in that order."""
    return [
        ProviderHandle(id="a", kind=ProviderKind.JIRA, name="a"),
        ProviderHandle(id="b", kind=ProviderKind.GITHUB, name="b"),
        ProviderHandle(id="c", kind=ProviderKind.GITLAB, name="c"),
    ]


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project directory that stops the local config search (has .git)."""
    project = tmp_path / "project"
    project.mkdir()
    (project / ".git").mkdir()
    return project
