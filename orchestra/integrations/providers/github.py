"""GitHub Issues ticket provider.

Settings (ProviderHandle.settings):
    - token: Personal access token (required)
    - repository: "owner/repo" (required)
    - url: API base URL for GitHub Enterprise (default https://api.github.com)
    - state: Issue state filter, "open", "closed" or "all" (default "all")
    - labels: Comma-separated label filter
    - per_page: Page size sent to the API, 1..100 (default 100)

The issues endpoint also returns pull requests. They are skipped while
reading, and a call reads at most a few API pages, so a result may come
back shorter than requested without being the last page.
"""

from __future__ import annotations

import re
from typing import Any

from orchestra.integrations.providers.base import (
    ExternalTicketSummary,
    ProviderHandle,
    ProviderKind,
    ProviderPage,
    TicketComment,
)
from orchestra.integrations.providers.exceptions import TicketIdFormatError
from orchestra.integrations.providers.http import HttpTicketProvider, parse_offset_cursor
from orchestra.integrations.providers.registry import ProviderRegistry

API_URL = "https://api.github.com"
MAX_PER_PAGE = 100

# Labels that carry priority information
PRIORITY_LABEL_KEYWORDS = ("priority", "urgent", "critical", "high", "low")


def per_page_setting(handle: ProviderHandle, maximum: int) -> int:
    """Read the optional ``per_page`` setting, clamped to 1..maximum."""
    raw = handle.settings.get("per_page")
    if not raw:
        return maximum
    try:
        return min(max(1, int(raw)), maximum)
    except ValueError:
        return maximum


def priority_from_labels(labels: list[str]) -> str | None:
    """Pick the first label that looks like a priority, e.g. 'priority: high'."""
    for label in labels:
        if any(keyword in label.lower() for keyword in PRIORITY_LABEL_KEYWORDS):
            return label
    return None


@ProviderRegistry.register
class GitHubTicketProvider(HttpTicketProvider):
    """Provider for GitHub repository issues (REST API v3)."""

    KIND = ProviderKind.GITHUB
    REQUIRED_SETTINGS = frozenset({"token", "repository"})

    def _repo_url(self, handle: ProviderHandle) -> str:
        repository = handle.settings["repository"].strip("/")
        return f"{self._base_url(handle, API_URL)}/repos/{repository}"

    @staticmethod
    def _headers(handle: ProviderHandle) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {handle.settings['token']}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def fetch_tickets(
        self,
        handle: ProviderHandle,
        cursor: str | None,
        max_items: int,
    ) -> ProviderPage:
        """List repository issues, most recently updated first.

        API endpoint: GET /repos/{owner}/{repo}/issues

        The cursor is an offset into the raw listing (pull requests
        included), so it resumes at the same issue whatever page size the
        next call asks for.
        """
        self._validate_settings(handle)
        params: dict[str, Any] = {
            "state": handle.settings.get("state") or "all",
            "sort": "updated",
            "direction": "desc",
        }
        if handle.settings.get("labels"):
            params["labels"] = handle.settings["labels"]

        window = await self._read_offset_window(
            handle,
            f"{self._repo_url(handle)}/issues",
            offset=parse_offset_cursor(cursor),
            max_items=max_items,
            per_page=per_page_setting(handle, MAX_PER_PAGE),
            has_next_page=lambda response, _count: "next" in response.links,
            params=params,
            headers=self._headers(handle),
            keep=lambda item: "pull_request" not in item,
        )
        return ProviderPage(
            items=tuple(self._normalize(handle, issue) for issue in window.entries),
            is_last_page=window.is_last,
            next_cursor=None if window.is_last else str(window.next_offset),
        )

    async def fetch_ticket_by_id(
        self,
        handle: ProviderHandle,
        external_id: str,
    ) -> ExternalTicketSummary | None:
        """Fetch one issue by number, with its comments.

        Pull requests are not tickets and resolve to None.
        """
        if not re.fullmatch(r"\d+", external_id):
            raise TicketIdFormatError(
                provider_name=self.name,
                ticket_id=external_id,
                expected_format="issue number",
            )
        self._validate_settings(handle)
        headers = self._headers(handle)

        issue = await self._find_json(
            handle,
            f"{self._repo_url(handle)}/issues/{external_id}",
            headers=headers,
        )
        if issue is None or "pull_request" in issue:
            return None

        comments: list[dict[str, Any]] = []
        if issue.get("comments"):
            comment_data = await self._find_json(
                handle,
                f"{self._repo_url(handle)}/issues/{external_id}/comments",
                params={"per_page": MAX_PER_PAGE},
                headers=headers,
            )
            comments = comment_data or []

        return self._normalize(handle, issue, comments)

    def _normalize(
        self,
        handle: ProviderHandle,
        issue: dict[str, Any],
        comments: list[dict[str, Any]] | None = None,
    ) -> ExternalTicketSummary:
        labels = [
            label.get("name", "") if isinstance(label, dict) else str(label)
            for label in issue.get("labels") or []
        ]
        return ExternalTicketSummary(
            provider_id=handle.id,
            external_id=str(issue.get("number", "")),
            title=str(issue.get("title") or ""),
            description=str(issue.get("body") or ""),
            status=self._status(str(issue.get("state") or "open")),
            priority=self._priority(priority_from_labels(labels)),
            external_url=str(issue.get("html_url") or ""),
            comments=tuple(
                TicketComment(
                    id=str(comment["id"]) if comment.get("id") is not None else None,
                    author=self.safe_nested_get(comment.get("user"), "login", "Unknown"),
                    content=str(comment.get("body") or ""),
                    timestamp=self.parse_timestamp(comment.get("created_at")),
                )
                for comment in comments or []
            ),
        )


__all__ = [
    "GitHubTicketProvider",
    "per_page_setting",
    "priority_from_labels",
]
