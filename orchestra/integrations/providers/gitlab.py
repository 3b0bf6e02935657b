"""GitLab Issues ticket provider.

Settings (ProviderHandle.settings):
    - token: Personal or project access token (required)
    - project: Numeric project id or "group/project" path (required)
    - url: Instance URL (default https://gitlab.com)
    - state: "opened", "closed" or empty for all
    - labels: Comma-separated label filter
    - per_page: Page size sent to the API, 1..100 (default 100)
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote

import httpx

from orchestra.integrations.providers.base import (
    ExternalTicketSummary,
    ProviderHandle,
    ProviderKind,
    ProviderPage,
    TicketComment,
)
from orchestra.integrations.providers.exceptions import TicketIdFormatError
from orchestra.integrations.providers.github import per_page_setting, priority_from_labels
from orchestra.integrations.providers.http import HttpTicketProvider, parse_offset_cursor
from orchestra.integrations.providers.registry import ProviderRegistry

GITLAB_URL = "https://gitlab.com"
MAX_PER_PAGE = 100


@ProviderRegistry.register
class GitLabTicketProvider(HttpTicketProvider):
    """Provider for GitLab project issues (REST API v4)."""

    KIND = ProviderKind.GITLAB
    REQUIRED_SETTINGS = frozenset({"token", "project"})

    def _project_url(self, handle: ProviderHandle) -> str:
        project = quote(handle.settings["project"].strip("/"), safe="")
        return f"{self._base_url(handle, GITLAB_URL)}/api/v4/projects/{project}"

    @staticmethod
    def _headers(handle: ProviderHandle) -> dict[str, str]:
        return {"PRIVATE-TOKEN": handle.settings["token"], "Accept": "application/json"}

    async def fetch_tickets(
        self,
        handle: ProviderHandle,
        cursor: str | None,
        max_items: int,
    ) -> ProviderPage:
        """List project issues, most recently updated first.

        The cursor is an offset into the listing. Whether another page
        follows comes from the X-Next-Page header; when the instance omits
        pagination headers, a short page is the last page.
        """
        self._validate_settings(handle)
        per_page = per_page_setting(handle, MAX_PER_PAGE)
        params: dict[str, Any] = {"order_by": "updated_at", "sort": "desc"}
        for key in ("state", "labels"):
            if handle.settings.get(key):
                params[key] = handle.settings[key]

        def has_next_page(response: httpx.Response, count: int) -> bool:
            if "X-Next-Page" in response.headers:
                return bool(response.headers["X-Next-Page"].strip())
            return count >= per_page

        window = await self._read_offset_window(
            handle,
            f"{self._project_url(handle)}/issues",
            offset=parse_offset_cursor(cursor),
            max_items=max_items,
            per_page=per_page,
            has_next_page=has_next_page,
            params=params,
            headers=self._headers(handle),
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
        """Fetch one issue by iid, with its user notes as comments."""
        if not re.fullmatch(r"\d+", external_id):
            raise TicketIdFormatError(
                provider_name=self.name,
                ticket_id=external_id,
                expected_format="issue iid",
            )
        self._validate_settings(handle)
        headers = self._headers(handle)
        issue_url = f"{self._project_url(handle)}/issues/{external_id}"

        issue = await self._find_json(handle, issue_url, headers=headers)
        if issue is None:
            return None

        note_data = await self._find_json(
            handle,
            f"{issue_url}/notes",
            params={"sort": "desc", "order_by": "created_at", "per_page": MAX_PER_PAGE},
            headers=headers,
        )
        # System notes record label and state changes, not discussion
        notes = [note for note in note_data or [] if not note.get("system")]
        return self._normalize(handle, issue, notes)

    def _normalize(
        self,
        handle: ProviderHandle,
        issue: dict[str, Any],
        notes: list[dict[str, Any]] | None = None,
    ) -> ExternalTicketSummary:
        labels = [str(label) for label in issue.get("labels") or []]
        return ExternalTicketSummary(
            provider_id=handle.id,
            external_id=str(issue.get("iid", "")),
            title=str(issue.get("title") or ""),
            description=str(issue.get("description") or ""),
            status=self._status(str(issue.get("state") or "opened")),
            priority=self._priority(priority_from_labels(labels)),
            external_url=str(issue.get("web_url") or ""),
            comments=tuple(
                TicketComment(
                    id=str(note["id"]) if note.get("id") is not None else None,
                    author=self.safe_nested_get(note.get("author"), "name", "Unknown"),
                    content=str(note.get("body") or ""),
                    timestamp=self.parse_timestamp(note.get("created_at")),
                )
                for note in notes or []
            ),
        )


__all__ = ["GitLabTicketProvider"]
