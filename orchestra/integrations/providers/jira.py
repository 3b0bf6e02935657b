"""Jira ticket provider.

Supports both deployments:
    - cloud: REST API v3, token-based search (/rest/api/3/search/jql) that
      pages with ``nextPageToken`` and reports ``isLast``
    - onprem: REST API v2 (Server / Data Center), offset search
      (/rest/api/2/search) that pages with ``startAt`` against ``total``

Settings (ProviderHandle.settings):
    - url: Jira instance URL (required)
    - token: API token or personal access token (required)
    - email: Account email; enables Basic auth (cloud). Bearer auth otherwise
    - filter: JQL filter, ordered by priority and recency unless it already
      has an ORDER BY clause
    - deployment: "cloud" (default) or "onprem"
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from orchestra.integrations.providers.base import (
    ExternalTicketSummary,
    ProviderHandle,
    ProviderKind,
    ProviderPage,
    TicketComment,
)
from orchestra.integrations.providers.exceptions import TicketIdFormatError
from orchestra.integrations.providers.http import HttpTicketProvider
from orchestra.integrations.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_ORDER_BY = "ORDER BY priority DESC, updated DESC"
SEARCH_FIELDS = "key,status,priority,summary,description,comment,created,updated"
MAX_SEARCH_RESULTS = 100

ONPREM_DEPLOYMENTS = frozenset({"onprem", "on-prem", "server", "datacenter", "data_center"})

# PROJ-123 style keys
ISSUE_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*-\d+$", re.IGNORECASE)


def build_jql(filter_query: str | None) -> str:
    """Append the default ordering to a JQL filter.

    Example:
        >>> build_jql("project = OPS")
        'project = OPS ORDER BY priority DESC, updated DESC'
    """
    query = (filter_query or "").strip()
    if re.search(r"\border\s+by\b", query, re.IGNORECASE):
        return query
    return f"{query} {DEFAULT_ORDER_BY}".strip()


def adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format node into plain text.

    API v3 returns descriptions and comment bodies as ADF documents while
    v2 returns plain strings; both are accepted here.
    """
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(adf_to_text(child) for child in node)
    if not isinstance(node, dict):
        return ""

    node_type = node.get("type")
    if node_type == "text":
        return str(node.get("text", ""))
    if node_type == "hardBreak":
        return "\n"
    if node_type == "mention":
        return str(node.get("attrs", {}).get("text", ""))

    text = adf_to_text(node.get("content", []))
    if node_type in ("paragraph", "heading", "listItem", "codeBlock", "blockquote"):
        return text.rstrip("\n") + "\n"
    if node_type == "doc":
        return text.strip()
    return text


@ProviderRegistry.register
class JiraTicketProvider(HttpTicketProvider):
    """Provider for Jira Cloud and Jira Server / Data Center."""

    KIND = ProviderKind.JIRA
    REQUIRED_SETTINGS = frozenset({"url", "token"})

    @staticmethod
    def is_onprem(handle: ProviderHandle) -> bool:
        return handle.settings.get("deployment", "cloud").strip().lower() in ONPREM_DEPLOYMENTS

    def _api_root(self, handle: ProviderHandle) -> str:
        version = "2" if self.is_onprem(handle) else "3"
        return f"{self._base_url(handle)}/rest/api/{version}"

    def _auth(self, handle: ProviderHandle) -> tuple[httpx.Auth | None, dict[str, str]]:
        headers = {"Accept": "application/json"}
        email = handle.settings.get("email")
        if email:
            return httpx.BasicAuth(email, handle.settings["token"]), headers
        headers["Authorization"] = f"Bearer {handle.settings['token']}"
        return None, headers

    async def fetch_tickets(
        self,
        handle: ProviderHandle,
        cursor: str | None,
        max_items: int,
    ) -> ProviderPage:
        """Run the configured JQL search for one page of issues."""
        self._validate_settings(handle)
        auth, headers = self._auth(handle)
        params: dict[str, Any] = {
            "jql": build_jql(handle.settings.get("filter")),
            "fields": SEARCH_FIELDS,
            "maxResults": min(max_items, MAX_SEARCH_RESULTS),
        }

        if self.is_onprem(handle):
            return await self._search_onprem(handle, cursor, params, auth, headers)

        if cursor:
            params["nextPageToken"] = cursor
        data, _ = await self._get_json(
            handle,
            f"{self._api_root(handle)}/search/jql",
            params=params,
            headers=headers,
            auth=auth,
        )

        issues = data.get("issues") or []
        next_token = data.get("nextPageToken")
        is_last = bool(data.get("isLast")) or not next_token
        return ProviderPage(
            items=tuple(self._normalize(handle, issue) for issue in issues),
            is_last_page=is_last,
            next_cursor=None if is_last else next_token,
        )

    async def _search_onprem(
        self,
        handle: ProviderHandle,
        cursor: str | None,
        params: dict[str, Any],
        auth: httpx.Auth | None,
        headers: dict[str, str],
    ) -> ProviderPage:
        start_at = 0
        if cursor:
            try:
                start_at = max(0, int(cursor))
            except ValueError:
                logger.warning(
                    "Ignoring malformed Jira cursor %r, restarting search",
                    cursor,
                    extra={"provider": self.name, "provider_id": handle.id},
                )
        params["startAt"] = start_at

        data, _ = await self._get_json(
            handle,
            f"{self._api_root(handle)}/search",
            params=params,
            headers=headers,
            auth=auth,
        )

        issues = data.get("issues") or []
        total = int(data.get("total") or 0)
        next_start = start_at + len(issues)
        is_last = total == 0 or next_start >= total
        return ProviderPage(
            items=tuple(self._normalize(handle, issue) for issue in issues),
            is_last_page=is_last,
            next_cursor=None if is_last else str(next_start),
        )

    async def fetch_ticket_by_id(
        self,
        handle: ProviderHandle,
        external_id: str,
    ) -> ExternalTicketSummary | None:
        """Fetch one issue by key, with its comments.

        API endpoint: GET /rest/api/{2|3}/issue/{issueKey}
        """
        if not ISSUE_KEY_PATTERN.match(external_id):
            raise TicketIdFormatError(
                provider_name=self.name,
                ticket_id=external_id,
                expected_format="PROJECT-123",
            )
        self._validate_settings(handle)
        auth, headers = self._auth(handle)

        issue = await self._find_json(
            handle,
            f"{self._api_root(handle)}/issue/{external_id.upper()}",
            params={"fields": SEARCH_FIELDS},
            headers=headers,
            auth=auth,
        )
        if issue is None:
            return None
        return self._normalize(handle, issue)

    def _normalize(self, handle: ProviderHandle, issue: dict[str, Any]) -> ExternalTicketSummary:
        fields = issue.get("fields") or {}
        key = str(issue.get("key", ""))

        comments = []
        comment_block = fields.get("comment")
        if isinstance(comment_block, dict):
            for comment in comment_block.get("comments") or []:
                comments.append(
                    TicketComment(
                        id=str(comment["id"]) if comment.get("id") is not None else None,
                        author=self.safe_nested_get(comment.get("author"), "displayName", "Unknown"),
                        content=adf_to_text(comment.get("body")),
                        timestamp=self.parse_timestamp(comment.get("created")),
                    )
                )

        priority_name = self.safe_nested_get(fields.get("priority"), "name")
        return ExternalTicketSummary(
            provider_id=handle.id,
            external_id=key,
            title=str(fields.get("summary") or ""),
            description=adf_to_text(fields.get("description")),
            status=self._status(self.safe_nested_get(fields.get("status"), "name", "Unknown")),
            priority=self._priority(priority_name),
            external_url=f"{self._base_url(handle)}/browse/{key}",
            comments=tuple(comments),
        )


__all__ = [
    "JiraTicketProvider",
    "adf_to_text",
    "build_jql",
]
