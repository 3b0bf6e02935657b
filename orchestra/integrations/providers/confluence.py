"""Confluence ticket provider.

Wiki pages are projected into the ticket shape: the page status becomes
the ticket status, the rendered body becomes the description and page
comments become ticket comments. Pages carry no priority, so every page
gets the palette's default priority.

Settings (ProviderHandle.settings):
    - url: Confluence base URL including the context path (required),
      e.g. https://company.atlassian.net/wiki
    - token: API token or personal access token (required)
    - email: Account email; enables Basic auth. Bearer auth otherwise
    - space: Space key to restrict the search to
    - filter: CQL query; replaces the default page query when set
"""

from __future__ import annotations

import html
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
from orchestra.integrations.providers.http import HttpTicketProvider, parse_offset_cursor
from orchestra.integrations.providers.registry import ProviderRegistry

CONTENT_EXPAND = "body.storage,version,space"
MAX_LIMIT = 100

_TAG_PATTERN = re.compile(r"<[^>]+>")
_BLOCK_END_PATTERN = re.compile(r"</(p|h[1-6]|li|div|tr)>|<br\s*/?>", re.IGNORECASE)


def storage_to_text(markup: str | None) -> str:
    """Reduce Confluence storage-format XHTML to plain text."""
    if not markup:
        return ""
    text = _BLOCK_END_PATTERN.sub("\n", markup)
    text = html.unescape(_TAG_PATTERN.sub("", text))
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def build_cql(space: str | None, filter_query: str | None) -> str:
    """Build the page search query.

    Example:
        >>> build_cql("OPS", None)
        'type = page AND space = "OPS" ORDER BY lastmodified DESC'
    """
    if filter_query and filter_query.strip():
        return filter_query.strip()
    query = "type = page"
    if space:
        query += f' AND space = "{space}"'
    return f"{query} ORDER BY lastmodified DESC"


@ProviderRegistry.register
class ConfluenceTicketProvider(HttpTicketProvider):
    """Provider exposing Confluence pages as tickets."""

    KIND = ProviderKind.CONFLUENCE
    REQUIRED_SETTINGS = frozenset({"url", "token"})

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
        """Search pages with CQL. The cursor is the result offset."""
        self._validate_settings(handle)
        auth, headers = self._auth(handle)
        start = parse_offset_cursor(cursor)

        data, _ = await self._get_json(
            handle,
            f"{self._base_url(handle)}/rest/api/content/search",
            params={
                "cql": build_cql(handle.settings.get("space"), handle.settings.get("filter")),
                "start": start,
                "limit": min(max_items, MAX_LIMIT),
                "expand": CONTENT_EXPAND,
            },
            headers=headers,
            auth=auth,
        )

        pages = data.get("results") or []
        links = data.get("_links") or {}
        is_last = "next" not in links
        base = links.get("base") or self._base_url(handle)
        return ProviderPage(
            items=tuple(self._normalize(handle, page, base) for page in pages),
            is_last_page=is_last,
            next_cursor=None if is_last else str(start + len(pages)),
        )

    async def fetch_ticket_by_id(
        self,
        handle: ProviderHandle,
        external_id: str,
    ) -> ExternalTicketSummary | None:
        """Fetch one page by content id, with its comments."""
        if not re.fullmatch(r"\d+", external_id):
            raise TicketIdFormatError(
                provider_name=self.name,
                ticket_id=external_id,
                expected_format="numeric page id",
            )
        self._validate_settings(handle)
        auth, headers = self._auth(handle)
        content_url = f"{self._base_url(handle)}/rest/api/content/{external_id}"

        page = await self._find_json(
            handle,
            content_url,
            params={"expand": CONTENT_EXPAND},
            headers=headers,
            auth=auth,
        )
        if page is None:
            return None

        comment_data = await self._find_json(
            handle,
            f"{content_url}/child/comment",
            params={"expand": "body.storage,version", "limit": MAX_LIMIT},
            headers=headers,
            auth=auth,
        )
        comments = (comment_data or {}).get("results") or []
        base = (page.get("_links") or {}).get("base") or self._base_url(handle)
        return self._normalize(handle, page, base, comments)

    def _normalize(
        self,
        handle: ProviderHandle,
        page: dict[str, Any],
        base: str,
        comments: list[dict[str, Any]] | None = None,
    ) -> ExternalTicketSummary:
        page_id = str(page.get("id", ""))
        webui = (page.get("_links") or {}).get("webui")
        url = f"{base}{webui}" if webui else f"{base}/pages/viewpage.action?pageId={page_id}"
        body = (page.get("body") or {}).get("storage") or {}

        return ExternalTicketSummary(
            provider_id=handle.id,
            external_id=page_id,
            title=str(page.get("title") or ""),
            description=storage_to_text(body.get("value")),
            status=self._status(str(page.get("status") or "current")),
            priority=self._priority(None),
            external_url=url,
            comments=tuple(self._comment(comment) for comment in comments or []),
        )

    def _comment(self, comment: dict[str, Any]) -> TicketComment:
        version = comment.get("version") or {}
        body = (comment.get("body") or {}).get("storage") or {}
        return TicketComment(
            id=str(comment["id"]) if comment.get("id") is not None else None,
            author=self.safe_nested_get(version.get("by"), "displayName", "Unknown"),
            content=storage_to_text(body.get("value")),
            timestamp=self.parse_timestamp(version.get("when")),
        )


__all__ = [
    "ConfluenceTicketProvider",
    "build_cql",
    "storage_to_text",
]
