"""Tests for orchestra.integrations.providers.jira module."""

import httpx
import pytest

from orchestra.integrations.providers.base import ProviderHandle, ProviderKind
from orchestra.integrations.providers.exceptions import TicketIdFormatError
from orchestra.integrations.providers.jira import (
    DEFAULT_ORDER_BY,
    JiraTicketProvider,
    adf_to_text,
    build_jql,
)


def _issue(key: str, priority: str | None = "High", status: str = "In Progress") -> dict:
    return {
        "key": key,
        "fields": {
            "summary": f"Summary {key}",
            "status": {"name": status},
            "priority": {"name": priority} if priority else None,
            "description": {
                "type": "doc",
                "content": [
                    {"type": "paragraph", "content": [{"type": "text", "text": "Hello"}]},
                    {"type": "paragraph", "content": [{"type": "text", "text": "World"}]},
                ],
            },
        },
    }


def _provider(handler) -> JiraTicketProvider:
    return JiraTicketProvider(transport=httpx.MockTransport(handler))


@pytest.fixture
def onprem_handle() -> ProviderHandle:
    return ProviderHandle(
        id="dc",
        kind=ProviderKind.JIRA,
        settings={
            "url": "https://jira.internal/",
            "token": "pat",
            "deployment": "server",
            "filter": "project = OPS",
        },
    )


class TestBuildJql:
    """Tests for build_jql()."""

    def test_appends_default_order(self):
        assert build_jql("project = OPS") == f"project = OPS {DEFAULT_ORDER_BY}"

    def test_keeps_existing_order(self):
        assert build_jql("project = OPS order by created") == "project = OPS order by created"

    def test_empty_filter(self):
        assert build_jql(None) == DEFAULT_ORDER_BY


class TestAdfToText:
    """Tests for adf_to_text()."""

    def test_plain_string(self):
        assert adf_to_text("already text") == "already text"

    def test_document(self):
        assert adf_to_text(_issue("A-1")["fields"]["description"]) == "Hello\nWorld"

    def test_mentions_and_breaks(self):
        node = {
            "type": "doc",
            "content": [
                {
                    "type": "paragraph",
                    "content": [
                        {"type": "mention", "attrs": {"text": "@ana"}},
                        {"type": "hardBreak"},
                        {"type": "text", "text": "please look"},
                    ],
                }
            ],
        }

        assert adf_to_text(node) == "@ana\nplease look"

    def test_none(self):
        assert adf_to_text(None) == ""


class TestCloudSearch:
    """Tests for the token-paged cloud search."""

    @pytest.mark.asyncio
    async def test_first_page(self, jira_handle):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(
                200,
                json={"issues": [_issue("OPS-1"), _issue("OPS-2")], "nextPageToken": "tok-2"},
            )

        async with _provider(handler) as provider:
            page = await provider.fetch_tickets(jira_handle, None, 10)

        request = requests[0]
        assert request.url.path == "/rest/api/3/search/jql"
        assert request.url.params["jql"] == DEFAULT_ORDER_BY
        assert request.url.params["maxResults"] == "10"
        assert "nextPageToken" not in request.url.params
        assert request.headers["Authorization"] == "Bearer jira-token"
        assert page.is_last_page is False
        assert page.next_cursor == "tok-2"
        assert [item.external_id for item in page.items] == ["OPS-1", "OPS-2"]

    @pytest.mark.asyncio
    async def test_cursor_is_sent_and_last_page_detected(self, jira_handle):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"issues": [_issue("OPS-3")], "isLast": True})

        async with _provider(handler) as provider:
            page = await provider.fetch_tickets(jira_handle, "tok-2", 10)

        assert requests[0].url.params["nextPageToken"] == "tok-2"
        assert page.is_last_page is True
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_missing_token_means_last_page(self, jira_handle):
        def handler(request):
            return httpx.Response(200, json={"issues": [], "isLast": False})

        async with _provider(handler) as provider:
            page = await provider.fetch_tickets(jira_handle, None, 10)

        assert page.is_last_page is True

    @pytest.mark.asyncio
    async def test_max_results_capped(self, jira_handle):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"issues": [], "isLast": True})

        async with _provider(handler) as provider:
            await provider.fetch_tickets(jira_handle, None, 500)

        assert requests[0].url.params["maxResults"] == "100"

    @pytest.mark.asyncio
    async def test_basic_auth_with_email(self):
        handle = ProviderHandle(
            id="work",
            kind=ProviderKind.JIRA,
            settings={"url": "https://x.atlassian.net", "token": "t", "email": "me@x.com"},
        )
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"issues": [], "isLast": True})

        async with _provider(handler) as provider:
            await provider.fetch_tickets(handle, None, 5)

        assert requests[0].headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_normalization(self, jira_handle):
        def handler(request):
            return httpx.Response(200, json={"issues": [_issue("OPS-1")], "isLast": True})

        async with _provider(handler) as provider:
            page = await provider.fetch_tickets(jira_handle, None, 5)

        ticket = page.items[0]
        assert ticket.provider_id == "work"
        assert ticket.title == "Summary OPS-1"
        assert ticket.description == "Hello\nWorld"
        assert ticket.status.name == "In Progress"
        assert ticket.status.color == "bg-yellow-500/20 text-yellow-400"
        assert ticket.priority.name == "High"
        assert ticket.priority.value == 3
        assert ticket.external_url == "https://company.atlassian.net/browse/OPS-1"

    @pytest.mark.asyncio
    async def test_missing_priority_uses_default(self, jira_handle):
        def handler(request):
            return httpx.Response(
                200, json={"issues": [_issue("OPS-1", priority=None)], "isLast": True}
            )

        async with _provider(handler) as provider:
            page = await provider.fetch_tickets(jira_handle, None, 5)

        assert page.items[0].priority.name == "Medium"
        assert page.items[0].priority.value == 2


class TestOnPremSearch:
    """Tests for the offset-paged Server / Data Center search."""

    @pytest.mark.asyncio
    async def test_offset_paging(self, onprem_handle):
        requests = []

        def handler(request):
            requests.append(request)
            start = int(request.url.params["startAt"])
            issues = [_issue(f"OPS-{start + 1}"), _issue(f"OPS-{start + 2}")][: 3 - start]
            return httpx.Response(200, json={"issues": issues, "total": 3, "startAt": start})

        async with _provider(handler) as provider:
            first = await provider.fetch_tickets(onprem_handle, None, 2)
            second = await provider.fetch_tickets(onprem_handle, first.next_cursor, 2)

        assert requests[0].url.path == "/rest/api/2/search"
        assert requests[0].url.params["jql"] == f"project = OPS {DEFAULT_ORDER_BY}"
        assert first.next_cursor == "2"
        assert first.is_last_page is False
        assert [item.external_id for item in second.items] == ["OPS-3"]
        assert second.is_last_page is True
        assert second.next_cursor is None

    @pytest.mark.asyncio
    async def test_malformed_cursor_restarts(self, onprem_handle):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"issues": [], "total": 0})

        async with _provider(handler) as provider:
            page = await provider.fetch_tickets(onprem_handle, "tok-abc", 5)

        assert requests[0].url.params["startAt"] == "0"
        assert page.is_last_page is True


class TestFetchTicketById:
    """Tests for single issue retrieval."""

    @pytest.mark.asyncio
    async def test_invalid_key(self, jira_handle):
        async with _provider(lambda request: httpx.Response(500)) as provider:
            with pytest.raises(TicketIdFormatError, match="PROJECT-123"):
                await provider.fetch_ticket_by_id(jira_handle, "not a key")

    @pytest.mark.asyncio
    async def test_not_found(self, jira_handle):
        async with _provider(lambda request: httpx.Response(404)) as provider:
            assert await provider.fetch_ticket_by_id(jira_handle, "OPS-404") is None

    @pytest.mark.asyncio
    async def test_issue_with_comments(self, jira_handle):
        issue = _issue("OPS-7")
        issue["fields"]["comment"] = {
            "comments": [
                {
                    "id": "100",
                    "author": {"displayName": "Ana"},
                    "body": {
                        "type": "doc",
                        "content": [
                            {"type": "paragraph", "content": [{"type": "text", "text": "Done?"}]}
                        ],
                    },
                    "created": "2024-01-15T10:30:00.000+0000",
                }
            ]
        }
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=issue)

        async with _provider(handler) as provider:
            ticket = await provider.fetch_ticket_by_id(jira_handle, "ops-7")

        assert requests[0].url.path == "/rest/api/3/issue/OPS-7"
        assert ticket is not None
        assert ticket.comments[0].author == "Ana"
        assert ticket.comments[0].content == "Done?"
        assert ticket.comments[0].timestamp is not None
        assert ticket.comments[0].timestamp.year == 2024
