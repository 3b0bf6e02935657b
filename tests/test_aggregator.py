"""Tests for orchestra.tickets.aggregator module.

Tests cover:
- Slot allocation per round and leftover redistribution
- Exhaustion from last pages, under-yield and permanent errors
- Transient failures and unexpected exceptions
- Cursor threading through PaginationState
- De-duplication within a page request
- Local overlay of materialized tickets
- Concurrency within a round and cancellation
"""

import asyncio

import pytest

from orchestra.integrations.providers.base import ProviderHandle, ProviderKind, ProviderPage
from orchestra.integrations.providers.exceptions import (
    CredentialValidationError,
    ProviderPermanentError,
    ProviderTransientError,
)
from orchestra.tickets.aggregator import ExternalTicketAggregator
from orchestra.tickets.models import OutcomeKind
from orchestra.tickets.overlay import InMemoryMaterializedTicketStore, MaterializedTicket
from orchestra.tickets.pagination import PaginationState
from orchestra.utils.errors import NoProvidersConfiguredError
from tests.fakes import DatasetProvider, ScriptedProvider, make_factory, make_summary


def _ids(page) -> list[str]:
    return [ticket.composite_id for ticket in page.tickets]


@pytest.fixture
def two_handles(handles) -> list[ProviderHandle]:
    return handles[:2]


# =============================================================================
# Construction and input validation
# =============================================================================


class TestAggregatorInputs:
    """Tests for argument validation."""

    def test_max_rounds_must_be_positive(self):
        with pytest.raises(ValueError, match="max_rounds"):
            ExternalTicketAggregator(make_factory({}), max_rounds=0)

    @pytest.mark.asyncio
    async def test_empty_provider_list_rejected(self):
        aggregator = ExternalTicketAggregator(make_factory({}))

        with pytest.raises(NoProvidersConfiguredError):
            await aggregator.fetch_page([], 10)

    @pytest.mark.asyncio
    async def test_negative_target_rejected(self, two_handles):
        aggregator = ExternalTicketAggregator(make_factory({}))

        with pytest.raises(ValueError, match="target_count"):
            await aggregator.fetch_page(two_handles, -1)

    @pytest.mark.asyncio
    async def test_zero_target_calls_nobody(self, two_handles):
        a, b = DatasetProvider("a", 10), DatasetProvider("b", 10)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        page = await aggregator.fetch_page(two_handles, 0)

        assert page.tickets == ()
        assert page.has_more is True
        assert a.calls == [] and b.calls == []


# =============================================================================
# Allocation and rounds
# =============================================================================


class TestAllocationRounds:
    """Tests for how slots are spread across providers and rounds."""

    @pytest.mark.asyncio
    async def test_even_split_fills_page_in_one_round(self, two_handles):
        a, b = DatasetProvider("a", 100), DatasetProvider("b", 100)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert _ids(page) == [f"a:T-{i}" for i in range(1, 6)] + [f"b:T-{i}" for i in range(1, 6)]
        assert a.calls == [(None, 5)]
        assert b.calls == [(None, 5)]
        assert page.has_more is True
        assert dict(page.state.cursors) == {"a": "5", "b": "5"}
        assert len(page.rounds) == 1

    @pytest.mark.asyncio
    async def test_zero_slot_providers_are_not_called(self, handles):
        providers = {h.id: DatasetProvider(h.id, 10) for h in handles}
        aggregator = ExternalTicketAggregator(make_factory(providers))

        page = await aggregator.fetch_page(handles, 1)

        assert _ids(page) == ["a:T-1"]
        assert providers["a"].calls == [(None, 1)]
        assert providers["b"].calls == []
        assert providers["c"].calls == []

    @pytest.mark.asyncio
    async def test_shortfall_redistributed_in_next_round(self, two_handles):
        """A provider that under-yields leaves slots for the next round."""
        a = DatasetProvider("a", 100, max_per_call=2)
        b = DatasetProvider("b", 100)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert len(page.tickets) == 10
        assert a.calls == [(None, 5), ("2", 2)]
        assert b.calls == [(None, 5), ("5", 1)]
        assert _ids(page)[:7] == ["a:T-1", "a:T-2", "b:T-1", "b:T-2", "b:T-3", "b:T-4", "b:T-5"]
        assert len(page.rounds) == 2
        assert page.has_more is True

    @pytest.mark.asyncio
    async def test_round_cap_stops_short_page(self, jira_handle):
        slow = DatasetProvider("work", 100, max_per_call=1)
        aggregator = ExternalTicketAggregator(make_factory({"work": slow}), max_rounds=3)

        page = await aggregator.fetch_page([jira_handle], 10)

        assert len(page.tickets) == 3
        assert len(slow.calls) == 3
        assert page.has_more is True
        assert page.state.cursor_for("work") == "3"

    @pytest.mark.asyncio
    async def test_page_never_exceeds_target(self, handles):
        providers = {h.id: DatasetProvider(h.id, 100) for h in handles}
        aggregator = ExternalTicketAggregator(make_factory(providers))

        page = await aggregator.fetch_page(handles, 7)

        assert len(page.tickets) == 7

    @pytest.mark.asyncio
    async def test_duplicate_handles_called_once(self, jira_handle):
        provider = DatasetProvider("work", 10)
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}))

        page = await aggregator.fetch_page([jira_handle, jira_handle], 4)

        assert provider.calls == [(None, 4)]
        assert len(page.tickets) == 4


# =============================================================================
# Exhaustion
# =============================================================================


class TestExhaustion:
    """Tests for exhaustion tracking and has_more."""

    @pytest.mark.asyncio
    async def test_last_page_exhausts_provider(self, two_handles):
        a, b = DatasetProvider("a", 3), DatasetProvider("b", 100)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert len(page.tickets) == 10
        assert page.state.exhausted == frozenset({"a"})
        assert page.state.cursor_for("a") is None
        assert page.has_more is True
        assert a.calls == [(None, 5)]

    @pytest.mark.asyncio
    async def test_all_exhausted_ends_lineage(self, two_handles):
        a, b = DatasetProvider("a", 2), DatasetProvider("b", 3)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert len(page.tickets) == 5
        assert page.has_more is False
        assert page.state.exhausted == frozenset({"a", "b"})

    @pytest.mark.asyncio
    async def test_exact_fill_from_last_pages_ends_lineage(self, two_handles):
        """A page filled exactly by final pages reports nothing more."""
        a, b = DatasetProvider("a", 5), DatasetProvider("b", 5)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert len(page.tickets) == 10
        assert page.has_more is False
        assert page.state.exhausted == frozenset({"a", "b"})
        assert a.calls == [(None, 5)]
        assert b.calls == [(None, 5)]

    @pytest.mark.asyncio
    async def test_trickling_providers_stop_at_round_cap(self, handles):
        """Providers yielding one item per call cannot keep a large page looping."""
        providers = {h.id: DatasetProvider(h.id, 1000, max_per_call=1) for h in handles}
        aggregator = ExternalTicketAggregator(make_factory(providers))

        page = await aggregator.fetch_page(handles, 100)

        assert len(page.rounds) == 3
        assert len(page.tickets) == 9
        assert all(len(provider.calls) == 3 for provider in providers.values())
        assert page.has_more is True
        assert page.state.exhausted == frozenset()

    @pytest.mark.asyncio
    async def test_last_page_with_items_keeps_items(self, jira_handle):
        provider = ScriptedProvider(
            [ProviderPage(items=(make_summary("work", "X-1"),), is_last_page=True)]
        )
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}))

        page = await aggregator.fetch_page([jira_handle], 10)

        assert _ids(page) == ["work:X-1"]
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_under_yield_then_empty_exhausts(self, jira_handle):
        """A provider that never reports its last page is exhausted once it runs dry."""
        provider = DatasetProvider("work", 3, report_last=False)
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}))

        page = await aggregator.fetch_page([jira_handle], 10)

        assert len(page.tickets) == 3
        assert provider.calls == [(None, 10), ("3", 7)]
        assert page.state.exhausted == frozenset({"work"})
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_under_yield_with_items_stays_active(self, jira_handle):
        provider = DatasetProvider("work", 100, max_per_call=4)
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}), max_rounds=2)

        page = await aggregator.fetch_page([jira_handle], 10)

        assert len(page.tickets) == 8
        assert not page.state.is_exhausted("work")
        assert page.has_more is True

    @pytest.mark.asyncio
    async def test_empty_first_response_is_not_exhaustion(self, jira_handle):
        """An empty page without the last-page flag only counts after an under-yield."""
        provider = ScriptedProvider(
            [
                ProviderPage(items=(), next_cursor="c1"),
                ProviderPage(items=(make_summary("work", "X-1"),), is_last_page=True),
            ]
        )
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}))

        page = await aggregator.fetch_page([jira_handle], 5)

        assert _ids(page) == ["work:X-1"]
        assert provider.calls == [(None, 5), ("c1", 5)]

    @pytest.mark.asyncio
    async def test_incoming_exhausted_providers_skipped(self, two_handles):
        a, b = DatasetProvider("a", 100), DatasetProvider("b", 100)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))
        state = PaginationState(exhausted=frozenset({"a"}))

        page = await aggregator.fetch_page(two_handles, 6, state)

        assert a.calls == []
        assert b.calls == [(None, 6)]
        assert "a" in page.state.exhausted

    @pytest.mark.asyncio
    async def test_all_incoming_exhausted_returns_empty_page(self, two_handles):
        a, b = DatasetProvider("a", 100), DatasetProvider("b", 100)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))
        state = PaginationState(exhausted=frozenset({"a", "b"}))

        page = await aggregator.fetch_page(two_handles, 10, state)

        assert page.tickets == ()
        assert page.has_more is False
        assert page.state == state
        assert a.calls == [] and b.calls == []

    @pytest.mark.asyncio
    async def test_unknown_exhausted_ids_are_preserved(self, jira_handle):
        provider = DatasetProvider("work", 100)
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}))
        state = PaginationState(exhausted=frozenset({"retired"}))

        page = await aggregator.fetch_page([jira_handle], 5, state)

        assert "retired" in page.state.exhausted


# =============================================================================
# Failures
# =============================================================================


class TestProviderFailures:
    """Tests for failure isolation."""

    @pytest.mark.asyncio
    async def test_transient_failure_skips_provider_for_this_page(self, two_handles):
        failing = ScriptedProvider([ProviderTransientError("GitHub", "503", provider_id="a")])
        healthy = DatasetProvider("b", 100)
        aggregator = ExternalTicketAggregator(make_factory({"a": failing, "b": healthy}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert _ids(page) == [f"b:T-{i}" for i in range(1, 11)]
        assert len(failing.calls) == 1
        assert not page.state.is_exhausted("a")
        assert page.has_more is True
        assert page.rounds[0][0].outcome is OutcomeKind.TRANSIENT_FAILURE

    @pytest.mark.asyncio
    async def test_transient_failure_keeps_cursor(self, jira_handle):
        failing = ScriptedProvider([ProviderTransientError("Jira", "timeout")])
        aggregator = ExternalTicketAggregator(make_factory({"work": failing}))
        state = PaginationState(cursors={"work": "40"})

        page = await aggregator.fetch_page([jira_handle], 10, state)

        assert failing.calls == [("40", 10)]
        assert page.state.cursor_for("work") == "40"

    @pytest.mark.asyncio
    async def test_permanent_failure_exhausts_provider(self, two_handles):
        failing = ScriptedProvider([ProviderPermanentError("GitHub", "401", status_code=401)])
        healthy = DatasetProvider("b", 100)
        aggregator = ExternalTicketAggregator(make_factory({"a": failing, "b": healthy}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert len(page.tickets) == 10
        assert page.state.exhausted == frozenset({"a"})
        assert page.rounds[0][0].outcome is OutcomeKind.PERMANENT_EXHAUSTION
        assert page.rounds[0][0].error is not None

    @pytest.mark.asyncio
    async def test_missing_credentials_exhaust_provider(self, jira_handle):
        failing = ScriptedProvider([CredentialValidationError("Jira", {"token"})])
        aggregator = ExternalTicketAggregator(make_factory({"work": failing}))

        page = await aggregator.fetch_page([jira_handle], 10)

        assert page.has_more is False
        assert page.state.exhausted == frozenset({"work"})

    @pytest.mark.asyncio
    async def test_unexpected_exception_treated_as_transient(self, two_handles):
        failing = ScriptedProvider([RuntimeError("adapter bug")])
        healthy = DatasetProvider("b", 100)
        aggregator = ExternalTicketAggregator(make_factory({"a": failing, "b": healthy}))

        page = await aggregator.fetch_page(two_handles, 4)

        assert len(page.tickets) == 4
        assert not page.state.is_exhausted("a")
        assert "RuntimeError" in (page.rounds[0][0].error or "")

    @pytest.mark.asyncio
    async def test_all_providers_failing_returns_empty_page(self, two_handles):
        a = ScriptedProvider([ProviderTransientError("Jira", "down")])
        b = ScriptedProvider([ProviderTransientError("GitHub", "down")])
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert page.tickets == ()
        assert page.has_more is True
        assert page.state.exhausted == frozenset()

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, two_handles, caplog):
        a = ScriptedProvider([ProviderTransientError("Jira", "down")])
        b = DatasetProvider("b", 10)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        with caplog.at_level("WARNING", logger="orchestra.tickets.aggregator"):
            await aggregator.fetch_page(two_handles, 4)

        assert any("skipping for this page" in record.getMessage() for record in caplog.records)


# =============================================================================
# Cursors and de-duplication
# =============================================================================


class TestCursorsAndDedupe:
    """Tests for cursor threading and duplicate suppression."""

    @pytest.mark.asyncio
    async def test_cursor_from_state_is_used(self, jira_handle):
        provider = DatasetProvider("work", 100)
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}))
        state = PaginationState(cursors={"work": "50"})

        page = await aggregator.fetch_page([jira_handle], 5, state)

        assert provider.calls == [("50", 5)]
        assert _ids(page)[0] == "work:T-51"
        assert page.state.cursor_for("work") == "55"

    @pytest.mark.asyncio
    async def test_consecutive_pages_do_not_repeat(self, two_handles):
        a, b = DatasetProvider("a", 7), DatasetProvider("b", 12)
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        seen: list[str] = []
        state = None
        for _ in range(20):
            page = await aggregator.fetch_page(two_handles, 4, state)
            seen.extend(_ids(page))
            state = page.state
            if not page.has_more:
                break

        assert len(seen) == 19
        assert len(set(seen)) == 19

    @pytest.mark.asyncio
    async def test_duplicates_within_a_request_dropped(self, jira_handle):
        x1, x2, x3 = (make_summary("work", f"X-{i}") for i in range(1, 4))
        provider = ScriptedProvider(
            [
                ProviderPage(items=(x1, x2), next_cursor="c1"),
                ProviderPage(items=(x2, x3), next_cursor="c2"),
                ProviderPage(items=(), is_last_page=True),
            ]
        )
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}))

        page = await aggregator.fetch_page([jira_handle], 10)

        assert _ids(page) == ["work:X-1", "work:X-2", "work:X-3"]
        assert provider.calls == [(None, 10), ("c1", 8), ("c2", 7)]

    @pytest.mark.asyncio
    async def test_same_external_id_from_two_providers_kept(self, two_handles):
        a = ScriptedProvider([ProviderPage(items=(make_summary("a", "1"),), is_last_page=True)])
        b = ScriptedProvider([ProviderPage(items=(make_summary("b", "1"),), is_last_page=True)])
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        page = await aggregator.fetch_page(two_handles, 10)

        assert _ids(page) == ["a:1", "b:1"]


# =============================================================================
# Overlay
# =============================================================================


class TestOverlay:
    """Tests for local data applied during aggregation."""

    @pytest.mark.asyncio
    async def test_materialized_ticket_gets_assignment(self, jira_handle):
        provider = DatasetProvider("work", 3)
        lookup = InMemoryMaterializedTicketStore(
            [
                MaterializedTicket(
                    provider_id="work",
                    external_id="T-2",
                    assigned_agent_id="agent-7",
                    assigned_workflow_id="wf-1",
                )
            ]
        )
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}), lookup=lookup)

        page = await aggregator.fetch_page([jira_handle], 3)

        by_id = {ticket.external_id: ticket for ticket in page.tickets}
        assert by_id["T-2"].materialized is True
        assert by_id["T-2"].assigned_agent_id == "agent-7"
        assert by_id["T-1"].materialized is False
        assert by_id["T-1"].assigned_agent_id is None

    @pytest.mark.asyncio
    async def test_source_is_provider_kind(self, jira_handle):
        provider = DatasetProvider("work", 1)
        aggregator = ExternalTicketAggregator(make_factory({"work": provider}))

        page = await aggregator.fetch_page([jira_handle], 1)

        assert page.tickets[0].source == "JIRA"


# =============================================================================
# Concurrency and cancellation
# =============================================================================


class TestConcurrency:
    """Tests for concurrent calls within a round."""

    @pytest.mark.asyncio
    async def test_round_calls_run_concurrently(self, two_handles):
        """Each provider waits for the other to start; sequential calls would deadlock."""
        a_gate, b_gate = asyncio.Event(), asyncio.Event()
        a = ScriptedProvider(
            [ProviderPage(items=(make_summary("a", "1"),), is_last_page=True)], gate=b_gate
        )
        b = ScriptedProvider(
            [ProviderPage(items=(make_summary("b", "1"),), is_last_page=True)], gate=a_gate
        )
        aggregator = ExternalTicketAggregator(make_factory({"a": a, "b": b}))

        async def open_gates():
            await a.started.wait()
            a_gate.set()
            await b.started.wait()
            b_gate.set()

        page, _ = await asyncio.wait_for(
            asyncio.gather(aggregator.fetch_page(two_handles, 2), open_gates()),
            timeout=5,
        )

        assert _ids(page) == ["a:1", "b:1"]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, two_handles):
        blocked = ScriptedProvider([ProviderPage()], gate=asyncio.Event())
        healthy = DatasetProvider("b", 10)
        aggregator = ExternalTicketAggregator(make_factory({"a": blocked, "b": healthy}))

        task = asyncio.create_task(aggregator.fetch_page(two_handles, 4))
        await blocked.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestHandleKinds:
    """Providers are resolved by handle, not by kind."""

    @pytest.mark.asyncio
    async def test_two_handles_same_kind(self):
        first = ProviderHandle(id="jira-a", kind=ProviderKind.JIRA)
        second = ProviderHandle(id="jira-b", kind=ProviderKind.JIRA)
        providers = {"jira-a": DatasetProvider("jira-a", 5), "jira-b": DatasetProvider("jira-b", 5)}
        aggregator = ExternalTicketAggregator(make_factory(providers))

        page = await aggregator.fetch_page([first, second], 4)

        assert _ids(page) == ["jira-a:T-1", "jira-a:T-2", "jira-b:T-1", "jira-b:T-2"]
