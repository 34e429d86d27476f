import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from p2pwatch.client import TransportError, UpstreamError
from p2pwatch.controller import PollController
from p2pwatch.feeds import Listing
from p2pwatch.state import RefreshToken, Snapshot

FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def _listing(price: str, name: str) -> Listing:
    return Listing(id=name, nick_name=name, price=price)


def _page(prefix: str, count: int, base: float = 95.0) -> List[Listing]:
    return [_listing(f"{base + i:.2f}", f"{prefix}{i + 1}") for i in range(count)]


class FakeClient:
    """Serves canned pages, one dict per refresh cycle (two calls per cycle)."""

    def __init__(self, cycles: List[Dict[int, object]]) -> None:
        self.cycles = cycles
        self.calls = 0
        self.gates: Dict[int, asyncio.Event] = {}
        self.cancelled_calls = 0

    async def fetch_page(self, page: int, token: Optional[RefreshToken] = None):
        if token is not None:
            token.raise_if_cancelled()
        cycle = self.calls // 2
        self.calls += 1
        outcome = self.cycles[min(cycle, len(self.cycles) - 1)][page]
        gate = self.gates.get(cycle)
        try:
            if gate is not None:
                await gate.wait()
        except asyncio.CancelledError:
            self.cancelled_calls += 1
            raise
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def _wait_for_calls(client: FakeClient, count: int) -> None:
    for _ in range(200):
        if client.calls >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} fetch calls, saw {client.calls}")


def _controller(client: FakeClient, **kwargs) -> PollController:
    return PollController(client, clock=lambda: FIXED_NOW, **kwargs)


@pytest.mark.asyncio
async def test_successful_cycle_publishes_subsets_and_averages():
    page1 = _page("a", 10)
    page2 = _page("x", 10, base=96.0)
    controller = _controller(FakeClient([{1: page1, 2: page2}]))

    await controller.refresh()
    snapshot = controller.snapshot

    assert [item.nick_name for item in snapshot.primary] == ["a10", "x1", "x2", "x3", "x4", "x5"]
    assert [item.nick_name for item in snapshot.secondary] == ["x5", "x6", "x7", "x8", "x9", "x10"]
    # (104 + 96 + 97 + 98 + 99 + 100) / 6
    assert snapshot.primary_average == 99.0
    # (100 + ... + 105) / 6
    assert snapshot.secondary_average == 102.5
    assert snapshot.last_updated == FIXED_NOW
    assert snapshot.loading is False
    assert snapshot.error is None


@pytest.mark.asyncio
async def test_two_listing_pages_average_the_combined_primary():
    page = [_listing("95.50", "p1"), _listing("96.00", "p2")]
    controller = _controller(FakeClient([{1: list(page), 2: list(page)}]))

    await controller.refresh()

    # primary = [96.00] + [95.50, 96.00]
    assert [item.price for item in controller.snapshot.primary] == ["96.00", "95.50", "96.00"]
    assert controller.snapshot.primary_average == 95.83
    assert controller.snapshot.secondary == ()
    assert controller.snapshot.secondary_average is None


@pytest.mark.asyncio
async def test_failed_cycle_keeps_previous_data_and_sets_error():
    client = FakeClient(
        [
            {1: _page("a", 10), 2: _page("x", 10)},
            {1: TransportError(500, "Internal Server Error"), 2: _page("y", 10)},
        ]
    )
    controller = _controller(client)

    await controller.refresh()
    before = controller.snapshot
    await controller.refresh()
    after = controller.snapshot

    assert after.error == "HTTP 500 - Internal Server Error"
    assert after.loading is False
    assert after.primary == before.primary
    assert after.secondary == before.secondary
    assert after.primary_average == before.primary_average
    assert after.secondary_average == before.secondary_average
    assert after.last_updated == before.last_updated


@pytest.mark.asyncio
async def test_success_after_failure_clears_error():
    client = FakeClient(
        [
            {1: UpstreamError("params error", ret_code=10001), 2: []},
            {1: _page("a", 2), 2: _page("x", 10)},
        ]
    )
    controller = _controller(client)

    await controller.refresh()
    assert controller.snapshot.error == "params error"
    assert not controller.snapshot.has_data

    await controller.refresh()
    assert controller.snapshot.error is None
    assert len(controller.snapshot.primary) == 6


@pytest.mark.asyncio
async def test_unexpected_exception_is_captured_as_error():
    client = FakeClient([{1: RuntimeError(""), 2: _page("x", 10)}])
    controller = _controller(client)

    await controller.refresh()

    assert controller.snapshot.error == "Failed to load data"
    assert controller.snapshot.loading is False


@pytest.mark.asyncio
async def test_one_failing_page_cancels_the_other():
    client = FakeClient([])
    controller = _controller(client)

    async def _slow_page2(page, token=None):
        if page == 1:
            raise UpstreamError("boom")
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            client.cancelled_calls += 1
            raise

    client.fetch_page = _slow_page2

    await asyncio.wait_for(controller.refresh(), timeout=1.0)

    assert controller.snapshot.error == "boom"
    for _ in range(20):
        if client.cancelled_calls:
            break
        await asyncio.sleep(0)
    assert client.cancelled_calls == 1


@pytest.mark.asyncio
async def test_new_cycle_supersedes_in_flight_cycle():
    first_pages = {1: _page("old", 10), 2: _page("old-p2-", 10)}
    second_pages = {1: _page("new", 10), 2: _page("new-p2-", 10)}
    client = FakeClient([first_pages, second_pages])
    client.gates[0] = asyncio.Event()
    controller = _controller(client)
    published: List[Snapshot] = []
    controller.subscribe(published.append)

    first = asyncio.create_task(controller.refresh())
    await _wait_for_calls(client, 2)

    await controller.refresh()
    client.gates[0].set()
    await asyncio.wait_for(first, timeout=1.0)

    assert client.cancelled_calls == 2
    assert controller.snapshot.primary[0].nick_name == "new10"
    for snapshot in published:
        assert all(not item.nick_name.startswith("old") for item in snapshot.primary)
        assert all(not item.nick_name.startswith("old") for item in snapshot.secondary)
    assert controller.snapshot.loading is False


@pytest.mark.asyncio
async def test_loading_only_shown_until_first_data_arrives():
    client = FakeClient(
        [
            {1: _page("a", 10), 2: _page("x", 10)},
            {1: TransportError(502, "Bad Gateway"), 2: []},
            {1: _page("b", 10), 2: _page("y", 10)},
        ]
    )
    controller = _controller(client)
    assert controller.snapshot.loading is True

    published: List[Snapshot] = []
    controller.subscribe(published.append)

    await controller.refresh()
    assert controller.snapshot.loading is False

    published.clear()
    await controller.refresh()
    await controller.refresh()

    assert published
    assert all(snapshot.loading is False for snapshot in published)


@pytest.mark.asyncio
async def test_retry_after_failed_first_load_shows_loading_again():
    client = FakeClient(
        [
            {1: TransportError(None, "Network request failed"), 2: []},
            {1: _page("a", 10), 2: _page("x", 10)},
        ]
    )
    controller = _controller(client)
    published: List[Snapshot] = []
    controller.subscribe(published.append)

    await controller.refresh()
    assert controller.snapshot.loading is False
    published.clear()

    await controller.retry()

    assert published[0].loading is True
    assert published[-1].loading is False
    assert controller.snapshot.has_data


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_cycle_without_publishing():
    client = FakeClient([{1: _page("a", 10), 2: _page("x", 10)}])
    client.gates[0] = asyncio.Event()
    controller = _controller(client, interval=60.0)

    controller.start()
    await _wait_for_calls(client, 2)
    await controller.stop()
    client.gates[0].set()
    await asyncio.sleep(0)

    assert client.cancelled_calls == 2
    assert not controller.snapshot.has_data
    assert controller.snapshot.error is None
    assert controller.snapshot.last_updated is None


@pytest.mark.asyncio
async def test_stop_cancels_queued_retry_before_it_runs():
    client = FakeClient([{1: _page("a", 10), 2: _page("x", 10)}])
    controller = _controller(client)
    published: List[Snapshot] = []
    controller.subscribe(published.append)

    queued = controller.retry()
    await controller.stop()

    assert queued.done()
    assert client.calls == 0
    assert published == []
    assert not controller.snapshot.has_data
    assert controller.snapshot.last_updated is None


@pytest.mark.asyncio
async def test_stop_right_after_start_never_fetches():
    client = FakeClient([{1: _page("a", 10), 2: _page("x", 10)}])
    controller = _controller(client, interval=60.0)

    controller.start()
    await asyncio.sleep(0)
    await controller.stop()
    await asyncio.sleep(0)

    assert client.calls == 0
    assert not controller.snapshot.has_data
    assert controller.snapshot.last_updated is None


@pytest.mark.asyncio
async def test_refresh_after_stop_does_nothing():
    client = FakeClient([{1: _page("a", 10), 2: _page("x", 10)}])
    controller = _controller(client)

    await controller.stop()
    await controller.refresh()

    assert client.calls == 0
    assert not controller.snapshot.has_data


@pytest.mark.asyncio
async def test_timer_refreshes_periodically():
    client = FakeClient([{1: _page("a", 10), 2: _page("x", 10)}])
    controller = _controller(client, interval=0.01)

    async with controller:
        for _ in range(100):
            if client.calls >= 4:
                break
            await asyncio.sleep(0.01)

    assert client.calls >= 4
    assert controller.snapshot.last_updated == FIXED_NOW


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_publication():
    controller = _controller(FakeClient([{1: _page("a", 10), 2: _page("x", 10)}]))
    received: List[Snapshot] = []

    def _broken(snapshot: Snapshot) -> None:
        raise ValueError("subscriber bug")

    controller.subscribe(_broken)
    unsubscribe = controller.subscribe(received.append)

    await controller.refresh()
    assert received[-1] is controller.snapshot

    unsubscribe()
    await controller.refresh()
    assert len(received) == 1
