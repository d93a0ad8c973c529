import asyncio

import pytest

from solana_explorer.engine.streaming import RecentBlocksStream
from solana_explorer.providers.base import ProviderError
from solana_explorer.providers.geyser import GeyserBlockProvider

TEN_BLOCKS = list(range(105, 95, -1))
SLOW = 60_000


def _stream(fallback, primary=None, **kwargs):
    kwargs.setdefault("poll_interval_ms", SLOW)
    kwargs.setdefault("keepalive_interval_ms", SLOW)
    return RecentBlocksStream(fallback, primary, **kwargs)


@pytest.mark.asyncio
async def test_timer_runs_only_while_subscribed(provider_factory):
    stream = _stream(provider_factory())
    assert not stream.is_running

    first = stream.subscribe(lambda payload: None)
    assert stream.is_running
    second = stream.subscribe(lambda payload: None)
    assert stream.is_running and stream.subscriber_count == 2

    first.cancel()
    assert stream.is_running and stream.subscriber_count == 1
    first.cancel()
    assert stream.is_running and stream.subscriber_count == 1

    second()
    assert not stream.is_running
    assert stream.subscriber_count == 0
    assert not second.active


@pytest.mark.asyncio
async def test_subscribe_polls_immediately(provider_factory):
    provider = provider_factory([TEN_BLOCKS])
    stream = _stream(provider, limit=10)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert provider.calls == 1
    assert provider.limits == [10]
    assert len(received) == 1
    assert received[0].blocks[0].slot == 105
    assert len(received[0].blocks) == 10
    assert received[0].source == "rpc"
    sub.cancel()


@pytest.mark.asyncio
async def test_unchanged_top_slot_is_suppressed(provider_factory):
    provider = provider_factory([TEN_BLOCKS, TEN_BLOCKS])
    stream = _stream(provider)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()
    await stream.tick()

    assert provider.calls == 2
    assert len(received) == 1
    assert stream.last_top_slot == 105
    sub.cancel()


@pytest.mark.asyncio
async def test_only_newest_slot_drives_change_detection(provider_factory):
    # same newest slot, different tail: still suppressed
    provider = provider_factory([[105, 104, 103], [105, 101]])
    stream = _stream(provider)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()
    await stream.tick()

    assert len(received) == 1
    sub.cancel()


@pytest.mark.asyncio
async def test_changed_top_slot_broadcasts_each_time(provider_factory):
    provider = provider_factory([[105, 104], [106, 105]])
    stream = _stream(provider)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()
    await stream.tick()

    assert [payload.top_slot for payload in received] == [105, 106]
    assert all(payload.source == "rpc" for payload in received)
    sub.cancel()


@pytest.mark.asyncio
async def test_tick_is_noop_while_poll_in_flight(provider_factory):
    provider = provider_factory([TEN_BLOCKS])
    provider.gate = asyncio.Event()
    stream = _stream(provider)
    received = []

    sub = stream.subscribe(received.append)
    await asyncio.sleep(0)
    assert stream.in_flight
    assert provider.calls == 1

    await stream.tick()
    await stream.tick()
    assert provider.calls == 1

    provider.gate.set()
    await stream.wait_for_poll()
    assert not stream.in_flight
    assert len(received) == 1
    sub.cancel()


@pytest.mark.asyncio
async def test_last_unsubscribe_resets_dedup_state(provider_factory):
    provider = provider_factory([TEN_BLOCKS])
    stream = _stream(provider)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()
    sub.cancel()
    assert stream.last_top_slot is None

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert [payload.top_slot for payload in received] == [105, 105]
    sub.cancel()


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others(provider_factory):
    stream = _stream(provider_factory([TEN_BLOCKS]))
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    first = stream.subscribe(broken)
    second = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert len(received) == 1
    assert stream.is_running
    first.cancel()
    second.cancel()


@pytest.mark.asyncio
async def test_same_callback_registered_twice_gets_two_entries(provider_factory):
    stream = _stream(provider_factory([TEN_BLOCKS]))
    received = []

    first = stream.subscribe(received.append)
    second = stream.subscribe(received.append)
    await stream.wait_for_poll()
    assert len(received) == 2

    first.cancel()
    assert stream.subscriber_count == 1
    assert stream.is_running
    second.cancel()


@pytest.mark.asyncio
async def test_disabled_primary_is_never_called(provider_factory):
    primary = provider_factory([[900]], source="geyser")
    fallback = provider_factory([TEN_BLOCKS])
    stream = _stream(fallback, primary, primary_enabled=False)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert primary.calls == 0
    assert fallback.calls == 1
    assert received[0].source == "rpc"
    sub.cancel()


@pytest.mark.asyncio
async def test_enabled_primary_is_preferred(provider_factory):
    primary = provider_factory([[900, 899]], source="geyser")
    fallback = provider_factory([TEN_BLOCKS])
    stream = _stream(fallback, primary, primary_enabled=True)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert fallback.calls == 0
    assert received[0].source == "geyser"
    assert received[0].top_slot == 900
    sub.cancel()


@pytest.mark.asyncio
async def test_failing_primary_falls_back_in_same_tick(provider_factory):
    primary = provider_factory(source="geyser", error=ProviderError("stream reset"))
    fallback = provider_factory([TEN_BLOCKS])
    stream = _stream(fallback, primary, primary_enabled=True)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert primary.calls == 1
    assert fallback.calls == 1
    assert received[0].source == "rpc"
    assert received[0].top_slot == 105
    sub.cancel()


@pytest.mark.asyncio
async def test_unconfigured_geyser_falls_back(provider_factory):
    fallback = provider_factory([TEN_BLOCKS])
    stream = _stream(fallback, GeyserBlockProvider(), primary_enabled=True)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert received[0].source == "rpc"
    sub.cancel()


@pytest.mark.asyncio
async def test_total_provider_failure_is_silent(provider_factory):
    fallback = provider_factory(error=ProviderError("rpc down"))
    stream = _stream(fallback)
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()
    await stream.tick()

    assert received == []
    assert stream.is_running
    assert fallback.calls == 2

    fallback.error = None
    await stream.tick()
    assert len(received) == 1
    sub.cancel()


@pytest.mark.asyncio
async def test_empty_batch_does_not_broadcast(provider_factory):
    stream = _stream(provider_factory([[]]))
    received = []

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert received == []
    assert stream.last_top_slot is None
    sub.cancel()


@pytest.mark.asyncio
async def test_unsubscribe_cancels_in_flight_poll(provider_factory):
    provider = provider_factory([TEN_BLOCKS])
    provider.gate = asyncio.Event()
    stream = _stream(provider)
    received = []

    sub = stream.subscribe(received.append)
    await asyncio.sleep(0)
    sub.cancel()
    provider.gate.set()
    await asyncio.sleep(0.01)

    assert received == []
    assert stream.last_top_slot is None
    assert not stream.in_flight


@pytest.mark.asyncio
async def test_poll_timer_picks_up_new_blocks(provider_factory):
    provider = provider_factory([[1], [2], [3], [4], [5]])
    stream = _stream(provider, poll_interval_ms=5)
    received = []

    sub = stream.subscribe(received.append)
    await asyncio.sleep(0.2)
    sub.cancel()

    slots = [payload.top_slot for payload in received]
    assert len(slots) >= 2
    assert slots == sorted(set(slots))


@pytest.mark.asyncio
async def test_keepalive_bypasses_dedup(provider_factory):
    stream = _stream(provider_factory([TEN_BLOCKS]), keepalive_interval_ms=5)
    received = []

    sub = stream.subscribe(received.append)
    await asyncio.sleep(0.1)
    sub.cancel()

    keepalives = [payload for payload in received if payload.blocks is None]
    assert len(keepalives) >= 2
    assert all(payload.source == "rpc" for payload in keepalives)
    assert len([payload for payload in received if payload.blocks]) == 1


@pytest.mark.asyncio
async def test_close_drops_every_subscription(provider_factory):
    stream = _stream(provider_factory())
    subs = [stream.subscribe(lambda payload: None) for _ in range(3)]

    stream.close()

    assert not stream.is_running
    assert all(not sub.active for sub in subs)
    assert stream.status().subscribers == 0


@pytest.mark.asyncio
async def test_idle_tick_does_not_poll_or_remember_slot(provider_factory):
    provider = provider_factory([TEN_BLOCKS])
    stream = _stream(provider)
    received = []

    await stream.tick()
    assert provider.calls == 0
    assert stream.last_top_slot is None
    assert not stream.is_running

    sub = stream.subscribe(received.append)
    await stream.wait_for_poll()

    assert len(received) == 1
    assert received[0].top_slot == 105
    sub.cancel()


def test_subscribe_outside_event_loop_leaves_no_entry(provider_factory):
    stream = _stream(provider_factory())

    with pytest.raises(RuntimeError):
        stream.subscribe(lambda payload: None)

    assert stream.subscriber_count == 0
    assert not stream.is_running
