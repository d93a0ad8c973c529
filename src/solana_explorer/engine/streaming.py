"""Shared recent-blocks poller that fans updates out to stream subscribers.

One ``RecentBlocksStream`` serves every connected client: the poll timer runs
only while at least one subscription is active, a new payload is broadcast only
when the newest slot changes, and a separate keep-alive timer pushes empty
payloads so idle connections are not reaped by proxies.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from ..config import Settings
from ..models import RecentBlocksPayload, StreamStatus
from ..observability import (
    record_broadcast,
    record_poll,
    record_subscriber_error,
    set_subscriber_count,
)
from ..providers.base import BlockProvider, clamp_limit, fetch_with_fallback

LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[RecentBlocksPayload], None]


class Subscription:
    """Handle for one registered callback; cancelling it is idempotent."""

    __slots__ = ("_stream", "callback", "_active")

    def __init__(self, stream: "RecentBlocksStream", callback: Subscriber) -> None:
        self._stream = stream
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._stream._remove(self)

    def __call__(self) -> None:
        self.cancel()


class RecentBlocksStream:
    """Reference-counted poller over a primary and a fallback block provider.

    Must be used from a running asyncio event loop; all state is mutated on
    that loop only.
    """

    def __init__(
        self,
        fallback: BlockProvider,
        primary: Optional[BlockProvider] = None,
        *,
        poll_interval_ms: int = 400,
        limit: int = 10,
        primary_enabled: bool = False,
        keepalive_interval_ms: int = 15_000,
    ) -> None:
        self._fallback = fallback
        self._primary = primary if primary_enabled else None
        self._poll_interval = poll_interval_ms / 1000
        self._keepalive_interval = keepalive_interval_ms / 1000
        self._limit = clamp_limit(limit)

        self._subscriptions: set[Subscription] = set()
        self._poll_timer: Optional[asyncio.Task] = None
        self._keepalive_timer: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._last_top_slot: Optional[int] = None
        self._failure_streak = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        fallback: BlockProvider,
        primary: Optional[BlockProvider] = None,
    ) -> "RecentBlocksStream":
        return cls(
            fallback,
            primary,
            poll_interval_ms=settings.stream_poll_ms,
            limit=settings.stream_limit,
            primary_enabled=settings.enable_geyser_recent_blocks,
            keepalive_interval_ms=settings.stream_keepalive_ms,
        )

    @property
    def is_running(self) -> bool:
        return self._poll_timer is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def last_top_slot(self) -> Optional[int]:
        return self._last_top_slot

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def status(self) -> StreamStatus:
        return StreamStatus(
            running=self.is_running,
            subscribers=self.subscriber_count,
            last_top_slot=self._last_top_slot,
            in_flight=self.in_flight,
        )

    def subscribe(self, callback: Subscriber) -> Subscription:
        """Register ``callback`` for every future payload.

        The first subscription starts the timers and an immediate poll.
        Raises RuntimeError outside a running event loop, leaving no entry behind.
        """
        asyncio.get_running_loop()
        subscription = Subscription(self, callback)
        self._subscriptions.add(subscription)
        set_subscriber_count(len(self._subscriptions))
        self._ensure_running()
        return subscription

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)
        set_subscriber_count(len(self._subscriptions))
        self._maybe_stop()

    def _ensure_running(self) -> None:
        if self._poll_timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._poll_timer = loop.create_task(self._run_poll_timer(), name="recent-blocks-poll")
        self._keepalive_timer = loop.create_task(self._run_keepalive_timer(), name="recent-blocks-keepalive")
        LOGGER.info(
            "Recent blocks stream started (poll=%.3fs, limit=%d, primary=%s)",
            self._poll_interval,
            self._limit,
            self._primary.source if self._primary else None,
        )
        self._start_poll()

    def _maybe_stop(self) -> None:
        if self._subscriptions or self._poll_timer is None:
            return
        for task in (self._poll_timer, self._keepalive_timer, self._in_flight):
            if task is not None:
                task.cancel()
        self._poll_timer = None
        self._keepalive_timer = None
        self._in_flight = None
        self._last_top_slot = None
        self._failure_streak = 0
        LOGGER.info("Recent blocks stream stopped (no subscribers)")

    async def _run_poll_timer(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            self._start_poll()

    async def _run_keepalive_timer(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            if self._subscriptions:
                self.broadcast(RecentBlocksPayload(blocks=None, source="rpc"))

    def _start_poll(self) -> Optional[asyncio.Task]:
        if self._in_flight is not None:
            return None
        task = asyncio.get_running_loop().create_task(self._poll_once())
        self._in_flight = task
        task.add_done_callback(self._poll_done)
        return task

    def _poll_done(self, task: asyncio.Task) -> None:
        if self._in_flight is task:
            self._in_flight = None

    async def tick(self) -> None:
        """Run one poll to completion.

        A no-op while idle or while another poll is in flight.
        """
        if not self._subscriptions:
            return
        task = self._start_poll()
        if task is not None:
            await asyncio.wait((task,))

    async def wait_for_poll(self) -> None:
        """Wait for the poll currently in flight, if any."""
        task = self._in_flight
        if task is not None:
            await asyncio.wait((task,))

    async def _poll_once(self) -> None:
        try:
            blocks, source = await fetch_with_fallback(self._primary, self._fallback, self._limit)
        except Exception as exc:
            self._failure_streak += 1
            record_poll("failed")
            log = LOGGER.warning if self._failure_streak == 1 else LOGGER.debug
            log("Recent blocks poll failed (streak=%d): %s", self._failure_streak, exc)
            return
        self._failure_streak = 0

        top_slot = blocks[0].slot if blocks else None
        if top_slot is None:
            record_poll("empty")
            return
        if top_slot == self._last_top_slot:
            record_poll("unchanged")
            return

        self._last_top_slot = top_slot
        record_poll("broadcast")
        self.broadcast(RecentBlocksPayload(blocks=blocks, source=source))

    def broadcast(self, payload: RecentBlocksPayload) -> None:
        record_broadcast("blocks" if payload.blocks is not None else "keepalive")
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            try:
                subscription.callback(payload)
            except Exception:
                record_subscriber_error()
                LOGGER.exception("Recent blocks subscriber raised; continuing broadcast")
