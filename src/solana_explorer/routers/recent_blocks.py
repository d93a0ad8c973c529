from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..engine.cache import RecentBlocksCache
from ..engine.streaming import RecentBlocksStream
from ..models import RecentBlocksPayload, now_ms
from ..providers.base import clamp_limit

LOGGER = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_LIMIT = 10
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_stream(request: Request) -> RecentBlocksStream:
    return request.app.state.recent_blocks_stream


def get_cache(request: Request) -> RecentBlocksCache:
    return request.app.state.recent_blocks_cache


def parse_limit(raw: Optional[str]) -> int:
    """Lenient limit parsing: a leading integer wins ("5abc" -> 5, "3.7" -> 3).

    Anything without one falls back to the default.
    """
    if raw is None:
        return DEFAULT_LIMIT
    match = _LEADING_INT.match(raw)
    if match is None:
        return DEFAULT_LIMIT
    return clamp_limit(int(match.group(1)))


@router.get("/recent-blocks")
async def recent_blocks(
    limit: Optional[str] = Query(default=None),
    max_blocks: Optional[str] = Query(default=None, alias="maxBlocks"),
    cache: RecentBlocksCache = Depends(get_cache),
):
    count = parse_limit(limit if limit is not None else max_blocks)
    now = now_ms()
    try:
        entry, cached = await cache.get(count)
    except Exception as exc:
        LOGGER.error("Error in /api/recent-blocks: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch recent blocks", "details": str(exc)},
        )
    return {
        "blocks": [block.model_dump(mode="json", by_alias=True) for block in entry.blocks[:count]],
        "source": entry.source,
        "cached": cached,
        "lastUpdate": now,
    }


def _frame(payload: dict) -> str:
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n"


async def sse_events(
    stream: RecentBlocksStream,
    *,
    ping_interval: float,
    queue_size: int = 16,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """Yield SSE chunks for one client until it disconnects."""
    yield _frame({"type": "hello", "ts": now_ms()})

    queue: asyncio.Queue[RecentBlocksPayload] = asyncio.Queue(maxsize=queue_size)

    def deliver(payload: RecentBlocksPayload) -> None:
        if queue.full():
            # slow client: drop the oldest frame
            queue.get_nowait()
        queue.put_nowait(payload)

    subscription = stream.subscribe(deliver)
    loop = asyncio.get_running_loop()
    next_ping = loop.time() + ping_interval
    try:
        while True:
            timeout = max(0.0, next_ping - loop.time())
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    break
                next_ping = loop.time() + ping_interval
                yield f": ping {now_ms()}\n\n"
                continue
            kind = "blocks" if payload.blocks is not None else "keepalive"
            yield _frame({"type": kind, **payload.to_wire()})
    finally:
        subscription.cancel()


@router.get("/recent-blocks/stream")
async def recent_blocks_stream(
    request: Request,
    stream: RecentBlocksStream = Depends(get_stream),
) -> StreamingResponse:
    settings = request.app.state.settings
    events = sse_events(
        stream,
        ping_interval=settings.sse_ping_ms / 1000,
        queue_size=settings.sse_queue_size,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(events, media_type="text/event-stream", headers=SSE_HEADERS)
