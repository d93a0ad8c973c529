from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from ..models import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """
    Health endpoint with recent-blocks stream status.

    Returns:
        - status: "ok" while the poller runs, "idle" with no subscribers
        - stream: running flag, subscriber count, last broadcast slot
        - geyser_enabled: whether the low-latency provider is tried first
        - asof: ISO8601 timestamp
    """
    stream = request.app.state.recent_blocks_stream
    status = stream.status()
    return HealthResponse(
        status="ok" if status.running else "idle",
        stream=status,
        geyser_enabled=request.app.state.settings.enable_geyser_recent_blocks,
        asof=datetime.now(timezone.utc).isoformat(),
    )
