"""Low-latency Geyser gRPC provider slot.

Geyser plugins (Yellowstone, Triton, Helius, ...) each expose their own proto
services and auth schemes, so no concrete client ships with the service. The
provider exists so deployments can enable it and have the stream fall back to
RPC polling until a provider-specific client is wired in.
"""
from __future__ import annotations

from typing import List, Optional

from ..models import RecentBlock
from .base import BlockProvider, ProviderNotConfiguredError


class GeyserBlockProvider(BlockProvider):
    source = "geyser"

    def __init__(self, grpc_url: Optional[str] = None, token: Optional[str] = None) -> None:
        self.grpc_url = grpc_url
        self.token = token

    async def fetch_recent_blocks(self, limit: int) -> List[RecentBlock]:
        if not self.grpc_url:
            raise ProviderNotConfiguredError("Geyser gRPC URL is not set")
        raise ProviderNotConfiguredError(
            f"No Geyser client is available for {self.grpc_url}; "
            "configure a provider-specific client to enable it"
        )
