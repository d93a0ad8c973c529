import asyncio
from typing import List, Optional, Sequence

import pytest

from solana_explorer.models import RecentBlock
from solana_explorer.providers.base import BlockProvider


def make_block(slot: int) -> RecentBlock:
    return RecentBlock(
        slot=slot,
        blockhash=f"hash-{slot}",
        block_time=1_700_000_000 + slot,
        parent_slot=slot - 1,
        transactions=slot % 7,
    )


class FakeProvider(BlockProvider):
    """Returns scripted slot batches; the last batch repeats once exhausted."""

    def __init__(
        self,
        batches: Sequence[Sequence[int]] = ((105,),),
        *,
        source: str = "rpc",
        error: Optional[Exception] = None,
    ) -> None:
        self.source = source
        self.batches = [list(batch) for batch in batches]
        self.error = error
        self.calls = 0
        self.limits: List[int] = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def fetch_recent_blocks(self, limit: int) -> List[RecentBlock]:
        self.calls += 1
        self.limits.append(limit)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        slots = self.batches.pop(0) if len(self.batches) > 1 else self.batches[0]
        return [make_block(slot) for slot in slots]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def provider_factory():
    return FakeProvider
