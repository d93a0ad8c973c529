"""Baseline block provider: polls a Solana JSON-RPC node over HTTP."""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from ..models import BlockReward, RecentBlock
from .base import BlockProvider, ProviderError, clamp_limit

LOGGER = logging.getLogger(__name__)


def _block_producer(rewards: List[dict[str, Any]]) -> Optional[str]:
    # The leader usually shows up as the fee reward recipient.
    for reward in rewards:
        if reward.get("rewardType") in ("fee", "Fee", None):
            return reward.get("pubkey")
    return None


def parse_block(slot: int, raw: dict[str, Any]) -> RecentBlock:
    rewards = raw.get("rewards") or []
    return RecentBlock(
        slot=slot,
        blockhash=raw.get("blockhash", ""),
        block_time=raw.get("blockTime"),
        parent_slot=raw.get("parentSlot", max(slot - 1, 0)),
        transactions=len(raw.get("signatures") or raw.get("transactions") or []),
        validator_identity=_block_producer(rewards),
        validator_vote_account=None,
        rewards=[
            BlockReward(
                pubkey=reward.get("pubkey", ""),
                lamports=int(reward.get("lamports") or 0),
                reward_type=reward.get("rewardType"),
            )
            for reward in rewards
        ],
    )


class RpcBlockProvider(BlockProvider):
    """Fetch the latest slot, then the blocks below it concurrently."""

    source = "rpc"

    def __init__(
        self,
        endpoint: str,
        commitment: str = "confirmed",
        timeout_sec: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.commitment = commitment
        self._timeout = timeout_sec
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._get_client().post(self.endpoint, json=body)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"{method} failed: {exc}") from exc
        if payload.get("error"):
            raise ProviderError(f"{method} returned error: {payload['error']}")
        return payload.get("result")

    async def get_slot(self) -> int:
        result = await self._rpc("getSlot", [{"commitment": self.commitment}])
        if not isinstance(result, int):
            raise ProviderError(f"getSlot returned unexpected result: {result!r}")
        return result

    async def get_block(self, slot: int) -> Optional[dict[str, Any]]:
        return await self._rpc(
            "getBlock",
            [
                slot,
                {
                    "commitment": self.commitment,
                    "encoding": "json",
                    "transactionDetails": "signatures",
                    "rewards": True,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def fetch_recent_blocks(self, limit: int) -> List[RecentBlock]:
        limit = clamp_limit(limit)
        latest = await self.get_slot()
        slots = [latest - offset for offset in range(limit) if latest - offset >= 0]

        results = await asyncio.gather(*(self.get_block(slot) for slot in slots), return_exceptions=True)

        blocks: List[RecentBlock] = []
        for slot, result in zip(slots, results):
            if isinstance(result, BaseException):
                # Skipped or not-yet-available slots are routine
                LOGGER.debug("getBlock %s skipped: %s", slot, result)
                continue
            if not result:
                continue
            try:
                blocks.append(parse_block(slot, result))
            except (ValidationError, TypeError, ValueError) as exc:
                LOGGER.warning("getBlock %s returned a malformed block: %s", slot, exc)

        blocks.sort(key=lambda block: block.slot, reverse=True)
        return blocks
