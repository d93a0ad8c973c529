"""Pydantic models shared by the block providers, the stream and the HTTP layer."""
from __future__ import annotations

import time
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

BlockSource = Literal["rpc", "geyser"]


def now_ms() -> int:
    return int(time.time() * 1000)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BlockReward(_CamelModel):
    pubkey: str
    lamports: int
    reward_type: Optional[str] = Field(default=None, alias="rewardType")


class RecentBlock(_CamelModel):
    """Summary of a produced block; ``slot`` is the change-detection key."""

    slot: int
    blockhash: str
    block_time: Optional[int] = Field(default=None, alias="blockTime")
    parent_slot: int = Field(alias="parentSlot")
    transactions: int = 0
    validator_identity: Optional[str] = Field(default=None, alias="validatorIdentity")
    validator_vote_account: Optional[str] = Field(default=None, alias="validatorVoteAccount")
    rewards: List[BlockReward] = Field(default_factory=list)


class RecentBlocksPayload(_CamelModel):
    """Frame fanned out to stream subscribers.

    ``blocks`` is None for keep-alive broadcasts.
    """

    blocks: Optional[List[RecentBlock]] = None
    source: BlockSource = "rpc"
    last_update: int = Field(default_factory=now_ms, alias="lastUpdate")

    @property
    def top_slot(self) -> Optional[int]:
        if not self.blocks:
            return None
        return self.blocks[0].slot

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class StreamStatus(BaseModel):
    running: bool
    subscribers: int
    last_top_slot: Optional[int] = None
    in_flight: bool = False


class HealthResponse(BaseModel):
    status: Literal["ok", "idle"]
    stream: StreamStatus
    geyser_enabled: bool
    asof: str
