"""Block provider interface and the primary-then-fallback fetch policy."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from ..config import MAX_BLOCK_LIMIT
from ..models import BlockSource, RecentBlock
from ..observability import record_provider_failure, record_provider_latency

LOGGER = logging.getLogger(__name__)


def clamp_limit(limit: Optional[int], default: int = 10) -> int:
    if limit is None:
        limit = default
    return max(1, min(int(limit), MAX_BLOCK_LIMIT))


class ProviderError(RuntimeError):
    """Raised when a block provider cannot fulfill a request."""


class ProviderNotConfiguredError(ProviderError):
    """Raised by a provider that lacks the configuration to run at all."""


class BlockProvider(ABC):
    source: BlockSource

    @abstractmethod
    async def fetch_recent_blocks(self, limit: int) -> List[RecentBlock]:
        """Return up to ``limit`` recent blocks, most recent first."""

    async def aclose(self) -> None:
        return None


async def fetch_with_fallback(
    primary: Optional[BlockProvider],
    fallback: BlockProvider,
    limit: int,
) -> Tuple[List[RecentBlock], BlockSource]:
    """Fetch from ``primary`` when given, silently falling back on any failure.

    Errors from ``fallback`` propagate to the caller.
    """
    if primary is not None:
        try:
            with record_provider_latency(primary.source):
                blocks = await primary.fetch_recent_blocks(limit)
        except ProviderNotConfiguredError as exc:
            LOGGER.debug("%s provider not configured, using %s: %s", primary.source, fallback.source, exc)
        except Exception as exc:
            record_provider_failure(primary.source)
            LOGGER.warning("%s recent blocks failed, falling back to %s: %s", primary.source, fallback.source, exc)
        else:
            if blocks:
                return blocks, primary.source
            LOGGER.debug("%s provider returned no blocks, using %s", primary.source, fallback.source)

    try:
        with record_provider_latency(fallback.source):
            blocks = await fallback.fetch_recent_blocks(limit)
    except Exception:
        record_provider_failure(fallback.source)
        raise
    return blocks, fallback.source
