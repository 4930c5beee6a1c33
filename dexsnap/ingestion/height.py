from __future__ import annotations

import logging
from typing import Protocol

import httpx

from dexsnap.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class HeightResolver(Protocol):
    async def resolve(self, client: httpx.AsyncClient) -> int: ...


class ChainHeightResolver:
    """Derives the target height from a live node's current tip.

    The indexer trails the chain, so the snapshot is taken ``lag`` blocks
    behind the tip. A failure here is never retried.
    """

    def __init__(self, rpc_url: str, lag: int = 5) -> None:
        self.rpc_url = rpc_url
        self.lag = lag

    async def current_tip(self, client: httpx.AsyncClient) -> int:
        body = {"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber", "params": []}
        try:
            resp = await client.post(self.rpc_url, json=body)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(f"eth_blockNumber call to {self.rpc_url} failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise UpstreamUnavailable(f"Unexpected JSON-RPC response: {payload!r}")
        if payload.get("error"):
            raise UpstreamUnavailable(f"eth_blockNumber returned error: {payload['error']}")
        result = payload.get("result")
        if not isinstance(result, str):
            raise UpstreamUnavailable(f"Block number must be a hex string, got {result!r}")
        try:
            return int(result, 16)
        except (TypeError, ValueError) as exc:
            raise UpstreamUnavailable(f"Malformed block number {result!r}") from exc

    async def resolve(self, client: httpx.AsyncClient) -> int:
        tip = await self.current_tip(client)
        if tip < 0 or tip < self.lag:
            raise UpstreamUnavailable(f"Chain tip {tip} is below the indexing lag {self.lag}")
        height = tip - self.lag
        logger.info("Chain tip %s, target height %s (lag %s)", tip, height, self.lag)
        return height
