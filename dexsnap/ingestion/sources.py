from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Protocol

import httpx
from pydantic import ValidationError

from dexsnap.errors import UpstreamUnavailable
from dexsnap.models import Page, RejectedPair, TradingPairSnapshot

logger = logging.getLogger(__name__)

PAIR_COUNT_QUERY = """
query PairCountAtBlock($blockNumber: Int!) {
  uniswapFactories(block: { number: $blockNumber }) {
    pairCount
  }
}
"""

PAIRS_QUERY = """
query PairsAtBlock($block: Int!, $first: Int!, $lastId: String!) {
  pairs(
    block: { number: $block }
    first: $first
    where: { id_gt: $lastId }
    orderBy: id
    orderDirection: asc
  ) {
    id
    token0 { symbol }
    token1 { symbol }
    reserve0
    reserve1
    reserveUSD
    volumeToken0
    volumeToken1
    volumeUSD
    txCount
    createdAtTimestamp
  }
}
"""


class BaselineCounter(Protocol):
    async def count(self, client: httpx.AsyncClient, height: int) -> int: ...


class PageFetcher(Protocol):
    async def fetch(self, client: httpx.AsyncClient, height: int, page_size: int, after_id: str) -> Page: ...


class SubgraphPairSource:
    """Uniswap v2 subgraph: pair count and keyset-paginated pair pages."""

    name = "uniswap-v2-subgraph"

    def __init__(self, url: str) -> None:
        self.url = url

    async def _query(self, client: httpx.AsyncClient, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await client.post(self.url, json={"query": query, "variables": variables})
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(f"Subgraph request to {self.url} failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise UpstreamUnavailable(f"Unexpected subgraph response: {payload!r}")
        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in payload["errors"])
            raise UpstreamUnavailable(f"Subgraph returned errors: {messages}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise UpstreamUnavailable("Subgraph response has no data member")
        return data

    async def count(self, client: httpx.AsyncClient, height: int) -> int:
        data = await self._query(client, PAIR_COUNT_QUERY, {"blockNumber": height})
        factories = data.get("uniswapFactories") or []
        if not factories:
            raise UpstreamUnavailable(f"No factory entity at height {height}")
        try:
            total = int(factories[0]["pairCount"])
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamUnavailable(f"Malformed pairCount: {factories[0]!r}") from exc
        logger.info("Subgraph reports %s pairs at height %s", total, height)
        return total

    async def fetch(self, client: httpx.AsyncClient, height: int, page_size: int, after_id: str) -> Page:
        variables = {"block": height, "first": page_size, "lastId": after_id}
        data = await self._query(client, PAIRS_QUERY, variables)
        entities = data.get("pairs")
        if not isinstance(entities, list):
            raise UpstreamUnavailable("Subgraph response has no pairs list")

        records: List[TradingPairSnapshot] = []
        rejected: List[RejectedPair] = []
        keys: List[str] = []
        for entry in entities:
            key = entry.get("id") if isinstance(entry, dict) else None
            if not isinstance(key, str) or not key:
                # Without a key the cursor cannot advance over the entry.
                raise UpstreamUnavailable(f"Pair entity without an id: {entry!r}")
            keys.append(key)
            try:
                records.append(TradingPairSnapshot.from_subgraph(entry))
            except ValidationError as exc:
                rejected.append(RejectedPair(id=key, error=str(exc), payload=json.dumps(entry, sort_keys=True)))

        if rejected:
            logger.warning("Quarantined %s malformed pairs after %r", len(rejected), after_id)
        logger.debug("Fetched %s pairs from %s after %r", len(keys), self.name, after_id)
        return Page(records=records, rejected=rejected, keys=keys)
