"""Unit tests for the subgraph baseline count and page fetch."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from dexsnap.errors import UpstreamUnavailable
from dexsnap.ingestion.sources import SubgraphPairSource
from fakes import mock_client, pair_entity

SUBGRAPH_URL = "https://subgraph.test/uniswap-v2"


def _call(handler, method: str, *args):
    async def _run():
        async with mock_client(handler) as client:
            source = SubgraphPairSource(SUBGRAPH_URL)
            return await getattr(source, method)(client, *args)

    return asyncio.run(_run())


def test_count_reads_factory_pair_count() -> None:
    """Baseline should come from the factory entity at the given block."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"uniswapFactories": [{"pairCount": 350000}]}})

    total = _call(handler, "count", 18_000_000)

    assert total == 350_000
    assert seen["body"]["variables"] == {"blockNumber": 18_000_000}


def test_count_without_factory_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"uniswapFactories": []}})

    with pytest.raises(UpstreamUnavailable):
        _call(handler, "count", 1)


def test_fetch_sends_keyset_variables_and_parses_page() -> None:
    """Page query should carry height, page size and the cursor."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"pairs": [pair_entity("0x02"), pair_entity("0x03")]}})

    page = _call(handler, "fetch", 18_000_000, 1000, "0x01")

    assert seen["body"]["variables"] == {"block": 18_000_000, "first": 1000, "lastId": "0x01"}
    assert "id_gt" in seen["body"]["query"]
    assert [r.id for r in page.records] == ["0x02", "0x03"]
    assert page.last_id == "0x03"


def test_fetch_quarantines_malformed_entities() -> None:
    """A bad entity should be set aside while the cursor still covers it."""

    def handler(request: httpx.Request) -> httpx.Response:
        pairs = [pair_entity("0x02"), pair_entity("0x03", txCount="lots")]
        return httpx.Response(200, json={"data": {"pairs": pairs}})

    page = _call(handler, "fetch", 1, 1000, "")

    assert [r.id for r in page.records] == ["0x02"]
    assert [r.id for r in page.rejected] == ["0x03"]
    assert len(page) == 2 and page.last_id == "0x03"


def test_fetch_empty_page_signals_exhaustion() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"pairs": []}})

    page = _call(handler, "fetch", 1, 1000, "0xff")

    assert len(page) == 0


def test_fetch_graphql_errors_are_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"message": "indexing_error"}]})

    with pytest.raises(UpstreamUnavailable, match="indexing_error"):
        _call(handler, "fetch", 1, 1000, "")


def test_fetch_rate_limit_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    with pytest.raises(UpstreamUnavailable):
        _call(handler, "fetch", 1, 1000, "")
