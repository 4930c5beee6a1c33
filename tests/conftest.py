"""Pytest configuration for repository test runs."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fakes import KeysetUpstream, make_pair, pair_id  # noqa: E402


@pytest.fixture
def upstream_factory():
    """Build a keyset upstream holding ``count`` sequential pairs."""

    def _build(count: int) -> KeysetUpstream:
        return KeysetUpstream([make_pair(pair_id(i)) for i in range(1, count + 1)])

    return _build
