from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field

# Largest value a SQLite INTEGER column can hold.
SQLITE_MAX_INTEGER = 2**63 - 1


class TradingPairSnapshot(BaseModel):
    """State of one trading pair at the snapshot height."""

    id: str = Field(..., min_length=1, description="Pair contract address (primary key, case preserved).")
    token0_symbol: str = Field(..., description="Symbol of the first token.")
    token1_symbol: str = Field(..., description="Symbol of the second token.")
    reserve0: float = Field(..., allow_inf_nan=False, description="Raw reserve of token0.")
    reserve1: float = Field(..., allow_inf_nan=False, description="Raw reserve of token1.")
    reserve_usd: float = Field(..., allow_inf_nan=False, description="Total reserve value in USD.")
    volume_token0: float = Field(..., allow_inf_nan=False, description="Cumulative token0 volume.")
    volume_token1: float = Field(..., allow_inf_nan=False, description="Cumulative token1 volume.")
    volume_usd: float = Field(..., allow_inf_nan=False, description="Cumulative volume in USD.")
    tx_count: int = Field(..., ge=0, le=SQLITE_MAX_INTEGER, description="Number of transactions against the pair.")
    created_at_timestamp: int = Field(..., ge=0, le=SQLITE_MAX_INTEGER, description="Pair creation time, seconds since epoch.")

    @classmethod
    def from_subgraph(cls, payload: Mapping[str, Any]) -> "TradingPairSnapshot":
        """Parse a raw ``pairs`` entity; numeric fields arrive as strings."""
        token0 = payload.get("token0")
        token1 = payload.get("token1")
        token0 = token0 if isinstance(token0, Mapping) else {}
        token1 = token1 if isinstance(token1, Mapping) else {}
        return cls(
            id=payload.get("id"),
            token0_symbol=token0.get("symbol"),
            token1_symbol=token1.get("symbol"),
            reserve0=payload.get("reserve0"),
            reserve1=payload.get("reserve1"),
            reserve_usd=payload.get("reserveUSD"),
            volume_token0=payload.get("volumeToken0"),
            volume_token1=payload.get("volumeToken1"),
            volume_usd=payload.get("volumeUSD"),
            tx_count=payload.get("txCount"),
            created_at_timestamp=payload.get("createdAtTimestamp"),
        )


@dataclass(frozen=True)
class RejectedPair:
    """Subgraph entity that failed to parse."""

    id: str
    error: str
    payload: str


@dataclass(frozen=True)
class Page:
    """One keyset page: parsed records plus quarantined entities.

    ``last_id`` is the last raw key on the page, valid or not, so the
    cursor advances past entities that were rejected.
    """

    records: List[TradingPairSnapshot] = field(default_factory=list)
    rejected: List[RejectedPair] = field(default_factory=list)
    keys: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def last_id(self) -> Optional[str]:
        return self.keys[-1] if self.keys else None


class RunStage(str, Enum):
    RESOLVING = "resolving"
    PREPARING = "preparing"
    COUNTING = "counting"
    PAGING = "paging"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class IngestionRun:
    """Mutable state of a single run; never persisted."""

    height: Optional[int] = None
    cursor: str = ""
    records_written: int = 0
    rejected_count: int = 0
    pages: int = 0
    baseline_total: Optional[int] = None
    stage: RunStage = RunStage.RESOLVING
    destination: Optional[str] = None


class ProgressObservation(BaseModel):
    """Progress emitted after each persisted page."""

    height: int
    records_so_far: int
    baseline_total: Optional[int] = None
    pages: int

    def __str__(self) -> str:
        total = "?" if self.baseline_total is None else str(self.baseline_total)
        return f"{self.records_so_far}/{total}"


class IngestionSummary(BaseModel):
    """Outcome of a pipeline run."""

    stage: RunStage
    height: int
    records_written: int
    rejected_records: int = 0
    pages: int
    baseline_total: Optional[int] = None
    destination: str
