from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from dotenv import load_dotenv

from dexsnap.errors import ConfigError

load_dotenv()

BASELINE_POLICIES: Final[tuple[str, ...]] = ("fail", "degrade")


@dataclass(slots=True)
class Settings:
    """Central configuration driven by environment variables."""

    rpc_url: str = os.getenv("RPC_URL", "https://eth.llamarpc.com")
    subgraph_url: str = os.getenv("SUBGRAPH_URL", "https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v2")
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

    data_dir: Path = field(default_factory=lambda: Path(os.getenv("DATA_DIR", "./data")))
    db_filename_template: str = os.getenv("DB_FILENAME_TEMPLATE", "uniswapv2_pairs_{height}.db")

    height_lag: int = int(os.getenv("HEIGHT_LAG", "5"))
    page_size: int = int(os.getenv("PAGE_SIZE", "1000"))
    max_retries: int = int(os.getenv("MAX_RETRIES", "10"))
    retry_delay_seconds: float = float(os.getenv("RETRY_DELAY_SECONDS", "10"))
    retry_backoff_factor: float = float(os.getenv("RETRY_BACKOFF_FACTOR", "1.0"))
    retry_jitter_seconds: float = float(os.getenv("RETRY_JITTER_SECONDS", "0"))
    baseline_policy: str = os.getenv("BASELINE_POLICY", "fail")

    def validate(self) -> None:
        """Reject values the pipeline cannot run with."""
        if self.height_lag < 0:
            raise ConfigError(f"HEIGHT_LAG must be >= 0, got {self.height_lag}")
        if self.page_size < 1:
            raise ConfigError(f"PAGE_SIZE must be >= 1, got {self.page_size}")
        if self.max_retries < 1:
            raise ConfigError(f"MAX_RETRIES must be >= 1, got {self.max_retries}")
        if self.retry_delay_seconds < 0 or self.retry_jitter_seconds < 0:
            raise ConfigError("RETRY_DELAY_SECONDS and RETRY_JITTER_SECONDS must be >= 0")
        if self.retry_backoff_factor < 1:
            raise ConfigError(f"RETRY_BACKOFF_FACTOR must be >= 1, got {self.retry_backoff_factor}")
        if self.baseline_policy not in BASELINE_POLICIES:
            raise ConfigError(f"BASELINE_POLICY must be one of {BASELINE_POLICIES}, got {self.baseline_policy!r}")
        if "{height}" not in self.db_filename_template:
            raise ConfigError("DB_FILENAME_TEMPLATE must contain a {height} placeholder")

    def ensure_paths(self) -> None:
        """Create expected directories if they do not exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "export").mkdir(parents=True, exist_ok=True)

    def db_path(self, height: int) -> Path:
        return self.data_dir / self.db_filename_template.format(height=height)

    @property
    def degrade_baseline(self) -> bool:
        return self.baseline_policy == "degrade"


# Singleton-style settings import
settings: Final[Settings] = Settings()
settings.ensure_paths()
