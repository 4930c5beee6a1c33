from __future__ import annotations

from typing import Iterable, Optional


class SnapshotError(Exception):
    """Base class for ingestion failures."""


class ConfigError(SnapshotError):
    """Invalid runtime configuration."""


class UpstreamUnavailable(SnapshotError):
    """Chain RPC or subgraph query could not complete."""


class FetchExhausted(SnapshotError):
    """Page fetch kept failing until the retry budget ran out."""

    def __init__(self, attempts: int, after_id: str) -> None:
        super().__init__(f"Page fetch after id {after_id!r} failed {attempts} times")
        self.attempts = attempts
        self.after_id = after_id


class NonProgressingCursor(SnapshotError):
    """A page did not move the keyset cursor strictly forward."""

    def __init__(self, after_id: str, offending_id: str) -> None:
        super().__init__(f"Cursor did not advance past {after_id!r}: got {offending_id!r}")
        self.after_id = after_id
        self.offending_id = offending_id


class SchemaError(SnapshotError):
    """Destination table exists with a conflicting layout."""


class DuplicateKey(SnapshotError):
    """One or more rows in a batch collide on the primary key."""

    def __init__(self, keys: Iterable[str]) -> None:
        self.keys = sorted(set(keys))
        preview = ", ".join(self.keys[:5])
        more = f" (+{len(self.keys) - 5} more)" if len(self.keys) > 5 else ""
        super().__init__(f"Duplicate pair ids rejected: {preview}{more}")


class IngestionAborted(SnapshotError):
    """A run stopped before completion; persisted rows stay on disk."""

    def __init__(
        self,
        stage: str,
        height: Optional[int],
        records_persisted: int,
        destination: Optional[str],
        reason: str,
    ) -> None:
        super().__init__(
            f"Ingestion aborted during {stage} (height={height}, "
            f"records_persisted={records_persisted}): {reason}"
        )
        self.stage = stage
        self.height = height
        self.records_persisted = records_persisted
        self.destination = destination
        self.reason = reason
