from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import httpx

from dexsnap.config import Settings, settings
from dexsnap.errors import IngestionAborted, NonProgressingCursor, SnapshotError
from dexsnap.ingestion.height import ChainHeightResolver, HeightResolver
from dexsnap.ingestion.retry import RetryingFetcher
from dexsnap.ingestion.sources import BaselineCounter, PageFetcher, SubgraphPairSource
from dexsnap.models import IngestionRun, IngestionSummary, Page, ProgressObservation, RunStage
from dexsnap.storage import PairSnapshotStore, SqlitePairStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[int], PairSnapshotStore]
ClientFactory = Callable[[], httpx.AsyncClient]
ProgressCallback = Callable[[ProgressObservation], None]


class SnapshotIngestionPipeline:
    """Drives one snapshot run through its stages.

    resolving -> preparing -> counting -> paging -> done; any failure moves
    the run to aborted and surfaces as ``IngestionAborted``. Pages already
    appended stay in the destination.
    """

    def __init__(
        self,
        resolver: HeightResolver,
        counter: BaselineCounter,
        fetcher: PageFetcher,
        store_factory: StoreFactory,
        page_size: int = 1000,
        degrade_baseline: bool = False,
        client_factory: Optional[ClientFactory] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.resolver = resolver
        self.counter = counter
        self.fetcher = fetcher
        self.store_factory = store_factory
        self.page_size = page_size
        self.degrade_baseline = degrade_baseline
        self.client_factory = client_factory or httpx.AsyncClient
        self.on_progress = on_progress
        self.run_state = IngestionRun()

    async def run(self) -> IngestionSummary:
        """Execute a full run and return its summary."""
        self.run_state = run = IngestionRun()
        store: Optional[PairSnapshotStore] = None
        try:
            async with self.client_factory() as client:
                run.height = await self.resolver.resolve(client)

                run.stage = RunStage.PREPARING
                store = self.store_factory(run.height)
                run.destination = str(store.path)
                store.reset()
                store.initialize()

                run.stage = RunStage.COUNTING
                run.baseline_total = await self._baseline(client, run.height)

                run.stage = RunStage.PAGING
                while True:
                    page = await self.fetcher.fetch(client, run.height, self.page_size, run.cursor)
                    if len(page) == 0:
                        break
                    self._persist(store, run, page)
            run.stage = RunStage.DONE
        except asyncio.CancelledError:
            logger.error("Ingestion cancelled during %s", run.stage.value)
            run.stage = RunStage.ABORTED
            raise
        except Exception as exc:  # noqa: BLE001
            failed_stage = run.stage
            run.stage = RunStage.ABORTED
            logger.error(
                "Ingestion aborted during %s at height %s after %s persisted pairs: %s",
                failed_stage.value,
                run.height,
                run.records_written,
                exc,
            )
            raise IngestionAborted(
                stage=failed_stage.value,
                height=run.height,
                records_persisted=run.records_written,
                destination=run.destination,
                reason=str(exc) or type(exc).__name__,
            ) from exc
        finally:
            if store is not None:
                store.close()

        logger.info(
            "Snapshot complete: %s pairs at height %s in %s pages -> %s",
            run.records_written,
            run.height,
            run.pages,
            run.destination,
        )
        return IngestionSummary(
            stage=run.stage,
            height=run.height,
            records_written=run.records_written,
            rejected_records=run.rejected_count,
            pages=run.pages,
            baseline_total=run.baseline_total,
            destination=run.destination or "",
        )

    async def _baseline(self, client: httpx.AsyncClient, height: int) -> Optional[int]:
        try:
            return await self.counter.count(client, height)
        except SnapshotError as exc:
            if not self.degrade_baseline:
                raise
            logger.warning("Baseline count unavailable, continuing with unknown total: %s", exc)
            return None

    def _persist(self, store: PairSnapshotStore, run: IngestionRun, page: Page) -> None:
        last_id = page.last_id
        if run.cursor and last_id <= run.cursor:
            raise NonProgressingCursor(run.cursor, last_id)

        run.records_written += store.append(page.records)
        store.quarantine(page.rejected)
        run.cursor = last_id
        run.rejected_count += len(page.rejected)
        run.pages += 1

        observation = ProgressObservation(
            height=run.height,
            records_so_far=run.records_written,
            baseline_total=run.baseline_total,
            pages=run.pages,
        )
        logger.info("progress: %s", observation)
        if self.on_progress is not None:
            self.on_progress(observation)


def build_pipeline(config: Settings = settings, on_progress: Optional[ProgressCallback] = None) -> SnapshotIngestionPipeline:
    """Create a pipeline wired to the configured node, subgraph and data dir."""
    config.validate()
    source = SubgraphPairSource(config.subgraph_url)
    fetcher = RetryingFetcher(
        source,
        max_retries=config.max_retries,
        delay_seconds=config.retry_delay_seconds,
        backoff_factor=config.retry_backoff_factor,
        jitter_seconds=config.retry_jitter_seconds,
    )
    timeout = httpx.Timeout(config.request_timeout_seconds)
    return SnapshotIngestionPipeline(
        resolver=ChainHeightResolver(config.rpc_url, lag=config.height_lag),
        counter=source,
        fetcher=fetcher,
        store_factory=lambda height: SqlitePairStore(config.db_path(height)),
        page_size=config.page_size,
        degrade_baseline=config.degrade_baseline,
        client_factory=lambda: httpx.AsyncClient(timeout=timeout, follow_redirects=True),
        on_progress=on_progress,
    )
