from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

import httpx

from dexsnap.errors import FetchExhausted, NonProgressingCursor
from dexsnap.ingestion.sources import PageFetcher
from dexsnap.models import Page

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def check_progress(page: Page, after_id: str) -> None:
    """Raise unless every key is strictly above ``after_id`` and ascending."""
    previous = after_id
    for key in page.keys:
        if previous and key <= previous:
            raise NonProgressingCursor(previous, key)
        previous = key


class RetryingFetcher:
    """Bounded retry around a page fetcher.

    A failed attempt waits ``delay_seconds`` (scaled by ``backoff_factor``
    per attempt, plus up to ``jitter_seconds``) before the next one. Cursor
    violations are not transient and propagate immediately.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        max_retries: int = 10,
        delay_seconds: float = 10.0,
        backoff_factor: float = 1.0,
        jitter_seconds: float = 0.0,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.fetcher = fetcher
        self.max_retries = max_retries
        self.delay_seconds = delay_seconds
        self.backoff_factor = backoff_factor
        self.jitter_seconds = jitter_seconds
        self.sleep = sleep or asyncio.sleep

    def _delay_for(self, attempt: int) -> float:
        delay = self.delay_seconds * (self.backoff_factor ** (attempt - 1))
        if self.jitter_seconds:
            delay += random.uniform(0, self.jitter_seconds)
        return delay

    async def fetch(self, client: httpx.AsyncClient, height: int, page_size: int, after_id: str) -> Page:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                page = await self.fetcher.fetch(client, height, page_size, after_id)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "Fetch after %r failed (attempt %s/%s): %s", after_id, attempt, self.max_retries, exc
                )
                if attempt < self.max_retries:
                    await self.sleep(self._delay_for(attempt))
                continue
            check_progress(page, after_id)
            return page

        raise FetchExhausted(self.max_retries, after_id) from last_error
