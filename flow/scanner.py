"""
Batch Scanner

Runs a per-item async fetch over a list of tickers (or contracts) in
ordered batches:
- Within a batch, fetches run concurrently under a semaphore
- Each fetch is fault isolated into a TickerResult (success or empty-with-reason)
- Batches run strictly one after another with a small delay between them
- Progress callback after every batch with cumulative, ticker-ordered items
- cancel() stops new batches; scan_with_deadline() returns partial results

Usage:
    scanner = BatchScanner(batch_size=5, inter_batch_delay=0.1)
    trades = await scanner.scan(["SPY", "QQQ"], fetch_ticker)
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class TickerResult:
    """Outcome of one item's fetch."""
    ticker: str
    items: list = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.items


@dataclass
class ScanProgress:
    """Snapshot handed to the progress callback after each batch."""
    batch_index: int          # 0-based
    batch_count: int
    tickers_in_batch: list[str]
    batch_results: list[TickerResult]
    accumulated: list         # all items so far, ticker order, not deduplicated

    @property
    def is_last(self) -> bool:
        return self.batch_index == self.batch_count - 1


FetchOne = Callable[[Any], Awaitable[list]]
ProgressCallback = Callable[[ScanProgress], Any]


class BatchScanner:
    """Sequential batches of concurrent, fault-isolated fetches."""

    def __init__(
        self,
        batch_size: int = 5,
        inter_batch_delay: float = 0.2,
        max_concurrency: Optional[int] = None,
        name: str = "scan",
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.max_concurrency = max_concurrency
        self.name = name

        self._cancelled = False
        self.timed_out = False
        self.results: list[TickerResult] = []

    def cancel(self):
        """Stop issuing new batches. In-flight fetches finish."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def batches(self, items: Sequence) -> list[list]:
        return [list(items[i:i + self.batch_size]) for i in range(0, len(items), self.batch_size)]

    async def _fetch_isolated(self, semaphore: asyncio.Semaphore, item, fetch_one: FetchOne) -> TickerResult:
        async with semaphore:
            try:
                items = await fetch_one(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[{self.name}] {item} failed: {type(e).__name__}: {e}")
                return TickerResult(ticker=str(item), success=False, error=f"{type(e).__name__}: {e}")

        return TickerResult(ticker=str(item), items=list(items or []))

    async def _notify(self, on_progress: ProgressCallback, progress: ScanProgress):
        try:
            outcome = on_progress(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"[{self.name}] progress callback failed: {e}")

    async def _run(
        self,
        items: Sequence,
        fetch_one: FetchOne,
        on_progress: Optional[ProgressCallback],
        accumulated: list,
    ) -> list:
        batches = self.batches(items)
        batch_count = len(batches)

        for index, batch in enumerate(batches):
            if self._cancelled:
                logger.info(f"[{self.name}] cancelled before batch {index + 1}/{batch_count}")
                break

            semaphore = asyncio.Semaphore(self.max_concurrency or len(batch))
            batch_results = await asyncio.gather(
                *(self._fetch_isolated(semaphore, item, fetch_one) for item in batch)
            )

            for result in batch_results:
                self.results.append(result)
                accumulated.extend(result.items)

            failed = sum(1 for r in batch_results if not r.success)
            logger.debug(
                f"[{self.name}] batch {index + 1}/{batch_count}: "
                f"{sum(len(r.items) for r in batch_results)} items, {failed} failed"
            )

            if on_progress is not None:
                await self._notify(on_progress, ScanProgress(
                    batch_index=index,
                    batch_count=batch_count,
                    tickers_in_batch=[str(i) for i in batch],
                    batch_results=list(batch_results),
                    accumulated=list(accumulated),
                ))

            if index < batch_count - 1 and self.inter_batch_delay > 0:
                await asyncio.sleep(self.inter_batch_delay)

        return accumulated

    async def scan(
        self,
        items: Sequence,
        fetch_one: FetchOne,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list:
        """
        Fetch every item in ordered batches.

        Args:
            items: Tickers or contract symbols
            fetch_one: async item -> list
            on_progress: Optional sync or async callback, called after each batch

        Returns:
            All fetched items in item order
        """
        self.results = []
        self.timed_out = False
        return await self._run(items, fetch_one, on_progress, [])

    async def scan_with_deadline(
        self,
        items: Sequence,
        fetch_one: FetchOne,
        deadline: Optional[float],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list:
        """Like scan(), but returns whatever accumulated when deadline seconds elapse."""
        if deadline is None:
            return await self.scan(items, fetch_one, on_progress)

        self.results = []
        self.timed_out = False
        accumulated: list = []
        try:
            return await asyncio.wait_for(self._run(items, fetch_one, on_progress, accumulated), timeout=deadline)
        except asyncio.TimeoutError:
            self.timed_out = True
            logger.warning(f"[{self.name}] deadline {deadline}s reached, returning {len(accumulated)} partial items")
            return list(accumulated)

    def get_stats(self) -> dict:
        return {
            'items': len(self.results),
            'succeeded': sum(1 for r in self.results if r.success),
            'failed': sum(1 for r in self.results if not r.success),
            'empty': sum(1 for r in self.results if r.success and r.is_empty),
            'timed_out': self.timed_out,
            'cancelled': self._cancelled,
        }
