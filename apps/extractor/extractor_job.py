"""
Extraction Job - One Fetch/Aggregate/Write Cycle

Runs a single extraction: fetch the day's trades, aggregate volumes per
period, format CSV lines and write them to ``yyyyMMdd_HHmm.csv``.

Features:
- Pause flag checked before every fetch
- Upstream failures retried in a background task after a fixed delay,
  re-running the whole cycle each attempt (tenacity, unbounded by default)
- Processing failures logged and swallowed so the scheduler keeps ticking
- Fire-and-forget cycle spawning with tracked background tasks

Usage:
    extractor = Extractor(trading_service, CsvWriter(folder, CSV_HEADER))
    await extractor.run_extraction()
"""

import asyncio
import logging
import threading
from collections.abc import Callable, Coroutine
from datetime import datetime
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_fixed,
)

from apps.extractor.aggregation import EXPECTED_PERIODS, aggregate_trades
from apps.extractor.formatter import prepare_output
from apps.extractor.trading import TradingService, TradingServiceError
from utils.csv_writer import OutputSink
from utils.schemas import TradeRecord

logger = logging.getLogger(__name__)

CSV_HEADER = "LocalTime;Volume"
FILE_NAME_FORMAT = "%Y%m%d_%H%M"
DEFAULT_RETRY_DELAY_MS = 5000


def artifact_name(run_context: datetime) -> str:
    """Build the CSV file name for a cycle started at ``run_context``."""
    return f"{run_context.strftime(FILE_NAME_FORMAT)}.csv"


class Extractor:
    """
    Trading data extractor.

    Each call to run_extraction() is an independent cycle; cycles share no
    state besides the pause flag and the set of tracked background tasks.
    """

    def __init__(
        self,
        trading_service: TradingService,
        sink: OutputSink,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        max_retries: int = 0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize extractor.

        Args:
            trading_service: Source of trades
            sink: Destination for CSV lines
            retry_delay_ms: Delay before each retry after an upstream failure
            max_retries: Retry attempts per failure chain, 0 for unbounded
            clock: Source of the cycle reference timestamp
        """
        self.trading_service = trading_service
        self.sink = sink
        self.retry_delay_ms = retry_delay_ms
        self.max_retries = max_retries
        self.clock = clock

        self._paused = threading.Event()
        self._tasks: set[asyncio.Task] = set()

    @property
    def paused(self) -> bool:
        return self._paused.is_set()

    def pause(self) -> None:
        self._paused.set()

    def resume(self) -> None:
        self._paused.clear()

    @property
    def pending(self) -> int:
        """Number of in-flight cycles and retry chains."""
        return len(self._tasks)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def spawn_cycle(self) -> asyncio.Task:
        """Start a cycle in the background without waiting for it."""
        return self._spawn(self.run_extraction())

    async def wait_pending(self) -> None:
        """Wait until no cycle or retry chain is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run_extraction(self) -> str | None:
        """
        Perform one extraction cycle.

        Upstream failures schedule a background retry and return None.

        Returns:
            Written file name, or None when nothing was written
        """
        if self.paused:
            logger.debug("Extraction skipped: paused")
            return None

        try:
            return await self._extract()
        except TradingServiceError as e:
            logger.error("Trading service failed: %s", e, extra={"error": str(e)})
            logger.warning("Repeating extract in %d ms", self.retry_delay_ms)
            self._spawn(self._retry_extraction())
            return None

    async def _extract(self) -> str | None:
        """Fetch and process once; upstream failures propagate."""
        run_context = self.clock()
        trades = await self._fetch(run_context)

        if trades is None:
            logger.warning("Trading service returned no data", extra={"run_context": run_context})
            return None

        return self._process(run_context, trades)

    async def _fetch(self, run_context: datetime) -> list[TradeRecord] | None:
        try:
            return await self.trading_service.get_trades(run_context)
        except TradingServiceError:
            raise
        except Exception as e:
            raise TradingServiceError(str(e) or type(e).__name__) from e

    def _process(self, run_context: datetime, trades: list[TradeRecord]) -> str | None:
        """Aggregate, format and write; errors are logged and swallowed."""
        file_name = artifact_name(run_context)

        try:
            aggregations = aggregate_trades(trades)
            if len(aggregations) != EXPECTED_PERIODS:
                logger.warning(
                    "Amount of periods is not %d",
                    EXPECTED_PERIODS,
                    extra={"periods": len(aggregations), "file_name": file_name},
                )

            lines = prepare_output(aggregations, run_context)
            self.sink.dump(file_name, lines)

        except Exception as e:
            logger.error(
                "Extraction processing failed: %s",
                e,
                extra={"file_name": file_name, "error": str(e)},
                exc_info=True,
            )
            return None

        logger.info(
            "Extraction written",
            extra={"file_name": file_name, "trades": len(trades), "periods": len(aggregations)},
        )
        return file_name

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.error(
            "Trading service failed (retry %d): %s",
            retry_state.attempt_number,
            error,
            extra={"error": str(error)},
        )
        logger.warning("Repeating extract in %d ms", self.retry_delay_ms)

    async def _retry_extraction(self) -> str | None:
        """Re-run whole cycles after the retry delay until one gets data."""
        delay = self.retry_delay_ms / 1000
        await asyncio.sleep(delay)

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TradingServiceError),
            stop=stop_after_attempt(self.max_retries) if self.max_retries else stop_never,
            wait=wait_fixed(delay),
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    if self.paused:
                        logger.info("Retry abandoned: paused")
                        return None
                    return await self._extract()
        except TradingServiceError as e:
            logger.error(
                "Giving up extraction after %d retries: %s",
                self.max_retries,
                e,
                extra={"error": str(e)},
            )
        return None
