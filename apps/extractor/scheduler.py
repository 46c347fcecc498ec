"""
Extraction Scheduler - Interval and On-Demand Execution

Manages periodic extraction cycles using APScheduler.

Features:
- One cycle immediately on start, then one per interval (EXTRACT_FREQUENCY)
- Cycles are spawned without waiting for earlier ones; they may overlap
- Pause/resume turns ticks into no-ops without stopping the timer
- RUN_ONCE mode for a single cycle (and its retries)
- Graceful shutdown handling

Usage:
    # Scheduled mode (default)
    python -m apps.extractor

    # Run once and exit
    RUN_ONCE=true python -m apps.extractor

    # Pause / continue a running service
    kill -USR1 <pid>
    kill -USR2 <pid>
"""

import asyncio
import enum
import logging
import os
import signal
import sys
from abc import ABC, abstractmethod

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from apps.extractor.extractor_job import CSV_HEADER, Extractor
from apps.extractor.trading import build_trading_service
from utils.config import get_settings, persist_defaults
from utils.csv_writer import CsvWriter
from utils.logging import close_handler, setup_logging

logger = logging.getLogger(__name__)

JOB_ID = "extraction_job"


class SchedulerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class ExtractionControl(ABC):
    """Lifecycle hooks a host (service manager, CLI, tests) drives."""

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def resume(self) -> None:
        ...


class ExtractionScheduler(ExtractionControl):
    """
    Scheduler for periodic extraction cycles.

    Handles:
    - APScheduler setup and management
    - Interval-based scheduling
    - Pause/resume of cycles
    - Release of the diagnostic log on stop
    """

    def __init__(
        self,
        extractor: Extractor,
        interval_minutes: float = 5,
        log_handler: logging.Handler | None = None,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            extractor: Extractor running the cycles
            interval_minutes: Minutes between scheduled cycles
            log_handler: Diagnostic log handler released on stop
        """
        self.extractor = extractor
        self.interval_minutes = interval_minutes
        self.log_handler = log_handler
        self.scheduler: AsyncIOScheduler | None = None
        self.state = SchedulerState.STOPPED

        logger.info(
            "ExtractionScheduler initialized",
            extra={"interval_minutes": interval_minutes},
        )

    async def _tick(self) -> None:
        """Timer callback: spawn a cycle and return immediately."""
        self.extractor.spawn_cycle()

    def start(self) -> None:
        """
        Start periodic extraction.

        Must be called from a running event loop. Runs one cycle right away,
        then one on every interval tick.
        """
        if self.state is not SchedulerState.STOPPED:
            logger.warning("Start ignored: scheduler is %s", self.state.value)
            return

        try:
            logger.info("Started")
            self.extractor.spawn_cycle()

            self.scheduler = AsyncIOScheduler()
            self.scheduler.add_job(
                self._tick,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=JOB_ID,
                name="Periodic Trade Extraction",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self.scheduler.start()
            self.state = SchedulerState.RUNNING

            job = self.scheduler.get_job(JOB_ID)
            next_run = getattr(job, "next_run_time", None)
            logger.info(
                "Scheduled extraction job",
                extra={
                    "interval_minutes": self.interval_minutes,
                    "next_run": str(next_run) if next_run is not None else None,
                },
            )

        except Exception as e:
            logger.error("Scheduler failed to start: %s", e, extra={"error": str(e)}, exc_info=True)
            self._shutdown_timer()

    def pause(self) -> None:
        if self.state is not SchedulerState.RUNNING:
            logger.debug("Pause ignored: scheduler is %s", self.state.value)
            return
        self.extractor.pause()
        self.state = SchedulerState.PAUSED
        logger.info("Paused")

    def resume(self) -> None:
        if self.state is not SchedulerState.PAUSED:
            logger.debug("Continue ignored: scheduler is %s", self.state.value)
            return
        self.extractor.resume()
        self.state = SchedulerState.RUNNING
        logger.info("Continued")

    def stop(self) -> None:
        """Stop the timer and release the diagnostic log. Safe to repeat."""
        if self.state is SchedulerState.STOPPED and self.scheduler is None and self.log_handler is None:
            return

        logger.info("Stopping...")
        self._shutdown_timer()
        self.state = SchedulerState.STOPPED

        close_handler(self.log_handler)
        self.log_handler = None

    def _shutdown_timer(self) -> None:
        if self.scheduler is None:
            return
        try:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
        except Exception as e:
            logger.error("Scheduler shutdown failed: %s", e, extra={"error": str(e)})
        self.scheduler = None


class ExtractionService:
    """
    CLI host for the scheduler.

    Wires settings into the extractor, maps signals onto the control
    surface and waits until a shutdown is requested.
    """

    def __init__(self, control: ExtractionControl, run_once: bool = False) -> None:
        self.control = control
        self.run_once = run_once
        self.shutdown_event = asyncio.Event()
        self.installed_signals: list[signal.Signals] = []

    def setup_signal_handlers(self) -> None:
        """Map SIGINT/SIGTERM to stop and SIGUSR1/SIGUSR2 to pause/continue."""
        loop = asyncio.get_running_loop()

        handlers = {
            signal.SIGINT: self.shutdown_event.set,
            signal.SIGTERM: self.shutdown_event.set,
        }
        if hasattr(signal, "SIGUSR1"):
            handlers[signal.SIGUSR1] = self.control.pause
            handlers[signal.SIGUSR2] = self.control.resume

        for signum, handler in handlers.items():
            try:
                loop.add_signal_handler(signum, handler)
            except NotImplementedError:
                # Windows event loops lack add_signal_handler
                signal.signal(signum, lambda s, f, h=handler: loop.call_soon_threadsafe(h))
            self.installed_signals.append(signum)

    def remove_signal_handlers(self) -> None:
        """Restore default handling for every signal set up by this host."""
        loop = asyncio.get_running_loop()

        for signum in self.installed_signals:
            try:
                loop.remove_signal_handler(signum)
            except NotImplementedError:
                signal.signal(signum, signal.SIG_DFL)
        self.installed_signals = []

    async def run(self, extractor: Extractor) -> None:
        """Run until a shutdown signal, or one cycle in RUN_ONCE mode."""
        self.setup_signal_handlers()

        try:
            if self.run_once:
                logger.info("Running in RUN_ONCE mode")
                await extractor.run_extraction()
                await extractor.wait_pending()
                self.control.stop()
                return

            logger.info("Running in scheduled mode")
            self.control.start()
            logger.info("Waiting for jobs...")

            await self.shutdown_event.wait()

            logger.info("Shutting down scheduler")
            self.control.stop()
        finally:
            self.remove_signal_handlers()


async def main() -> None:
    """Main entry point for the extractor service."""
    settings = get_settings()
    log_handler = setup_logging(
        level=settings.LOG_LEVEL,
        format_type=settings.LOG_FORMAT,
        output=settings.LOG_OUTPUT,
        log_file=settings.LOG_FILE,
    )

    for key in settings.defaulted_fields:
        logger.warning("%s is not set or has invalid format. Using default value", key)
    persist_defaults(settings)

    run_once = os.getenv("RUN_ONCE", "false").lower() in ("true", "1", "yes")

    trading_service = build_trading_service(settings)

    try:
        extractor = Extractor(
            trading_service,
            CsvWriter(settings.CSV_FOLDER, CSV_HEADER),
            retry_delay_ms=settings.RETRY_DELAY_MS,
            max_retries=settings.EXTRACT_MAX_RETRIES,
        )
        scheduler = ExtractionScheduler(
            extractor,
            interval_minutes=settings.EXTRACT_FREQUENCY,
            log_handler=log_handler,
        )
        await ExtractionService(scheduler, run_once=run_once).run(extractor)
    except Exception as e:
        logger.error("Scheduler failed: %s", e, extra={"error": str(e)}, exc_info=True)
        sys.exit(1)
    finally:
        await trading_service.close()


if __name__ == "__main__":
    asyncio.run(main())
