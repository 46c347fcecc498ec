"""Tests for the extraction cycle."""

import asyncio
import logging
from datetime import datetime

import pytest

from apps.extractor.extractor_job import CSV_HEADER, Extractor, artifact_name
from apps.extractor.trading import TradingServiceError
from tests.conftest import FIXED_NOW, FakeTradingService, RecordingSink, day_of_trades, make_trade
from utils.csv_writer import CsvWriter
from utils.logging import close_handler, setup_logging


def make_extractor(service, sink, clock, **kwargs) -> Extractor:
    kwargs.setdefault("retry_delay_ms", 10)
    return Extractor(service, sink, clock=clock, **kwargs)


class TestArtifactName:
    def test_minute_resolution(self):
        assert artifact_name(datetime(2024, 1, 2, 9, 5, 59)) == "20240102_0905.csv"


class TestRunExtraction:
    """Test a single extraction cycle."""

    @pytest.mark.asyncio
    async def test_success_writes_one_file(self, sink, fixed_clock):
        service = FakeTradingService(day_of_trades())
        extractor = make_extractor(service, sink, fixed_clock)

        file_name = await extractor.run_extraction()

        assert file_name == "20240102_1005.csv"
        assert service.calls == [FIXED_NOW]
        assert len(sink.dumps) == 1
        name, lines = sink.dumps[0]
        assert name == "20240102_1005.csv"
        assert len(lines) == 24
        assert lines[0] == "23:00;1"
        assert lines[-1] == "22:00;24"

    @pytest.mark.asyncio
    async def test_end_to_end_file(self, tmp_path, fixed_clock):
        service = FakeTradingService(
            [
                make_trade({1: 10.11, 2: 15, 3: 1e10}),
                make_trade({1: 3, 2: 10.11, 3: 10.11}),
            ]
        )
        extractor = make_extractor(service, CsvWriter(tmp_path, CSV_HEADER), fixed_clock)

        await extractor.run_extraction()

        content = (tmp_path / "20240102_1005.csv").read_text(encoding="utf-8").splitlines()
        assert content[0] == "LocalTime;Volume"
        assert [line.split(";")[0] for line in content[1:]] == ["23:00", "00:00", "01:00"]
        volumes = [float(line.split(";")[1]) for line in content[1:]]
        assert volumes == pytest.approx([13.11, 25.11, 10000000010.11], abs=1e-9)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("periods", [23, 24, 25])
    async def test_period_count_tolerated(self, sink, fixed_clock, periods, caplog):
        extractor = make_extractor(FakeTradingService(day_of_trades(periods)), sink, fixed_clock)

        with caplog.at_level(logging.WARNING):
            await extractor.run_extraction()

        assert len(sink.dumps[0][1]) == periods
        warned = any("Amount of periods is not 24" in r.getMessage() for r in caplog.records)
        assert warned is (periods != 24)

    @pytest.mark.asyncio
    async def test_none_result_skips_sink(self, sink, fixed_clock):
        extractor = make_extractor(FakeTradingService(None), sink, fixed_clock)

        assert await extractor.run_extraction() is None
        assert sink.dumps == []

    @pytest.mark.asyncio
    async def test_empty_result_writes_header_only(self, sink, fixed_clock):
        extractor = make_extractor(FakeTradingService([]), sink, fixed_clock)

        await extractor.run_extraction()

        assert sink.dumps == [("20240102_1005.csv", [])]

    @pytest.mark.asyncio
    async def test_sink_failure_is_swallowed(self, fixed_clock, caplog):
        sink = RecordingSink(error=OSError("disk full"))
        extractor = make_extractor(FakeTradingService(day_of_trades()), sink, fixed_clock)

        with caplog.at_level(logging.ERROR):
            result = await extractor.run_extraction()

        assert result is None
        assert any(r.getMessage() == "Extraction processing failed: disk full" for r in caplog.records)
        assert extractor.pending == 0


class TestRetry:
    """Test delayed retry after trading service failures."""

    @pytest.mark.asyncio
    async def test_fail_once_then_succeed(self, sink, fixed_clock):
        service = FakeTradingService(TradingServiceError("boom"), day_of_trades())
        extractor = make_extractor(service, sink, fixed_clock, retry_delay_ms=50)
        loop = asyncio.get_running_loop()

        started = loop.time()
        assert await extractor.run_extraction() is None
        assert sink.dumps == []
        assert extractor.pending == 1

        await extractor.wait_pending()

        assert loop.time() - started >= 0.04
        assert len(service.calls) == 2
        assert len(sink.dumps) == 1

    @pytest.mark.asyncio
    async def test_retry_repeats_until_success(self, sink):
        stamps = iter(datetime(2024, 1, 2, 10, m) for m in range(10))
        service = FakeTradingService(
            TradingServiceError("one"),
            TradingServiceError("two"),
            RuntimeError("three"),
            day_of_trades(),
        )
        extractor = make_extractor(service, sink, lambda: next(stamps))

        await extractor.run_extraction()
        await extractor.wait_pending()

        assert len(service.calls) == 4
        # Each attempt captures a fresh reference timestamp
        assert [d.minute for d in service.calls] == [0, 1, 2, 3]
        assert sink.dumps[0][0] == "20240102_1003.csv"

    @pytest.mark.asyncio
    async def test_max_retries_caps_chain(self, sink, fixed_clock, caplog):
        service = FakeTradingService(TradingServiceError("down"))
        extractor = make_extractor(service, sink, fixed_clock, max_retries=3)

        with caplog.at_level(logging.ERROR):
            await extractor.run_extraction()
            await extractor.wait_pending()

        assert len(service.calls) == 4
        assert sink.dumps == []
        assert any("Giving up" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_pause_ends_retry_chain(self, sink, fixed_clock):
        service = FakeTradingService(TradingServiceError("down"), day_of_trades())
        extractor = make_extractor(service, sink, fixed_clock)

        await extractor.run_extraction()
        extractor.pause()
        await extractor.wait_pending()

        assert len(service.calls) == 1
        assert sink.dumps == []


class TestPause:
    """Test pause and resume of cycles."""

    @pytest.mark.asyncio
    async def test_paused_cycle_does_nothing(self, sink, fixed_clock):
        service = FakeTradingService(day_of_trades())
        extractor = make_extractor(service, sink, fixed_clock)

        extractor.pause()
        assert extractor.paused
        assert await extractor.run_extraction() is None

        assert service.calls == []
        assert sink.dumps == []

    @pytest.mark.asyncio
    async def test_resume_restores_cycles(self, sink, fixed_clock):
        service = FakeTradingService(day_of_trades())
        extractor = make_extractor(service, sink, fixed_clock)

        extractor.pause()
        await extractor.run_extraction()
        extractor.resume()
        await extractor.run_extraction()

        assert len(service.calls) == 1
        assert len(sink.dumps) == 1


class TestSpawnCycle:
    """Test fire-and-forget cycle spawning."""

    @pytest.mark.asyncio
    async def test_cycles_overlap(self, sink, fixed_clock):
        gate = asyncio.Event()

        class SlowService(FakeTradingService):
            async def get_trades(self, date):
                self.calls.append(date)
                await gate.wait()
                return day_of_trades()

        service = SlowService()
        extractor = make_extractor(service, sink, fixed_clock)

        extractor.spawn_cycle()
        extractor.spawn_cycle()
        await asyncio.sleep(0)

        assert len(service.calls) == 2
        assert extractor.pending == 2

        gate.set()
        await extractor.wait_pending()

        assert len(sink.dumps) == 2
        assert extractor.pending == 0


class TestDiagnosticLog:
    """Test failure details reach the text diagnostic log."""

    @pytest.mark.asyncio
    async def test_upstream_message_in_text_log(self, sink, fixed_clock, tmp_path):
        log_file = tmp_path / "diagnostics.log"
        service = FakeTradingService(TradingServiceError("upstream returned 503"))
        extractor = make_extractor(service, sink, fixed_clock, max_retries=2)

        handler = setup_logging(level="INFO", format_type="text", output="file", log_file=str(log_file))
        try:
            await extractor.run_extraction()
            await extractor.wait_pending()
        finally:
            close_handler(handler)

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert any(line.endswith("ERROR - Trading service failed: upstream returned 503") for line in lines)
        assert any("Trading service failed (retry 1): upstream returned 503" in line for line in lines)
        assert any("Giving up extraction after 2 retries: upstream returned 503" in line for line in lines)

    @pytest.mark.asyncio
    async def test_processing_error_in_text_log(self, fixed_clock, tmp_path):
        log_file = tmp_path / "diagnostics.log"
        sink = RecordingSink(error=OSError("disk full"))
        extractor = make_extractor(FakeTradingService(day_of_trades()), sink, fixed_clock)

        handler = setup_logging(level="INFO", format_type="text", output="file", log_file=str(log_file))
        try:
            await extractor.run_extraction()
        finally:
            close_handler(handler)

        assert "Extraction processing failed: disk full" in log_file.read_text(encoding="utf-8")
