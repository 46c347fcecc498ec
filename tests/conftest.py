"""Pytest configuration and fixtures for extractor testing."""

from datetime import datetime

import pytest

from apps.extractor.trading import TradingService
from utils.schemas import PeriodVolume, TradeRecord

FIXED_NOW = datetime(2024, 1, 2, 10, 5, 30)


def make_trade(volumes: dict[int, float], date: datetime = FIXED_NOW) -> TradeRecord:
    """Build a trade from a period -> volume mapping."""
    return TradeRecord(
        date=date,
        periods=[PeriodVolume(period=p, volume=v) for p, v in volumes.items()],
    )


def day_of_trades(periods: int = 24) -> list[TradeRecord]:
    return [make_trade({p: float(p) for p in range(1, periods + 1)})]


class FakeTradingService(TradingService):
    """Replays scripted responses; the last one repeats forever."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[datetime] = []

    async def get_trades(self, date: datetime) -> list[TradeRecord]:
        self.calls.append(date)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSink:
    """Output sink keeping every dump in memory."""

    def __init__(self, error: Exception | None = None) -> None:
        self.dumps: list[tuple[str, list[str]]] = []
        self.error = error

    def dump(self, file_name, lines) -> None:
        if self.error is not None:
            raise self.error
        self.dumps.append((file_name, list(lines or [])))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
