"""
Trading Service Clients

Sources of trade records for the extractor:
- HttpTradingService: fetches trades from a JSON HTTP endpoint
- SimulatedTradingService: local stand-in for the trading platform, with
  random volumes and random failures

Any failure to obtain trades is raised as TradingServiceError.

Usage:
    from apps.extractor.trading import build_trading_service

    service = build_trading_service(settings)
    trades = await service.get_trades(datetime.now())
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

import httpx
import orjson
from pydantic import TypeAdapter, ValidationError

from utils.config import Settings
from utils.schemas import PeriodVolume, TradeRecord

logger = logging.getLogger(__name__)

_trades_adapter = TypeAdapter(list[TradeRecord])


class TradingServiceError(Exception):
    """Raised when trades cannot be retrieved from the trading service."""


class TradingService(ABC):
    """Asynchronous source of the day's trades."""

    @abstractmethod
    async def get_trades(self, date: datetime) -> list[TradeRecord]:
        """
        Retrieve trades for the trading day of ``date``.

        Raises:
            TradingServiceError: If trades cannot be retrieved
        """

    async def close(self) -> None:
        """Release any resources held by the client."""


class HttpTradingService(TradingService):
    """Trading service client for a JSON HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize HTTP trading client.

        Args:
            base_url: Endpoint returning a JSON list of trades
            timeout: Request timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def get_trades(self, date: datetime) -> list[TradeRecord]:
        client = await self._ensure_client()

        try:
            response = await client.get(self.base_url, params={"date": date.isoformat()})
            response.raise_for_status()
            return _trades_adapter.validate_python(orjson.loads(response.content))
        except httpx.HTTPError as e:
            raise TradingServiceError(f"Trading API request failed: {e}") from e
        except orjson.JSONDecodeError as e:
            raise TradingServiceError(f"Trading API returned invalid JSON: {e}") from e
        except ValidationError as e:
            raise TradingServiceError(
                f"Trading API returned invalid trades: {str(e).splitlines()[0]}"
            ) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def periods_in_day(date: datetime, tz: ZoneInfo) -> int:
    """
    Count hourly periods in the trading day containing ``date``.

    The trading day runs from 23:00 of the previous day to 23:00 local time,
    so it has 23 or 25 periods on daylight-saving transition days.
    """
    day = date.date()
    start = datetime.combine(day - timedelta(days=1), time(23), tzinfo=tz)
    end = datetime.combine(day, time(23), tzinfo=tz)
    # Aware subtraction within one zone ignores offsets, so compare in UTC
    elapsed = end.astimezone(ZoneInfo("UTC")) - start.astimezone(ZoneInfo("UTC"))
    return int(elapsed.total_seconds() // 3600)


class SimulatedTradingService(TradingService):
    """
    Stand-in for the trading platform.

    Returns ``trade_count`` trades, each with one volume per period of the
    local trading day, and fails with probability ``failure_rate``.
    """

    def __init__(
        self,
        failure_rate: float = 0.1,
        trade_count: int = 2,
        timezone: str = "Europe/London",
        latency: float = 0.0,
        seed: int | None = None,
    ) -> None:
        self.failure_rate = failure_rate
        self.trade_count = trade_count
        self.tz = ZoneInfo(timezone)
        self.latency = latency
        self._random = random.Random(seed)

    async def get_trades(self, date: datetime) -> list[TradeRecord]:
        if self.latency:
            await asyncio.sleep(self._random.uniform(0, self.latency))

        if self._random.random() < self.failure_rate:
            raise TradingServiceError("Error retrieving trades")

        count = periods_in_day(date, self.tz)
        trades = [
            TradeRecord(
                date=date,
                periods=[
                    PeriodVolume(period=i, volume=round(self._random.uniform(-100, 200), 2))
                    for i in range(1, count + 1)
                ],
            )
            for _ in range(self.trade_count)
        ]
        logger.debug("Simulated trades generated", extra={"trades": len(trades), "periods": count})
        return trades


def build_trading_service(settings: Settings) -> TradingService:
    """Create the HTTP client when TRADING_API_URL is set, else the simulator."""
    if settings.TRADING_API_URL:
        logger.info("Using HTTP trading service", extra={"url": settings.TRADING_API_URL})
        return HttpTradingService(settings.TRADING_API_URL, timeout=settings.API_TIMEOUT)

    logger.info(
        "Using simulated trading service",
        extra={"failure_rate": settings.SIMULATED_FAILURE_RATE},
    )
    return SimulatedTradingService(
        failure_rate=settings.SIMULATED_FAILURE_RATE,
        trade_count=settings.SIMULATED_TRADES,
        timezone=settings.TRADING_TIMEZONE,
    )
