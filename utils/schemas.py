"""
Pydantic Schemas - Trading Record Models

Defines the records returned by the trading service:
- PeriodVolume: traded volume for one hourly period
- TradeRecord: one trade with its per-period volumes

Usage:
    from utils.schemas import TradeRecord

    trade = TradeRecord(**raw_data)
    for p in trade.periods:
        print(p.period, p.volume)
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PeriodVolume(BaseModel):
    """Volume traded within a single hourly period.

    Periods are 1-based: period 1 is the 23:00 hour of the previous day.
    """

    model_config = ConfigDict(frozen=True)

    period: int = Field(..., ge=1, description="Period index (1-based)")
    volume: float = Field(..., description="Traded volume, may be negative")


class TradeRecord(BaseModel):
    """Trade returned by the trading service for a given date."""

    model_config = ConfigDict(frozen=True)

    date: datetime = Field(..., description="Reference timestamp of the trade")
    periods: list[PeriodVolume] = Field(default_factory=list, description="Per-period volumes")
