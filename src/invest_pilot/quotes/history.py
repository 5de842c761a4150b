"""Synthetic chart history, drift, and derived change fields."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from invest_pilot.core.models import PricePoint, Timeframe

# Values are stored at this many decimal places
PRECISION = 4
# Reverse walks never go below this
MIN_HISTORY_VALUE = 0.01
# Base used when a seed price is zero or missing
DEFAULT_SEED_PRICE = 100.0


@dataclass(frozen=True)
class TimeframeSpec:
    """Shape of a period history series."""

    points: int
    interval: timedelta
    volatility: float
    label: Callable[[datetime], str]


def _hour_minute(t: datetime) -> str:
    return f"{t.hour}:{t.minute:02d}"


def _hour(t: datetime) -> str:
    return f"{t.hour}:00"


def _month_day(t: datetime) -> str:
    return f"{t.month}/{t.day}"


def _year_month(t: datetime) -> str:
    return f"{t.year}-{t.month}"


TIMEFRAMES: dict[Timeframe, TimeframeSpec] = {
    Timeframe.HOUR: TimeframeSpec(60, timedelta(minutes=1), 0.005, _hour_minute),
    Timeframe.DAY: TimeframeSpec(24, timedelta(hours=1), 0.02, _hour),
    Timeframe.WEEK: TimeframeSpec(7, timedelta(days=1), 0.03, _month_day),
    Timeframe.MONTH: TimeframeSpec(30, timedelta(days=1), 0.08, _month_day),
    Timeframe.YEAR: TimeframeSpec(12, timedelta(days=30), 0.20, _year_month),
}


def seed_volatility(base_price: float) -> float:
    """Relative noise for seed history; lower for high-magnitude instruments."""
    return 0.002 if base_price > 1000 else 0.005


def generate_history(
    base_price: float,
    points: int = 24,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[PricePoint]:
    """Seed history for an asset that has none.

    Walks backward from ``base_price`` in hourly steps, so the newest point
    equals ``base_price``. Labels are ``H:00``.
    """
    if points < 1:
        raise ValueError(f"points must be >= 1, got {points}")
    rng = rng or random.Random()
    now = now or datetime.now()
    price = base_price if base_price > 0 else DEFAULT_SEED_PRICE
    vol = seed_volatility(price)

    values = [price]
    current = price
    for _ in range(points - 1):
        current -= (rng.random() - 0.5) * current * vol
        current = max(current, MIN_HISTORY_VALUE)
        values.append(current)
    values.reverse()

    return [
        PricePoint(
            time=_hour(now - timedelta(hours=points - 1 - i)),
            value=round(v, PRECISION),
        )
        for i, v in enumerate(values)
    ]


def history_for_timeframe(
    base_price: float,
    timeframe: Timeframe | str,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[PricePoint]:
    """Period-appropriate series ending "now" at ``base_price``.

    Each backward step moves by up to ``volatility * 2.5 / sqrt(points)`` of
    the running price and is floored at ``MIN_HISTORY_VALUE``.
    """
    frame = TIMEFRAMES[Timeframe(timeframe)]
    rng = rng or random.Random()
    now = now or datetime.now()
    scale = frame.volatility * (2.5 / math.sqrt(frame.points))

    current = base_price if base_price > 0 else DEFAULT_SEED_PRICE
    series = [PricePoint(time=frame.label(now), value=round(current, PRECISION))]
    for i in range(1, frame.points):
        current -= (rng.random() - 0.5) * current * scale
        if current <= 0:
            current = MIN_HISTORY_VALUE
        series.append(
            PricePoint(
                time=frame.label(now - i * frame.interval),
                value=round(current, PRECISION),
            )
        )
    series.reverse()
    return series


def apply_drift(history: list[PricePoint], delta: float) -> list[PricePoint]:
    """Shift every point by ``delta``, keeping labels, length and order."""
    if delta == 0:
        return list(history)
    return [
        PricePoint(time=p.time, value=round(p.value + delta, PRECISION))
        for p in history
    ]


def derive_change(price: float, history: list[PricePoint]) -> tuple[float, float]:
    """Return ``(change, change_percent)`` against the first history point."""
    if not history:
        return 0.0, 0.0
    open_value = history[0].value
    change = round(price - open_value, PRECISION)
    if open_value == 0:
        return change, 0.0
    return change, round((price - open_value) / open_value * 100, PRECISION)
