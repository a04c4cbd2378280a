from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import hashlib
import math
import random

from ..config import Settings
from ..errors import ConfigurationError, InvalidComputation

TREND_PERIOD = 100
TREND_FREQUENCY = 0.1
MEDIUM_TERM_NOISE_WEIGHT = 0.5


@dataclass(frozen=True)
class PriceModelParams:
    ticks_per_year: int
    default_volatility: float
    mean_reversion_strength: float = 0.05
    trend_bias_weight: float = 0.3
    fundamental_price_floor: int = 1

    @classmethod
    def for_stocks(cls, settings: Settings) -> "PriceModelParams":
        return cls(
            ticks_per_year=settings.ticks_per_year,
            default_volatility=settings.stock_default_volatility,
            mean_reversion_strength=settings.mean_reversion_strength,
            trend_bias_weight=settings.trend_bias_weight,
            fundamental_price_floor=settings.fundamental_price_floor_cents,
        )

    @classmethod
    def for_crypto(cls, settings: Settings) -> "PriceModelParams":
        return cls(
            ticks_per_year=settings.ticks_per_year,
            default_volatility=settings.crypto_default_volatility,
            mean_reversion_strength=0.0,
            trend_bias_weight=settings.trend_bias_weight,
            fundamental_price_floor=settings.fundamental_price_floor_cents,
        )


def instrument_seed(instrument_id: str) -> int:
    """Map an instrument id to a stable value in [0, 100).

    Pure function of the id: the same id always lands on the same phase of the
    trend cycle, across processes and interpreter runs.
    """
    digest = hashlib.sha256(instrument_id.encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % TREND_PERIOD


def resolve_volatility(value: float | None, default: float) -> float:
    volatility = default if value is None else value
    try:
        volatility = float(volatility)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"volatility is not numeric: {value!r}") from exc
    if not math.isfinite(volatility) or volatility < 0:
        raise ConfigurationError(f"volatility must be finite and >= 0, got {volatility!r}")
    return volatility


def tick_volatility(volatility: float, ticks_per_year: int) -> float:
    """Scale an annualized volatility down to one tick's standard deviation."""
    if ticks_per_year <= 0:
        raise ConfigurationError(f"ticks_per_year must be positive, got {ticks_per_year}")
    return volatility / math.sqrt(ticks_per_year)


def combined_noise(tick_vol: float, rng: random.Random) -> float:
    short_term = rng.uniform(-1.0, 1.0) * tick_vol
    medium_term = rng.uniform(-1.0, 1.0) * tick_vol * MEDIUM_TERM_NOISE_WEIGHT
    return short_term + medium_term


def trend_bias(instrument_id: str, tick_vol: float, now: datetime, weight: float) -> float:
    hours = now.timestamp() / 3600.0
    phase = (hours + instrument_seed(instrument_id)) % TREND_PERIOD
    return math.sin(phase * TREND_FREQUENCY) * tick_vol * weight


def random_factor(
    instrument_id: str,
    *,
    volatility: float,
    params: PriceModelParams,
    rng: random.Random,
    now: datetime,
) -> float:
    tick_vol = tick_volatility(volatility, params.ticks_per_year)
    noise = combined_noise(tick_vol, rng)
    bias = trend_bias(instrument_id, tick_vol, now, params.trend_bias_weight)
    return 1.0 + noise + bias


def to_minor_units(value: float, instrument_id: str) -> int:
    if not math.isfinite(value) or value <= 0:
        raise InvalidComputation(f"price for {instrument_id} computed as {value!r}")
    return max(1, int(round(value)))
