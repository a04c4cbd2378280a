from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import math
import random

from ..errors import InvalidComputation, MissingFundamentals
from ..models import Company, Stock
from .noise import PriceModelParams, random_factor, resolve_volatility, to_minor_units

logger = logging.getLogger(__name__)

MIN_MARGIN_FACTOR = 0.5
MAX_MARGIN_FACTOR = 1.5


@dataclass(frozen=True)
class StockPriceResult:
    stock_id: str
    old_price: int
    new_price: int
    market_cap: int
    fundamental_price: float
    anchored_to_fundamentals: bool


def margin_factor(profit_margin: float | None) -> float:
    if profit_margin is None or not math.isfinite(profit_margin):
        return 1.0
    return max(MIN_MARGIN_FACTOR, min(MAX_MARGIN_FACTOR, 0.5 + profit_margin / 100.0))


def fundamental_price(company: Company | None, total_shares: int, floor: int) -> float:
    """Per-share value implied by revenue, margin and the valuation multiple.

    Raises MissingFundamentals when there is nothing usable to anchor to.
    Zero revenue is a valid (if grim) fundamental and maps to ``floor``.
    """
    if company is None:
        raise MissingFundamentals("no company attached to stock")
    if company.revenue_annual is None or company.fundamental_multiple is None:
        raise MissingFundamentals(f"company {company.id} has no revenue or multiple")
    if total_shares <= 0:
        raise MissingFundamentals(f"company {company.id} has no shares outstanding")
    valuation = (
        float(company.revenue_annual)
        * float(company.fundamental_multiple)
        * margin_factor(company.profit_margin)
    )
    value = valuation / total_shares
    if not math.isfinite(value):
        raise MissingFundamentals(f"company {company.id} fundamentals are not finite")
    return max(float(floor), value)


def apply_mean_reversion(candidate: float, anchor: float, strength: float) -> float:
    """Move ``candidate`` a fraction ``strength`` of the way toward ``anchor``.

    Prices are rounded to whole minor units after this step, so with noise off
    the walk stalls once ``strength * gap`` drops below half a unit: at 0.05 a
    1000 -> 1200 run settles about 10 units short of the anchor.
    """
    return candidate + strength * (anchor - candidate)


def compute_stock_price(
    stock: Stock,
    company: Company | None,
    *,
    params: PriceModelParams,
    rng: random.Random,
    now: datetime,
) -> StockPriceResult:
    if stock.total_shares <= 0:
        raise InvalidComputation(f"stock {stock.id} has total_shares={stock.total_shares}")
    current = stock.price
    if current <= 0:
        raise InvalidComputation(f"stock {stock.id} has stored price={current}")

    anchored = True
    try:
        anchor = fundamental_price(company, stock.total_shares, params.fundamental_price_floor)
    except MissingFundamentals as exc:
        logger.debug("fundamentals_missing stock_id=%s reason=%s", stock.id, exc)
        anchor = float(current)
        anchored = False

    volatility = resolve_volatility(stock.volatility, params.default_volatility)
    factor = random_factor(stock.id, volatility=volatility, params=params, rng=rng, now=now)
    candidate = current * factor
    reverted = apply_mean_reversion(candidate, anchor, params.mean_reversion_strength)
    new_price = to_minor_units(reverted, stock.id)

    return StockPriceResult(
        stock_id=stock.id,
        old_price=current,
        new_price=new_price,
        market_cap=new_price * stock.total_shares,
        fundamental_price=anchor,
        anchored_to_fundamentals=anchored,
    )
