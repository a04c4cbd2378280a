from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import random

from ..errors import InvalidComputation
from ..models import Cryptocurrency
from .noise import PriceModelParams, random_factor, resolve_volatility, to_minor_units


@dataclass(frozen=True)
class CryptoPriceResult:
    crypto_id: str
    old_price: int
    new_price: int
    market_cap: int


def compute_crypto_price(
    crypto: Cryptocurrency,
    *,
    params: PriceModelParams,
    rng: random.Random,
    now: datetime,
) -> CryptoPriceResult:
    # Geometric random walk with trend bias; coins have no fundamentals to revert to.
    if crypto.price <= 0:
        raise InvalidComputation(f"crypto {crypto.id} has stored price={crypto.price}")
    volatility = resolve_volatility(crypto.volatility, params.default_volatility)
    factor = random_factor(crypto.id, volatility=volatility, params=params, rng=rng, now=now)
    new_price = to_minor_units(crypto.price * factor, crypto.id)
    return CryptoPriceResult(
        crypto_id=crypto.id,
        old_price=crypto.price,
        new_price=new_price,
        market_cap=new_price * max(0, crypto.circulating_supply),
    )
