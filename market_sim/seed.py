from __future__ import annotations

from datetime import datetime, timedelta, timezone
import random

from .models import (
    Company,
    CryptoHolding,
    Cryptocurrency,
    Loan,
    Player,
    Product,
    Stock,
    StockHolding,
)
from .pricing.stock import margin_factor
from .store import SeedContent

DEFAULT_FUNDAMENTAL_MULTIPLE = 5.0

# (ticker, company name, initial price in cents, shares, profit margin %, annual volatility)
STARTER_STOCKS = [
    ("TCH", "TechCorp Industries", 15000, 1_000_000, 20.0, 0.7),
    ("ENRG", "Energy Solutions Inc", 8500, 1_500_000, 12.0, 0.8),
    ("GFC", "Global Finance Corp", 12000, 2_000_000, 25.0, 0.5),
    ("MHS", "MediHealth Systems", 9500, 800_000, 18.0, 0.65),
    ("CGC", "Consumer Goods Co", 6000, 2_500_000, 8.0, 0.4),
]

# (ticker, name, price in cents, total supply, circulating supply)
STARTER_CRYPTO = [
    ("BTC", "Bitcoin", 6_500_000, 21_000_000, 19_500_000),
    ("ETH", "Ethereum", 350_000, 120_000_000, 120_000_000),
    ("SOL", "Solana", 15_000, 580_000_000, 440_000_000),
]

STARTER_PLAYERS = [
    ("player-ada", "Ada", 2_500_000),
    ("player-grace", "Grace", 1_000_000),
    ("player-linus", "Linus", 500_000),
]

PRODUCT_NAMES = ["Standard", "Premium", "Bulk Pack"]


def _seeded_random(seed: str) -> random.Random:
    return random.Random(seed)


def revenue_for_price(price: int, total_shares: int, profit_margin: float, multiple: float) -> int:
    """Annual revenue at which the fundamental anchor equals ``price``."""
    return int(round(price * total_shares / (multiple * margin_factor(profit_margin))))


def generate_seed_content(now_utc: datetime | None = None) -> SeedContent:
    now = now_utc or datetime.now(timezone.utc)
    content = SeedContent()

    for player_id, name, cash in STARTER_PLAYERS:
        content.players.append(Player(id=player_id, name=name, cash=cash))

    for ticker, name, price, shares, margin, volatility in STARTER_STOCKS:
        company_id = f"company-{ticker.lower()}"
        content.companies.append(
            Company(
                id=company_id,
                owner_id=None,
                name=name,
                balance=0,
                is_public=True,
                revenue_annual=revenue_for_price(price, shares, margin, DEFAULT_FUNDAMENTAL_MULTIPLE),
                profit_margin=margin,
                fundamental_multiple=DEFAULT_FUNDAMENTAL_MULTIPLE,
                market_cap=price * shares,
            )
        )
        content.stocks.append(
            Stock(
                id=f"stock-{ticker.lower()}",
                company_id=company_id,
                ticker=ticker,
                price=price,
                previous_price=None,
                total_shares=shares,
                market_cap=price * shares,
                volatility=volatility,
            )
        )

    # A player-owned startup: public, but with no revenue history yet.
    content.companies.append(
        Company(
            id="company-adaworks",
            owner_id="player-ada",
            name="AdaWorks",
            balance=250_000,
            is_public=True,
            revenue_annual=None,
            profit_margin=None,
            fundamental_multiple=None,
            market_cap=2500 * 100_000,
        )
    )
    content.stocks.append(
        Stock(
            id="stock-ada",
            company_id="company-adaworks",
            ticker="ADA",
            price=2500,
            previous_price=None,
            total_shares=100_000,
            market_cap=2500 * 100_000,
        )
    )
    content.companies.append(
        Company(
            id="company-gracebakes",
            owner_id="player-grace",
            name="Grace Bakes",
            balance=80_000,
            is_public=False,
            revenue_annual=0,
            profit_margin=15.0,
            fundamental_multiple=None,
        )
    )

    for ticker, name, price, total_supply, circulating in STARTER_CRYPTO:
        content.cryptocurrencies.append(
            Cryptocurrency(
                id=f"crypto-{ticker.lower()}",
                ticker=ticker,
                name=name,
                price=price,
                previous_price=None,
                total_supply=total_supply,
                circulating_supply=circulating,
                market_cap=price * circulating,
            )
        )

    for company in content.companies:
        rng = _seeded_random(company.id)
        for idx, label in enumerate(PRODUCT_NAMES):
            content.products.append(
                Product(
                    id=f"product-{company.id.removeprefix('company-')}-{idx + 1}",
                    company_id=company.id,
                    name=f"{company.name} {label}",
                    price=int(rng.uniform(500, 25_000)),
                    stock=None if idx == 0 else rng.randint(200, 5_000),
                    total_sold=0,
                    total_revenue=0,
                    quality_rating=round(rng.uniform(0.3, 0.95), 2),
                    max_per_order=None if idx < 2 else 50,
                )
            )

    content.stock_holdings.extend(
        [
            StockHolding("player-ada", "stock-tch", 500, 500 * 14_000),
            StockHolding("player-grace", "stock-gfc", 300, 300 * 12_500),
            StockHolding("player-linus", "stock-ada", 1_000, 1_000 * 2_000),
        ]
    )
    content.crypto_holdings.extend(
        [
            CryptoHolding("player-grace", "crypto-eth", 2, 2 * 300_000),
            CryptoHolding("player-linus", "crypto-sol", 40, 40 * 16_000),
        ]
    )
    content.loans.append(
        Loan(
            id="loan-linus-1",
            player_id="player-linus",
            remaining_balance=300_000,
            accrued_interest=0,
            interest_rate=5.0,
            last_interest_applied=now - timedelta(hours=1),
        )
    )
    return content
