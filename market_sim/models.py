from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

STOCK = "stock"
CRYPTO = "crypto"
INSTRUMENT_KINDS = (STOCK, CRYPTO)


@dataclass(frozen=True)
class Company:
    id: str
    owner_id: str | None
    name: str
    balance: int
    is_public: bool
    revenue_annual: int | None
    profit_margin: float | None
    fundamental_multiple: float | None
    market_cap: int = 0


@dataclass(frozen=True)
class Stock:
    id: str
    company_id: str
    ticker: str
    price: int
    previous_price: int | None
    total_shares: int
    market_cap: int
    volatility: float | None = None


@dataclass(frozen=True)
class Cryptocurrency:
    id: str
    ticker: str
    name: str
    price: int
    previous_price: int | None
    total_supply: int
    circulating_supply: int
    market_cap: int
    volatility: float | None = None


@dataclass(frozen=True)
class Product:
    id: str
    company_id: str
    name: str
    price: int
    stock: int | None
    total_sold: int
    total_revenue: int
    quality_rating: float
    is_active: bool = True
    is_archived: bool = False
    max_per_order: int | None = None


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    cash: int
    net_worth: int = 0


@dataclass(frozen=True)
class StockHolding:
    owner_id: str
    stock_id: str
    quantity: int
    total_invested: int


@dataclass(frozen=True)
class CryptoHolding:
    owner_id: str
    crypto_id: str
    quantity: int
    total_invested: int


@dataclass(frozen=True)
class Loan:
    id: str
    player_id: str
    remaining_balance: int
    accrued_interest: int
    interest_rate: float
    last_interest_applied: datetime
    status: str = "active"


@dataclass(frozen=True)
class PriceHistoryEntry:
    instrument_kind: str
    instrument_id: str
    timestamp: datetime
    price: int


@dataclass(frozen=True)
class PriceUpdate:
    instrument_kind: str
    instrument_id: str
    old_price: int
    new_price: int
    market_cap: int


@dataclass(frozen=True)
class BotPurchase:
    product_id: str
    company_id: str
    quantity: int
    total_price: int


@dataclass(frozen=True)
class LoanInterestCharge:
    loan_id: str
    player_id: str
    amount: int
    applied_at: datetime


@dataclass(frozen=True)
class TickLease:
    """Ownership of the tick guard for one tick.

    Completing or releasing the guard needs the same token, so a tick whose
    guard was taken over cannot clear the guard of the tick that replaced it.
    """

    tick_number: int
    token: str
    started_at: datetime


@dataclass(frozen=True)
class TickRecord:
    tick_number: int
    timestamp: datetime
    bot_purchases: int
    stock_updates: int
    crypto_updates: int
    bot_failures: int = 0
    stock_failures: int = 0
    crypto_failures: int = 0
    loan_interest_applied: int = 0
    history_entries: int = 0
    total_budget_spent: int = 0
    deadline_exceeded: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tickNumber": self.tick_number,
            "timestamp": self.timestamp.isoformat(),
            "botPurchases": self.bot_purchases,
            "stockUpdates": self.stock_updates,
            "cryptoUpdates": self.crypto_updates,
            "botFailures": self.bot_failures,
            "stockFailures": self.stock_failures,
            "cryptoFailures": self.crypto_failures,
            "loanInterestApplied": self.loan_interest_applied,
            "historyEntries": self.history_entries,
            "totalBudgetSpent": self.total_budget_spent,
            "deadlineExceeded": self.deadline_exceeded,
        }


@dataclass(frozen=True)
class HoldingValuation:
    instrument_kind: str
    owner_id: str
    instrument_id: str
    quantity: int
    current_value: int
    total_invested: int
    profit_loss: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrumentKind": self.instrument_kind,
            "instrumentId": self.instrument_id,
            "quantity": self.quantity,
            "currentValue": self.current_value,
            "totalInvested": self.total_invested,
            "profitLoss": self.profit_loss,
        }


@dataclass(frozen=True)
class PlayerNetWorth:
    player_id: str
    cash: int
    stock_value: int
    crypto_value: int
    company_equity: int
    net_worth: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "playerId": self.player_id,
            "cash": self.cash,
            "stockValue": self.stock_value,
            "cryptoValue": self.crypto_value,
            "companyEquity": self.company_equity,
            "netWorth": self.net_worth,
        }


@dataclass(frozen=True)
class MarketState:
    """Read-side view of everything the aggregate recalculator needs."""

    players: list[Player]
    companies: list[Company]
    stocks: list[Stock]
    cryptocurrencies: list[Cryptocurrency]
    stock_holdings: list[StockHolding]
    crypto_holdings: list[CryptoHolding]


@dataclass(frozen=True)
class AggregateSnapshot:
    computed_at: datetime
    company_market_caps: dict[str, int]
    holdings: list[HoldingValuation]
    net_worths: list[PlayerNetWorth]
